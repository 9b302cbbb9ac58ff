from __future__ import annotations
import os
from pathlib import Path

def _csv(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(x.strip() for x in raw.split(",") if x.strip())

class BaseConfig:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    BASE_DIR = Path(__file__).resolve().parent
    # SQLite file in project directory
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR / 'app.db'}")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # внешний сервис идентификации (проверка bearer-токена)
    IDENTITY_URL = os.getenv("IDENTITY_URL", "")
    IDENTITY_API_KEY = os.getenv("IDENTITY_API_KEY", "")
    IDENTITY_TIMEOUT = float(os.getenv("IDENTITY_TIMEOUT", "5"))
    IDENTITY_STATIC_TOKENS: dict[str, str] = {}

    MEMBER_ADMIN_ROLES = _csv("MEMBER_ADMIN_ROLES", "owner,admin,studio_admin")
    TERM_PERIODS_ENABLED = os.getenv("TERM_PERIODS_ENABLED", "1") == "1"

    TASKS_EAGER = False
    TASKS_MAX_WORKERS = int(os.getenv("TASKS_MAX_WORKERS", "4"))

    BILLING_SYNC_URL = os.getenv("BILLING_SYNC_URL", "")
    PUSH_GATEWAY_URL = os.getenv("PUSH_GATEWAY_URL", "")
    OUTBOUND_TIMEOUT = float(os.getenv("OUTBOUND_TIMEOUT", "10"))

class DevConfig(BaseConfig):
    DEBUG = True
    # токены для локальной разработки без сервиса идентификации
    IDENTITY_STATIC_TOKENS = {"dev-owner-token": "dev-owner"}

class ProdConfig(BaseConfig):
    DEBUG = False
    JSON_SORT_KEYS = False

config_map = {
    "dev": DevConfig,
    "prod": ProdConfig,
    "default": DevConfig,
}
