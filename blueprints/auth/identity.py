# blueprints/auth/identity.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

import httpx
from flask import Flask, Request, current_app
from flask_login import UserMixin

log = logging.getLogger(__name__)


@dataclass
class Principal(UserMixin):
    """Пользователь из внешнего сервиса идентификации (в нашей БД его нет)."""
    id: str
    email: Optional[str] = None

    def get_id(self) -> str:
        return self.id


class TokenVerifier(Protocol):
    def verify(self, token: str) -> Optional[Principal]:
        ...


class StaticTokenVerifier:
    def __init__(self, tokens: Dict[str, str]):
        self.tokens = dict(tokens)

    def verify(self, token: str) -> Optional[Principal]:
        uid = self.tokens.get(token)
        return Principal(id=uid) if uid else None


class HttpTokenVerifier:
    """GET {IDENTITY_URL}/auth/v1/user с bearer-токеном; 2xx + id → принципал."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def verify(self, token: str) -> Optional[Principal]:
        if not self.base_url:
            log.warning("IDENTITY_URL is not configured, token rejected")
            return None
        headers = {"Authorization": f"Bearer {token}"}
        if self.api_key:
            headers["apikey"] = self.api_key
        try:
            resp = httpx.get(f"{self.base_url}/auth/v1/user", headers=headers, timeout=self.timeout)
        except httpx.HTTPError as ex:
            log.warning("identity service unreachable: %s", ex)
            return None
        if resp.status_code != 200:
            return None
        data = resp.json() or {}
        uid = data.get("id")
        if not uid:
            return None
        return Principal(id=str(uid), email=data.get("email"))


def init_verifier(app: Flask) -> TokenVerifier:
    static = app.config.get("IDENTITY_STATIC_TOKENS") or {}
    if static:
        verifier: TokenVerifier = StaticTokenVerifier(static)
    else:
        verifier = HttpTokenVerifier(
            app.config.get("IDENTITY_URL", ""),
            app.config.get("IDENTITY_API_KEY", ""),
            float(app.config.get("IDENTITY_TIMEOUT", 5)),
        )
    app.extensions["token_verifier"] = verifier
    return verifier


def get_verifier() -> TokenVerifier:
    verifier = current_app.extensions.get("token_verifier")
    if verifier is None:
        verifier = init_verifier(current_app)
    return verifier


def token_from_request(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        token = auth[7:].strip()
        if token:
            return token
    body = request.get_json(silent=True)
    if isinstance(body, dict):
        token = body.get("access_token")
        if isinstance(token, str) and token.strip():
            return token.strip()
    return None
