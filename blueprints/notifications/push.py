# blueprints/notifications/push.py
from __future__ import annotations
import logging
from typing import Optional, Sequence

import httpx
from flask import current_app

log = logging.getLogger(__name__)


class PushGateway:
    """Передаёт push во внешний шлюз; сама доставка до устройств не наша."""

    def __init__(self, url: Optional[str] = None, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    @classmethod
    def from_config(cls) -> "PushGateway":
        cfg = current_app.config
        return cls(cfg.get("PUSH_GATEWAY_URL") or None, float(cfg.get("OUTBOUND_TIMEOUT", 10)))

    def send(self, user_ids: Sequence[str], payload: dict) -> int:
        if not user_ids:
            return 0
        if not self.url:
            log.info("push gateway not configured, skip %d recipients", len(user_ids))
            return 0
        resp = httpx.post(self.url, json={"user_ids": list(user_ids), "payload": payload}, timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json() if resp.content else {}
        return int(data.get("sent", len(user_ids)))
