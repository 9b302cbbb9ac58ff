# blueprints/billing/services.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from flask import current_app

from extensions import db
from models import Organization, Program

log = logging.getLogger(__name__)


@dataclass
class SyncResult:
    success: bool
    error: Optional[str] = None
    skipped: bool = False


def sync_program_to_billing(program: Program, client: Optional[httpx.Client] = None) -> SyncResult:
    """Передать программу как товар во внешний биллинг.

    Без BILLING_SYNC_URL или без биллингового аккаунта организации пропускаем.
    """
    url = current_app.config.get("BILLING_SYNC_URL")
    if not url:
        return SyncResult(success=True, skipped=True)
    org = db.session.get(Organization, program.organization_id)
    if org is None or not org.billing_account_id:
        return SyncResult(success=True, skipped=True)

    body = {
        "program_id": program.id,
        "organization_id": program.organization_id,
        "billing_account_id": org.billing_account_id,
        "title": program.title,
        "description": program.description,
        "price": program.price,
    }
    timeout = float(current_app.config.get("OUTBOUND_TIMEOUT", 10))
    try:
        if client is not None:
            resp = client.post(url, json=body, timeout=timeout)
        else:
            resp = httpx.post(url, json=body, timeout=timeout)
    except httpx.HTTPError as ex:
        return SyncResult(success=False, error=str(ex))
    if resp.status_code >= 400:
        return SyncResult(success=False, error=f"HTTP {resp.status_code}")
    return SyncResult(success=True)


def sync_program_event(event) -> SyncResult:
    program = db.session.get(Program, event.program_id)
    if program is None:
        log.warning("billing sync: program %s is gone", event.program_id)
        return SyncResult(success=False, error="program_not_found")
    result = sync_program_to_billing(program)
    if not result.success:
        log.error("billing sync for program %s failed: %s", event.program_id, result.error)
    elif not result.skipped:
        log.info("program %s synced to billing", event.program_id)
    return result
