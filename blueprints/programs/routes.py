# blueprints/programs/routes.py
from __future__ import annotations
import logging
from typing import Optional

from flask import Blueprint, jsonify, request
from flask_login import current_user
from pydantic import ValidationError as PydanticValidationError
from werkzeug.exceptions import HTTPException

from extensions import db
from blueprints.auth.identity import token_from_request
from blueprints.billing.services import sync_program_event
from . import events
from .errors import AuthenticationError, NotFoundError, ProgramError, ValidationError
from .repository import ProgramRepository
from .schemas import ProgramRequest
from .services import ProgramLifecycleManager, program_payload, lesson_rows

log = logging.getLogger(__name__)

# Не задаём url_prefix здесь, он задаётся в app.register_blueprint(..., url_prefix="/api/v1")
api_bp = Blueprint("programs_api", __name__)


@api_bp.record_once
def _on_register(state):
    events.subscribe(events.CREATED, sync_program_event)


@api_bp.errorhandler(ProgramError)
def _program_error(ex: ProgramError):
    return jsonify(ex.to_dict()), ex.status


@api_bp.errorhandler(PydanticValidationError)
def _validation_error(ex: PydanticValidationError):
    return jsonify({"error": "validation_error", "detail": ex.errors(include_url=False, include_context=False)}), 422


@api_bp.errorhandler(Exception)
def _unexpected(ex: Exception):
    if isinstance(ex, HTTPException):
        return ex
    db.session.rollback()
    log.exception("unhandled error on %s %s", request.method, request.path)
    return jsonify({"error": "server_error"}), 500


def _principal_id(missing_code: str) -> str:
    """Токен обязателен; сам токен проверяется в request_loader."""
    if not token_from_request(request):
        raise ValidationError(missing_code)
    if not current_user.is_authenticated:
        raise AuthenticationError()
    return current_user.id


def _payload() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _program_id_from(payload: dict, program_id: Optional[int]) -> Optional[int]:
    if program_id is not None:
        return program_id
    raw = payload.get("programId", payload.get("program_id"))
    try:
        return int(raw) if raw not in (None, "") else None
    except (TypeError, ValueError):
        raise ValidationError("missing_required_fields")


@api_bp.post("/programs")
def api_program_create():
    principal_id = _principal_id("missing_access_token")
    payload = _payload()
    if "program" not in payload:
        raise ValidationError("missing_required_fields", details={"missing": ["program"]})
    data = ProgramRequest.model_validate(payload)

    program = ProgramLifecycleManager().create(
        principal_id,
        data.program,
        data.schedule_draft(),
        location_ids=data.location_ids,
        teacher_ids=data.teacher_ids,
    )
    return jsonify({"program": program_payload(program)}), 201


@api_bp.put("/programs")
@api_bp.put("/programs/<int:program_id>")
def api_program_update(program_id: Optional[int] = None):
    principal_id = _principal_id("missing_required_fields")
    payload = _payload()
    program_id = _program_id_from(payload, program_id)
    if program_id is None or "program" not in payload:
        raise ValidationError("missing_required_fields")
    data = ProgramRequest.model_validate(payload)

    result = ProgramLifecycleManager().update(
        principal_id,
        program_id,
        data.program,
        data.schedule_draft(),
        location_ids=data.location_ids,
        teacher_ids=data.teacher_ids,
    )
    return jsonify({
        "success": True,
        "changes": {
            "schedule_changed": result.changes.schedule_changed,
            "location_changed": result.changes.location_changed,
        },
    })


@api_bp.get("/programs/<int:program_id>")
def api_program_get(program_id: int):
    repo = ProgramRepository()
    program = repo.get_program(program_id)
    if program is None:
        raise NotFoundError()
    body = program_payload(program, repo)
    body["lessons"] = lesson_rows(program_id, repo)
    return jsonify({"program": body})
