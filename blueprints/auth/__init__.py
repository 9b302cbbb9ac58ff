from __future__ import annotations
from typing import Optional

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from extensions import login_manager
from .identity import Principal, get_verifier, init_verifier, token_from_request

# Не задаём url_prefix здесь, он задаётся в app.register_blueprint(..., url_prefix="/api/v1")
api_bp = Blueprint("auth_api", __name__)


@api_bp.record_once
def _on_register(state):
    init_verifier(state.app)


@login_manager.request_loader
def load_principal(req) -> Optional[Principal]:
    token = token_from_request(req)
    if not token:
        return None
    return get_verifier().verify(token)


@login_manager.unauthorized_handler
def _unauth():
    if token_from_request(request) is None:
        return jsonify({"error": "missing_access_token"}), 400
    return jsonify({"error": "invalid_token"}), 401


@api_bp.get("/auth/me")
@login_required
def me():
    return jsonify({"ok": True, "user": {"id": current_user.id, "email": getattr(current_user, "email", None)}})
