# blueprints/notifications/routes.py
from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy import select

from extensions import db
from models import Notification
from . import handlers
from . import services as svc

api_bp = Blueprint("notifications_api", __name__)


@api_bp.record_once
def _on_register(state):
    handlers.register()


@api_bp.get("/notification-preferences")
@login_required
def api_preferences_get():
    return jsonify({"preferences": svc.preferences_payload(current_user.id)})


@api_bp.put("/notification-preferences")
@login_required
def api_preferences_put():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({"error": "invalid_body"}), 400
    return jsonify({"success": True, "preferences": svc.save_preferences(current_user.id, body)})


@api_bp.get("/notifications")
@login_required
def api_notifications_list():
    limit = min(max(request.args.get("limit", 50, type=int), 1), 200)
    q = select(Notification).where(Notification.user_id == current_user.id)
    if request.args.get("unread") in ("1", "true"):
        q = q.where(Notification.read.is_(False))
    rows = db.session.execute(
        q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    ).scalars().all()
    return jsonify({"notifications": [{
        "id": n.id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "action_type": n.action_type,
        "action_data": n.action_data,
        "url": n.url,
        "read": n.read,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    } for n in rows]})
