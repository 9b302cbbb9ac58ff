from __future__ import annotations
import json, logging
from datetime import datetime
from uuid import uuid4

from flask import current_app, g, jsonify, request
from sqlalchemy import text
from werkzeug.wrappers.response import Response

from extensions import db
from . import bp
from . import api_bp

REQUEST_ID_HEADER = "X-Request-ID"

class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.utcnow().isoformat(timespec="milliseconds") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in ("event","path","method","status","duration_ms","request_id","program_id"):
            if hasattr(record, key):
                payload[key] = getattr(record, key)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)

def _setup_structured_logging(app):
    logger = app.logger
    has_json = any(
        isinstance(h, logging.StreamHandler)
        and isinstance(getattr(h, "formatter", None), JSONFormatter)
        for h in logger.handlers
    )
    if not has_json:
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)

@bp.before_app_request
def _start_timer_and_request_id():
    g._req_start = datetime.utcnow()
    rid = request.headers.get(REQUEST_ID_HEADER)
    g.request_id = rid or uuid4().hex

@bp.after_app_request
def _log_request(response: Response):
    try:
        duration_ms = int((datetime.utcnow() - g._req_start).total_seconds() * 1000)
    except AttributeError:
        duration_ms = None
    rid = getattr(g, "request_id", None)
    if rid:
        response.headers[REQUEST_ID_HEADER] = rid
    extra = {
        "event":"http_request",
        "path":request.path,
        "method":request.method,
        "status":response.status_code,
        "duration_ms":duration_ms,
        "request_id":rid,
    }
    # JSON-хендлер висит на app.logger, см. _on_register
    current_app.logger.info("request handled", extra=extra)
    return response

@bp.record_once
def _on_register(state):
    _setup_structured_logging(state.app)

@bp.get("/health")
def health():
    return jsonify({
        "status":"ok",
        "ts": datetime.utcnow().isoformat(timespec="seconds")+"Z",
        "request_id": getattr(g, "request_id", None),
    })

@api_bp.get("/health/db")
def health_db():
    try:
        db.session.execute(text("SELECT 1"))
        return jsonify({"status":"ok"})
    except Exception as ex:
        db.session.rollback()
        current_app.logger.warning("db health check failed: %s", ex)
        return jsonify({"status":"error"}), 503
