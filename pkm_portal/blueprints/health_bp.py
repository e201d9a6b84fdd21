"""
Health check blueprint.

Endpoints:
    GET /api/v1/health  — database round trip plus directory configuration
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from pkm_portal.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1")


@health_bp.route("/health", methods=["GET"])
def health():
    checks = {}
    overall = True

    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except SQLAlchemyError as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check database failed: %s", exc)

    # Directory URLs are reported; no request is made.
    for name in ("STUDENT", "STAFF", "ORG_UNIT"):
        configured = bool(current_app.config.get(f"{name}_DIRECTORY_URL"))
        checks[f"{name.lower()}_directory"] = {
            "status": "configured" if configured else "not_configured"
        }

    body = {"status": "ok" if overall else "degraded", "checks": checks}
    return jsonify(body), 200 if overall else 503
