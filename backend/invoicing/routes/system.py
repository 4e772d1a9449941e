# Overview: Health check endpoint for deployments and monitoring.

import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from ..extensions import db
from invoicing.time_utils import utcnow, to_utc_z


system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Database error"}


@system_bp.get("/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    return jsonify({
        "status": "OK" if healthy else "DEGRADED",
        "timestamp": to_utc_z(utcnow()),
        "database": database,
    }), 200 if healthy else 503
