# backend/sportify/routes/system.py
"""
System health endpoint.

Reports database connectivity and the state of the low-stock alert outbox,
so a stuck or failing supplier mailer shows up in monitoring.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import LowStockAlert, Product, StockEntry
from ..models.inventory import ALERT_PENDING, ALERT_FAILED
from sportify.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        entry_count = db.session.query(StockEntry).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"products": product_count, "stock_entries": entry_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_alert_outbox_health() -> dict:
    """Degraded when alerts are failing; delivery problems never stop sales."""
    try:
        pending = db.session.query(LowStockAlert).filter_by(status=ALERT_PENDING).count()
        failed = db.session.query(LowStockAlert).filter_by(status=ALERT_FAILED).count()
    except Exception:
        current_app.logger.exception("Alert outbox health check failed")
        return {"status": "unhealthy", "error": "Alert outbox error"}

    return {
        "status": "degraded" if failed else "healthy",
        "details": {"pending": pending, "failed": failed},
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()
    database_health = check_database_health()
    outbox_health = (
        check_alert_outbox_health()
        if database_health["status"] == "healthy"
        else {"status": "unknown"}
    )

    if database_health["status"] == "unhealthy":
        overall_status, http_status = "unhealthy", 503
    elif outbox_health["status"] == "degraded":
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "alert_outbox": outbox_health,
        },
    }, http_status
