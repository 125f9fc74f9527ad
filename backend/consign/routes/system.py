# backend/consign/routes/system.py
"""
System health and version endpoints.

Health covers the database, the audit log (degraded after a swallowed audit
write failure) and the background scheduler.
"""

import sys
import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Store, DailyTransaction
from ..scheduler import list_scheduled_jobs
from ..services.audit_service import get_audit_health
from consign.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        store_count = db.session.query(Store).count()
        transaction_count = db.session.query(DailyTransaction).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "stores": store_count,
                "daily_transactions": transaction_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_audit_health() -> dict:
    """Degraded once any audit write has been dropped since start (or reset)."""
    return get_audit_health().to_dict()


def check_scheduler_health() -> dict:
    enabled = bool(current_app.config.get("ENABLE_BACKGROUND_JOBS"))
    return {
        "status": "healthy",
        "enabled": enabled,
        "jobs": list_scheduled_jobs(current_app),
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy, or degraded (audit writes dropped; still operational)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    audit_health = check_audit_health()
    scheduler_health = check_scheduler_health()

    all_checks = [database_health, audit_health, scheduler_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "audit": audit_health,
            "scheduler": scheduler_health,
        }
    }

    return response, http_status


@system_bp.get("/version")
def version():
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
