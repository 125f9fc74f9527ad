# Overview: Flask API routes for cut-off settings and the external sweep trigger.

"""
Cut-off routes.

- GET  /api/stores/:id/cutoff  - Owner reads cut-off status (local time, pending drafts)
- POST /api/stores/:id/cutoff  - Owner updates cutoff_time / grace period / auto-cancel
- POST /api/cron/cutoff        - External cron: warnings + sweep (Bearer CRON_SECRET)
- GET  /api/cron/cutoff        - Usage description
"""

from flask import Blueprint, jsonify, request, g, current_app

from ..errors import ConsignError
from ..decorators import require_actor, require_role, require_cron_secret, ROLE_OWNER
from ..services import cutoff_service, store_service


cutoff_bp = Blueprint("cutoff", __name__, url_prefix="/api")


@cutoff_bp.get("/stores/<int:store_id>/cutoff")
@require_actor
@require_role(ROLE_OWNER)
def get_cutoff_route(store_id: int):
    try:
        store = store_service.get_store(store_id)
        if store.owner_id != g.actor_id:
            return jsonify({"error": "Forbidden"}), 403

        status = cutoff_service.get_store_cutoff_status(store_id)
        return jsonify({"cutoff": status.to_dict()}), 200

    except ConsignError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load cut-off status")
        return jsonify({"error": "Internal server error"}), 500


@cutoff_bp.post("/stores/<int:store_id>/cutoff")
@require_actor
@require_role(ROLE_OWNER)
def update_cutoff_route(store_id: int):
    """
    Request body (all optional):
        {
            "cutoff_time": "11:00",
            "grace_period_minutes": 30,       // 0-120
            "auto_cancel_enabled": true
        }
    """
    data = request.get_json(silent=True) or {}
    try:
        store = store_service.get_store(store_id)
        if store.owner_id != g.actor_id:
            return jsonify({"error": "Forbidden"}), 403

        store = store_service.update_cutoff_settings(
            store_id,
            actor_id=g.actor_id,
            cutoff_time=data.get("cutoff_time"),
            grace_period_minutes=data.get("grace_period_minutes"),
            auto_cancel_enabled=data.get("auto_cancel_enabled"),
        )
        return jsonify({"store": store.to_dict()}), 200

    except ConsignError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update cut-off settings")
        return jsonify({"error": "Internal server error"}), 500


@cutoff_bp.post("/cron/cutoff")
@require_cron_secret
def run_cutoff_cron():
    """
    One scheduler tick: pre-cutoff warnings, then the auto-cancel sweep.

    Response:
        {
            "timestamp": "...Z",
            "stores_checked": 3,
            "warnings_sent": 1,
            "stores_processed": 2,
            "transactions_cancelled": 4,
            "failures": [{"store_id": 7, "error": "..."}],
            "stores": [{"store_id": 1, "cancelled_count": 4, "notified_suppliers": [2, 5]}]
        }
    """
    try:
        result = cutoff_service.run_scheduler()
        return jsonify(result.to_dict()), 200
    except Exception:
        current_app.logger.exception("Cut-off cron run failed")
        return jsonify({"error": "Internal server error"}), 500


@cutoff_bp.get("/cron/cutoff")
def describe_cutoff_cron():
    return jsonify({
        "endpoint": "/api/cron/cutoff",
        "method": "POST",
        "auth": "Authorization: Bearer <CRON_SECRET>",
        "description": "Sends pre-cutoff warnings and cancels drafts past each store's effective cut-off.",
        "interval_minutes": current_app.config.get("CUTOFF_SWEEP_INTERVAL_MINUTES"),
    }), 200
