# Overview: Flask API routes for supplier reliability; owner-private scores and supplier self-view.

from flask import Blueprint, jsonify, request, g, current_app

from ..errors import ConsignError
from ..decorators import require_actor, require_role, ROLE_OWNER, ROLE_SUPPLIER
from ..services import reliability_service, store_service


reliability_bp = Blueprint("reliability", __name__, url_prefix="/api/stores")


def _owner_store_or_403(store_id: int):
    store = store_service.get_store(store_id)
    if store.owner_id != g.actor_id:
        return None
    return store


@reliability_bp.get("/<int:store_id>/reliability")
@require_actor
@require_role(ROLE_OWNER)
def list_reliability(store_id: int):
    threshold = request.args.get(
        "threshold",
        default=reliability_service.DEFAULT_LOW_RELIABILITY_THRESHOLD,
        type=int,
    )
    try:
        if not _owner_store_or_403(store_id):
            return jsonify({"error": "Forbidden"}), 403

        rows = reliability_service.list_store_reliability(store_id)
        low = reliability_service.get_low_reliability_suppliers(store_id, threshold)
        return jsonify({
            "suppliers": [s.to_dict(include_private=True) for s in rows],
            "low_reliability": [s.supplier_id for s in low],
            "threshold": threshold,
        }), 200

    except ConsignError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list reliability")
        return jsonify({"error": "Internal server error"}), 500


@reliability_bp.get("/<int:store_id>/reliability/<int:supplier_id>")
@require_actor
@require_role(ROLE_OWNER)
def get_reliability(store_id: int, supplier_id: int):
    try:
        if not _owner_store_or_403(store_id):
            return jsonify({"error": "Forbidden"}), 403

        stats = reliability_service.get_supplier_reliability(supplier_id, store_id)
        return jsonify({"stats": stats.to_dict(include_private=True)}), 200

    except ConsignError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load reliability")
        return jsonify({"error": "Internal server error"}), 500


@reliability_bp.get("/<int:store_id>/my-stats")
@require_actor
@require_role(ROLE_SUPPLIER)
def get_my_stats(store_id: int):
    """Supplier's own stats. reliability_score and average_accuracy are never included."""
    try:
        store_service.get_store(store_id)
        summary = reliability_service.get_supplier_summary(g.actor_id, store_id)
        return jsonify({"stats": summary}), 200

    except ConsignError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load supplier stats")
        return jsonify({"error": "Internal server error"}), 500


@reliability_bp.post("/<int:store_id>/reliability/<int:supplier_id>/no-show")
@require_actor
@require_role(ROLE_OWNER)
def record_no_show(store_id: int, supplier_id: int):
    try:
        if not _owner_store_or_403(store_id):
            return jsonify({"error": "Forbidden"}), 403

        stats = reliability_service.on_no_show(supplier_id, store_id, actor_id=g.actor_id)
        return jsonify({"stats": stats.to_dict(include_private=True)}), 200

    except ConsignError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record no-show")
        return jsonify({"error": "Internal server error"}), 500
