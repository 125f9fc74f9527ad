# Overview: Flask API routes for store status and the store audit trail; owner only.

from flask import Blueprint, jsonify, request, g

from consign.decorators import require_actor, require_role, ROLE_OWNER
from consign.errors import ConsignError
from consign.services import audit_service, store_service


stores_bp = Blueprint("stores", __name__, url_prefix="/api/stores")


@stores_bp.get("/<int:store_id>")
@require_actor
def get_store(store_id: int):
    try:
        store = store_service.get_store(store_id)
    except ConsignError as exc:
        return jsonify(exc.to_dict()), exc.status_code
    return jsonify(store.to_dict()), 200


@stores_bp.post("/<int:store_id>/status")
@require_actor
@require_role(ROLE_OWNER)
def set_store_status(store_id: int):
    """Body: {"is_open": bool?, "emergency_mode": bool?, "reason": str?}"""
    data = request.get_json(silent=True) or {}
    try:
        store = store_service.get_store(store_id)
        if store.owner_id != g.actor_id:
            return jsonify({"error": "Forbidden"}), 403

        store = store_service.set_store_status(
            store_id,
            actor_id=g.actor_id,
            is_open=data.get("is_open"),
            emergency_mode=data.get("emergency_mode"),
            reason=data.get("reason"),
        )
        return jsonify(store.to_dict()), 200
    except ConsignError as exc:
        return jsonify(exc.to_dict()), exc.status_code


@stores_bp.get("/<int:store_id>/audit-logs")
@require_actor
@require_role(ROLE_OWNER)
def list_audit_logs(store_id: int):
    limit = request.args.get("limit", default=100, type=int)
    try:
        store = store_service.get_store(store_id)
        if store.owner_id != g.actor_id:
            return jsonify({"error": "Forbidden"}), 403

        entries = audit_service.get_store_audit_logs(store_id, limit=limit)
        return jsonify([entry.to_dict() for entry in entries]), 200
    except ConsignError as exc:
        return jsonify(exc.to_dict()), exc.status_code
