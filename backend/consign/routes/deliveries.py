# backend/consign/routes/deliveries.py
"""
Daily delivery API routes.

- POST /api/stores/:id/deliveries        - Supplier submits planned quantities (creates/extends DRAFT)
- GET  /api/stores/:id/deliveries        - Owner lists the store's deliveries
- GET  /api/stores/:id/my-deliveries     - Supplier lists their own deliveries
- GET  /api/deliveries/:id               - Owner of the store or the supplier
- GET  /api/deliveries/:id/audit-logs    - Owner: audit trail of one delivery
- POST /api/deliveries/:id/verify        - Owner records what arrived (DRAFT -> VERIFIED)
- POST /api/deliveries/:id/complete      - Owner records returns (VERIFIED -> COMPLETED)
- POST /api/deliveries/:id/cancel        - Owner or the supplier cancels

SECURITY:
- Caller identity comes from the gateway headers (g.actor_id / g.actor_role),
  NOT from the request body, so the audit trail cannot be spoofed
- Owner routes additionally check that the caller owns the store
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import ConsignError, NotFoundError
from ..services import audit_service, lifecycle_service, store_service
from ..decorators import require_actor, require_role, ROLE_OWNER, ROLE_SUPPLIER
from consign.time_utils import store_today


deliveries_bp = Blueprint("deliveries", __name__, url_prefix="/api")


def _is_store_owner(store) -> bool:
    return g.actor_role == ROLE_OWNER and store.owner_id == g.actor_id


def _forbidden():
    return jsonify({"error": "Forbidden"}), 403


@deliveries_bp.post("/stores/<int:store_id>/deliveries")
@require_actor
@require_role(ROLE_SUPPLIER)
def submit_delivery_route(store_id: int):
    """
    Submit planned quantities for a day.

    Request body:
        {
            "date": "2024-01-15",              // optional, defaults to the store's today
            "items": [{"product_id": 1, "qty": 10}]
        }

    Error responses:
        400: Empty list, non-positive qty, bad date
        403: Store closed or in emergency mode
        404: Unknown store or product
        409: Today's delivery is already verified/completed
    """
    data = request.get_json(silent=True) or {}
    try:
        store = store_service.get_store(store_id)
        trx_date = data.get("date") or store_today(store.timezone)

        trx = lifecycle_service.submit_delivery(
            store_id,
            g.actor_id,
            trx_date,
            data.get("items") or [],
            actor_id=g.actor_id,
        )
        return jsonify({"transaction": trx.to_dict(include_items=True)}), 201

    except ConsignError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to submit delivery")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.get("/stores/<int:store_id>/deliveries")
@require_actor
@require_role(ROLE_OWNER)
def list_store_deliveries_route(store_id: int):
    """
    Query params:
        status: draft | verified | completed | cancelled
        date: YYYY-MM-DD
        limit: default 200
    """
    try:
        store = store_service.get_store(store_id)
        if not _is_store_owner(store):
            return _forbidden()

        status = request.args.get("status") or None
        trx_date = request.args.get("date") or None
        limit = request.args.get("limit", default=200, type=int)
        if status and status not in lifecycle_service.VALID_STATUSES:
            return jsonify({"error": f"Invalid status '{status}'"}), 400

        try:
            transactions = lifecycle_service.list_store_transactions(
                store_id, status=status, date=trx_date, limit=limit,
            )
            counts = lifecycle_service.count_store_transactions_by_status(store_id, trx_date)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

        return jsonify({
            "transactions": [t.to_dict() for t in transactions],
            "counts": counts,
        }), 200

    except ConsignError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list deliveries")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.get("/stores/<int:store_id>/my-deliveries")
@require_actor
@require_role(ROLE_SUPPLIER)
def list_my_deliveries_route(store_id: int):
    try:
        status = request.args.get("status") or None
        limit = request.args.get("limit", default=200, type=int)
        if status and status not in lifecycle_service.VALID_STATUSES:
            return jsonify({"error": f"Invalid status '{status}'"}), 400

        transactions = lifecycle_service.list_supplier_transactions(
            g.actor_id, store_id, status=status, limit=limit,
        )
        return jsonify({"transactions": [t.to_dict() for t in transactions]}), 200

    except ConsignError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list supplier deliveries")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.get("/deliveries/<int:trx_id>")
@require_actor
def get_delivery_route(trx_id: int):
    try:
        trx = lifecycle_service.get_transaction(trx_id)
        is_supplier = g.actor_role == ROLE_SUPPLIER and trx.supplier_id == g.actor_id
        if not is_supplier and not _is_store_owner(trx.store):
            # Same answer as a missing id
            raise NotFoundError(f"Transaction {trx_id} not found")

        return jsonify({"transaction": trx.to_dict(include_items=True)}), 200

    except ConsignError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load delivery")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.post("/deliveries/<int:trx_id>/verify")
@require_actor
@require_role(ROLE_OWNER)
def verify_delivery_route(trx_id: int):
    """
    Record actual received quantities (DRAFT -> VERIFIED).

    Request body:
        {
            "items": [{"id": 5, "qty_actual": 8}],   // unlisted items count as 0
            "admin_note": "optional"
        }
    """
    data = request.get_json(silent=True) or {}
    try:
        trx = lifecycle_service.get_transaction(trx_id)
        if not _is_store_owner(trx.store):
            return _forbidden()

        trx = lifecycle_service.verify_delivery(
            trx_id,
            data.get("items") or [],
            actor_id=g.actor_id,
            admin_note=data.get("admin_note"),
        )
        return jsonify({
            "transaction": trx.to_dict(include_items=True),
            "message": f"Transaction {trx_id} verified",
        }), 200

    except ConsignError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to verify delivery")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.post("/deliveries/<int:trx_id>/complete")
@require_actor
@require_role(ROLE_OWNER)
def complete_delivery_route(trx_id: int):
    """
    Record returns and fix the payout (VERIFIED -> COMPLETED).

    Request body:
        {"items": [{"id": 5, "qty_returned": 2}]}   // unlisted items return 0

    CRITICAL: COMPLETED is terminal. The payout cannot be changed afterwards.
    """
    data = request.get_json(silent=True) or {}
    try:
        trx = lifecycle_service.get_transaction(trx_id)
        if not _is_store_owner(trx.store):
            return _forbidden()

        trx = lifecycle_service.complete_delivery(
            trx_id,
            data.get("items") or [],
            actor_id=g.actor_id,
        )
        return jsonify({
            "transaction": trx.to_dict(include_items=True),
            "message": f"Transaction {trx_id} completed",
        }), 200

    except ConsignError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to complete delivery")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.post("/deliveries/<int:trx_id>/cancel")
@require_actor
def cancel_delivery_route(trx_id: int):
    """
    Cancel a DRAFT or VERIFIED delivery.

    Request body:
        {"reason": "optional text"}

    A supplier cancelling their own delivery counts against their
    reliability; an owner cancellation does not.
    """
    data = request.get_json(silent=True) or {}
    try:
        trx = lifecycle_service.get_transaction(trx_id)
        is_supplier = g.actor_role == ROLE_SUPPLIER and trx.supplier_id == g.actor_id
        if not is_supplier and not _is_store_owner(trx.store):
            return _forbidden()

        trx = lifecycle_service.cancel_delivery(trx_id, data.get("reason"), g.actor_id)
        return jsonify({
            "transaction": trx.to_dict(),
            "message": f"Transaction {trx_id} cancelled",
        }), 200

    except ConsignError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel delivery")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.get("/deliveries/<int:trx_id>/audit-logs")
@require_actor
@require_role(ROLE_OWNER)
def list_delivery_audit_logs_route(trx_id: int):
    limit = request.args.get("limit", default=50, type=int)
    try:
        trx = lifecycle_service.get_transaction(trx_id)
        if not _is_store_owner(trx.store):
            return _forbidden()

        entries = audit_service.get_audit_logs(audit_service.ENTITY_TRANSACTION, trx_id, limit=limit)
        return jsonify({"audit_logs": [entry.to_dict() for entry in entries]}), 200

    except ConsignError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load delivery audit trail")
        return jsonify({"error": "Internal server error"}), 500
