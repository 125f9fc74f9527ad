# Overview: Flask API route for the caller's in-app notification inbox.

from flask import Blueprint, jsonify, request, g, current_app

from ..decorators import require_actor
from ..services import notification_service


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@require_actor
def list_my_notifications():
    """
    Query params:
        unread: "1" for unread only
        limit: default 50
    """
    unread_only = request.args.get("unread") in ("1", "true", "yes")
    limit = request.args.get("limit", default=50, type=int)
    try:
        rows = notification_service.list_notifications(g.actor_id, unread_only=unread_only, limit=limit)
        return jsonify({"notifications": [row.to_dict() for row in rows]}), 200
    except Exception:
        current_app.logger.exception("Failed to list notifications")
        return jsonify({"error": "Internal server error"}), 500
