# Overview: Flask API routes for the outlet's audit trail; read-only.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_outlet
from ..extensions import db
from ..services.audit_service import list_audit_events

audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit-events")


@audit_bp.get("")
@require_outlet
def list_audit_events_route():
    """Newest first. Filters: event_type, entity_type, entity_id; limit 1..500."""
    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, 500))

    events = list_audit_events(
        db.session,
        g.outlet_id,
        event_type=request.args.get("event_type"),
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id", type=int),
        limit=limit,
    )
    return jsonify({"items": [e.to_dict() for e in events], "limit": limit}), 200
