# Overview: Flask API routes for stock opname sessions.

from flask import Blueprint, g, jsonify, request

from ..decorators import get_engine, require_outlet

opname_bp = Blueprint("opname", __name__, url_prefix="/api/inventory/opname")


@opname_bp.post("/")
@require_outlet
def create_opname_route():
    data = request.get_json() or {}
    opname = get_engine().opname.create_session(
        g.outlet_id,
        product_ids=data.get("product_ids"),
        category_id=data.get("category_id"),
        notes=data.get("notes"),
        actor_id=g.caller_id,
    )
    return jsonify({"session": opname.to_dict(include_items=True)}), 201


@opname_bp.get("/")
@require_outlet
def list_opname_route():
    sessions = get_engine().opname.list_sessions(
        g.outlet_id,
        status=request.args.get("status"),
        limit=min(request.args.get("limit", default=100, type=int), 500),
    )
    return jsonify({"sessions": [s.to_dict() for s in sessions]}), 200


@opname_bp.get("/<int:session_id>")
@require_outlet
def get_opname_route(session_id: int):
    opname = get_engine().opname.get_session(g.outlet_id, session_id)
    return jsonify({"session": opname.to_dict(include_items=True)}), 200


@opname_bp.put("/<int:session_id>")
@require_outlet
def record_counts_route(session_id: int):
    """Body: {"items": [{"item_id", "actual_stock", "notes"?}, ...]}"""
    data = request.get_json() or {}
    opname = get_engine().opname.record_counts(g.outlet_id, session_id, data.get("items") or [])
    return jsonify({"success": True, "session": opname.to_dict(include_items=True)}), 200


@opname_bp.post("/<int:session_id>/finalize")
@require_outlet
def finalize_opname_route(session_id: int):
    opname = get_engine().opname.finalize(g.outlet_id, session_id, actor_id=g.caller_id)
    return jsonify({
        "success": True,
        "adjustments_count": opname.adjustments_count,
        "session": opname.to_dict(),
    }), 200


@opname_bp.post("/<int:session_id>/cancel")
@require_outlet
def cancel_opname_route(session_id: int):
    opname = get_engine().opname.cancel(g.outlet_id, session_id, actor_id=g.caller_id)
    return jsonify({"success": True, "session": opname.to_dict()}), 200
