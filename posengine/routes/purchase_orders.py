# Overview: Flask API routes for purchase orders and their state transitions.

from flask import Blueprint, g, jsonify, request

from ..decorators import get_engine, require_outlet

purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


@purchase_orders_bp.post("/")
@require_outlet
def create_purchase_order_route():
    data = request.get_json() or {}
    po = get_engine().purchase_orders.create(
        g.outlet_id,
        supplier_id=data.get("supplier_id"),
        items=data.get("items") or [],
        order_date=data.get("order_date"),
        expected_date=data.get("expected_date"),
        notes=data.get("notes"),
        actor_id=g.caller_id,
    )
    return jsonify({"purchase_order": po.to_dict(include_items=True)}), 201


@purchase_orders_bp.get("/")
@require_outlet
def list_purchase_orders_route():
    orders = get_engine().purchase_orders.list_orders(
        g.outlet_id,
        status=request.args.get("status"),
        limit=min(request.args.get("limit", default=100, type=int), 500),
    )
    return jsonify({"purchase_orders": [po.to_dict() for po in orders]}), 200


@purchase_orders_bp.get("/<int:po_id>")
@require_outlet
def get_purchase_order_route(po_id: int):
    po = get_engine().purchase_orders.get_order(g.outlet_id, po_id)
    return jsonify({"purchase_order": po.to_dict(include_items=True)}), 200


@purchase_orders_bp.post("/<int:po_id>/mark-ordered")
@require_outlet
def mark_ordered_route(po_id: int):
    po = get_engine().purchase_orders.mark_ordered(g.outlet_id, po_id, actor_id=g.caller_id)
    return jsonify({"success": True, "purchase_order": po.to_dict()}), 200


@purchase_orders_bp.post("/<int:po_id>/cancel")
@require_outlet
def cancel_route(po_id: int):
    data = request.get_json(silent=True) or {}
    po = get_engine().purchase_orders.cancel(
        g.outlet_id, po_id, actor_id=g.caller_id, reason=data.get("reason"),
    )
    return jsonify({"success": True, "purchase_order": po.to_dict()}), 200


@purchase_orders_bp.post("/<int:po_id>/receive")
@require_outlet
def receive_route(po_id: int):
    po = get_engine().purchase_orders.receive(g.outlet_id, po_id, actor_id=g.caller_id)
    return jsonify({"success": True, "purchase_order": po.to_dict(include_items=True)}), 200
