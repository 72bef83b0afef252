# Overview: Flask API routes for stock levels, adjustment history and manual corrections.

from flask import Blueprint, g, jsonify, request

from ..decorators import get_engine, require_outlet
from ..errors import NotFound, ValidationError

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/stock")
@require_outlet
def list_stock_route():
    """List stock items; ?low_stock=N keeps tracked items with quantity <= N."""
    threshold = request.args.get("low_stock", type=int)
    items = get_engine().ledger.list_items(g.outlet_id, low_stock_threshold=threshold)
    return jsonify({"items": [item.to_dict() for item in items]}), 200


@inventory_bp.get("/stock/<int:product_id>")
@require_outlet
def get_stock_route(product_id: int):
    variant_id = request.args.get("variant_id", type=int)
    item = get_engine().ledger.get_item(g.outlet_id, product_id, variant_id)
    if item is None:
        raise NotFound("Stock item not found", details={"product_id": product_id, "variant_id": variant_id})
    return jsonify({"stock_item": item.to_dict()}), 200


@inventory_bp.get("/stock/<int:product_id>/reconcile")
@require_outlet
def reconcile_stock_route(product_id: int):
    variant_id = request.args.get("variant_id", type=int)
    ledger = get_engine().ledger
    item = ledger.get_item(g.outlet_id, product_id, variant_id)
    if item is None:
        raise NotFound("Stock item not found", details={"product_id": product_id, "variant_id": variant_id})
    return jsonify(ledger.reconcile(item)), 200


@inventory_bp.get("/adjustments")
@require_outlet
def list_adjustments_route():
    adjustments = get_engine().ledger.list_adjustments(
        g.outlet_id,
        product_id=request.args.get("product_id", type=int),
        variant_id=request.args.get("variant_id", type=int),
        reason=request.args.get("reason"),
        source_id=request.args.get("source_id"),
        limit=min(request.args.get("limit", default=200, type=int), 1000),
    )
    return jsonify({"adjustments": [a.to_dict() for a in adjustments]}), 200


@inventory_bp.post("/adjustments")
@require_outlet
def create_adjustment_route():
    """
    Manual stock correction.

    The Idempotency-Key header (or idempotency_key in the body) identifies
    the request; replaying it returns the first result with duplicate=true.
    """
    data = request.get_json() or {}
    key = request.headers.get("Idempotency-Key") or data.get("idempotency_key")
    if not key:
        raise ValidationError("Idempotency key required", details={"header": "Idempotency-Key"})
    if data.get("product_id") is None:
        raise ValidationError("product_id required", details={"field": "product_id"})

    result = get_engine().ledger.adjust_manual(
        outlet_id=g.outlet_id,
        product_id=data["product_id"],
        variant_id=data.get("variant_id"),
        delta=data.get("delta"),
        idempotency_key=str(key),
        note=data.get("note"),
        actor_id=g.caller_id,
    )
    return jsonify(result.to_dict()), (200 if result.duplicate else 201)
