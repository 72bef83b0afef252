# Overview: Flask API routes for loyalty settings, tiers, customers and points.

from flask import Blueprint, g, jsonify, request

from ..decorators import get_engine, require_outlet
from ..errors import ValidationError

loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/loyalty")

POINT_ACTIONS = ("redeem", "add", "subtract")


@loyalty_bp.get("/settings")
@require_outlet
def get_settings_route():
    return jsonify({"settings": get_engine().loyalty.get_settings(g.outlet_id)}), 200


@loyalty_bp.put("/settings")
@require_outlet
def update_settings_route():
    data = request.get_json() or {}
    settings = get_engine().loyalty.upsert_settings(g.outlet_id, data, actor_id=g.caller_id)
    return jsonify({"settings": settings}), 200


@loyalty_bp.get("/tiers")
@require_outlet
def list_tiers_route():
    tiers = get_engine().loyalty.list_tiers(g.outlet_id)
    return jsonify({"tiers": [t.to_dict() for t in tiers]}), 200


@loyalty_bp.post("/tiers")
@require_outlet
def create_tier_route():
    tier = get_engine().loyalty.create_tier(g.outlet_id, request.get_json() or {})
    return jsonify({"tier": tier.to_dict()}), 201


@loyalty_bp.put("/tiers/<int:tier_id>")
@require_outlet
def update_tier_route(tier_id: int):
    tier = get_engine().loyalty.update_tier(g.outlet_id, tier_id, request.get_json() or {})
    return jsonify({"tier": tier.to_dict()}), 200


@loyalty_bp.delete("/tiers/<int:tier_id>")
@require_outlet
def delete_tier_route(tier_id: int):
    get_engine().loyalty.delete_tier(g.outlet_id, tier_id)
    return jsonify({"success": True}), 200


@loyalty_bp.post("/customers")
@require_outlet
def create_customer_route():
    data = request.get_json() or {}
    customer = get_engine().loyalty.create_customer(
        g.outlet_id, name=data.get("name"), phone=data.get("phone"), email=data.get("email"),
    )
    return jsonify({"customer": customer.to_dict()}), 201


@loyalty_bp.get("/customers/<int:customer_id>")
@require_outlet
def get_customer_route(customer_id: int):
    customer = get_engine().loyalty.get_customer(g.outlet_id, customer_id)
    data = customer.to_dict()
    data["tier"] = customer.tier.to_dict() if customer.tier else None
    return jsonify({"customer": data}), 200


@loyalty_bp.get("/customers/<int:customer_id>/points")
@require_outlet
def point_history_route(customer_id: int):
    history = get_engine().loyalty.point_history(
        g.outlet_id, customer_id, limit=min(request.args.get("limit", default=100, type=int), 500),
    )
    return jsonify({"points": [p.to_dict() for p in history]}), 200


@loyalty_bp.post("/customers/<int:customer_id>/points")
@require_outlet
def change_points_route(customer_id: int):
    """Body: {"action": "redeem" | "add" | "subtract", "points": int, "description"?}"""
    data = request.get_json() or {}
    action = data.get("action")
    if action not in POINT_ACTIONS:
        raise ValidationError(f"action must be one of {', '.join(POINT_ACTIONS)}", details={"field": "action"})

    loyalty = get_engine().loyalty
    previous = loyalty.get_customer(g.outlet_id, customer_id).points
    if action == "redeem":
        entry = loyalty.redeem(
            g.outlet_id, customer_id, data.get("points"),
            description=data.get("description"), actor_id=g.caller_id,
        )
    else:
        entry = loyalty.adjust(
            g.outlet_id, customer_id, action, data.get("points"),
            description=data.get("description"), actor_id=g.caller_id,
        )
    customer = loyalty.get_customer(g.outlet_id, customer_id)
    return jsonify({
        "success": True,
        "previous_points": previous,
        "points_change": entry.points if entry else 0,
        "new_points": customer.points,
        "tier_id": customer.tier_id,
    }), 200


@loyalty_bp.get("/customers/<int:customer_id>/reconcile")
@require_outlet
def reconcile_customer_route(customer_id: int):
    loyalty = get_engine().loyalty
    customer = loyalty.get_customer(g.outlet_id, customer_id)
    return jsonify(loyalty.reconcile_customer(customer)), 200
