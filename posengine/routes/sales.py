# Overview: Flask API routes for sales transactions; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import get_engine, require_outlet

sales_bp = Blueprint("sales", __name__, url_prefix="/api/transactions")


@sales_bp.post("/")
@require_outlet
def create_transaction_route():
    """
    Record a completed sale.

    Body: items[], payments[] (or payment_method), customer_id?,
    invoice_number?, discount?, tax?, total_amount?, notes?
    """
    data = request.get_json() or {}
    result = get_engine().sales.process_sale(
        g.outlet_id,
        items=data.get("items") or [],
        payments=data.get("payments"),
        payment_method=data.get("payment_method"),
        customer_id=data.get("customer_id"),
        invoice_number=data.get("invoice_number"),
        cashier_id=data.get("cashier_id") or g.caller_id,
        discount=data.get("discount", 0),
        tax=data.get("tax", 0),
        total_amount=data.get("total_amount"),
        payment_status=data.get("payment_status") or "paid",
        notes=data.get("notes"),
    )
    return jsonify(result.to_dict()), 201


@sales_bp.get("/")
@require_outlet
def list_transactions_route():
    transactions = get_engine().sales.list_transactions(
        g.outlet_id,
        status=request.args.get("status"),
        limit=min(request.args.get("limit", default=100, type=int), 500),
        offset=request.args.get("offset", default=0, type=int),
    )
    return jsonify({"transactions": [tx.to_dict() for tx in transactions]}), 200


@sales_bp.get("/<int:transaction_id>")
@require_outlet
def get_transaction_route(transaction_id: int):
    tx = get_engine().sales.get_transaction(g.outlet_id, transaction_id)
    return jsonify({"transaction": tx.to_dict(include_lines=True)}), 200


@sales_bp.post("/<int:transaction_id>/void")
@require_outlet
def void_transaction_route(transaction_id: int):
    data = request.get_json(silent=True) or {}
    tx = get_engine().sales.void_sale(
        g.outlet_id,
        transaction_id,
        reason=data.get("reason"),
        actor_id=g.caller_id,
    )
    return jsonify({"transaction": tx.to_dict()}), 200
