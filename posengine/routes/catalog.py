# Overview: Minimal catalog endpoints for seeding products, variants and suppliers.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_outlet
from ..extensions import db
from ..services import catalog_service

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")


@catalog_bp.post("/products")
@require_outlet
def create_product_route():
    data = request.get_json() or {}
    product = catalog_service.create_product(
        db.session,
        outlet_id=g.outlet_id,
        name=data.get("name"),
        price=data.get("price", 0),
        sku=data.get("sku"),
        cost_price=data.get("cost_price", 0),
        category_id=data.get("category_id"),
        track_stock=bool(data.get("track_stock", True)),
    )
    db.session.commit()
    return jsonify({"product": product.to_dict()}), 201


@catalog_bp.post("/products/<int:product_id>/variants")
@require_outlet
def create_variant_route(product_id: int):
    data = request.get_json() or {}
    product = catalog_service.get_product(db.session, g.outlet_id, product_id)
    variant = catalog_service.create_variant(
        db.session,
        product=product,
        name=data.get("name"),
        type=data.get("type", "size"),
        price_adjustment=data.get("price_adjustment", 0),
    )
    db.session.commit()
    return jsonify({"variant": variant.to_dict()}), 201


@catalog_bp.post("/suppliers")
@require_outlet
def create_supplier_route():
    data = request.get_json() or {}
    contact = {
        key: data.get(key)
        for key in ("contact_person", "email", "phone", "address", "notes")
        if data.get(key) is not None
    }
    supplier = catalog_service.create_supplier(
        db.session, outlet_id=g.outlet_id, name=data.get("name"), **contact,
    )
    db.session.commit()
    return jsonify({"supplier": supplier.to_dict()}), 201
