# Overview: Catalog master data needed by the engine (outlets, products, variants, suppliers).

"""
Catalog Service

Browsing and search live elsewhere. This module only creates and resolves the
rows the stock, sale, purchasing and opname workflows reference, and enforces
that every reference stays inside one outlet.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..errors import NotFound, ValidationError
from ..models import Outlet, Product, ProductVariant, Supplier


def create_outlet(session, *, name: str, code: str | None = None) -> Outlet:
    if not name or not name.strip():
        raise ValidationError("Outlet name is required", details={"field": "name"})
    outlet = Outlet(name=name.strip(), code=code, is_active=True)
    session.add(outlet)
    session.flush()
    return outlet


def get_outlet(session, outlet_id: int) -> Outlet:
    outlet = session.get(Outlet, outlet_id)
    if outlet is None:
        raise NotFound("Outlet not found", details={"outlet_id": outlet_id})
    return outlet


def create_product(
    session,
    *,
    outlet_id: int,
    name: str,
    price: int,
    sku: str | None = None,
    cost_price: int = 0,
    category_id: int | None = None,
    track_stock: bool = True,
) -> Product:
    """
    Create a product. Its StockItem is not created here; the ledger creates
    it on first reference.
    """
    if not name or not name.strip():
        raise ValidationError("Product name is required", details={"field": "name"})
    for field, value in (("price", price), ("cost_price", cost_price)):
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ValidationError(f"{field} must be a non-negative integer", details={"field": field})

    product = Product(
        outlet_id=outlet_id,
        name=name.strip(),
        sku=sku,
        price=price,
        cost_price=cost_price,
        category_id=category_id,
        track_stock=track_stock,
        is_active=True,
    )
    try:
        with session.begin_nested():
            session.add(product)
    except IntegrityError:
        raise ValidationError("SKU already exists for this outlet", details={"sku": sku})
    return product


def create_variant(
    session,
    *,
    product: Product,
    name: str,
    type: str = "size",
    price_adjustment: int = 0,
) -> ProductVariant:
    if not name or not name.strip():
        raise ValidationError("Variant name is required", details={"field": "name"})
    variant = ProductVariant(
        product_id=product.id,
        name=name.strip(),
        type=type,
        price_adjustment=price_adjustment,
        is_active=True,
    )
    session.add(variant)
    session.flush()
    return variant


def create_supplier(session, *, outlet_id: int, name: str, **contact) -> Supplier:
    if not name or not name.strip():
        raise ValidationError("Supplier name is required", details={"field": "name"})
    supplier = Supplier(outlet_id=outlet_id, name=name.strip(), is_active=True, **contact)
    session.add(supplier)
    session.flush()
    return supplier


def get_product(session, outlet_id: int, product_id: int) -> Product:
    """Resolve a product, refusing ids that belong to another outlet."""
    product = session.get(Product, product_id)
    if product is None or product.outlet_id != outlet_id:
        raise NotFound("Product not found", details={"product_id": product_id})
    return product


def get_variant(session, product: Product, variant_id: int | None) -> ProductVariant | None:
    """Resolve a variant of product. None in, None out; a foreign or unknown id is NotFound."""
    if variant_id is None:
        return None
    variant = session.get(ProductVariant, variant_id)
    if variant is None or variant.product_id != product.id:
        raise NotFound(
            "Variant not found",
            details={"product_id": product.id, "variant_id": variant_id},
        )
    return variant


def get_supplier(session, outlet_id: int, supplier_id: int) -> Supplier:
    supplier = session.get(Supplier, supplier_id)
    if supplier is None or supplier.outlet_id != outlet_id:
        raise NotFound("Supplier not found", details={"supplier_id": supplier_id})
    return supplier
