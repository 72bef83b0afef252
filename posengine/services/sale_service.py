# Overview: Sale processor; validates a cart, records the sale, deducts stock and accrues points.

"""
Sale Processing (authoritative)

Order of work for process_sale:
1. Validate every line against the catalog and the stock ledger. Shortfalls
   are collected across all lines (quantities summed per SKU) and reported
   together as InsufficientStock before anything is written.
2. Check totals and payments (payments must sum to total_amount; with no
   split, a single payment for the full amount is synthesized).
3. Allocate the invoice number, insert header, lines and payments.
4. Post one 'sale' stock adjustment per SKU (source_id = transaction id).
5. Commit. Loyalty accrual runs afterwards as its own unit of work.

Deduction policy (STRICT_SALE_DEDUCTION):
- strict: the deduction refuses to go below zero. Losing the race for the
  last units after validation aborts the whole sale with InsufficientStock;
  nothing is committed.
- non-strict: the deduction floors at zero, the sale stands, and the
  transaction is marked stock_status=PARTIAL.

Loyalty accrual is best-effort: a failure is logged and never undoes a
committed sale.

Unknown variant ids (TOLERATE_UNKNOWN_VARIANTS):
- tolerated: the line is kept, logged, and moves no stock.
- not tolerated: the sale is rejected with ValidationError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import (
    AlreadyProcessed,
    InsufficientStock,
    InvalidTransition,
    NotFound,
    PosError,
    ValidationError,
)
from ..models import Product, ProductVariant, StockAdjustment, Transaction, TransactionItem, TransactionPayment
from ..models.inventory import OUTCOME_FLOORED, REASON_SALE, REASON_SALE_VOID
from ..models.sales import (
    STOCK_STATUS_PARTIAL,
    STOCK_STATUS_POSTED,
    TRANSACTION_STATUS_COMPLETED,
    TRANSACTION_STATUS_VOID,
)
from ..time_utils import utcnow
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_with_retry
from .document_service import DOCUMENT_TYPE_SALE, next_document_number

logger = logging.getLogger(__name__)

SPLIT_PAYMENT_METHOD = "Split"


@dataclass
class SaleLine:
    """A validated cart line, ready to be written."""
    line_number: int
    product_id: int | None
    variant_id: int | None
    product_name: str
    product_sku: str | None
    variant_name: str | None
    quantity: int
    price: int
    cost_price: int | None
    discount: int
    moves_stock: bool

    @property
    def total(self) -> int:
        return self.quantity * self.price - self.discount


@dataclass
class SaleResult:
    transaction: Transaction
    earned_points: int

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.transaction.id,
            "invoice_number": self.transaction.invoice_number,
            "earned_points": self.earned_points,
            "stock_status": self.transaction.stock_status,
            "transaction": self.transaction.to_dict(include_lines=True),
        }


def _require_int(value, field: str, *, minimum: int | None = None) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={"field": field})
    if minimum is not None and value < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", details={"field": field})
    return value


class SaleProcessor:
    def __init__(
        self,
        session,
        ledger,
        loyalty,
        *,
        tolerate_unknown_variants: bool = True,
        strict_deduction: bool = True,
        retry_attempts: int = 3,
        retry_backoff: float = 0.1,
    ):
        self.session = session
        self.ledger = ledger
        self.loyalty = loyalty
        self.tolerate_unknown_variants = tolerate_unknown_variants
        self.strict_deduction = strict_deduction
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    def _run(self, op):
        return run_with_retry(self.session, op, attempts=self.retry_attempts, backoff_base=self.retry_backoff)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _resolve_line(self, outlet_id: int, line_number: int, raw: dict) -> SaleLine:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object", details={"line": line_number})

        quantity = _require_int(raw.get("quantity"), f"items[{line_number}].quantity", minimum=1)
        discount = _require_int(raw.get("discount", 0) or 0, f"items[{line_number}].discount", minimum=0)
        product_id = raw.get("product_id")

        if product_id is None:
            # Custom line: sold without a catalog product
            name = (raw.get("product_name") or "").strip()
            if not name:
                raise ValidationError(
                    "Custom items need a product_name",
                    details={"line": line_number, "field": "product_name"},
                )
            price = _require_int(raw.get("price"), f"items[{line_number}].price", minimum=0)
            cost_price = raw.get("cost_price")
            if cost_price is not None:
                cost_price = _require_int(cost_price, f"items[{line_number}].cost_price", minimum=0)
            line = SaleLine(
                line_number=line_number,
                product_id=None,
                variant_id=None,
                product_name=name,
                product_sku=raw.get("product_sku"),
                variant_name=None,
                quantity=quantity,
                price=price,
                cost_price=cost_price,
                discount=discount,
                moves_stock=False,
            )
        else:
            product = self.session.get(Product, product_id)
            if product is None or product.outlet_id != outlet_id:
                raise ValidationError(
                    "Product not found",
                    details={"line": line_number, "product_id": product_id},
                )

            variant_id = raw.get("variant_id")
            variant = None
            moves_stock = True
            if variant_id is not None:
                variant = self.session.get(ProductVariant, variant_id)
                if variant is None or variant.product_id != product.id or not variant.is_active:
                    if not self.tolerate_unknown_variants:
                        raise ValidationError(
                            "Variant not found",
                            details={"line": line_number, "product_id": product_id, "variant_id": variant_id},
                        )
                    logger.warning(
                        "Unknown variant %s on product %s (outlet %s); line %s sold without stock movement",
                        variant_id, product_id, outlet_id, line_number,
                    )
                    variant = None
                    moves_stock = False

            default_price = product.price + (variant.price_adjustment if variant else 0)
            price = raw.get("price", raw.get("unit_price"))
            price = default_price if price is None else _require_int(price, f"items[{line_number}].price", minimum=0)

            line = SaleLine(
                line_number=line_number,
                product_id=product.id,
                variant_id=variant_id,
                product_name=product.name,
                product_sku=product.sku,
                variant_name=variant.name if variant else None,
                quantity=quantity,
                price=price,
                cost_price=product.cost_price,
                discount=discount,
                moves_stock=moves_stock,
            )

        if line.discount > line.quantity * line.price:
            raise ValidationError(
                "Line discount exceeds line amount",
                details={"line": line_number, "field": "discount"},
            )
        return line

    def _requested_by_sku(self, lines: list[SaleLine]) -> dict[tuple[int, int | None], int]:
        requested: dict[tuple[int, int | None], int] = {}
        for line in lines:
            if line.moves_stock:
                key = (line.product_id, line.variant_id)
                requested[key] = requested.get(key, 0) + line.quantity
        return requested

    def _check_stock(self, outlet_id: int, requested) -> None:
        shortfalls = []
        for (product_id, variant_id), qty in requested.items():
            product = self.session.get(Product, product_id)
            if not product.track_stock:
                continue
            item = self.ledger.get_item(outlet_id, product_id, variant_id)
            if item is not None and not item.tracks_stock:
                continue
            available = item.quantity if item else 0
            if available < qty:
                shortfalls.append({
                    "product_id": product_id,
                    "variant_id": variant_id,
                    "product_name": product.name,
                    "requested": qty,
                    "available": available,
                })
        if shortfalls:
            raise InsufficientStock(shortfalls)

    @staticmethod
    def _normalize_payments(payments, payment_method: str | None, total_amount: int) -> list[dict]:
        if not payments:
            if not payment_method:
                raise ValidationError("payment_method is required", details={"field": "payment_method"})
            return [{"payment_method": payment_method, "amount": total_amount, "reference_number": None}]

        normalized = []
        for idx, p in enumerate(payments):
            if not isinstance(p, dict) or not p.get("payment_method"):
                raise ValidationError(
                    "Each payment needs a payment_method",
                    details={"field": f"payments[{idx}].payment_method"},
                )
            amount = _require_int(p.get("amount"), f"payments[{idx}].amount", minimum=0)
            normalized.append({
                "payment_method": p["payment_method"],
                "amount": amount,
                "reference_number": p.get("reference_number"),
            })

        paid = sum(p["amount"] for p in normalized)
        if paid != total_amount:
            raise ValidationError(
                "Payments must sum to total_amount",
                details={"total_amount": total_amount, "payments_total": paid},
            )
        return normalized

    # ------------------------------------------------------------------
    # Sale
    # ------------------------------------------------------------------

    def process_sale(
        self,
        outlet_id: int,
        *,
        items: list[dict],
        payments: list[dict] | None = None,
        payment_method: str | None = None,
        customer_id: int | None = None,
        invoice_number: str | None = None,
        cashier_id: str | None = None,
        discount: int = 0,
        tax: int = 0,
        total_amount: int | None = None,
        payment_status: str = "paid",
        notes: str | None = None,
    ) -> SaleResult:
        if not items:
            raise ValidationError("Cart is empty", details={"field": "items"})
        discount = _require_int(discount or 0, "discount", minimum=0)
        tax = _require_int(tax or 0, "tax", minimum=0)

        def _op() -> Transaction:
            lines = [self._resolve_line(outlet_id, idx, raw) for idx, raw in enumerate(items, start=1)]
            requested = self._requested_by_sku(lines)
            self._check_stock(outlet_id, requested)

            subtotal = sum(line.total for line in lines)
            computed_total = subtotal - discount + tax
            if computed_total < 0:
                raise ValidationError("Discount exceeds subtotal", details={"field": "discount"})
            if total_amount is not None and total_amount != computed_total:
                raise ValidationError(
                    "total_amount does not match items",
                    details={"total_amount": total_amount, "computed_total": computed_total},
                )
            normalized_payments = self._normalize_payments(payments, payment_method, computed_total)

            customer = None
            if customer_id is not None:
                try:
                    customer = self.loyalty.get_customer(outlet_id, customer_id)
                except NotFound:
                    raise ValidationError("Customer not found", details={"customer_id": customer_id})

            number = invoice_number
            if number:
                existing = (
                    self.session.query(Transaction.id)
                    .filter_by(outlet_id=outlet_id, invoice_number=number)
                    .first()
                )
                if existing is not None:
                    raise AlreadyProcessed(
                        "Invoice number already processed",
                        details={"invoice_number": number, "transaction_id": existing.id},
                    )
            else:
                number = next_document_number(
                    self.session, outlet_id=outlet_id, document_type=DOCUMENT_TYPE_SALE,
                )

            tx = Transaction(
                outlet_id=outlet_id,
                invoice_number=number,
                customer_id=customer.id if customer else None,
                customer_name=customer.name if customer else None,
                cashier_id=cashier_id,
                subtotal=subtotal,
                discount=discount,
                tax=tax,
                total_amount=computed_total,
                payment_method=(
                    SPLIT_PAYMENT_METHOD if len(normalized_payments) > 1
                    else normalized_payments[0]["payment_method"]
                ),
                payment_status=payment_status,
                status=TRANSACTION_STATUS_COMPLETED,
                stock_status=STOCK_STATUS_POSTED,
                notes=notes,
            )
            try:
                with self.session.begin_nested():
                    self.session.add(tx)
            except IntegrityError:
                raise AlreadyProcessed(
                    "Invoice number already processed",
                    details={"invoice_number": number},
                )

            for line in lines:
                self.session.add(TransactionItem(
                    transaction_id=tx.id,
                    line_number=line.line_number,
                    product_id=line.product_id,
                    variant_id=line.variant_id,
                    product_name=line.product_name,
                    product_sku=line.product_sku,
                    variant_name=line.variant_name,
                    quantity=line.quantity,
                    price=line.price,
                    cost_price=line.cost_price,
                    discount=line.discount,
                    total=line.total,
                ))
            for p in normalized_payments:
                self.session.add(TransactionPayment(transaction_id=tx.id, **p))
            self.session.flush()

            if not self._deduct_stock(tx, requested, cashier_id):
                tx.stock_status = STOCK_STATUS_PARTIAL

            append_audit_event(
                self.session,
                outlet_id=outlet_id,
                event_type="sale.created",
                entity_type="transaction",
                entity_id=tx.id,
                actor_id=cashier_id,
                payload={
                    "invoice_number": tx.invoice_number,
                    "total_amount": tx.total_amount,
                    "stock_status": tx.stock_status,
                },
            )
            self.session.commit()
            return tx

        tx = self._run(_op)
        earned = self._accrue_points(tx)
        return SaleResult(transaction=tx, earned_points=earned)

    def _deduct_stock(self, tx: Transaction, requested, actor_id: str | None) -> bool:
        """Post the sale adjustments. Returns False when any SKU did not move in full."""
        complete = True
        for (product_id, variant_id), qty in requested.items():
            try:
                result = self.ledger.apply_adjustment(
                    outlet_id=tx.outlet_id,
                    product_id=product_id,
                    variant_id=variant_id,
                    delta=-qty,
                    reason=REASON_SALE,
                    source_id=str(tx.id),
                    strict=self.strict_deduction,
                    note=f"Sale {tx.invoice_number}",
                    created_by=actor_id,
                )
            except InsufficientStock:
                logger.info("Sale %s lost the race for product %s variant %s", tx.invoice_number, product_id, variant_id)
                raise
            except PosError:
                logger.exception(
                    "Stock deduction failed for sale %s product %s variant %s",
                    tx.invoice_number, product_id, variant_id,
                )
                complete = False
                continue
            if result.adjustment.outcome == OUTCOME_FLOORED:
                complete = False
        return complete

    def _accrue_points(self, tx: Transaction) -> int:
        if tx.customer_id is None:
            return 0

        def _op() -> int:
            earned = self.loyalty.accrue_for_transaction(tx)
            self.session.commit()
            return earned

        try:
            return self._run(_op)
        except (PosError, SQLAlchemyError):
            logger.exception("Loyalty accrual failed for transaction %s; sale stands", tx.invoice_number)
            return 0

    # ------------------------------------------------------------------
    # Void
    # ------------------------------------------------------------------

    def void_sale(self, outlet_id: int, transaction_id: int, *, reason: str | None = None,
                  actor_id: str | None = None) -> Transaction:
        """
        Void a completed sale: completed -> void.

        Returns every unit the sale actually took out of stock through
        'sale-void' adjustments, in the same unit of work as the status flip.
        Points the sale earned are reversed afterwards, best-effort.
        """
        def _op() -> Transaction:
            tx = lock_for_update(
                self.session.query(Transaction).filter_by(id=transaction_id, outlet_id=outlet_id)
            ).first()
            if tx is None:
                raise NotFound("Transaction not found", details={"transaction_id": transaction_id})
            if tx.status == TRANSACTION_STATUS_VOID:
                raise AlreadyProcessed("Transaction already voided", details={"transaction_id": tx.id})
            if tx.status != TRANSACTION_STATUS_COMPLETED:
                raise InvalidTransition(
                    f"Cannot void transaction with status {tx.status}",
                    details={"transaction_id": tx.id, "status": tx.status},
                )

            sale_adjustments = (
                self.session.query(StockAdjustment)
                .filter_by(outlet_id=outlet_id, reason=REASON_SALE, source_id=str(tx.id))
                .order_by(StockAdjustment.id)
                .all()
            )
            for adj in sale_adjustments:
                if adj.applied_delta == 0:
                    continue
                self.ledger.apply_adjustment(
                    outlet_id=outlet_id,
                    product_id=adj.product_id,
                    variant_id=adj.variant_id,
                    delta=-adj.applied_delta,
                    reason=REASON_SALE_VOID,
                    source_id=str(tx.id),
                    note=f"Void sale {tx.invoice_number}",
                    created_by=actor_id,
                )

            tx.status = TRANSACTION_STATUS_VOID
            tx.voided_at = utcnow()
            tx.voided_by = actor_id
            tx.void_reason = reason
            append_audit_event(
                self.session,
                outlet_id=outlet_id,
                event_type="sale.voided",
                entity_type="transaction",
                entity_id=tx.id,
                actor_id=actor_id,
                note=reason,
                payload={"invoice_number": tx.invoice_number, "restocked_skus": len(sale_adjustments)},
            )
            self.session.commit()
            return tx

        tx = self._run(_op)
        self._reverse_points(tx, actor_id)
        return tx

    def _reverse_points(self, tx: Transaction, actor_id: str | None) -> None:
        if tx.customer_id is None or not tx.earned_points:
            return

        def _op() -> int:
            removed = self.loyalty.reverse_for_transaction(tx, actor_id=actor_id)
            self.session.commit()
            return removed

        try:
            self._run(_op)
        except (PosError, SQLAlchemyError):
            logger.exception("Point reversal failed for voided transaction %s", tx.invoice_number)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_transaction(self, outlet_id: int, transaction_id: int) -> Transaction:
        tx = self.session.query(Transaction).filter_by(id=transaction_id, outlet_id=outlet_id).first()
        if tx is None:
            raise NotFound("Transaction not found", details={"transaction_id": transaction_id})
        return tx

    def list_transactions(self, outlet_id: int, *, status: str | None = None, limit: int = 100,
                          offset: int = 0) -> list[Transaction]:
        query = self.session.query(Transaction).filter(Transaction.outlet_id == outlet_id)
        if status:
            query = query.filter(Transaction.status == status)
        return query.order_by(Transaction.id.desc()).offset(offset).limit(limit).all()
