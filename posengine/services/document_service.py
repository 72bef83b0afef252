# Overview: Per-outlet, per-month document numbering (INV-YYMM####, PO-YYMM####).

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..models import DocumentSequence
from ..time_utils import period_code, utcnow

DOCUMENT_TYPE_SALE = "sale"
DOCUMENT_TYPE_PURCHASE_ORDER = "purchase_order"

PREFIXES = {
    DOCUMENT_TYPE_SALE: "INV",
    DOCUMENT_TYPE_PURCHASE_ORDER: "PO",
}


def next_document_number(
    session,
    *,
    outlet_id: int,
    document_type: str,
    at: datetime | None = None,
    pad: int = 4,
) -> str:
    """
    Allocate the next document number for an outlet/type/month.

    Runs inside the caller's transaction, so a rolled-back sale or PO also
    gives its number back. The counter row is bumped with a single UPDATE;
    the first number of a month inserts the row under a savepoint and falls
    back to the UPDATE if a concurrent writer got there first.
    """
    if not outlet_id:
        raise ValidationError("outlet_id is required")
    prefix = PREFIXES.get(document_type)
    if prefix is None:
        raise ValidationError(f"Unknown document type: {document_type}")

    period = period_code(at or utcnow())

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.outlet_id == outlet_id,
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    def _current() -> int:
        return (
            session.query(DocumentSequence.next_number)
            .filter_by(outlet_id=outlet_id, document_type=document_type, period=period)
            .scalar()
        )

    result = session.execute(stmt)
    if result.rowcount:
        next_num = _current() - 1
    else:
        try:
            with session.begin_nested():
                session.add(DocumentSequence(
                    outlet_id=outlet_id,
                    document_type=document_type,
                    period=period,
                    next_number=2,
                ))
            next_num = 1
        except IntegrityError:
            result = session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current() - 1

    return f"{prefix}-{period}{next_num:0{pad}d}"
