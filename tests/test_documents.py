# Overview: Pytest coverage for document numbering and the audit trail.

import json
from datetime import datetime

import pytest

from posengine.errors import ValidationError
from posengine.services.audit_service import append_audit_event, list_audit_events
from posengine.services.document_service import (
    DOCUMENT_TYPE_PURCHASE_ORDER,
    DOCUMENT_TYPE_SALE,
    next_document_number,
)

OCT_2026 = datetime(2026, 10, 17, 9, 30)
NOV_2026 = datetime(2026, 11, 1, 0, 5)


class TestDocumentNumbers:

    def test_sequence_per_month(self, db_session, outlet_a):
        numbers = [
            next_document_number(db_session, outlet_id=outlet_a.id, document_type=DOCUMENT_TYPE_SALE, at=OCT_2026)
            for _ in range(3)
        ]
        db_session.commit()

        assert numbers == ["INV-26100001", "INV-26100002", "INV-26100003"]

    def test_new_month_restarts(self, db_session, outlet_a):
        next_document_number(db_session, outlet_id=outlet_a.id, document_type=DOCUMENT_TYPE_SALE, at=OCT_2026)

        number = next_document_number(
            db_session, outlet_id=outlet_a.id, document_type=DOCUMENT_TYPE_SALE, at=NOV_2026,
        )

        assert number == "INV-26110001"

    def test_outlets_and_types_are_independent(self, db_session, outlet_a, outlet_b):
        a_sale = next_document_number(
            db_session, outlet_id=outlet_a.id, document_type=DOCUMENT_TYPE_SALE, at=OCT_2026,
        )
        b_sale = next_document_number(
            db_session, outlet_id=outlet_b.id, document_type=DOCUMENT_TYPE_SALE, at=OCT_2026,
        )
        a_po = next_document_number(
            db_session, outlet_id=outlet_a.id, document_type=DOCUMENT_TYPE_PURCHASE_ORDER, at=OCT_2026,
        )

        assert a_sale == "INV-26100001"
        assert b_sale == "INV-26100001"
        assert a_po == "PO-26100001"

    def test_rolled_back_number_is_reused(self, db_session, outlet_a):
        next_document_number(db_session, outlet_id=outlet_a.id, document_type=DOCUMENT_TYPE_SALE, at=OCT_2026)
        db_session.commit()
        next_document_number(db_session, outlet_id=outlet_a.id, document_type=DOCUMENT_TYPE_SALE, at=OCT_2026)
        db_session.rollback()

        number = next_document_number(
            db_session, outlet_id=outlet_a.id, document_type=DOCUMENT_TYPE_SALE, at=OCT_2026,
        )

        assert number == "INV-26100002"

    def test_unknown_type(self, db_session, outlet_a):
        with pytest.raises(ValidationError):
            next_document_number(db_session, outlet_id=outlet_a.id, document_type="credit_note")


class TestAuditTrail:

    def test_events_are_scoped_and_filtered(self, db_session, outlet_a, outlet_b):
        append_audit_event(
            db_session, outlet_id=outlet_a.id, event_type="sale.created",
            entity_type="transaction", entity_id=1, payload={"total_amount": 5000},
        )
        append_audit_event(
            db_session, outlet_id=outlet_a.id, event_type="sale.voided",
            entity_type="transaction", entity_id=1, actor_id="sup-1",
        )
        append_audit_event(
            db_session, outlet_id=outlet_b.id, event_type="sale.created",
            entity_type="transaction", entity_id=2,
        )
        db_session.commit()

        events = list_audit_events(db_session, outlet_a.id)
        assert [e.event_type for e in events] == ["sale.voided", "sale.created"]
        assert json.loads(events[1].payload) == {"total_amount": 5000}

        created = list_audit_events(db_session, outlet_a.id, event_type="sale.created")
        assert len(created) == 1
        assert list_audit_events(db_session, outlet_b.id, entity_type="transaction", entity_id=1) == []
