"""
Tests for the append-only ORM listeners.

Payments and charge history rows can never be changed or deleted; extra
charges freeze once paid.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from mortuary_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from mortuary_kernel.exceptions import ImmutabilityViolationError
from mortuary_kernel.models.charge_history import ChargeHistoryEntry
from mortuary_kernel.models.extra_charge import ExtraCharge
from mortuary_kernel.models.payment import Payment
from mortuary_kernel.services.case_ledger_service import CaseLedgerService


@pytest.fixture
def ledger(session, clock, policy, case_factory):
    case_factory()
    clock.advance(86_400)
    return CaseLedgerService(session, clock=clock, policy=policy)


@pytest.fixture
def payment(session, ledger):
    return session.get(Payment, ledger.record_payment("MC-001", "1000", "cash").record_id)


class TestPaymentImmutability:

    def test_amount_change_blocked(self, session, payment):
        payment.amount = Decimal("1")
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "Payment"
        assert exc_info.value.code == "IMMUTABILITY_VIOLATION"

    def test_delete_blocked(self, session, payment):
        session.delete(payment)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_audit_fields_may_change(self, session, payment):
        payment.updated_by_id = uuid4()
        session.flush()

    def test_violation_is_logged(self, session, payment, captured_logs):
        payment.method = "card"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["field"] == "method"
        assert blocked[0]["operation"] == "UPDATE"


class TestChargeHistoryImmutability:

    @pytest.fixture
    def entry(self, session, payment):
        return session.execute(select(ChargeHistoryEntry)).scalars().first()

    def test_history_was_written(self, entry):
        assert entry is not None
        assert entry.amount == Decimal("3000")

    def test_update_blocked(self, session, entry):
        entry.amount = entry.amount + 1
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, session, entry):
        session.delete(entry)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestExtraChargeImmutability:

    def test_unpaid_charge_is_editable(self, session, ledger):
        charge_id = ledger.add_extra_charge("MC-001", "transport", "4000").record_id
        charge = session.get(ExtraCharge, charge_id)
        charge.notes = "driver booked"
        session.flush()

    def test_paid_charge_is_frozen(self, session, ledger):
        charge_id = ledger.add_extra_charge("MC-001", "transport", "4000").record_id
        ledger.transition_extra_charge(charge_id, "invoiced")
        ledger.transition_extra_charge(charge_id, "paid")

        charge = session.get(ExtraCharge, charge_id)
        charge.notes = "edited after payment"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "ExtraCharge"

    def test_paid_charge_cannot_be_deleted(self, session, ledger):
        charge_id = ledger.add_extra_charge("MC-001", "transport", "4000").record_id
        ledger.transition_extra_charge(charge_id, "invoiced")
        ledger.transition_extra_charge(charge_id, "paid")

        session.delete(session.get(ExtraCharge, charge_id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestListenerRegistration:

    def test_unregistered_listeners_allow_changes(self, session, payment):
        unregister_immutability_listeners()
        try:
            payment.amount = Decimal("1")
            session.flush()
        finally:
            register_immutability_listeners()

    def test_register_is_idempotent(self, session, payment):
        register_immutability_listeners()
        register_immutability_listeners()
        payment.amount = Decimal("1")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
