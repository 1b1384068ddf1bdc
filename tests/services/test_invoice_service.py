"""Tests for invoice creation."""

from decimal import Decimal

import pytest
from sqlalchemy import select

from mortuary_kernel.models.extra_charge import ExtraCharge
from mortuary_kernel.models.invoice import InvoiceLine
from mortuary_kernel.services.case_ledger_service import CaseLedgerService
from mortuary_kernel.services.invoice_service import InvoiceService


@pytest.fixture
def ledger(session, clock, policy):
    return CaseLedgerService(session, clock=clock, policy=policy)


@pytest.fixture
def invoices(session, clock, policy):
    return InvoiceService(session, clock=clock, policy=policy)


def _lines(session, invoice):
    return session.execute(
        select(InvoiceLine)
        .where(InvoiceLine.invoice_id == invoice.id)
        .order_by(InvoiceLine.line_number)
    ).scalars().all()


class TestCreateInvoice:

    def test_bundles_every_billed_component(
        self, session, clock, ledger, invoices, case_factory, coffin_factory
    ):
        case_factory()
        coffin_factory()
        clock.advance(2 * 86_400)
        ledger.assign_coffin("MC-001", "CF-001")
        ledger.record_embalming_cost("MC-001", "7500")
        pending_id = ledger.add_extra_charge("MC-001", "transport", "4000").record_id
        cancelled_id = ledger.add_extra_charge("MC-001", "viewing", "1000").record_id
        ledger.cancel_extra_charge(cancelled_id)
        ledger.record_payment("MC-001", "2000", "cash")

        invoice = invoices.create_invoice("MC-001")

        assert invoice.invoice_number == "INV-000001"
        assert invoice.currency == "KES"
        assert invoice.total_amount == Decimal("42500")
        assert invoice.amount_paid == Decimal("2000")
        assert invoice.balance_due == Decimal("40500")

        lines = _lines(session, invoice)
        assert [line.line_type for line in lines] == [
            "storage",
            "coffin",
            "embalming",
            "extra_charge",
        ]
        assert [line.line_number for line in lines] == [1, 2, 3, 4]
        assert lines[0].description == "Mortuary storage (2.0000 days)"
        assert lines[0].amount == Decimal("6000")
        assert lines[3].extra_charge_id == pending_id
        assert sum(line.amount for line in lines) == invoice.total_amount

        charge = session.get(ExtraCharge, pending_id)
        assert charge.status == "invoiced"
        assert charge.invoice_id == invoice.id
        assert session.get(ExtraCharge, cancelled_id).invoice_id is None

    def test_storage_only_case(self, session, clock, invoices, case_factory):
        case_factory()
        clock.advance(86_400)
        invoice = invoices.create_invoice("MC-001")

        lines = _lines(session, invoice)
        assert [line.line_type for line in lines] == ["storage"]
        assert invoice.balance_due == Decimal("3000")

    def test_numbers_are_sequential(self, clock, invoices, case_factory):
        case_factory("MC-001")
        case_factory("MC-002")
        clock.advance(3600)
        first = invoices.create_invoice("MC-001")
        second = invoices.create_invoice("MC-002")
        assert (first.invoice_number, second.invoice_number) == ("INV-000001", "INV-000002")

    def test_already_invoiced_extra_is_relisted_not_rebundled(
        self, session, clock, ledger, invoices, case_factory
    ):
        case_factory()
        clock.advance(86_400)
        charge_id = ledger.add_extra_charge("MC-001", "transport", "4000").record_id
        first = invoices.create_invoice("MC-001")
        second = invoices.create_invoice("MC-001")

        assert session.get(ExtraCharge, charge_id).invoice_id == first.id
        assert [line.line_type for line in _lines(session, second)] == [
            "storage",
            "extra_charge",
        ]

    def test_invoice_refreshes_stored_totals(self, session, clock, invoices, case_factory):
        case = case_factory()
        clock.advance(86_400)
        invoices.create_invoice("MC-001")
        session.refresh(case)
        assert case.total_charge == Decimal("3000")
        assert case.last_charge_update is not None
