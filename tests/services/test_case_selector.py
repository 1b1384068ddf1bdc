"""Tests for the case read models."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from mortuary_kernel.exceptions import CaseNotFoundError
from mortuary_kernel.models.extra_charge import ExtraCharge
from mortuary_kernel.models.payment import Payment
from mortuary_kernel.selectors.case_selector import CaseLedgerSelector
from mortuary_kernel.services.case_ledger_service import CaseLedgerService
from mortuary_kernel.services.case_service import CaseService
from mortuary_kernel.services.reconciliation_service import ReconciliationService

T0 = datetime(2024, 3, 1, 8, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def selector(session):
    return CaseLedgerSelector(session)


class TestOpenCases:

    def test_lists_open_cases_in_order(self, session, clock, policy, selector, case_factory):
        case_factory("MC-003")
        case_factory("MC-001")
        case_factory("MC-002")
        CaseService(session, clock=clock, policy=policy).complete_case("MC-002", T0)

        assert selector.list_open_case_ids() == ["MC-001", "MC-003"]

    def test_missing_status_counts_as_open(self, session, selector, case_factory):
        case = case_factory()
        case.status = None
        session.flush()
        assert selector.list_open_case_ids() == ["MC-001"]

    def test_status_match_is_case_insensitive(self, session, selector, case_factory):
        case = case_factory()
        case.status = "Complete"
        session.flush()
        assert selector.list_open_case_ids() == []


class TestFinancialSummary:

    def test_summary_reports_stored_totals(self, session, clock, policy, selector, case_factory):
        case_factory(embalming_cost="500")
        clock.advance(86_400)
        ledger = CaseLedgerService(session, clock=clock, policy=policy)
        ledger.add_extra_charge("MC-001", "transport", "4000")
        cancelled = ledger.add_extra_charge("MC-001", "viewing", "700").record_id
        ledger.cancel_extra_charge(cancelled)
        ledger.record_payment("MC-001", "1000", "cash")
        ledger.record_payment("MC-001", "500", "cash")

        summary = selector.get_financial_summary("MC-001")

        assert summary.full_name == "John Doe"
        assert summary.total_charge == Decimal("7500")
        assert summary.balance == Decimal("6000")
        assert summary.total_payments == Decimal("1500")
        assert summary.payment_count == 2
        assert summary.extra_charges_total == Decimal("4000")
        assert summary.embalming_cost == Decimal("500")

    def test_dirty_negative_rows_are_left_out_like_reconciliation(
        self, session, clock, policy, selector, case_factory, test_actor_id
    ):
        case = case_factory()
        ledger = CaseLedgerService(session, clock=clock, policy=policy)
        ledger.add_extra_charge("MC-001", "transport", "4000")
        ledger.record_payment("MC-001", "1000", "cash")
        # Rows written by an old import, outside the ledger service.
        session.add_all(
            [
                ExtraCharge(
                    case_pk=case.id, charge_type="legacy", amount=Decimal("-900"),
                    status="pending", created_by_id=test_actor_id,
                ),
                Payment(
                    case_pk=case.id, amount=Decimal("-200"), method="cash",
                    reference_code="LEGACY-1", payment_date=T0, created_by_id=test_actor_id,
                ),
            ]
        )
        session.flush()
        ReconciliationService(session, clock=clock, policy=policy).reconcile_case(
            "MC-001", T0 + timedelta(days=1)
        )

        summary = selector.get_financial_summary("MC-001")

        assert summary.extra_charges_total == Decimal("4000")
        assert summary.total_payments == Decimal("1000")
        assert summary.payment_count == 2
        assert summary.total_charge == Decimal("3000") + summary.extra_charges_total
        assert summary.balance == summary.total_charge - summary.total_payments

    def test_summary_does_not_recompute_accrual(self, clock, selector, case_factory):
        case_factory()
        clock.advance(10 * 86_400)
        assert selector.get_financial_summary("MC-001").total_charge == Decimal("0")

    def test_unknown_case(self, selector):
        with pytest.raises(CaseNotFoundError):
            selector.get_financial_summary("NOPE")

    def test_list_summaries(self, session, clock, policy, selector, case_factory):
        case_factory("MC-001")
        case_factory("MC-002")
        CaseService(session, clock=clock, policy=policy).complete_case("MC-002", T0)

        assert [s.case_id for s in selector.list_financial_summaries()] == ["MC-001"]
        assert [s.case_id for s in selector.list_financial_summaries(include_closed=True)] == [
            "MC-001",
            "MC-002",
        ]


class TestChargeHistory:

    def test_history_oldest_first(self, session, clock, policy, selector, case_factory):
        case_factory()
        reconciler = ReconciliationService(session, clock=clock, policy=policy)
        reconciler.reconcile_case("MC-001", T0 + timedelta(days=1))
        reconciler.reconcile_case("MC-001", T0 + timedelta(days=1, hours=12))

        history = selector.charge_history("MC-001")

        assert [h.amount for h in history] == [Decimal("3000"), Decimal("1500")]
        assert all(h.case_id == "MC-001" and h.currency == "KES" for h in history)
        assert history[0].recorded_at < history[1].recorded_at

    def test_no_history(self, selector, case_factory):
        case_factory()
        assert selector.charge_history("MC-001") == []
