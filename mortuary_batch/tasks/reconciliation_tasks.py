"""
Batch tasks: storage-charge reconciliation.

One item per open case.  Each item re-runs the kernel's
``ReconciliationService`` inside the executor's SAVEPOINT, so a case that
fails rolls back alone and the sweep moves on to the next one.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from mortuary_kernel.domain.clock import Clock
from mortuary_kernel.domain.policy import BillingPolicy
from mortuary_kernel.exceptions import CaseNotFoundError, MortuaryBillingError
from mortuary_kernel.selectors.case_selector import CaseLedgerSelector
from mortuary_kernel.services.reconciliation_service import (
    SYSTEM_ACTOR_ID,
    ReconciliationService,
)

from mortuary_batch.tasks.base import BatchItemInput, BatchTaskResult

RECONCILE_STORAGE_CHARGES = "billing.reconcile_storage_charges"


class StorageChargeReconciliationTask:
    """Recompute total charge and balance for every open case."""

    def __init__(
        self,
        policy: BillingPolicy | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        clock: Clock | None = None,
    ):
        self._policy = policy or BillingPolicy()
        self._actor_id = actor_id
        self._clock = clock

    @property
    def task_type(self) -> str:
        return RECONCILE_STORAGE_CHARGES

    @property
    def description(self) -> str:
        return "Accrue storage charges and refresh balances for open cases"

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        case_ids = CaseLedgerSelector(session).list_open_case_ids()
        only = parameters.get("case_ids")
        if only:
            wanted = set(only)
            case_ids = [c for c in case_ids if c in wanted]

        return tuple(
            BatchItemInput(
                item_index=i,
                item_key=case_id,
                payload={"case_id": case_id},
            )
            for i, case_id in enumerate(case_ids)
        )

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult:
        service = ReconciliationService(
            session,
            clock=self._clock,
            policy=self._policy,
            actor_id=self._actor_id,
        )
        case_id = item.payload.get("case_id", item.item_key)
        try:
            result = service.reconcile_case(case_id, as_of)
        except CaseNotFoundError as exc:
            # Deleted between listing and processing.
            return BatchTaskResult.skipped(exc.code, str(exc))
        except MortuaryBillingError as exc:
            return BatchTaskResult.failed(exc.code, str(exc))

        # JSON column: amounts travel as strings.
        return BatchTaskResult.ok(
            case_id=case_id,
            currency=result.currency,
            incremental_storage=str(result.incremental_storage),
            total_charge=str(result.total_charge),
            balance=str(result.balance),
            history_recorded=result.history_recorded,
            audit_logged=result.audit_logged,
            warning_count=len(result.warnings),
            skipped_components=len(result.skipped_components),
        )
