"""
ChargeHistoryService -- the only write path into ``charge_history``.

There is no update or delete method, and the ORM listeners in
``db.immutability`` reject both anyway.

Each append runs in its own SAVEPOINT so a failed insert leaves the
caller's transaction (and the balance it just wrote) intact.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from mortuary_kernel.domain.clock import as_utc
from mortuary_kernel.exceptions import AuditLogFailureError
from mortuary_kernel.logging_config import get_logger
from mortuary_kernel.models.charge_history import ChargeHistoryEntry
from mortuary_kernel.services.base import BaseService

logger = get_logger("services.charge_history")


class ChargeHistoryService(BaseService[ChargeHistoryEntry]):

    def append(
        self,
        *,
        case_pk: UUID,
        case_ref: str,
        charge_type: str,
        amount: Decimal,
        currency: str,
        description: str,
        recorded_at: datetime,
        actor_id: UUID,
    ) -> ChargeHistoryEntry:
        """Insert one history row.

        Raises:
            AuditLogFailureError: The insert failed; the savepoint has been
                rolled back and nothing else in the session is affected.
        """
        savepoint = self.session.begin_nested()
        try:
            entry = ChargeHistoryEntry(
                case_pk=case_pk,
                case_ref=case_ref,
                charge_type=charge_type,
                amount=amount,
                currency=currency,
                description=description,
                recorded_at=as_utc(recorded_at),
                created_by_id=actor_id,
            )
            self.session.add(entry)
            self.session.flush()
            savepoint.commit()
        except SQLAlchemyError as exc:
            savepoint.rollback()
            logger.error(
                "charge_history_append_failed",
                extra={
                    "case_ref": case_ref,
                    "charge_type": charge_type,
                    "amount": amount,
                    "currency": currency,
                },
                exc_info=True,
            )
            raise AuditLogFailureError(case_ref, str(exc)) from exc

        logger.info(
            "charge_history_appended",
            extra={
                "entry_id": str(entry.id),
                "case_ref": case_ref,
                "charge_type": charge_type,
                "amount": amount,
                "currency": currency,
            },
        )
        return entry
