"""
SequenceService -- gap-free counters for job and invoice numbers.

Each named sequence is one row in ``sequence_counters``; allocation locks
that row (``SELECT ... FOR UPDATE``), so two sessions asking for the next
invoice number are serialized and never receive the same value.  The new
value becomes visible when the caller commits; this service never commits.
"""

from sqlalchemy import String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from mortuary_kernel.db.base import Base
from mortuary_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(nullable=False, default=0)


class SequenceService:

    BATCH_JOB = "batch_job"
    INVOICE = "invoice"

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, name: str) -> int:
        counter = self._lock(name) or self._create(name)
        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, name: str) -> int | None:
        """Last value handed out; None if the sequence was never used."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == name)
        ).scalar_one_or_none()

    def _lock(self, name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create(self, name: str) -> SequenceCounter:
        # Another session may create the same row first; the savepoint keeps
        # that collision from rolling back the caller's work.
        savepoint = self._session.begin_nested()
        try:
            counter = SequenceCounter(name=name, current_value=0)
            self._session.add(counter)
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_create_collided", extra={"sequence_name": name})
            counter = self._lock(name)
            if counter is None:
                raise
            return counter
        savepoint.commit()
        return counter
