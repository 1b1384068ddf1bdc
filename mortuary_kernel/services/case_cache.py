"""
CaseSummaryCache -- read-through TTL cache of case financial summaries.

Keyed by external case id.  Entries expire after ``ttl_seconds`` and are
dropped explicitly by every ledger write and reconciliation, so a reader
never sees a summary older than the last write it could have observed.
Writers running inside a caller's transaction use ``invalidate_on_commit``:
the loader only sees committed rows, so dropping an entry before the
commit would let a reader cache the pre-write summary again.

The reconciliation engine never reads from this cache; it always locks and
reads the authoritative rows.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from mortuary_kernel.domain.clock import Clock, SystemClock
from mortuary_kernel.domain.types import CaseFinancialSummary
from mortuary_kernel.logging_config import get_logger

logger = get_logger("services.case_cache")


@dataclass
class _CacheEntry:
    value: CaseFinancialSummary
    loaded_at: datetime

    def is_expired(self, now: datetime, ttl: timedelta) -> bool:
        return now >= self.loaded_at + ttl


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    expirations: int = 0
    invalidations: int = 0

    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class CaseSummaryCache:
    """Thread-safe read-through cache in front of a summary loader."""

    def __init__(
        self,
        loader: Callable[[str], CaseFinancialSummary],
        ttl_seconds: float = 3600,
        clock: Clock | None = None,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._loader = loader
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or SystemClock()
        self._entries: dict[str, _CacheEntry] = {}
        # Bumped on invalidate (per case) and clear (epoch) so a load that raced
        # a write is not stored.
        self._generation: dict[str, int] = {}
        self._epoch = 0
        self._lock = threading.RLock()
        self.stats = CacheStats()

    def get(self, case_id: str) -> CaseFinancialSummary:
        """Return the cached summary, loading it on a miss or after expiry.

        Loader errors (e.g. CaseNotFoundError) propagate and nothing is cached.
        """
        now = self._clock.now_utc()
        with self._lock:
            entry = self._entries.get(case_id)
            if entry is not None:
                if not entry.is_expired(now, self._ttl):
                    self.stats.hits += 1
                    return entry.value
                del self._entries[case_id]
                self.stats.expirations += 1
            self.stats.misses += 1
            generation = (self._epoch, self._generation.get(case_id, 0))

        value = self._loader(case_id)
        with self._lock:
            if (self._epoch, self._generation.get(case_id, 0)) == generation:
                self._entries[case_id] = _CacheEntry(value=value, loaded_at=now)
        return value

    def invalidate(self, case_id: str) -> None:
        with self._lock:
            self._generation[case_id] = self._generation.get(case_id, 0) + 1
            if self._entries.pop(case_id, None) is not None:
                self.stats.invalidations += 1
                logger.debug("case_summary_invalidated", extra={"case_ref": case_id})

    def invalidate_on_commit(self, session: Session, case_id: str) -> None:
        """Invalidate ``case_id`` when ``session``'s outermost transaction ends.

        Savepoint releases do not count.  A rollback also invalidates, which
        only costs a reload.
        """
        key = ("case_summary_cache.pending", id(self))
        pending = session.info.get(key)
        if pending is None:
            pending = session.info[key] = set()

            def _drop_pending(sess: Session, transaction: SessionTransaction) -> None:
                if transaction.parent is not None or not pending:
                    return
                case_ids = tuple(pending)
                pending.clear()
                for pending_id in case_ids:
                    self.invalidate(pending_id)

            event.listen(session, "after_transaction_end", _drop_pending)
        pending.add(case_id)

    def clear(self) -> None:
        with self._lock:
            self._epoch += 1
            self._entries.clear()

    def __contains__(self, case_id: str) -> bool:
        with self._lock:
            return case_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
