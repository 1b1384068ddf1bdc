"""
BaseService -- abstract base for kernel write services.

Services flush within the caller's transaction and never commit or roll
back the outer transaction themselves; they may open and close their own
SAVEPOINTs.  The caller (batch executor, ``session_scope``, test harness)
owns commit/rollback.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from mortuary_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """Holds the caller's session; subclasses only ever ``flush()``."""

    def __init__(self, session: Session):
        self.session = session
