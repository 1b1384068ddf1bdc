"""
Module: mortuary_kernel.selectors.base
Responsibility: Base class for read-only query selectors.

Selectors accept a Session from the caller, never add, delete, flush or
commit, and return frozen DTOs rather than ORM instances.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from mortuary_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):

    def __init__(self, session: Session):
        self.session = session
