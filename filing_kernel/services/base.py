"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer.  Concrete services receive a
    SQLAlchemy ``Session`` and persist via ``session.flush()`` -- never
    ``session.commit()``.

Invariants enforced:
    - Transaction boundaries belong to the caller (``session_scope()``, the
      batch executor, or a test fixture).  Services flush within the
      caller's transaction and never commit or roll back themselves.
      Per-operation atomicity comes from ``session.begin_nested()``.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from filing_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide general read queries; those belong in
          ``filing_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
