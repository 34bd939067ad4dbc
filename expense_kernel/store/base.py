"""
Module: expense_kernel.store.base
Responsibility: Common base for the store classes that implement the
    kernel's persistence contract over SQLAlchemy.
Architecture position: Kernel > Store.  May import from db/, models/,
    domain/ and exceptions.  MUST NOT import from services/.

Invariants enforced:
    - Each public store method runs in its own short transaction
      (``session_scope``): committed on success, rolled back on error.
      Workflow operations never hold a transaction across store calls;
      atomicity across calls is achieved by compensation in services/.
    - Every write is a single conditional statement (pre-image filter).
      Conditional writes return a bool: False means zero rows matched and
      the caller must decide which business error that is.
    - Store methods return DTOs, never ORM instances.

Failure modes:
    - Any ``SQLAlchemyError`` (connection loss, integrity violation,
      lock timeout) is converted to ``DependencyFailureError`` carrying the
      operation name.  The original exception is chained.
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from expense_kernel.db.engine import session_scope
from expense_kernel.exceptions import DependencyFailureError
from expense_kernel.logging_config import get_logger

logger = get_logger("store")


class BaseStore:
    """
    Base class for all stores.

    Contract:
        Accepts a session factory and opens one session per call through
        ``_scope``.

    Non-goals:
        - Does NOT enforce business rules; a False from a conditional
          write is reported, not interpreted.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    @contextmanager
    def _scope(self, operation: str) -> Generator[Session, None, None]:
        try:
            with session_scope(self._session_factory) as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error(
                "store_operation_failed",
                extra={
                    "operation": operation,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            raise DependencyFailureError(
                operation, f"{type(exc).__name__}: {exc}"
            ) from exc
