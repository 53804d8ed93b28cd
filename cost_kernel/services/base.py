"""
BaseService -- common constructor and transaction contract for kernel services.

Responsibility:
    Every write service receives a ``UnitOfWork`` and an optional ``Clock``.
    Each public operation runs inside ``self._transaction()``: one commit on
    success, rollback and re-raise on any exception.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - One operation, one transaction: every row written by an operation
      (status change, seal, baseline counters, outbox record) commits
      together or not at all.
    - Nothing is swallowed; the original exception reaches the caller.
"""

from abc import ABC
from collections.abc import Iterator
from contextlib import contextmanager

from cost_kernel.domain.clock import Clock, SystemClock
from cost_kernel.services.repositories import UnitOfWork


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Contract:
        Repositories flush; ``_transaction`` commits.  Read-only helpers
        may skip the transaction.
    """

    def __init__(self, uow: UnitOfWork, clock: Clock | None = None):
        self._uow = uow
        self._clock = clock or SystemClock()

    @contextmanager
    def _transaction(self) -> Iterator[UnitOfWork]:
        try:
            yield self._uow
            self._uow.commit()
        except Exception:
            self._uow.rollback()
            raise
