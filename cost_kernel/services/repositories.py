"""
Repository interfaces for the cost kernel (``cost_kernel.services.repositories``).

Responsibility:
    Abstract persistence contracts the services depend on.  Services never
    see a Session; they see these interfaces, grouped in a ``UnitOfWork``
    that owns the transaction boundary.

Architecture position:
    Kernel > Services.  Implementations:
      - ``cost_kernel.services.sql_repositories`` (SQLAlchemy, production)
      - ``tests/fakes.py`` (in-memory, unit tests)

Invariants enforced (by every implementation):
    - Reads within a unit of work see that unit's own pending writes.
    - Baseline reads only see APPROVED certification lines.
    - ``advance_baseline`` is a compare-and-swap: it succeeds only when the
      stored version equals ``expected_version`` and no concurrent unit of
      work has advanced the same counter.
    - Nothing is visible to other units of work before ``commit()``.

Failure modes:
    - PersistenceError wraps backend failures (connectivity, aborts).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from uuid import UUID

from cost_kernel.domain.dtos import (
    ApprovedBaseline,
    BudgetLine,
    BudgetVersion,
    Certification,
    CertificationLine,
    OutboxEvent,
    Period,
    WbsNode,
)


class WbsRepository(ABC):
    @abstractmethod
    def get(self, node_id: UUID) -> WbsNode | None: ...

    @abstractmethod
    def list_for_project(self, project_id: UUID, include_inactive: bool = False) -> list[WbsNode]:
        """Nodes of a project ordered by sort_order then code."""

    @abstractmethod
    def list_children(self, project_id: UUID, parent_id: UUID | None) -> list[WbsNode]:
        """Direct children (active and inactive); roots when ``parent_id`` is None."""

    @abstractmethod
    def add(self, node: WbsNode, actor_id: UUID) -> None: ...

    @abstractmethod
    def update(self, node: WbsNode, actor_id: UUID) -> None: ...


class BudgetRepository(ABC):
    @abstractmethod
    def get_version(self, version_id: UUID) -> BudgetVersion | None: ...

    @abstractmethod
    def list_versions(self, project_id: UUID) -> list[BudgetVersion]:
        """Versions of a project in creation order."""

    @abstractmethod
    def add_version(self, version: BudgetVersion, actor_id: UUID) -> None: ...

    @abstractmethod
    def update_version(self, version: BudgetVersion, actor_id: UUID) -> None: ...

    @abstractmethod
    def get_line(self, line_id: UUID) -> BudgetLine | None: ...

    @abstractmethod
    def get_line_for_node(self, version_id: UUID, wbs_node_id: UUID) -> BudgetLine | None: ...

    @abstractmethod
    def list_lines(self, version_id: UUID) -> list[BudgetLine]: ...

    @abstractmethod
    def add_line(self, line: BudgetLine, actor_id: UUID) -> None: ...

    @abstractmethod
    def update_line(self, line: BudgetLine, actor_id: UUID) -> None: ...

    @abstractmethod
    def delete_line(self, line_id: UUID) -> None: ...


class CertificationRepository(ABC):
    @abstractmethod
    def get(self, certification_id: UUID) -> Certification | None:
        """The certification with its lines."""

    @abstractmethod
    def list_for_project(self, project_id: UUID) -> list[Certification]:
        """All certifications of a project, number descending."""

    @abstractmethod
    def next_number(self, project_id: UUID) -> int:
        """Allocate the next certification number from the project's locked counter."""

    @abstractmethod
    def add(self, certification: Certification, actor_id: UUID) -> None:
        """Insert the header (lines are written with ``save_line``)."""

    @abstractmethod
    def update(self, certification: Certification, actor_id: UUID) -> None:
        """Write header fields; lines are untouched."""

    @abstractmethod
    def delete(self, certification_id: UUID) -> None:
        """Delete the certification and its lines."""

    @abstractmethod
    def save_line(self, line: CertificationLine, actor_id: UUID) -> None:
        """Insert or update a line (keyed by line id)."""

    @abstractmethod
    def delete_line(self, line_id: UUID) -> None: ...

    @abstractmethod
    def get_baseline(self, project_id: UUID, wbs_node_id: UUID) -> ApprovedBaseline:
        """
        Versioned baseline read.

        The APPROVED line of the certification that last advanced the
        node's counter; when that certification is no longer APPROVED
        (voided), the most recent APPROVED line ordered by
        (period_year, period_month, number) descending.  Carries the
        counter version.  Zero figures and version 0 when none exists.
        """

    @abstractmethod
    def latest_approved_period(self, project_id: UUID) -> Period | None: ...

    @abstractmethod
    def advance_baseline(
        self,
        project_id: UUID,
        wbs_node_id: UUID,
        expected_version: int,
        certification_id: UUID,
    ) -> bool:
        """Compare-and-swap the counter to ``expected_version + 1``; False on a lost race."""


class OutboxRepository(ABC):
    @abstractmethod
    def add(self, event: OutboxEvent) -> None: ...

    @abstractmethod
    def list_for_entity(self, entity_id: UUID) -> Sequence[OutboxEvent]:
        """Events for one entity in insertion order."""


class UnitOfWork(ABC):
    """
    Transaction boundary grouping the repositories.

    Services call ``commit()`` once per operation and ``rollback()`` on
    any exception before re-raising.
    """

    wbs: WbsRepository
    budgets: BudgetRepository
    certifications: CertificationRepository
    outbox: OutboxRepository

    @abstractmethod
    def commit(self) -> None: ...

    @abstractmethod
    def rollback(self) -> None: ...
