"""
In-memory unit of work for service tests.

Each ``FakeUnitOfWork`` stages its writes and applies them to a shared
``InMemoryStore`` on commit, so several units of work over one store
behave like concurrent transactions:

- reads see the unit's own staged writes first, then committed data;
- ``advance_baseline`` is a compare-and-swap on the committed counter
  that also fails while another open unit holds the counter (the row
  lock an UPDATE would take);
- ``next_number`` allocates immediately, like a database sequence.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from uuid import UUID

from cost_kernel.domain.dtos import (
    ApprovedBaseline,
    BudgetLine,
    BudgetVersion,
    Certification,
    CertificationLine,
    CertificationStatus,
    OutboxEvent,
    Period,
    WbsNode,
)
from cost_kernel.exceptions import PersistenceError
from cost_kernel.services.repositories import (
    BudgetRepository,
    CertificationRepository,
    OutboxRepository,
    UnitOfWork,
    WbsRepository,
)

_DELETED = object()


class InMemoryStore:
    """Committed state shared by every unit of work built on it."""

    def __init__(self):
        self.lock = threading.RLock()
        self.wbs: dict = {}
        self.versions: dict = {}
        self.budget_lines: dict = {}
        self.certifications: dict = {}
        self.certification_lines: dict = {}
        self.counters: dict = {}
        self.outbox: dict = {}
        self.sequences: dict[UUID, int] = {}
        self.reservations: dict[tuple[UUID, UUID], object] = {}


class _Table:
    """Staged view over one committed dict."""

    def __init__(self, committed: dict, lock: threading.RLock):
        self._committed = committed
        self._lock = lock
        self._staged: dict = {}

    def get(self, key):
        if key in self._staged:
            value = self._staged[key]
            return None if value is _DELETED else value
        with self._lock:
            return self._committed.get(key)

    def values(self) -> list:
        with self._lock:
            merged = dict(self._committed)
        for key, value in self._staged.items():
            if value is _DELETED:
                merged.pop(key, None)
            else:
                merged[key] = value
        return list(merged.values())

    def put(self, key, value) -> None:
        self._staged[key] = value

    def delete(self, key) -> None:
        self._staged[key] = _DELETED

    def staged(self, key) -> bool:
        return key in self._staged

    def apply(self) -> None:
        for key, value in self._staged.items():
            if value is _DELETED:
                self._committed.pop(key, None)
            else:
                self._committed[key] = value
        self._staged.clear()

    def discard(self) -> None:
        self._staged.clear()


class FakeWbsRepository(WbsRepository):
    def __init__(self, table: _Table):
        self._nodes = table

    def get(self, node_id):
        return self._nodes.get(node_id)

    def list_for_project(self, project_id, include_inactive=False):
        nodes = [
            n for n in self._nodes.values()
            if n.project_id == project_id and (include_inactive or n.is_active)
        ]
        return sorted(nodes, key=lambda n: (n.sort_order, n.code))

    def list_children(self, project_id, parent_id):
        return [
            n for n in self.list_for_project(project_id, include_inactive=True)
            if n.parent_id == parent_id
        ]

    def add(self, node: WbsNode, actor_id):
        self._nodes.put(node.id, node)

    def update(self, node: WbsNode, actor_id):
        if self._nodes.get(node.id) is None:
            raise PersistenceError("wbs.update", f"WBS node {node.id} does not exist")
        self._nodes.put(node.id, node)


class FakeBudgetRepository(BudgetRepository):
    def __init__(self, versions: _Table, lines: _Table):
        self._versions = versions
        self._lines = lines

    def get_version(self, version_id):
        return self._versions.get(version_id)

    def list_versions(self, project_id):
        return [v for v in self._versions.values() if v.project_id == project_id]

    def add_version(self, version: BudgetVersion, actor_id):
        self._versions.put(version.id, version)

    def update_version(self, version: BudgetVersion, actor_id):
        if self._versions.get(version.id) is None:
            raise PersistenceError("budget.update_version", f"budget version {version.id} does not exist")
        self._versions.put(version.id, version)

    def get_line(self, line_id):
        return self._lines.get(line_id)

    def get_line_for_node(self, version_id, wbs_node_id):
        for line in self._lines.values():
            if line.budget_version_id == version_id and line.wbs_node_id == wbs_node_id:
                return line
        return None

    def list_lines(self, version_id):
        return [line for line in self._lines.values() if line.budget_version_id == version_id]

    def add_line(self, line: BudgetLine, actor_id):
        if self._versions.get(line.budget_version_id) is None:
            raise PersistenceError("budget.add_line", f"budget version {line.budget_version_id} does not exist")
        self._lines.put(line.id, line)

    def update_line(self, line: BudgetLine, actor_id):
        if self._lines.get(line.id) is None:
            raise PersistenceError("budget.update_line", f"budget line {line.id} does not exist")
        self._lines.put(line.id, line)

    def delete_line(self, line_id):
        if self._lines.get(line_id) is not None:
            self._lines.delete(line_id)


class FakeCertificationRepository(CertificationRepository):
    def __init__(self, uow: FakeUnitOfWork):
        self._uow = uow
        self._store = uow.store
        self._headers = uow.tables["certifications"]
        self._lines = uow.tables["certification_lines"]
        self._counters = uow.tables["counters"]

    def _assemble(self, header: Certification) -> Certification:
        lines = tuple(
            line for line in self._lines.values() if line.certification_id == header.id
        )
        return replace(header, lines=lines)

    def get(self, certification_id):
        header = self._headers.get(certification_id)
        return self._assemble(header) if header else None

    def list_for_project(self, project_id):
        headers = [h for h in self._headers.values() if h.project_id == project_id]
        return [self._assemble(h) for h in sorted(headers, key=lambda h: h.number, reverse=True)]

    def next_number(self, project_id):
        with self._store.lock:
            value = self._store.sequences.get(project_id, 0) + 1
            self._store.sequences[project_id] = value
            return value

    def add(self, certification: Certification, actor_id):
        self._headers.put(certification.id, replace(certification, lines=()))
        for line in certification.lines:
            self._lines.put(line.id, line)

    def update(self, certification: Certification, actor_id):
        if self._headers.get(certification.id) is None:
            raise PersistenceError(
                "certification.update", f"certification {certification.id} does not exist"
            )
        self._headers.put(certification.id, replace(certification, lines=()))

    def delete(self, certification_id):
        certification = self.get(certification_id)
        if certification is None:
            return
        for line in certification.lines:
            self._lines.delete(line.id)
        self._headers.delete(certification_id)

    def save_line(self, line: CertificationLine, actor_id):
        if self._headers.get(line.certification_id) is None:
            raise PersistenceError(
                "certification.save_line", f"certification {line.certification_id} does not exist"
            )
        self._lines.put(line.id, line)

    def delete_line(self, line_id):
        if self._lines.get(line_id) is not None:
            self._lines.delete(line_id)

    def get_baseline(self, project_id, wbs_node_id):
        version, last_certification_id = self._counters.get((project_id, wbs_node_id)) or (0, None)
        candidates = []
        for header in self._headers.values():
            if header.project_id != project_id or header.status != CertificationStatus.APPROVED:
                continue
            for line in self._lines.values():
                if line.certification_id == header.id and line.wbs_node_id == wbs_node_id:
                    candidates.append((header, line))
        pointed = [c for c in candidates if c[0].id == last_certification_id]
        if pointed:
            best = pointed[0]
        elif candidates:
            best = max(candidates, key=lambda c: (c[0].period, c[0].number))
        else:
            return ApprovedBaseline(project_id=project_id, wbs_node_id=wbs_node_id, version=version)
        header, line = best
        return ApprovedBaseline(
            project_id=project_id,
            wbs_node_id=wbs_node_id,
            version=version,
            certification_id=header.id,
            period=header.period,
            progress_pct=line.total_progress_pct,
            qty=line.total_qty,
            amount=line.total_amount,
        )

    def latest_approved_period(self, project_id) -> Period | None:
        periods = [
            h.period for h in self._headers.values()
            if h.project_id == project_id and h.status == CertificationStatus.APPROVED
        ]
        return max(periods) if periods else None

    def advance_baseline(self, project_id, wbs_node_id, expected_version, certification_id):
        key = (project_id, wbs_node_id)
        with self._store.lock:
            holder = self._store.reservations.get(key)
            if holder is not None and holder is not self._uow:
                return False
            if self._counters.staged(key):
                current = self._counters.get(key)[0]
            else:
                current = self._store.counters.get(key, (0, None))[0]
            if current != expected_version:
                return False
            self._store.reservations[key] = self._uow
            self._counters.put(key, (expected_version + 1, certification_id))
            return True


class FakeOutboxRepository(OutboxRepository):
    def __init__(self, table: _Table):
        self._events = table

    def add(self, event: OutboxEvent):
        self._events.put(event.id, event)

    def list_for_entity(self, entity_id):
        return [e for e in self._events.values() if e.entity_id == entity_id]

    def all(self) -> list[OutboxEvent]:
        return self._events.values()


class FakeUnitOfWork(UnitOfWork):
    """
    Unit of work over an ``InMemoryStore``.

    Usage:
        store = InMemoryStore()
        uow_a, uow_b = FakeUnitOfWork(store), FakeUnitOfWork(store)
    """

    def __init__(self, store: InMemoryStore | None = None):
        self.store = store if store is not None else InMemoryStore()
        lock = self.store.lock
        self.tables = {
            "wbs": _Table(self.store.wbs, lock),
            "versions": _Table(self.store.versions, lock),
            "budget_lines": _Table(self.store.budget_lines, lock),
            "certifications": _Table(self.store.certifications, lock),
            "certification_lines": _Table(self.store.certification_lines, lock),
            "counters": _Table(self.store.counters, lock),
            "outbox": _Table(self.store.outbox, lock),
        }
        self.wbs = FakeWbsRepository(self.tables["wbs"])
        self.budgets = FakeBudgetRepository(self.tables["versions"], self.tables["budget_lines"])
        self.certifications = FakeCertificationRepository(self)
        self.outbox = FakeOutboxRepository(self.tables["outbox"])
        self.commits = 0
        self.rollbacks = 0

    def commit(self) -> None:
        with self.store.lock:
            for table in self.tables.values():
                table.apply()
            self._release()
        self.commits += 1

    def rollback(self) -> None:
        with self.store.lock:
            for table in self.tables.values():
                table.discard()
            self._release()
        self.rollbacks += 1

    def _release(self) -> None:
        for key in [k for k, holder in self.store.reservations.items() if holder is self]:
            del self.store.reservations[key]
