"""
SQLAlchemy repositories (``cost_kernel.services.sql_repositories``).

Responsibility:
    Implements the repository interfaces over one SQLAlchemy Session and
    exposes them through ``SqlUnitOfWork``.  Converts ORM rows to domain
    DTOs (``to_dto``) and DTOs to rows (``from_dto`` / ``apply_dto``).

Architecture position:
    Kernel > Services -- imperative shell.  Imports models/ and domain/.

Invariants enforced:
    - Repositories flush, they never commit; ``SqlUnitOfWork.commit`` is
      the single commit point.
    - Baseline counters advance by compare-and-swap:
      ``UPDATE ... SET version = :expected + 1 WHERE version = :expected``,
      or, for the first approval of a node, an INSERT guarded by the
      (project_id, wbs_node_id) unique constraint inside a savepoint.
    - Baseline reads filter on status APPROVED; drafts are never visible.

Failure modes:
    - PersistenceError wraps every SQLAlchemyError (original chained).
    - ImmutabilityViolationError from ORM listeners propagates unchanged.
"""

from __future__ import annotations

import functools
from collections.abc import Callable
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

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
from cost_kernel.logging_config import get_logger
from cost_kernel.models.budget import BudgetLineModel, BudgetVersionModel
from cost_kernel.models.certification import (
    BaselineCounterModel,
    CertificationLineModel,
    CertificationModel,
)
from cost_kernel.models.outbox import OutboxEventModel
from cost_kernel.models.wbs import WbsNodeModel
from cost_kernel.services.repositories import (
    BudgetRepository,
    CertificationRepository,
    OutboxRepository,
    UnitOfWork,
    WbsRepository,
)
from cost_kernel.services.sequence_service import SequenceService

logger = get_logger("services.sql_repositories")

F = TypeVar("F", bound=Callable[..., Any])

_APPROVED = CertificationStatus.APPROVED.value


def _persistence(operation: str) -> Callable[[F], F]:
    """Wrap SQLAlchemy failures into PersistenceError."""

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except SQLAlchemyError as exc:
                logger.error(
                    "persistence_failed",
                    extra={"operation": operation, "error": type(exc).__name__},
                )
                raise PersistenceError(operation, str(exc)) from exc

        return wrapper  # type: ignore[return-value]

    return decorator


class SqlWbsRepository(WbsRepository):
    def __init__(self, session: Session):
        self._session = session

    @_persistence("wbs.get")
    def get(self, node_id: UUID) -> WbsNode | None:
        model = self._session.get(WbsNodeModel, node_id)
        return model.to_dto() if model else None

    @_persistence("wbs.list_for_project")
    def list_for_project(self, project_id: UUID, include_inactive: bool = False) -> list[WbsNode]:
        stmt = select(WbsNodeModel).where(WbsNodeModel.project_id == project_id)
        if not include_inactive:
            stmt = stmt.where(WbsNodeModel.is_active.is_(True))
        stmt = stmt.order_by(WbsNodeModel.sort_order, WbsNodeModel.code)
        return [m.to_dto() for m in self._session.scalars(stmt)]

    @_persistence("wbs.list_children")
    def list_children(self, project_id: UUID, parent_id: UUID | None) -> list[WbsNode]:
        stmt = select(WbsNodeModel).where(WbsNodeModel.project_id == project_id)
        if parent_id is None:
            stmt = stmt.where(WbsNodeModel.parent_id.is_(None))
        else:
            stmt = stmt.where(WbsNodeModel.parent_id == parent_id)
        stmt = stmt.order_by(WbsNodeModel.sort_order, WbsNodeModel.code)
        return [m.to_dto() for m in self._session.scalars(stmt)]

    @_persistence("wbs.add")
    def add(self, node: WbsNode, actor_id: UUID) -> None:
        self._session.add(WbsNodeModel.from_dto(node, created_by_id=actor_id))
        self._session.flush()

    @_persistence("wbs.update")
    def update(self, node: WbsNode, actor_id: UUID) -> None:
        model = self._session.get(WbsNodeModel, node.id)
        if model is None:
            raise PersistenceError("wbs.update", f"WBS node {node.id} does not exist")
        model.apply_dto(node, updated_by_id=actor_id)
        self._session.flush()


class SqlBudgetRepository(BudgetRepository):
    def __init__(self, session: Session):
        self._session = session

    @_persistence("budget.get_version")
    def get_version(self, version_id: UUID) -> BudgetVersion | None:
        model = self._session.get(BudgetVersionModel, version_id)
        return model.to_dto() if model else None

    @_persistence("budget.list_versions")
    def list_versions(self, project_id: UUID) -> list[BudgetVersion]:
        stmt = (
            select(BudgetVersionModel)
            .where(BudgetVersionModel.project_id == project_id)
            .order_by(BudgetVersionModel.created_at, BudgetVersionModel.version_code)
        )
        return [m.to_dto() for m in self._session.scalars(stmt)]

    @_persistence("budget.add_version")
    def add_version(self, version: BudgetVersion, actor_id: UUID) -> None:
        self._session.add(BudgetVersionModel.from_dto(version, created_by_id=actor_id))
        self._session.flush()

    @_persistence("budget.update_version")
    def update_version(self, version: BudgetVersion, actor_id: UUID) -> None:
        model = self._session.get(BudgetVersionModel, version.id)
        if model is None:
            raise PersistenceError("budget.update_version", f"budget version {version.id} does not exist")
        model.apply_dto(version, updated_by_id=actor_id)
        self._session.flush()

    @_persistence("budget.get_line")
    def get_line(self, line_id: UUID) -> BudgetLine | None:
        model = self._session.get(BudgetLineModel, line_id)
        return model.to_dto() if model else None

    @_persistence("budget.get_line_for_node")
    def get_line_for_node(self, version_id: UUID, wbs_node_id: UUID) -> BudgetLine | None:
        model = self._session.scalars(
            select(BudgetLineModel).where(
                BudgetLineModel.budget_version_id == version_id,
                BudgetLineModel.wbs_node_id == wbs_node_id,
            )
        ).one_or_none()
        return model.to_dto() if model else None

    @_persistence("budget.list_lines")
    def list_lines(self, version_id: UUID) -> list[BudgetLine]:
        stmt = (
            select(BudgetLineModel)
            .where(BudgetLineModel.budget_version_id == version_id)
            .order_by(BudgetLineModel.created_at)
        )
        return [m.to_dto() for m in self._session.scalars(stmt)]

    @_persistence("budget.add_line")
    def add_line(self, line: BudgetLine, actor_id: UUID) -> None:
        version = self._session.get(BudgetVersionModel, line.budget_version_id)
        if version is None:
            raise PersistenceError("budget.add_line", f"budget version {line.budget_version_id} does not exist")
        version.lines.append(BudgetLineModel.from_dto(line, created_by_id=actor_id))
        self._session.flush()

    @_persistence("budget.update_line")
    def update_line(self, line: BudgetLine, actor_id: UUID) -> None:
        model = self._session.get(BudgetLineModel, line.id)
        if model is None:
            raise PersistenceError("budget.update_line", f"budget line {line.id} does not exist")
        model.apply_dto(line, updated_by_id=actor_id)
        self._session.flush()

    @_persistence("budget.delete_line")
    def delete_line(self, line_id: UUID) -> None:
        model = self._session.get(BudgetLineModel, line_id)
        if model is None:
            return
        model.version.lines.remove(model)
        self._session.flush()


class SqlCertificationRepository(CertificationRepository):
    def __init__(self, session: Session):
        self._session = session
        self._sequences = SequenceService(session)

    @_persistence("certification.get")
    def get(self, certification_id: UUID) -> Certification | None:
        model = self._session.get(CertificationModel, certification_id)
        return model.to_dto() if model else None

    @_persistence("certification.list_for_project")
    def list_for_project(self, project_id: UUID) -> list[Certification]:
        stmt = (
            select(CertificationModel)
            .where(CertificationModel.project_id == project_id)
            .order_by(CertificationModel.number.desc())
        )
        return [m.to_dto() for m in self._session.scalars(stmt)]

    @_persistence("certification.next_number")
    def next_number(self, project_id: UUID) -> int:
        return self._sequences.next_value(SequenceService.certification_sequence(project_id))

    @_persistence("certification.add")
    def add(self, certification: Certification, actor_id: UUID) -> None:
        self._session.add(CertificationModel.from_dto(certification, created_by_id=actor_id))
        self._session.flush()

    @_persistence("certification.update")
    def update(self, certification: Certification, actor_id: UUID) -> None:
        model = self._session.get(CertificationModel, certification.id)
        if model is None:
            raise PersistenceError(
                "certification.update", f"certification {certification.id} does not exist"
            )
        model.apply_dto(certification, updated_by_id=actor_id)
        self._session.flush()

    @_persistence("certification.delete")
    def delete(self, certification_id: UUID) -> None:
        model = self._session.get(CertificationModel, certification_id)
        if model is not None:
            self._session.delete(model)
            self._session.flush()

    @_persistence("certification.save_line")
    def save_line(self, line: CertificationLine, actor_id: UUID) -> None:
        model = self._session.get(CertificationLineModel, line.id)
        if model is not None:
            model.apply_dto(line, updated_by_id=actor_id)
        else:
            parent = self._session.get(CertificationModel, line.certification_id)
            if parent is None:
                raise PersistenceError(
                    "certification.save_line",
                    f"certification {line.certification_id} does not exist",
                )
            parent.lines.append(CertificationLineModel.from_dto(line, created_by_id=actor_id))
        self._session.flush()

    @_persistence("certification.delete_line")
    def delete_line(self, line_id: UUID) -> None:
        model = self._session.get(CertificationLineModel, line_id)
        if model is None:
            return
        model.certification.lines.remove(model)
        self._session.flush()

    @_persistence("certification.get_baseline")
    def get_baseline(self, project_id: UUID, wbs_node_id: UUID) -> ApprovedBaseline:
        counter = self._session.execute(
            select(BaselineCounterModel.version, BaselineCounterModel.last_certification_id).where(
                BaselineCounterModel.project_id == project_id,
                BaselineCounterModel.wbs_node_id == wbs_node_id,
            )
        ).first()
        counter_version, last_certification_id = counter if counter else (0, None)

        approved_lines = (
            select(CertificationLineModel, CertificationModel)
            .join(CertificationModel, CertificationLineModel.certification_id == CertificationModel.id)
            .where(
                CertificationModel.project_id == project_id,
                CertificationModel.status == _APPROVED,
                CertificationLineModel.wbs_node_id == wbs_node_id,
            )
        )
        row = None
        if last_certification_id is not None:
            row = self._session.execute(
                approved_lines.where(CertificationModel.id == last_certification_id)
            ).first()
        if row is None:
            row = self._session.execute(
                approved_lines.order_by(
                    CertificationModel.period_year.desc(),
                    CertificationModel.period_month.desc(),
                    CertificationModel.number.desc(),
                ).limit(1)
            ).first()

        if row is None:
            return ApprovedBaseline(
                project_id=project_id,
                wbs_node_id=wbs_node_id,
                version=counter_version,
            )
        line, cert = row
        return ApprovedBaseline(
            project_id=project_id,
            wbs_node_id=wbs_node_id,
            version=counter_version,
            certification_id=cert.id,
            period=Period(cert.period_year, cert.period_month),
            progress_pct=line.total_progress_pct,
            qty=line.total_qty,
            amount=line.total_amount,
        )

    @_persistence("certification.latest_approved_period")
    def latest_approved_period(self, project_id: UUID) -> Period | None:
        row = self._session.execute(
            select(CertificationModel.period_year, CertificationModel.period_month)
            .where(
                CertificationModel.project_id == project_id,
                CertificationModel.status == _APPROVED,
            )
            .order_by(CertificationModel.period_year.desc(), CertificationModel.period_month.desc())
            .limit(1)
        ).first()
        return Period(row[0], row[1]) if row else None

    @_persistence("certification.advance_baseline")
    def advance_baseline(
        self,
        project_id: UUID,
        wbs_node_id: UUID,
        expected_version: int,
        certification_id: UUID,
    ) -> bool:
        if expected_version == 0:
            savepoint = self._session.begin_nested()
            try:
                self._session.add(
                    BaselineCounterModel(
                        project_id=project_id,
                        wbs_node_id=wbs_node_id,
                        version=1,
                        last_certification_id=certification_id,
                    )
                )
                self._session.flush()
                savepoint.commit()
                return True
            except IntegrityError:
                savepoint.rollback()
                logger.info(
                    "baseline_counter_insert_lost",
                    extra={"wbs_node_id": str(wbs_node_id)},
                )
                return False

        result = self._session.execute(
            update(BaselineCounterModel)
            .where(
                BaselineCounterModel.project_id == project_id,
                BaselineCounterModel.wbs_node_id == wbs_node_id,
                BaselineCounterModel.version == expected_version,
            )
            .values(version=expected_version + 1, last_certification_id=certification_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class SqlOutboxRepository(OutboxRepository):
    def __init__(self, session: Session):
        self._session = session

    @_persistence("outbox.add")
    def add(self, event: OutboxEvent) -> None:
        self._session.add(OutboxEventModel.from_dto(event))
        self._session.flush()

    @_persistence("outbox.list_for_entity")
    def list_for_entity(self, entity_id: UUID) -> list[OutboxEvent]:
        stmt = (
            select(OutboxEventModel)
            .where(OutboxEventModel.entity_id == entity_id)
            .order_by(OutboxEventModel.created_at)
        )
        return [m.to_dto() for m in self._session.scalars(stmt)]


class SqlUnitOfWork(UnitOfWork):
    """
    Unit of work over one Session.

    Usage:
        with session_scope() as session:
            service = CertificationService(SqlUnitOfWork(session))
    """

    def __init__(self, session: Session):
        self.session = session
        self.wbs = SqlWbsRepository(session)
        self.budgets = SqlBudgetRepository(session)
        self.certifications = SqlCertificationRepository(session)
        self.outbox = SqlOutboxRepository(session)

    @_persistence("commit")
    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
