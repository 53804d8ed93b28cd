"""
CertificationService -- progress certification lifecycle and reconciliation.

Responsibility:
    Owns the certification state machine (DRAFT/REJECTED -> SUBMITTED ->
    APPROVED -> VOID, DRAFT/SUBMITTED -> REJECTED) and the computation of
    every certification line against the versioned approved baseline of
    its WBS node.  Approval seals the document and advances the baseline
    counters with compare-and-swap, all in one transaction.

Architecture position:
    Kernel > Services -- imperative shell over ``UnitOfWork``.
    Pure computation is delegated to ``cost_engines.progress`` (line
    figures) and ``cost_engines.seal`` (integrity seal); transitions and
    guards are declared in ``cost_kernel.domain.workflow``.

Invariants enforced:
    - Lines are computed against APPROVED data only; drafts never see
      each other.
    - Contractual quantity and unit price are frozen when a line is first
      created and never re-read from the budget.
    - 0 <= total_pct <= max_progress_pct and period_pct >= 0 on every line.
    - Approval re-validates every line against the current baseline and
      advances each node's baseline counter by compare-and-swap; of two
      concurrent approvals building on the same baseline exactly one wins.
    - The integrity seal is computed once, at approval, and kept on void.
    - Every transition writes an outbox record in the same transaction.

Failure modes:
    - ImmutableDocumentError: mutation or transition on a sealed document,
      line edits or submit on a non-editable document, void of a superseded
      document.
    - InvalidTransitionError: no such transition from the current status,
      or a failed guard (line invariants, blank rejection comment).
    - EmptyDocumentError: submit with no lines.
    - StaleBaselineError (retryable): baseline moved since a line was
      computed, or a lost compare-and-swap race.
    - ProgressOverrunError, PeriodOrderError, SealMismatchError.

Audit relevance:
    Structured log events for every transition (certification_submitted,
    certification_approved, ...), stale baselines at WARNING and seal
    mismatches at ERROR.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass, field, fields, replace
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from cost_engines.progress import Baseline, LineFigures, compute_line, invariant_violations
from cost_engines.seal import SEAL_ALGORITHM, seal, verify_seal
from cost_kernel.domain.dtos import (
    ApprovedBaseline,
    Certification,
    CertificationLine,
    CertificationStatus,
    CertificationSummary,
    OutboxEvent,
    Period,
)
from cost_kernel.domain.values import HUNDRED, to_decimal
from cost_kernel.domain.workflow import CERTIFICATION_WORKFLOW, Transition
from cost_kernel.exceptions import (
    BudgetLineNotFoundError,
    BudgetVersionNotFoundError,
    CertificationNotFoundError,
    EmptyDocumentError,
    ImmutableDocumentError,
    InvalidHierarchyError,
    InvalidTransitionError,
    PeriodOrderError,
    SealMismatchError,
    StaleBaselineError,
    WbsNodeNotFoundError,
)
from cost_kernel.logging_config import LogContext, get_logger
from cost_kernel.services.base import BaseService
from cost_kernel.utils.hashing import canonicalize_json

logger = get_logger("services.certification")

_FIGURE_FIELDS = tuple(f.name for f in fields(LineFigures))


@dataclass
class _GuardContext:
    """Mutable scratchpad shared by the guards of one transition."""

    certification: Certification
    action: str
    comment: str | None = None
    baselines: dict[UUID, ApprovedBaseline] = field(default_factory=dict)


def _figures_of(line: CertificationLine) -> LineFigures:
    return LineFigures(**{name: getattr(line, name) for name in _FIGURE_FIELDS})


def _as_period(period: Period | str) -> Period:
    if isinstance(period, Period):
        return period
    return Period.parse(period)


class CertificationService(BaseService):
    """
    Progress certification lifecycle.

    Contract:
        Every write method is one transaction (``BaseService._transaction``).
        Authorization is the caller's concern; ``actor_id`` is recorded only.

    Usage:
        service = CertificationService(uow, clock=clock)
        cert = service.create_certification(project_id, version_id, "2024-03", actor_id)
        service.add_or_update_line(cert.id, task_id, Decimal("25"), actor_id)
        service.submit(cert.id, actor_id)
        service.approve(cert.id, approver_id)
    """

    def __init__(
        self,
        uow,
        clock=None,
        max_progress_pct: Decimal = HUNDRED,
        seal_algorithm: str = SEAL_ALGORITHM,
    ):
        super().__init__(uow, clock)
        self._max_pct = to_decimal(max_progress_pct, "max_progress_pct")
        self._seal_algorithm = seal_algorithm
        self._guards: dict[str, Callable[[_GuardContext], None]] = {
            "editable": self._guard_editable,
            "has_lines": self._guard_has_lines,
            "line_invariants": self._guard_line_invariants,
            "submitted": self._guard_submitted,
            "baselines_current": self._guard_baselines_current,
            "period_in_order": self._guard_period_in_order,
            "not_sealed": self._guard_not_sealed,
            "comment_present": self._guard_comment_present,
            "approved": self._guard_approved,
            "not_superseded": self._guard_not_superseded,
        }

    # =========================================================================
    # Reads
    # =========================================================================

    def get_certification(self, certification_id: UUID) -> Certification:
        certification = self._uow.certifications.get(certification_id)
        if certification is None:
            raise CertificationNotFoundError(str(certification_id))
        return certification

    def list_certifications(self, project_id: UUID) -> list[CertificationSummary]:
        """Summaries of a project's certifications, number descending."""
        certifications = sorted(
            self._uow.certifications.list_for_project(project_id),
            key=lambda c: c.number,
            reverse=True,
        )
        return [CertificationSummary.of(c) for c in certifications]

    def previous_progress(
        self, project_id: UUID, wbs_node_ids: Iterable[UUID]
    ) -> dict[UUID, Decimal]:
        """Approved cumulative progress per node, for client-side validation."""
        return {
            node_id: self._uow.certifications.get_baseline(project_id, node_id).progress_pct
            for node_id in wbs_node_ids
        }

    def verify_seal(self, certification_id: UUID) -> bool:
        """Recompute the integrity seal and compare it with the stored one."""
        certification = self.get_certification(certification_id)
        if not certification.integrity_seal:
            logger.warning(
                "seal_missing",
                extra={
                    "certification_id": str(certification_id),
                    "status": certification.status.value,
                },
            )
            return False
        ok = verify_seal(
            certification.identity(),
            certification.lines,
            certification.integrity_seal,
            algorithm=self._seal_algorithm,
        )
        if not ok:
            logger.error(
                "seal_mismatch",
                extra={
                    "certification_id": str(certification_id),
                    "stored_seal": certification.integrity_seal,
                    "computed_seal": self._compute_seal(certification),
                },
            )
        return ok

    def assert_seal(self, certification_id: UUID) -> None:
        """
        Raises:
            SealMismatchError: stored seal missing or not matching.
        """
        if not self.verify_seal(certification_id):
            certification = self.get_certification(certification_id)
            raise SealMismatchError(
                str(certification_id),
                certification.integrity_seal,
                self._compute_seal(certification),
            )

    # =========================================================================
    # Document editing
    # =========================================================================

    def create_certification(
        self,
        project_id: UUID,
        budget_version_id: UUID,
        period: Period | str,
        actor_id: UUID,
        notes: str | None = None,
    ) -> Certification:
        """Open a DRAFT certification with the project's next number."""
        period = _as_period(period)
        with LogContext.bind(project_id=project_id, actor_id=actor_id), self._transaction() as uow:
            version = uow.budgets.get_version(budget_version_id)
            if version is None or version.project_id != project_id:
                raise BudgetVersionNotFoundError(str(budget_version_id))
            self._check_period_order(project_id, period)

            certification = Certification(
                id=uuid4(),
                project_id=project_id,
                budget_version_id=budget_version_id,
                number=uow.certifications.next_number(project_id),
                period=period,
                notes=notes,
                created_by=actor_id,
                created_at=self._clock.now(),
            )
            uow.certifications.add(certification, actor_id)

        logger.info(
            "certification_created",
            extra={
                "certification_id": str(certification.id),
                "number": certification.number,
                "period": str(period),
            },
        )
        return certification

    def update_certification(
        self,
        certification_id: UUID,
        actor_id: UUID,
        notes: str | None = None,
        period: Period | str | None = None,
    ) -> Certification:
        with LogContext.bind(certification_id=certification_id, actor_id=actor_id), \
                self._transaction() as uow:
            certification = self._editable(certification_id, "update")
            changes: dict[str, Any] = {}
            if notes is not None:
                changes["notes"] = notes
            if period is not None:
                period = _as_period(period)
                self._check_period_order(certification.project_id, period)
                changes["period"] = period
            certification = replace(certification, **changes)
            uow.certifications.update(certification, actor_id)

        logger.info(
            "certification_updated",
            extra={"certification_id": str(certification_id), "fields": sorted(changes)},
        )
        return certification

    def delete_certification(self, certification_id: UUID, actor_id: UUID) -> None:
        with LogContext.bind(certification_id=certification_id, actor_id=actor_id), \
                self._transaction() as uow:
            certification = self._editable(certification_id, "delete")
            uow.certifications.delete(certification_id)

        logger.info(
            "certification_deleted",
            extra={"certification_id": str(certification_id), "number": certification.number},
        )

    def add_or_update_line(
        self,
        certification_id: UUID,
        wbs_node_id: UUID,
        period_progress_pct: Decimal | int | str,
        actor_id: UUID,
    ) -> CertificationLine:
        """
        Compute and store the line for ``wbs_node_id``.

        Reads the node's approved baseline, freezes contractual quantity and
        unit price on first creation, and derives every figure.

        Raises:
            ImmutableDocumentError: certification not editable.
            ProgressOverrunError: total above maximum or negative period.
            InvalidHierarchyError: node inactive or from another project.
        """
        period_pct = to_decimal(period_progress_pct, "period_progress_pct")

        with LogContext.bind(certification_id=certification_id, actor_id=actor_id), \
                self._transaction() as uow:
            certification = self._editable(certification_id, "edit lines of")
            node = uow.wbs.get(wbs_node_id)
            if node is None:
                raise WbsNodeNotFoundError(str(wbs_node_id))
            if node.project_id != certification.project_id or not node.is_active:
                raise InvalidHierarchyError(
                    "node is inactive or belongs to another project",
                    node_type=node.node_type.value,
                    wbs_code=node.code,
                )

            existing = certification.line_for(wbs_node_id)
            if existing is not None:
                budget_line_id = existing.budget_line_id
                contractual = existing.contractual_qty_snapshot
                unit_price = existing.unit_price_snapshot
            else:
                budget_line = uow.budgets.get_line_for_node(
                    certification.budget_version_id, wbs_node_id
                )
                if budget_line is None:
                    raise BudgetLineNotFoundError(
                        str(certification.budget_version_id), str(wbs_node_id)
                    )
                budget_line_id = budget_line.id
                contractual = budget_line.quantity
                unit_price = budget_line.sale_unit_price

            baseline = uow.certifications.get_baseline(certification.project_id, wbs_node_id)
            figures = compute_line(
                Baseline(
                    progress_pct=baseline.progress_pct,
                    qty=baseline.qty,
                    amount=baseline.amount,
                ),
                contractual,
                unit_price,
                period_pct,
                wbs_node_id=str(wbs_node_id),
                max_pct=self._max_pct,
            )

            line = CertificationLine(
                id=existing.id if existing else uuid4(),
                certification_id=certification_id,
                wbs_node_id=wbs_node_id,
                budget_line_id=budget_line_id,
                contractual_qty_snapshot=contractual,
                unit_price_snapshot=unit_price,
                baseline_certification_id=baseline.certification_id,
                baseline_version=baseline.version,
                **asdict(figures),
            )
            uow.certifications.save_line(line, actor_id)

        logger.info(
            "certification_line_saved",
            extra={
                "certification_id": str(certification_id),
                "wbs_code": node.code,
                "period_progress_pct": figures.period_progress_pct,
                "total_progress_pct": figures.total_progress_pct,
                "period_amount": figures.period_amount,
                "baseline_version": baseline.version,
                "line_created": existing is None,
            },
        )
        return line

    def remove_line(self, certification_id: UUID, wbs_node_id: UUID, actor_id: UUID) -> bool:
        """Remove the node's line; False when the certification has none."""
        with LogContext.bind(certification_id=certification_id, actor_id=actor_id), \
                self._transaction() as uow:
            certification = self._editable(certification_id, "edit lines of")
            line = certification.line_for(wbs_node_id)
            if line is None:
                return False
            uow.certifications.delete_line(line.id)

        logger.info(
            "certification_line_removed",
            extra={"certification_id": str(certification_id), "wbs_node_id": str(wbs_node_id)},
        )
        return True

    # =========================================================================
    # Transitions
    # =========================================================================

    def submit(self, certification_id: UUID, actor_id: UUID) -> Certification:
        """
        DRAFT/REJECTED -> SUBMITTED.

        Raises:
            ImmutableDocumentError: already SUBMITTED, APPROVED or VOID.
            EmptyDocumentError: no lines.
        """
        with LogContext.bind(certification_id=certification_id, actor_id=actor_id), \
                self._transaction() as uow:
            certification = self._editable(certification_id, "submit")
            transition = self._run_guards(_GuardContext(certification, "submit"))
            certification = replace(
                certification,
                status=CertificationStatus(transition.to_state),
                submitted_at=self._clock.now(),
                submitted_by=actor_id,
            )
            uow.certifications.update(certification, actor_id)
            self._emit(certification, "certification.submitted", {
                "line_count": len(certification.lines),
                "period_amount": certification.period_amount,
            })

        logger.info(
            "certification_submitted",
            extra={
                "certification_id": str(certification_id),
                "number": certification.number,
                "line_count": len(certification.lines),
            },
        )
        return certification

    def approve(self, certification_id: UUID, actor_id: UUID) -> Certification:
        """
        SUBMITTED -> APPROVED: validate baselines, seal, advance counters.

        Raises:
            StaleBaselineError: a baseline moved, or a concurrent approval
                won the compare-and-swap.  Nothing is written.
            ImmutableDocumentError: already APPROVED or VOID.
        """
        with LogContext.bind(certification_id=certification_id, actor_id=actor_id), \
                self._transaction() as uow:
            certification = self.get_certification(certification_id)
            ctx = _GuardContext(certification, "approve")
            transition = self._run_guards(ctx)

            self._advance_baselines(ctx)

            now = self._clock.now()
            certification = replace(
                certification,
                status=CertificationStatus(transition.to_state),
                total_amount=certification.period_amount,
                issued_date=now.date(),
                issued_by=actor_id,
                approved_by=actor_id,
                approved_at=now,
                integrity_seal=self._compute_seal(certification),
            )
            uow.certifications.update(certification, actor_id)
            self._emit(certification, "certification.approved", {
                "total_amount": certification.total_amount,
                "integrity_seal": certification.integrity_seal,
                "line_count": len(certification.lines),
            })

        logger.info(
            "certification_approved",
            extra={
                "certification_id": str(certification_id),
                "number": certification.number,
                "period": str(certification.period),
                "total_amount": certification.total_amount,
                "integrity_seal": certification.integrity_seal,
            },
        )
        return certification

    def reject(self, certification_id: UUID, comment: str, actor_id: UUID) -> Certification:
        with LogContext.bind(certification_id=certification_id, actor_id=actor_id), \
                self._transaction() as uow:
            certification = self.get_certification(certification_id)
            transition = self._run_guards(_GuardContext(certification, "reject", comment=comment))
            certification = replace(
                certification,
                status=CertificationStatus(transition.to_state),
                rejection_comment=comment.strip(),
                rejected_at=self._clock.now(),
                rejected_by=actor_id,
            )
            uow.certifications.update(certification, actor_id)
            self._emit(certification, "certification.rejected", {
                "comment": certification.rejection_comment,
            })

        logger.info(
            "certification_rejected",
            extra={"certification_id": str(certification_id), "number": certification.number},
        )
        return certification

    def void(self, certification_id: UUID, actor_id: UUID) -> Certification:
        """
        APPROVED -> VOID while the certification is still every line's baseline.

        The seal is kept; the baseline counters advance so that drafts
        computed against this certification become stale.
        """
        with LogContext.bind(certification_id=certification_id, actor_id=actor_id), \
                self._transaction() as uow:
            certification = self.get_certification(certification_id)
            ctx = _GuardContext(certification, "void")
            transition = self._run_guards(ctx)

            self._advance_baselines(ctx)

            certification = replace(
                certification,
                status=CertificationStatus(transition.to_state),
                voided_at=self._clock.now(),
                voided_by=actor_id,
            )
            uow.certifications.update(certification, actor_id)
            self._emit(certification, "certification.voided", {
                "total_amount": certification.total_amount,
                "integrity_seal": certification.integrity_seal,
            })

        logger.info(
            "certification_voided",
            extra={"certification_id": str(certification_id), "number": certification.number},
        )
        return certification

    # =========================================================================
    # Guards
    # =========================================================================

    def _run_guards(self, ctx: _GuardContext) -> Transition:
        certification = ctx.certification
        transition = CERTIFICATION_WORKFLOW.find(ctx.action, certification.status.value)
        if transition is None:
            if certification.is_sealed:
                raise ImmutableDocumentError(
                    str(certification.id),
                    certification.status.value,
                    reason=f"cannot {ctx.action}",
                )
            raise InvalidTransitionError(
                str(certification.id), certification.status.value, ctx.action
            )
        for guard in transition.guards:
            self._guards[guard.name](ctx)
        return transition

    def _guard_editable(self, ctx: _GuardContext) -> None:
        c = ctx.certification
        if not c.is_editable:
            raise ImmutableDocumentError(str(c.id), c.status.value)

    def _guard_has_lines(self, ctx: _GuardContext) -> None:
        if not ctx.certification.lines:
            raise EmptyDocumentError(str(ctx.certification.id))

    def _guard_line_invariants(self, ctx: _GuardContext) -> None:
        c = ctx.certification
        for line in c.lines:
            violations = invariant_violations(
                _figures_of(line),
                line.contractual_qty_snapshot,
                line.unit_price_snapshot,
                max_pct=self._max_pct,
            )
            if violations:
                logger.error(
                    "line_invariant_violated",
                    extra={
                        "certification_id": str(c.id),
                        "wbs_node_id": str(line.wbs_node_id),
                        "violations": violations,
                    },
                )
                raise InvalidTransitionError(
                    str(c.id), c.status.value, ctx.action, guard="line_invariants"
                )

    def _guard_submitted(self, ctx: _GuardContext) -> None:
        c = ctx.certification
        if c.status != CertificationStatus.SUBMITTED:
            raise InvalidTransitionError(str(c.id), c.status.value, ctx.action, guard="submitted")

    def _guard_baselines_current(self, ctx: _GuardContext) -> None:
        c = ctx.certification
        for line in c.lines:
            baseline = self._uow.certifications.get_baseline(c.project_id, line.wbs_node_id)
            ctx.baselines[line.wbs_node_id] = baseline
            drifted = (
                baseline.version != line.baseline_version
                or baseline.progress_pct != line.prev_progress_pct
                or baseline.qty != line.prev_qty
                or baseline.amount != line.prev_amount
            )
            if drifted:
                logger.warning(
                    "stale_baseline_detected",
                    extra={
                        "certification_id": str(c.id),
                        "wbs_node_id": str(line.wbs_node_id),
                        "expected_version": line.baseline_version,
                        "actual_version": baseline.version,
                    },
                )
                raise StaleBaselineError(
                    str(c.id),
                    str(line.wbs_node_id),
                    expected_version=line.baseline_version,
                    actual_version=baseline.version,
                    reason="baseline changed since the line was computed",
                )

    def _guard_period_in_order(self, ctx: _GuardContext) -> None:
        c = ctx.certification
        for baseline in ctx.baselines.values():
            if baseline.period is not None and c.period < baseline.period:
                raise PeriodOrderError(str(c.project_id), str(c.period), str(baseline.period))

    def _guard_not_sealed(self, ctx: _GuardContext) -> None:
        c = ctx.certification
        if c.is_sealed:
            raise ImmutableDocumentError(str(c.id), c.status.value)

    def _guard_comment_present(self, ctx: _GuardContext) -> None:
        c = ctx.certification
        if not ctx.comment or not ctx.comment.strip():
            raise InvalidTransitionError(
                str(c.id), c.status.value, ctx.action, guard="comment_present"
            )

    def _guard_approved(self, ctx: _GuardContext) -> None:
        c = ctx.certification
        if c.status != CertificationStatus.APPROVED:
            raise InvalidTransitionError(str(c.id), c.status.value, ctx.action, guard="approved")

    def _guard_not_superseded(self, ctx: _GuardContext) -> None:
        c = ctx.certification
        for line in c.lines:
            baseline = self._uow.certifications.get_baseline(c.project_id, line.wbs_node_id)
            if baseline.certification_id != c.id:
                raise ImmutableDocumentError(
                    str(c.id),
                    c.status.value,
                    reason=(
                        f"superseded on WBS node {line.wbs_node_id} "
                        f"by certification {baseline.certification_id}"
                    ),
                )
            ctx.baselines[line.wbs_node_id] = baseline

    # =========================================================================
    # Internal
    # =========================================================================

    def _editable(self, certification_id: UUID, what: str) -> Certification:
        certification = self.get_certification(certification_id)
        if not certification.is_editable:
            raise ImmutableDocumentError(
                str(certification_id),
                certification.status.value,
                reason=f"cannot {what} a {certification.status.value} certification",
            )
        return certification

    def _check_period_order(self, project_id: UUID, period: Period) -> None:
        latest = self._uow.certifications.latest_approved_period(project_id)
        if latest is not None and period < latest:
            raise PeriodOrderError(str(project_id), str(period), str(latest))

    def _advance_baselines(self, ctx: _GuardContext) -> None:
        """Compare-and-swap every touched counter, in a stable node order."""
        c = ctx.certification
        for node_id in sorted(ctx.baselines, key=str):
            expected = ctx.baselines[node_id].version
            if not self._uow.certifications.advance_baseline(c.project_id, node_id, expected, c.id):
                actual = self._uow.certifications.get_baseline(c.project_id, node_id).version
                logger.warning(
                    "stale_baseline_detected",
                    extra={
                        "certification_id": str(c.id),
                        "wbs_node_id": str(node_id),
                        "expected_version": expected,
                        "actual_version": actual,
                        "reason": "compare_and_swap_lost",
                    },
                )
                raise StaleBaselineError(
                    str(c.id),
                    str(node_id),
                    expected_version=expected,
                    actual_version=actual,
                    reason="a concurrent transaction advanced the baseline",
                )

    def _compute_seal(self, certification: Certification) -> str:
        return seal(certification.identity(), certification.lines, algorithm=self._seal_algorithm)

    def _emit(self, certification: Certification, event_type: str, extra: dict[str, Any]) -> None:
        payload = {
            "certification_id": certification.id,
            "number": certification.number,
            "period": str(certification.period),
            "status": certification.status.value,
            **extra,
        }
        self._uow.outbox.add(
            OutboxEvent(
                id=uuid4(),
                event_type=event_type,
                entity_type="certification",
                entity_id=certification.id,
                project_id=certification.project_id,
                payload=json.loads(canonicalize_json(payload)),
                created_at=self._clock.now(),
            )
        )
