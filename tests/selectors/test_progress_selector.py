"""
Tests for ProgressSelector.

Verifies:
- Budget-vs-certified rows pair planned totals with approved amounts only
- Rows are ordered by WBS code
- Project totals and line history
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from cost_engines.variance import VarianceStatus
from cost_kernel.domain.dtos import CertificationStatus
from cost_kernel.exceptions import BudgetVersionNotFoundError
from cost_kernel.selectors.progress_selector import ProgressSelector
from tests.conftest import build_priced_project


@pytest.fixture
def selector(uow) -> ProgressSelector:
    return ProgressSelector(uow)


@pytest.fixture
def two_task_project(uow, deterministic_clock, test_actor_id):
    """Task 1.1.1: 100 x 10 (1000); task 1.1.2: 40 x 25 + 10% (1100)."""
    return build_priced_project(
        uow, deterministic_clock, test_actor_id,
        tasks=(
            (Decimal("100"), Decimal("10"), Decimal("0")),
            (Decimal("40"), Decimal("25"), Decimal("10")),
        ),
    )


class TestBudgetVsCertified:
    def test_nothing_certified(self, selector, two_task_project):
        rows = selector.budget_vs_certified(two_task_project.project_id, two_task_project.version_id)

        assert [r.wbs_code for r in rows] == ["1.1.1", "1.1.2"]
        assert [r.planned for r in rows] == [Decimal("1000"), Decimal("1100")]
        assert all(r.actual == Decimal("0") for r in rows)
        assert all(r.result.status == VarianceStatus.UNDER for r in rows)
        assert rows[0].pending == Decimal("1000")

    def test_approved_progress_counts(self, selector, two_task_project, certify):
        first, second = two_task_project.task_ids
        certify(two_task_project, "2024-01", {first: Decimal("100"), second: Decimal("50")})

        rows = selector.budget_vs_certified(two_task_project.project_id, two_task_project.version_id)

        assert rows[0].certified_pct == Decimal("100")
        assert rows[0].actual == Decimal("1000")
        assert rows[0].result.status == VarianceStatus.ON_TRACK
        assert rows[1].certified_qty == Decimal("20")
        assert rows[1].actual == Decimal("550")
        assert rows[1].pending == Decimal("550")

    def test_drafts_are_ignored(self, selector, two_task_project, certify):
        certify(
            two_task_project, "2024-01", {two_task_project.task_id: Decimal("40")}, approve=False
        )

        rows = selector.budget_vs_certified(two_task_project.project_id, two_task_project.version_id)

        assert rows[0].actual == Decimal("0")

    def test_totals(self, selector, two_task_project, certify):
        first, second = two_task_project.task_ids
        certify(two_task_project, "2024-01", {first: Decimal("100"), second: Decimal("100")})

        result = selector.totals(
            selector.budget_vs_certified(two_task_project.project_id, two_task_project.version_id)
        )

        assert result.planned == Decimal("2100")
        assert result.actual == Decimal("2100")
        assert result.variance == Decimal("0")
        assert result.status == VarianceStatus.ON_TRACK

    def test_threshold_is_configurable(self, uow, two_task_project, certify):
        certify(two_task_project, "2024-01", {two_task_project.task_id: Decimal("95")})
        strict = ProgressSelector(uow, variance_threshold_pct=Decimal("1"))

        rows = strict.budget_vs_certified(two_task_project.project_id, two_task_project.version_id)

        assert rows[0].result.status == VarianceStatus.UNDER
        assert rows[0].result.variance_pct == Decimal("-5")

    def test_version_of_other_project(self, selector, two_task_project):
        with pytest.raises(BudgetVersionNotFoundError):
            selector.budget_vs_certified(uuid4(), two_task_project.version_id)


class TestLineHistory:
    def test_history_in_period_order(
        self, selector, certification_service, priced_project, certify, approver_id
    ):
        task = priced_project.task_id
        first = certify(priced_project, "2024-01", {task: Decimal("30")})
        second = certify(priced_project, "2024-02", {task: Decimal("20")})
        certification_service.void(second.id, approver_id)

        history = selector.line_history(priced_project.project_id, task)

        assert [e.certification_id for e in history] == [first.id, second.id]
        assert [e.status for e in history] == [
            CertificationStatus.APPROVED,
            CertificationStatus.VOID,
        ]
        assert history[1].total_progress_pct == Decimal("50")
        assert history[1].period_amount == Decimal("200")

    def test_untouched_node(self, selector, priced_project):
        assert selector.line_history(priced_project.project_id, priced_project.activity_id) == []
