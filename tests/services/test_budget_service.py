"""
Tests for BudgetService.

Verifies:
- Version codes V1, V2, ... per project
- Line pricing and recomputation on update
- Locking of BASELINE and APPROVED versions
- Single baseline per project; copy of versions
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from cost_kernel.domain.dtos import BudgetVersionType
from cost_kernel.domain.wbs import WbsType
from cost_kernel.exceptions import (
    BudgetLineNotFoundError,
    BudgetVersionLockedError,
    BudgetVersionNotFoundError,
    DuplicateBudgetLineError,
    WbsNodeNotFoundError,
)
from cost_kernel.services.budget_service import BudgetService


@pytest.fixture
def task(wbs_service, project_id, test_actor_id):
    phase = wbs_service.create_node(project_id, WbsType.PHASE, "Structure", actor_id=test_actor_id)
    activity = wbs_service.create_node(
        project_id, WbsType.ACTIVITY, "Slabs", parent_id=phase.id, actor_id=test_actor_id
    )
    return wbs_service.create_node(
        project_id, WbsType.TASK, "Slab pour", parent_id=activity.id, unit="m3",
        actor_id=test_actor_id,
    )


@pytest.fixture
def version(budget_service, project_id, test_actor_id):
    return budget_service.create_version(project_id, actor_id=test_actor_id)


class TestVersions:
    def test_codes_increment_per_project(self, budget_service, project_id, test_actor_id):
        v1 = budget_service.create_version(project_id, actor_id=test_actor_id)
        v2 = budget_service.create_version(project_id, actor_id=test_actor_id)
        other = budget_service.create_version(uuid4(), actor_id=test_actor_id)
        assert (v1.version_code, v2.version_code, other.version_code) == ("V1", "V2", "V1")
        assert v1.version_type == BudgetVersionType.WORKING

    def test_unknown_version(self, budget_service):
        with pytest.raises(BudgetVersionNotFoundError):
            budget_service.get_version(uuid4())

    def test_approve_is_terminal(self, budget_service, version, test_actor_id, deterministic_clock):
        approved = budget_service.approve_version(version.id, actor_id=test_actor_id)
        assert approved.version_type == BudgetVersionType.APPROVED
        assert approved.approved_at == deterministic_clock.now()
        assert approved.approved_by == test_actor_id
        with pytest.raises(BudgetVersionLockedError):
            budget_service.approve_version(version.id, actor_id=test_actor_id)
        with pytest.raises(BudgetVersionLockedError):
            budget_service.set_baseline(version.id, actor_id=test_actor_id)

    def test_single_baseline_per_project(self, budget_service, project_id, test_actor_id):
        v1 = budget_service.create_version(project_id, actor_id=test_actor_id)
        v2 = budget_service.create_version(project_id, actor_id=test_actor_id)
        budget_service.set_baseline(v1.id, actor_id=test_actor_id)
        budget_service.set_baseline(v2.id, actor_id=test_actor_id)
        types = {v.id: v.version_type for v in budget_service.list_versions(project_id)}
        assert types == {v1.id: BudgetVersionType.WORKING, v2.id: BudgetVersionType.BASELINE}

    def test_set_baseline_twice_is_noop(self, budget_service, version, test_actor_id):
        budget_service.set_baseline(version.id, actor_id=test_actor_id)
        again = budget_service.set_baseline(version.id, actor_id=test_actor_id)
        assert again.version_type == BudgetVersionType.BASELINE


class TestLines:
    def test_add_line_prices_node(self, budget_service, version, task, test_actor_id):
        line = budget_service.add_line(
            version.id, task.id, Decimal("100"), Decimal("10"), Decimal("15"),
            actor_id=test_actor_id,
        )
        assert line.direct_cost == Decimal("1000")
        assert line.indirect_cost == Decimal("150")
        assert line.total_cost == Decimal("1150")
        assert line.description == "Slab pour"
        assert line.unit == "m3"

    def test_string_inputs_are_exact(self, budget_service, version, task, test_actor_id):
        line = budget_service.add_line(version.id, task.id, "0.1", "0.2", actor_id=test_actor_id)
        assert line.total_cost == Decimal("0.02")

    def test_default_indirect_pct(self, uow, deterministic_clock, version, task, test_actor_id):
        service = BudgetService(uow, deterministic_clock, default_indirect_pct=Decimal("12"))
        line = service.add_line(version.id, task.id, Decimal("10"), Decimal("10"), actor_id=test_actor_id)
        assert line.indirect_pct == Decimal("12")
        assert line.total_cost == Decimal("112")

    def test_update_recomputes(self, budget_service, version, task, test_actor_id):
        line = budget_service.add_line(
            version.id, task.id, Decimal("100"), Decimal("10"), actor_id=test_actor_id
        )
        updated = budget_service.update_line(line.id, quantity=Decimal("40"), actor_id=test_actor_id)
        assert updated.total_cost == Decimal("400")
        assert budget_service.version_total(version.id) == Decimal("400")

    def test_negative_and_float_inputs(self, budget_service, version, task, test_actor_id):
        with pytest.raises(ValueError):
            budget_service.add_line(version.id, task.id, Decimal("-1"), Decimal("10"), actor_id=test_actor_id)
        with pytest.raises(TypeError):
            budget_service.add_line(version.id, task.id, 1.0, Decimal("10"), actor_id=test_actor_id)

    def test_one_line_per_node(self, budget_service, version, task, test_actor_id):
        budget_service.add_line(version.id, task.id, Decimal("1"), Decimal("1"), actor_id=test_actor_id)
        with pytest.raises(DuplicateBudgetLineError) as exc_info:
            budget_service.add_line(version.id, task.id, Decimal("2"), Decimal("2"), actor_id=test_actor_id)
        assert exc_info.value.code == "DUPLICATE_BUDGET_LINE"

    def test_node_from_other_project(self, budget_service, wbs_service, version, test_actor_id):
        foreign = wbs_service.create_node(uuid4(), WbsType.PHASE, "Other", actor_id=test_actor_id)
        with pytest.raises(WbsNodeNotFoundError):
            budget_service.add_line(version.id, foreign.id, Decimal("1"), Decimal("1"), actor_id=test_actor_id)

    def test_delete_line(self, budget_service, version, task, test_actor_id):
        line = budget_service.add_line(version.id, task.id, Decimal("1"), Decimal("1"), actor_id=test_actor_id)
        budget_service.delete_line(line.id, actor_id=test_actor_id)
        assert budget_service.list_lines(version.id) == []
        with pytest.raises(BudgetLineNotFoundError):
            budget_service.update_line(line.id, quantity=Decimal("2"), actor_id=test_actor_id)

    @pytest.mark.parametrize("lock", ["set_baseline", "approve_version"])
    def test_locked_version_refuses_edits(self, budget_service, version, task, test_actor_id, lock):
        line = budget_service.add_line(version.id, task.id, Decimal("1"), Decimal("1"), actor_id=test_actor_id)
        getattr(budget_service, lock)(version.id, actor_id=test_actor_id)
        with pytest.raises(BudgetVersionLockedError):
            budget_service.update_line(line.id, quantity=Decimal("2"), actor_id=test_actor_id)
        with pytest.raises(BudgetVersionLockedError):
            budget_service.delete_line(line.id, actor_id=test_actor_id)


class TestCopyVersion:
    def test_copy_carries_lines(self, budget_service, version, task, project_id, test_actor_id):
        budget_service.add_line(version.id, task.id, Decimal("3"), Decimal("5"), actor_id=test_actor_id)
        budget_service.approve_version(version.id, actor_id=test_actor_id)

        copy = budget_service.copy_version(version.id, actor_id=test_actor_id)
        assert copy.version_code == "V2"
        assert copy.version_type == BudgetVersionType.WORKING
        assert copy.notes == "Copy of V1"
        lines = budget_service.list_lines(copy.id)
        assert len(lines) == 1
        assert lines[0].total_cost == Decimal("15")
        assert budget_service.version_total(copy.id) == budget_service.version_total(version.id)
