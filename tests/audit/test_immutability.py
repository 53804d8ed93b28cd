"""
ORM immutability tests.

Verifies that the flush-time listeners block direct Session writes that
bypass the services:
- Sealed certifications and their lines cannot be changed or deleted
- The integrity seal cannot be overwritten
- APPROVED -> VOID stamping is still allowed
- Lines of APPROVED budget versions are frozen
- WBS nodes referenced by budget or certification lines cannot be deleted
"""

from decimal import Decimal

import pytest

from cost_kernel.exceptions import ImmutabilityViolationError
from cost_kernel.models.budget import BudgetLineModel, BudgetVersionModel
from cost_kernel.models.certification import CertificationLineModel, CertificationModel
from cost_kernel.models.wbs import WbsNodeModel
from cost_kernel.services.budget_service import BudgetService
from cost_kernel.services.certification_service import CertificationService
from tests.conftest import build_priced_project


@pytest.fixture
def sql_project(sql_uow, deterministic_clock, test_actor_id):
    return build_priced_project(sql_uow, deterministic_clock, test_actor_id)


@pytest.fixture
def sql_certifications(sql_uow, deterministic_clock) -> CertificationService:
    return CertificationService(sql_uow, deterministic_clock)


@pytest.fixture
def approved(sql_certifications, sql_project, test_actor_id, approver_id):
    cert = sql_certifications.create_certification(
        sql_project.project_id, sql_project.version_id, "2024-01", test_actor_id
    )
    sql_certifications.add_or_update_line(
        cert.id, sql_project.task_id, Decimal("30"), test_actor_id
    )
    sql_certifications.submit(cert.id, test_actor_id)
    return sql_certifications.approve(cert.id, approver_id)


class TestSealedCertification:
    def test_header_update_blocked(self, session, approved):
        model = session.get(CertificationModel, approved.id)
        model.notes = "edited after approval"

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "Certification"

    def test_seal_overwrite_blocked(self, session, approved):
        model = session.get(CertificationModel, approved.id)
        model.integrity_seal = "0" * 64

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, session, approved):
        session.delete(session.get(CertificationModel, approved.id))

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_line_update_blocked(self, session, approved):
        line = session.get(CertificationLineModel, approved.lines[0].id)
        line.total_amount = Decimal("3000")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "CertificationLine"

    def test_void_allowed(self, sql_certifications, approved, approver_id, session):
        voided = sql_certifications.void(approved.id, approver_id)

        assert voided.status.value == "VOID"
        assert session.get(CertificationModel, approved.id).integrity_seal == approved.integrity_seal
        assert sql_certifications.verify_seal(approved.id)

    def test_voided_is_frozen(self, sql_certifications, approved, approver_id, session):
        sql_certifications.void(approved.id, approver_id)
        model = session.get(CertificationModel, approved.id)
        model.status = "APPROVED"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_draft_is_mutable(self, session, sql_certifications, sql_project, test_actor_id):
        cert = sql_certifications.create_certification(
            sql_project.project_id, sql_project.version_id, "2024-01", test_actor_id
        )
        model = session.get(CertificationModel, cert.id)
        model.notes = "fine"
        session.flush()

        assert sql_certifications.get_certification(cert.id).notes == "fine"


class TestApprovedBudget:
    def test_line_update_blocked(
        self, session, sql_uow, sql_project, deterministic_clock, test_actor_id
    ):
        BudgetService(sql_uow, deterministic_clock).approve_version(
            sql_project.version_id, actor_id=test_actor_id
        )
        line = session.get(BudgetLineModel, sql_project.budget_line_ids[0])
        line.unit_price = Decimal("99")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "BudgetLine"

    def test_version_update_blocked(
        self, session, sql_uow, sql_project, deterministic_clock, test_actor_id
    ):
        BudgetService(sql_uow, deterministic_clock).approve_version(
            sql_project.version_id, actor_id=test_actor_id
        )
        version = session.get(BudgetVersionModel, sql_project.version_id)
        version.notes = "rewritten"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestWbsNodeDelete:
    def test_referenced_node_cannot_be_deleted(self, session, sql_project):
        session.delete(session.get(WbsNodeModel, sql_project.task_id))

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert "deactivate" in exc_info.value.reason
