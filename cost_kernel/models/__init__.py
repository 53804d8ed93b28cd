"""ORM models for the cost kernel."""

from cost_kernel.models.budget import BudgetLineModel, BudgetVersionModel
from cost_kernel.models.certification import (
    BaselineCounterModel,
    CertificationLineModel,
    CertificationModel,
)
from cost_kernel.models.outbox import OutboxEventModel
from cost_kernel.models.sequence import SequenceCounter
from cost_kernel.models.wbs import WbsNodeModel

__all__ = [
    "WbsNodeModel",
    "BudgetVersionModel",
    "BudgetLineModel",
    "CertificationModel",
    "CertificationLineModel",
    "BaselineCounterModel",
    "OutboxEventModel",
    "SequenceCounter",
]
