"""
ORM-level immutability enforcement for sealed and locked records.

===============================================================================
WHY THIS EXISTS
===============================================================================

An approved certification is a billing document: its figures are covered by
an integrity seal and must never change.  Services already refuse such
edits, but any code holding a Session could still mutate a row directly.
These listeners intercept UPDATE/DELETE at flush time, before SQL is sent.

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
    [before_delete] --> _check_*_delete() ---------^

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity               | When immutable                       | Allowed change
---------------------|--------------------------------------|----------------------------
Certification        | status APPROVED or VOID               | APPROVED -> VOID stamping
CertificationLine    | parent certification APPROVED/VOID    | none
BudgetVersion        | version_type APPROVED                 | none
BudgetLine           | parent version APPROVED               | none
WbsNode              | (delete only) referenced by any line  | soft deactivation

updated_at / updated_by_id may always change: they are audit metadata.

The "was sealed" test uses attribute history (the value loaded from the
database), so the approval itself (SUBMITTED -> APPROVED, seal written)
passes, and everything after it is blocked.

===============================================================================
USAGE
===============================================================================

    from cost_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, func, inspect, select
from sqlalchemy.orm.attributes import get_history

from cost_kernel.exceptions import ImmutabilityViolationError
from cost_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})
_SEALED = frozenset({"APPROVED", "VOID"})

# Fields the void transition stamps on an APPROVED certification
_VOID_FIELDS = frozenset({"status", "voided_at", "voided_by"})


def _value(status) -> str | None:
    return getattr(status, "value", status)


def _loaded_value(target, attr: str):
    """The value as loaded from the database, before pending changes."""
    hist = get_history(target, attr)
    if hist.deleted:
        return hist.deleted[0]
    if hist.unchanged:
        return hist.unchanged[0]
    # No history: value was never changed in this session
    return getattr(target, attr)


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.mapper.column_attrs
        if attr.key not in _AUDIT_FIELDS and insp.attrs[attr.key].history.has_changes()
    ]


def _block(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


# ---------------------------------------------------------------------------
# Certification
# ---------------------------------------------------------------------------


def _check_certification_immutability(mapper, connection, target):
    """
    Block changes to sealed certifications.

    Allowed: APPROVED -> VOID with its stamps.  The seal itself may be
    written once (null -> value) and never replaced.
    """
    seal_hist = get_history(target, "integrity_seal")
    if seal_hist.deleted and seal_hist.deleted[0] is not None:
        _block(
            "Certification", target.id, "UPDATE",
            "integrity seal cannot be overwritten", field="integrity_seal",
        )

    old_status = _value(_loaded_value(target, "status"))
    if old_status not in _SEALED:
        return

    changed = _changed_fields(target)
    if not changed:
        return
    if old_status == "APPROVED" and _value(target.status) == "VOID":
        illegal = [f for f in changed if f not in _VOID_FIELDS]
        if not illegal:
            return
        field = illegal[0]
    else:
        field = changed[0]
    _block(
        "Certification", target.id, "UPDATE",
        f"cannot modify field '{field}' on {old_status} certification",
        field=field,
    )


def _check_certification_delete(mapper, connection, target):
    if _value(_loaded_value(target, "status")) in _SEALED:
        _block("Certification", target.id, "DELETE", "sealed certifications cannot be deleted")


def _parent_certification_sealed(connection, target) -> bool:
    from cost_kernel.models.certification import CertificationModel

    status = connection.execute(
        select(CertificationModel.__table__.c.status).where(
            CertificationModel.__table__.c.id == target.certification_id
        )
    ).scalar_one_or_none()
    return status in _SEALED


def _check_certification_line_immutability(mapper, connection, target):
    if _changed_fields(target) and _parent_certification_sealed(connection, target):
        _block(
            "CertificationLine", target.id, "UPDATE",
            "lines of sealed certifications cannot be modified",
        )


def _check_certification_line_delete(mapper, connection, target):
    if _parent_certification_sealed(connection, target):
        _block(
            "CertificationLine", target.id, "DELETE",
            "lines of sealed certifications cannot be deleted",
        )


# ---------------------------------------------------------------------------
# Budget
# ---------------------------------------------------------------------------


def _check_budget_version_immutability(mapper, connection, target):
    if _value(_loaded_value(target, "version_type")) != "APPROVED":
        return
    changed = _changed_fields(target)
    if changed:
        _block(
            "BudgetVersion", target.id, "UPDATE",
            f"cannot modify field '{changed[0]}' on APPROVED budget version",
            field=changed[0],
        )


def _check_budget_version_delete(mapper, connection, target):
    if _value(_loaded_value(target, "version_type")) == "APPROVED":
        _block("BudgetVersion", target.id, "DELETE", "APPROVED budget versions cannot be deleted")


def _budget_version_approved(connection, target) -> bool:
    from cost_kernel.models.budget import BudgetVersionModel

    table = BudgetVersionModel.__table__
    version_type = connection.execute(
        select(table.c.version_type).where(table.c.id == target.budget_version_id)
    ).scalar_one_or_none()
    return version_type == "APPROVED"


def _check_budget_line_immutability(mapper, connection, target):
    if _changed_fields(target) and _budget_version_approved(connection, target):
        _block("BudgetLine", target.id, "UPDATE", "lines of APPROVED budget versions cannot be modified")


def _check_budget_line_delete(mapper, connection, target):
    if _budget_version_approved(connection, target):
        _block("BudgetLine", target.id, "DELETE", "lines of APPROVED budget versions cannot be deleted")


# ---------------------------------------------------------------------------
# WBS
# ---------------------------------------------------------------------------


def _wbs_node_reference_count(connection, node_id) -> int:
    from cost_kernel.models.budget import BudgetLineModel
    from cost_kernel.models.certification import CertificationLineModel

    total = 0
    for table in (BudgetLineModel.__table__, CertificationLineModel.__table__):
        total += connection.execute(
            select(func.count()).select_from(table).where(table.c.wbs_node_id == node_id)
        ).scalar_one()
    return total


def _check_wbs_node_delete(mapper, connection, target):
    if _wbs_node_reference_count(connection, target.id):
        _block(
            "WbsNode", target.id, "DELETE",
            "referenced WBS nodes cannot be deleted; deactivate instead",
        )


def _listeners():
    from cost_kernel.models.budget import BudgetLineModel, BudgetVersionModel
    from cost_kernel.models.certification import CertificationLineModel, CertificationModel
    from cost_kernel.models.wbs import WbsNodeModel

    return (
        (CertificationModel, "before_update", _check_certification_immutability),
        (CertificationModel, "before_delete", _check_certification_delete),
        (CertificationLineModel, "before_update", _check_certification_line_immutability),
        (CertificationLineModel, "before_delete", _check_certification_line_delete),
        (BudgetVersionModel, "before_update", _check_budget_version_immutability),
        (BudgetVersionModel, "before_delete", _check_budget_version_delete),
        (BudgetLineModel, "before_update", _check_budget_line_immutability),
        (BudgetLineModel, "before_delete", _check_budget_line_delete),
        (WbsNodeModel, "before_delete", _check_wbs_node_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call once after the models are importable and before any writes.
    Registering twice is a no-op.
    """
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally violate the rules.
    """
    for target, name, fn in _listeners():
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
