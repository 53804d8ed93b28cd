"""
Typed Exception Hierarchy for the Cost Control Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Certification and budget figures end up in audited billing documents.  Callers
must react to failures by TYPE, never by parsing messages:

    try:
        service.approve(cert_id, actor_id=actor)
    except StaleBaselineError as e:      # retryable: re-fetch, recompute, re-submit
        schedule_resubmit(e.certification_id)
    except ImmutableDocumentError as e:  # client bug: surface verbatim
        api_response(code=e.code, status=e.status)

Every exception:
  1. Has a typed class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (survives logging/serialization)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CostKernelError (base)
    |
    +-- WbsError
    |   +-- InvalidHierarchyError
    |   +-- WbsNodeNotFoundError
    |
    +-- BudgetError
    |   +-- BudgetVersionNotFoundError
    |   +-- BudgetLineNotFoundError
    |   +-- BudgetVersionLockedError
    |   +-- DuplicateBudgetLineError
    |
    +-- CertificationError
    |   +-- CertificationNotFoundError
    |   +-- ProgressOverrunError
    |   +-- ImmutableDocumentError
    |   +-- InvalidTransitionError
    |   +-- EmptyDocumentError
    |   +-- PeriodOrderError
    |
    +-- ConcurrencyError
    |   +-- StaleBaselineError          (retryable)
    |
    +-- AuditError
    |   +-- SealMismatchError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- PersistenceError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
WBS             | INVALID_HIERARCHY           | Disallowed child type, bad code depth, cycle
                | WBS_NODE_NOT_FOUND          | Node id unknown, inactive or other project
----------------|-----------------------------|-----------------------------------------
Budget          | BUDGET_VERSION_NOT_FOUND    | Version id unknown
                | BUDGET_LINE_NOT_FOUND       | No line for (version, WBS node)
                | BUDGET_VERSION_LOCKED       | Editing a BASELINE/APPROVED version
                | DUPLICATE_BUDGET_LINE       | Second line for the same WBS node in a version
----------------|-----------------------------|-----------------------------------------
Certification   | CERTIFICATION_NOT_FOUND     | Certification id unknown
                | PROGRESS_OVERRUN            | total > 100% or period < 0%
                | IMMUTABLE_DOCUMENT          | Mutating a non-editable certification
                | INVALID_TRANSITION          | State machine has no such transition
                | EMPTY_DOCUMENT              | Submitting a certification with no lines
                | PERIOD_ORDER                | Period earlier than latest approved period
----------------|-----------------------------|-----------------------------------------
Concurrency     | STALE_BASELINE              | Baseline moved since the line was computed
----------------|-----------------------------|-----------------------------------------
Audit           | SEAL_MISMATCH               | Recomputed seal differs from stored seal
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | ORM write to a sealed/locked record
----------------|-----------------------------|-----------------------------------------
Persistence     | PERSISTENCE_ERROR           | Store connectivity / transaction abort

===============================================================================
HANDLING PATTERNS
===============================================================================

1. STALE BASELINE IS THE ONLY EXPECTED RACE:

    except StaleBaselineError as e:
        assert e.retryable
        # re-fetch the certification, re-save its lines, submit again

2. SEAL MISMATCH IS NEVER AUTO-CORRECTED:

    except SealMismatchError as e:
        alert_audit_team(e.certification_id, e.stored_seal, e.computed_seal)

3. PERSISTENCE FAILURES ARE NOT INVARIANT VIOLATIONS:

    except PersistenceError:
        retry_later()     # distinct from CertificationError

===============================================================================
"""

from decimal import Decimal


class CostKernelError(Exception):
    """
    Base exception for all cost kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "COST_KERNEL_ERROR"
    retryable: bool = False


# WBS exceptions


class WbsError(CostKernelError):
    """Base exception for work-breakdown-structure errors."""

    code: str = "WBS_ERROR"


class InvalidHierarchyError(WbsError):
    """A WBS node violates the PHASE -> ACTIVITY -> TASK structure."""

    code: str = "INVALID_HIERARCHY"

    def __init__(
        self,
        reason: str,
        node_type: str | None = None,
        parent_type: str | None = None,
        wbs_code: str | None = None,
    ):
        self.reason = reason
        self.node_type = node_type
        self.parent_type = parent_type
        self.wbs_code = wbs_code
        super().__init__(f"Invalid WBS hierarchy: {reason}")


class WbsNodeNotFoundError(WbsError):
    """WBS node with given ID was not found (or is inactive)."""

    code: str = "WBS_NODE_NOT_FOUND"

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"WBS node not found: {node_id}")


# Budget exceptions


class BudgetError(CostKernelError):
    """Base exception for budget errors."""

    code: str = "BUDGET_ERROR"


class BudgetVersionNotFoundError(BudgetError):
    """Budget version with given ID was not found."""

    code: str = "BUDGET_VERSION_NOT_FOUND"

    def __init__(self, version_id: str):
        self.version_id = version_id
        super().__init__(f"Budget version not found: {version_id}")


class BudgetLineNotFoundError(BudgetError):
    """No budget line prices the WBS node in the given version."""

    code: str = "BUDGET_LINE_NOT_FOUND"

    def __init__(
        self,
        version_id: str | None = None,
        wbs_node_id: str | None = None,
        line_id: str | None = None,
    ):
        self.version_id = version_id
        self.wbs_node_id = wbs_node_id
        self.line_id = line_id
        if line_id is not None:
            message = f"Budget line not found: {line_id}"
        else:
            message = (
                f"Budget line not found in version {version_id} "
                f"for WBS node {wbs_node_id}"
            )
        super().__init__(message)


class BudgetVersionLockedError(BudgetError):
    """
    Budget version is BASELINE or APPROVED and can no longer be edited.

    Approved versions are immutable snapshots; edits go to a copy.
    """

    code: str = "BUDGET_VERSION_LOCKED"

    def __init__(self, version_id: str, version_type: str):
        self.version_id = version_id
        self.version_type = version_type
        super().__init__(
            f"Budget version {version_id} is {version_type} and cannot be modified"
        )


class DuplicateBudgetLineError(BudgetError):
    """The version already prices this WBS node (one line per node)."""

    code: str = "DUPLICATE_BUDGET_LINE"

    def __init__(self, version_id: str, wbs_node_id: str):
        self.version_id = version_id
        self.wbs_node_id = wbs_node_id
        super().__init__(
            f"Budget version {version_id} already has a line for WBS node {wbs_node_id}"
        )


# Certification exceptions


class CertificationError(CostKernelError):
    """Base exception for certification errors."""

    code: str = "CERTIFICATION_ERROR"


class CertificationNotFoundError(CertificationError):
    """Certification with given ID was not found."""

    code: str = "CERTIFICATION_NOT_FOUND"

    def __init__(self, certification_id: str):
        self.certification_id = certification_id
        super().__init__(f"Certification not found: {certification_id}")


class ProgressOverrunError(CertificationError):
    """
    Progress percentage invariant violated.

    Raised when cumulative progress would exceed 100% or when the period
    progress is negative.  Progress never regresses inside a submission.
    """

    code: str = "PROGRESS_OVERRUN"

    def __init__(
        self,
        wbs_node_id: str,
        prev_progress_pct: Decimal,
        period_progress_pct: Decimal,
        total_progress_pct: Decimal,
    ):
        self.wbs_node_id = wbs_node_id
        self.prev_progress_pct = prev_progress_pct
        self.period_progress_pct = period_progress_pct
        self.total_progress_pct = total_progress_pct
        super().__init__(
            f"Progress overrun on WBS node {wbs_node_id}: "
            f"prev {prev_progress_pct}% + period {period_progress_pct}% "
            f"= {total_progress_pct}%"
        )


class ImmutableDocumentError(CertificationError):
    """Mutation attempted on a certification that is not editable."""

    code: str = "IMMUTABLE_DOCUMENT"

    def __init__(self, certification_id: str, status: str, reason: str | None = None):
        self.certification_id = certification_id
        self.status = status
        self.reason = reason
        message = f"Certification {certification_id} is {status} and cannot be modified"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InvalidTransitionError(CertificationError):
    """The certification state machine has no such transition from this status."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, certification_id: str, status: str, action: str, guard: str | None = None):
        self.certification_id = certification_id
        self.status = status
        self.action = action
        self.guard = guard
        super().__init__(
            f"Cannot {action} certification {certification_id} in status {status}"
            + (f" (guard failed: {guard})" if guard else "")
        )


class EmptyDocumentError(CertificationError):
    """Submit attempted on a certification with zero lines."""

    code: str = "EMPTY_DOCUMENT"

    def __init__(self, certification_id: str):
        self.certification_id = certification_id
        super().__init__(f"Certification {certification_id} has no lines")


class PeriodOrderError(CertificationError):
    """
    Certification period precedes the latest approved period.

    Cumulative progress is reconciled in period order; certifying an earlier
    period after a later one has been approved would fork the history.
    """

    code: str = "PERIOD_ORDER"

    def __init__(self, project_id: str, period: str, latest_approved_period: str):
        self.project_id = project_id
        self.period = period
        self.latest_approved_period = latest_approved_period
        super().__init__(
            f"Period {period} precedes latest approved period "
            f"{latest_approved_period} for project {project_id}"
        )


# Concurrency exceptions


class ConcurrencyError(CostKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class StaleBaselineError(ConcurrencyError):
    """
    The approved baseline a line was computed against is no longer current.

    Expected under normal concurrent use: the caller re-fetches, recomputes
    and re-submits.
    """

    code: str = "STALE_BASELINE"
    retryable: bool = True

    def __init__(
        self,
        certification_id: str,
        wbs_node_id: str,
        expected_version: int,
        actual_version: int,
        reason: str | None = None,
    ):
        self.certification_id = certification_id
        self.wbs_node_id = wbs_node_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        self.reason = reason
        super().__init__(
            f"Stale baseline for certification {certification_id} on WBS node "
            f"{wbs_node_id}: computed against version {expected_version}, "
            f"current is {actual_version}"
            + (f" ({reason})" if reason else "")
        )


# Audit exceptions


class AuditError(CostKernelError):
    """Base exception for audit errors."""

    code: str = "AUDIT_ERROR"


class SealMismatchError(AuditError):
    """
    Recomputed integrity seal differs from the seal stored at issuance.

    Indicates post-issuance tampering or corruption.  Never auto-corrected.
    """

    code: str = "SEAL_MISMATCH"

    def __init__(self, certification_id: str, stored_seal: str | None, computed_seal: str):
        self.certification_id = certification_id
        self.stored_seal = stored_seal
        self.computed_seal = computed_seal
        super().__init__(
            f"Integrity seal mismatch for certification {certification_id}: "
            f"stored {stored_seal}, computed {computed_seal}"
        )


# Immutability exceptions


class ImmutabilityError(CostKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify an immutable record at the ORM layer.

    Sealed certifications, their lines, lines of locked budget versions and
    referenced WBS nodes are protected.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify immutable {entity_type} {entity_id}: {reason}"
        )


# Persistence exceptions


class PersistenceError(CostKernelError):
    """
    The persistence collaborator failed (connectivity, transaction abort).

    Kept distinct from invariant violations so callers never conflate them.
    """

    code: str = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Persistence failure during {operation}: {detail}")
