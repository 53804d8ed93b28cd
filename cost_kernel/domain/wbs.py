"""
WBS -- work-breakdown-structure hierarchy rules.

Responsibility:
    Code generation and type hierarchy validation for WBS nodes.  Every
    function here is pure; node lifecycle (create, move, deactivate) lives
    in ``cost_kernel.services.wbs_service`` and calls into this module.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Strict three-level tree: PHASE > ACTIVITY > TASK.
    - Root nodes are PHASE.
    - Code depth (number of dot segments) equals type depth.

Failure modes:
    - InvalidHierarchyError from ``validate_node`` for a disallowed child
      type, a non-PHASE root, depth over MAX_DEPTH, or a code whose depth
      does not match the node type.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

from cost_kernel.exceptions import InvalidHierarchyError

MAX_DEPTH = 3


class WbsType(str, Enum):
    """WBS node level."""

    PHASE = "PHASE"
    ACTIVITY = "ACTIVITY"
    TASK = "TASK"


_ALLOWED_CHILDREN: dict[WbsType, frozenset[WbsType]] = {
    WbsType.PHASE: frozenset({WbsType.ACTIVITY}),
    WbsType.ACTIVITY: frozenset({WbsType.TASK}),
    WbsType.TASK: frozenset(),
}

_TYPE_DEPTH: dict[WbsType, int] = {
    WbsType.PHASE: 1,
    WbsType.ACTIVITY: 2,
    WbsType.TASK: 3,
}


def generate_code(parent_code: str | None, sequence: int) -> str:
    """Build a dot-path code: ``"3"`` at the root, ``"1.2.3"`` below."""
    if not parent_code:
        return str(sequence)
    return f"{parent_code}.{sequence}"


def allowed_child_types(parent_type: WbsType | str) -> frozenset[WbsType]:
    return _ALLOWED_CHILDREN[WbsType(parent_type)]


def validate_child_type(parent_type: WbsType | str, child_type: WbsType | str) -> bool:
    return WbsType(child_type) in allowed_child_types(parent_type)


def depth_of_type(node_type: WbsType | str) -> int:
    return _TYPE_DEPTH[WbsType(node_type)]


def depth_of_code(code: str | None) -> int:
    """Number of dot segments; a blank code has depth 0."""
    if not code or not code.strip():
        return 0
    return len(code.split("."))


def next_sibling_sequence(sibling_codes: Iterable[str]) -> int:
    """
    Sequence number for the next child, from the codes of existing siblings.

    The last segment of the last sibling code plus one.  Returns 1 when
    there are no siblings or the last segment is not an integer.
    """
    codes = list(sibling_codes)
    if not codes:
        return 1
    last_segment = codes[-1].rsplit(".", 1)[-1]
    try:
        return int(last_segment) + 1
    except ValueError:
        return 1


def sort_codes(codes: Iterable[str]) -> list[str]:
    """Order codes numerically per segment (``1.10`` after ``1.9``)."""

    def key(code: str) -> tuple:
        return tuple(
            (0, int(seg), "") if seg.isdigit() else (1, 0, seg)
            for seg in code.split(".")
        )

    return sorted(codes, key=key)


def validate_node(
    node_type: WbsType | str,
    code: str,
    parent_type: WbsType | str | None = None,
) -> None:
    """
    Check a node against the hierarchy rules.

    Raises:
        InvalidHierarchyError: on any violation.
    """
    node_type = WbsType(node_type)
    if parent_type is None:
        if node_type != WbsType.PHASE:
            raise InvalidHierarchyError(
                "root nodes must be PHASE",
                node_type=node_type.value,
                wbs_code=code,
            )
    else:
        parent_type = WbsType(parent_type)
        if not validate_child_type(parent_type, node_type):
            raise InvalidHierarchyError(
                f"{parent_type.value} cannot contain {node_type.value}",
                node_type=node_type.value,
                parent_type=parent_type.value,
                wbs_code=code,
            )

    code_depth = depth_of_code(code)
    if code_depth > MAX_DEPTH:
        raise InvalidHierarchyError(
            f"code depth {code_depth} exceeds maximum depth {MAX_DEPTH}",
            node_type=node_type.value,
            parent_type=parent_type.value if parent_type else None,
            wbs_code=code,
        )
    if code_depth != depth_of_type(node_type):
        raise InvalidHierarchyError(
            f"code depth {code_depth} does not match {node_type.value} "
            f"depth {depth_of_type(node_type)}",
            node_type=node_type.value,
            parent_type=parent_type.value if parent_type else None,
            wbs_code=code,
        )
