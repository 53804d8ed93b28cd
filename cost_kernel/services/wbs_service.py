"""
WbsService -- lifecycle of work-breakdown-structure nodes.

Responsibility:
    Create, move, reorder and deactivate WBS nodes and render the active
    tree of a project.  Code generation and hierarchy rules come from
    ``cost_kernel.domain.wbs``; this service adds the I/O around them.

Architecture position:
    Kernel > Services -- imperative shell over ``UnitOfWork``.

Invariants enforced:
    - Every created or moved node passes ``validate_node`` (type rules,
      PHASE roots, depth, code depth == type depth).
    - Codes are unique per project; a generated code uses the next
      sibling sequence (inactive siblings included, so codes are never
      reused).
    - Moves refuse self-parenting and cycles and regenerate the codes of
      the whole moved subtree.
    - Nodes are soft-deactivated only, and never while they have active
      children.

Failure modes:
    - WbsNodeNotFoundError: unknown node, or a parent from another project.
    - InvalidHierarchyError: any structural violation.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from uuid import UUID, uuid4

from cost_kernel.domain.dtos import WbsNode, WbsTreeNode
from cost_kernel.domain.values import to_decimal
from cost_kernel.domain.wbs import (
    WbsType,
    generate_code,
    next_sibling_sequence,
    sort_codes,
    validate_node,
)
from cost_kernel.exceptions import InvalidHierarchyError, WbsNodeNotFoundError
from cost_kernel.logging_config import LogContext, get_logger
from cost_kernel.services.base import BaseService

logger = get_logger("services.wbs")


class WbsService(BaseService):
    """
    WBS node lifecycle.

    Usage:
        service = WbsService(uow)
        phase = service.create_node(project_id, WbsType.PHASE, "Structure", actor_id=actor)
        task = ...
        tree = service.list_tree(project_id)
    """

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_node(self, node_id: UUID) -> WbsNode:
        node = self._uow.wbs.get(node_id)
        if node is None:
            raise WbsNodeNotFoundError(str(node_id))
        return node

    def list_tree(self, project_id: UUID) -> list[WbsTreeNode]:
        """Active nodes nested by parent, siblings ordered by sort order then code."""
        nodes = self._uow.wbs.list_for_project(project_id)
        children: dict[UUID | None, list[WbsNode]] = {}
        for node in nodes:
            children.setdefault(node.parent_id, []).append(node)

        code_rank = {code: i for i, code in enumerate(sort_codes(n.code for n in nodes))}

        def build(parent_id: UUID | None) -> tuple[WbsTreeNode, ...]:
            siblings = sorted(
                children.get(parent_id, []),
                key=lambda n: (n.sort_order, code_rank[n.code]),
            )
            return tuple(WbsTreeNode(node=n, children=build(n.id)) for n in siblings)

        return list(build(None))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_node(
        self,
        project_id: UUID,
        node_type: WbsType | str,
        name: str,
        parent_id: UUID | None = None,
        unit: str | None = None,
        quantity: Decimal | int | str | None = None,
        code: str | None = None,
        *,
        actor_id: UUID,
    ) -> WbsNode:
        """
        Create a node under ``parent_id`` (or as a root PHASE).

        The code is generated from the next sibling sequence unless
        ``code`` is given, in which case it must extend the parent code
        and be unused in the project.
        """
        node_type = WbsType(node_type)
        if not name or not name.strip():
            raise ValueError("WBS node name is required")
        if quantity is not None:
            quantity = to_decimal(quantity, "quantity")

        with LogContext.bind(project_id=project_id, actor_id=actor_id), self._transaction() as uow:
            parent = self._active_parent(project_id, parent_id)
            siblings = uow.wbs.list_children(project_id, parent_id)

            if code is None:
                sequence = next_sibling_sequence(sort_codes(s.code for s in siblings))
                code = generate_code(parent.code if parent else None, sequence)
            else:
                code = code.strip()
                if parent is not None and not code.startswith(f"{parent.code}."):
                    raise InvalidHierarchyError(
                        f"code {code} does not extend parent code {parent.code}",
                        node_type=node_type.value,
                        parent_type=parent.node_type.value,
                        wbs_code=code,
                    )
                self._ensure_code_free(project_id, code, node_type)

            validate_node(node_type, code, parent.node_type if parent else None)

            node = WbsNode(
                id=uuid4(),
                project_id=project_id,
                code=code,
                name=name.strip(),
                node_type=node_type,
                parent_id=parent_id,
                unit=unit,
                quantity=quantity,
                sort_order=max((s.sort_order for s in siblings), default=0) + 1,
            )
            uow.wbs.add(node, actor_id)

        logger.info(
            "wbs_node_created",
            extra={"node_id": str(node.id), "wbs_code": node.code, "node_type": node_type.value},
        )
        return node

    def deactivate_node(self, node_id: UUID, *, actor_id: UUID) -> WbsNode:
        """Soft-deactivate a node that has no active children."""
        with self._transaction() as uow:
            node = self.get_node(node_id)
            if not node.is_active:
                return node
            active_children = [
                c for c in uow.wbs.list_children(node.project_id, node.id) if c.is_active
            ]
            if active_children:
                raise InvalidHierarchyError(
                    f"node {node.code} has {len(active_children)} active children",
                    node_type=node.node_type.value,
                    wbs_code=node.code,
                )
            node = replace(node, is_active=False)
            uow.wbs.update(node, actor_id)

        logger.info("wbs_node_deactivated", extra={"node_id": str(node_id), "wbs_code": node.code})
        return node

    def move_node(self, node_id: UUID, new_parent_id: UUID | None, *, actor_id: UUID) -> WbsNode:
        """
        Re-parent a node and regenerate the codes of its subtree.

        Raises:
            InvalidHierarchyError: self-parenting, cycle or type violation.
        """
        with self._transaction() as uow:
            node = self.get_node(node_id)
            if new_parent_id == node.id:
                raise InvalidHierarchyError(
                    "a node cannot be its own parent",
                    node_type=node.node_type.value,
                    wbs_code=node.code,
                )
            if new_parent_id == node.parent_id:
                return node

            new_parent = self._active_parent(node.project_id, new_parent_id)
            self._ensure_not_descendant(node, new_parent)

            siblings = [
                s for s in uow.wbs.list_children(node.project_id, new_parent_id) if s.id != node.id
            ]
            sequence = next_sibling_sequence(sort_codes(s.code for s in siblings))
            new_code = generate_code(new_parent.code if new_parent else None, sequence)
            validate_node(node.node_type, new_code, new_parent.node_type if new_parent else None)

            old_code = node.code
            moved = replace(
                node,
                parent_id=new_parent_id,
                code=new_code,
                sort_order=max((s.sort_order for s in siblings), default=0) + 1,
            )
            uow.wbs.update(moved, actor_id)

            for descendant in self._descendants(node):
                suffix = descendant.code[len(old_code):]
                uow.wbs.update(replace(descendant, code=f"{new_code}{suffix}"), actor_id)

        logger.info(
            "wbs_node_moved",
            extra={"node_id": str(node_id), "old_code": old_code, "new_code": new_code},
        )
        return moved

    def reorder_node(self, node_id: UUID, sort_order: int, *, actor_id: UUID) -> WbsNode:
        if isinstance(sort_order, bool) or not isinstance(sort_order, int):
            raise TypeError("sort_order must be an int")
        with self._transaction() as uow:
            node = replace(self.get_node(node_id), sort_order=sort_order)
            uow.wbs.update(node, actor_id)
        return node

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _active_parent(self, project_id: UUID, parent_id: UUID | None) -> WbsNode | None:
        if parent_id is None:
            return None
        parent = self._uow.wbs.get(parent_id)
        if parent is None or parent.project_id != project_id or not parent.is_active:
            raise WbsNodeNotFoundError(str(parent_id))
        return parent

    def _ensure_code_free(self, project_id: UUID, code: str, node_type: WbsType) -> None:
        taken = {n.code for n in self._uow.wbs.list_for_project(project_id, include_inactive=True)}
        if code in taken:
            raise InvalidHierarchyError(
                f"code {code} is already used in this project",
                node_type=node_type.value,
                wbs_code=code,
            )

    def _ensure_not_descendant(self, node: WbsNode, new_parent: WbsNode | None) -> None:
        current = new_parent
        while current is not None:
            if current.id == node.id:
                raise InvalidHierarchyError(
                    f"moving {node.code} under {new_parent.code} would create a cycle",
                    node_type=node.node_type.value,
                    parent_type=new_parent.node_type.value,
                    wbs_code=node.code,
                )
            current = self._uow.wbs.get(current.parent_id) if current.parent_id else None

    def _descendants(self, node: WbsNode) -> list[WbsNode]:
        all_nodes = self._uow.wbs.list_for_project(node.project_id, include_inactive=True)
        by_parent: dict[UUID | None, list[WbsNode]] = {}
        for n in all_nodes:
            by_parent.setdefault(n.parent_id, []).append(n)
        found: list[WbsNode] = []
        stack = list(by_parent.get(node.id, []))
        while stack:
            child = stack.pop()
            found.append(child)
            stack.extend(by_parent.get(child.id, []))
        return found
