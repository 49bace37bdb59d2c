# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Graph Editor

Structural mutations of a workflow graph. Every operation computes the full
set of changes before touching the store, so a rejected edit leaves the
graph exactly as it was.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .models import PAYLOAD_MODELS, Branch, NodeKind, WorkflowNode
from .definition import WorkflowDefinition, generate_node_id
from .exceptions import (
    CannotDeleteTrigger,
    ConditionHasBranches,
    InvalidBranch,
    InvalidNodeKind,
    InvalidPayload,
)


BranchLike = Optional[Union[Branch, str, bool]]


def _as_branch(node: WorkflowNode, branch: BranchLike) -> Optional[Branch]:
    """Normalise a branch argument and check it applies to the node's kind"""
    if branch is None or branch == "":
        resolved = None
    elif isinstance(branch, Branch):
        resolved = branch
    elif isinstance(branch, bool):
        resolved = Branch.TRUE if branch else Branch.FALSE
    else:
        try:
            resolved = Branch(str(branch).lower())
        except ValueError:
            raise InvalidBranch(node.id, node.kind.value, branch)

    if resolved not in node.branches():
        raise InvalidBranch(node.id, node.kind.value, branch)
    return resolved


class GraphEditor:
    """Edits one in-memory WorkflowDefinition; persistence is the caller's job."""

    def __init__(self, definition: WorkflowDefinition):
        self.definition = definition

    @property
    def store(self):
        return self.definition.nodes

    def insert_after(self, parent_id: str, branch: BranchLike, kind: Union[NodeKind, str]) -> str:
        """
        Splice a default-payload node of `kind` into the parent's branch edge.

        The parent's previous target becomes the new node's successor
        (`next`, or `true_next` when the new node is a condition).

        Returns the new node's id.
        """
        parent = self.store.get(parent_id)
        slot = _as_branch(parent, branch)

        try:
            kind = NodeKind(kind)
        except ValueError:
            raise InvalidNodeKind(str(kind))
        if kind == NodeKind.TRIGGER:
            raise InvalidNodeKind(kind.value)

        old_target = parent.target(slot)
        edge = {"true_next": old_target} if kind == NodeKind.CONDITION else {"next": old_target}
        new_node = WorkflowNode(
            id=generate_node_id(),
            kind=kind,
            payload=PAYLOAD_MODELS[kind](),
            **edge
        )
        updated_parent = parent.with_target(slot, new_node.id)

        self.store.put(new_node)
        self.store.put(updated_parent)
        return new_node.id

    def delete(self, node_id: str, keep_branch: BranchLike = None) -> None:
        """
        Remove a node, splicing its parent edge to the node's successor.

        A condition with children needs `keep_branch`: that branch is spliced
        into the parent and the other branch's subtree is removed with it.
        """
        node = self.store.get(node_id)
        if node.kind == NodeKind.TRIGGER:
            raise CannotDeleteTrigger(node_id)

        discarded: List[str] = []
        if node.is_condition:
            has_children = node.true_next is not None or node.false_next is not None
            if not has_children:
                successor = None
            elif keep_branch is None:
                raise ConditionHasBranches(node_id)
            else:
                kept = _as_branch(node, keep_branch)
                dropped = Branch.FALSE if kept == Branch.TRUE else Branch.TRUE
                successor = node.target(kept)
                discarded = self._subtree(node.target(dropped))
        else:
            if keep_branch is not None:
                raise InvalidBranch(node_id, node.kind.value, keep_branch)
            successor = node.next

        ref = self.store.parent_of(node_id)

        # Rewire before removal so nothing ever dangles
        if ref is not None:
            parent = self.store.get(ref.parent_id)
            self.store.put(parent.with_target(ref.branch, successor))
        self.store.remove(node_id)
        for dropped_id in discarded:
            self.store.remove(dropped_id)

    def update_payload(self, node_id: str, partial: Dict[str, Any]) -> WorkflowNode:
        """Merge payload fields; the node's edges are untouched"""
        node = self.store.get(node_id)
        model = PAYLOAD_MODELS[node.kind]

        aliases = {f.alias: name for name, f in model.model_fields.items() if f.alias}
        changes = {aliases.get(key, key): value for key, value in (partial or {}).items()}
        unknown = set(changes) - set(model.model_fields)
        if unknown:
            raise InvalidPayload(node_id, f"unknown fields {sorted(unknown)}")

        merged = {**node.payload.model_dump(), **changes}
        try:
            payload = model.model_validate(merged)
        except PydanticValidationError as e:
            raise InvalidPayload(node_id, str(e))

        updated = node.model_copy(update={"payload": payload})
        self.store.put(updated)
        return updated

    def _subtree(self, root_id: Optional[str]) -> List[str]:
        """Ids of root_id and everything below it"""
        ids: List[str] = []
        seen = set()
        stack = [root_id] if root_id is not None else []
        while stack:
            current = stack.pop()
            if current in seen or not self.store.contains(current):
                continue
            seen.add(current)
            ids.append(current)
            for _, target in self.store.get(current).successors():
                if target is not None:
                    stack.append(target)
        return ids
