# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Validation

Structural validation by iterative reachability walk from the trigger.
"""

from typing import List

from .models import PAYLOAD_MODELS, NodeKind
from .definition import WorkflowDefinition
from .exceptions import CyclicGraph, WorkflowValidationError


def validate_definition(definition: WorkflowDefinition, require_steps: bool = True) -> List[str]:
    """
    Validate workflow structure.

    Returns node IDs in traversal order, trigger first.

    Checks:
    - exactly one trigger, with no incoming edge
    - every edge references an existing node
    - every non-trigger node has exactly one parent (tree, no shared parents)
    - no cycles and no unreachable nodes
    - every payload matches its node kind
    - at least one step after the trigger (when require_steps)

    Raises WorkflowValidationError (CyclicGraph for cycles).
    """
    store = definition.nodes

    # 1. Trigger
    if not store.contains(definition.trigger_node_id):
        raise WorkflowValidationError("Trigger node is missing", field="nodes")
    triggers = [node.id for node in store if node.kind == NodeKind.TRIGGER]
    if len(triggers) != 1:
        raise WorkflowValidationError(
            f"Workflow must have exactly one trigger, found {len(triggers)}",
            field="nodes"
        )
    if store.parents_of(definition.trigger_node_id):
        raise WorkflowValidationError("Trigger node cannot have incoming edges", field="nodes")

    # 2. Payloads and edge references
    for node in store:
        if not isinstance(node.payload, PAYLOAD_MODELS[node.kind]):
            raise WorkflowValidationError(
                f"Node '{node.id}' has an unrecognized payload for kind '{node.kind.value}'",
                field=f"nodes[{node.id}].data"
            )
        for _, target in node.successors():
            if target is not None and not store.contains(target):
                raise WorkflowValidationError(
                    f"Edge references non-existent node: {node.id} -> {target}",
                    field=f"nodes[{node.id}]"
                )

    # 3. Shared parents
    for node in store:
        parents = store.parents_of(node.id)
        if len(parents) > 1:
            parent_ids = sorted(ref.parent_id for ref in parents)
            raise WorkflowValidationError(
                f"Node '{node.id}' has multiple parents: {parent_ids}",
                field=f"nodes[{node.id}]"
            )

    # 4. Reachability walk - with single parents, any revisit is a cycle
    order: List[str] = []
    visited = set()
    stack = [definition.trigger_node_id]
    while stack:
        node_id = stack.pop()
        if node_id in visited:
            raise CyclicGraph(node_id)
        visited.add(node_id)
        order.append(node_id)
        node = store.get(node_id)
        for _, target in reversed(node.successors()):
            if target is not None:
                stack.append(target)

    # 5. Unreachable nodes: if every one has a parent they close a cycle
    unreachable = store.ids() - visited
    if unreachable:
        if all(store.parents_of(node_id) for node_id in unreachable):
            raise CyclicGraph(sorted(unreachable)[0])
        raise WorkflowValidationError(
            f"Disconnected graph detected - unreachable nodes: {sorted(unreachable)}",
            field="nodes"
        )

    # 6. Something to run
    if require_steps and definition.trigger.next is None:
        raise WorkflowValidationError(
            "Workflow must have at least one step after the trigger",
            field="nodes"
        )

    return order
