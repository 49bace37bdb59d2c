# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Definition

The graph as persisted and exchanged: one trigger node plus the nodes
reachable from it, held in a NodeStore. Converts to and from the flat
persisted shape:

    {name, triggerType, active,
     config: {nodes: [{id, type, data, nextNodeId?, trueBranchId?, falseBranchId?}],
              ...triggerConfig}}
"""

import time
import uuid
from typing import Any, Dict, Iterator, List, Optional

from pydantic import ValidationError as PydanticValidationError

from .models import (
    NodeKind,
    PersistedNode,
    PersistedWorkflow,
    TriggerPayload,
    TriggerType,
    WorkflowNode,
)
from .node_store import NodeStore
from .exceptions import WorkflowValidationError


def generate_node_id() -> str:
    return f"node_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class WorkflowDefinition:
    """
    Workflow graph rooted at a single trigger node.

    Mutated only through GraphEditor; saved as a whole.
    """

    def __init__(
        self,
        name: str,
        trigger_node_id: str,
        nodes: NodeStore,
        active: bool = True,
        workflow_id: Optional[str] = None,
        version: Optional[int] = None,
    ):
        self.name = name
        self.trigger_node_id = trigger_node_id
        self.nodes = nodes
        self.active = active
        self.workflow_id = workflow_id
        self.version = version

    @classmethod
    def new(
        cls,
        name: str = "New Workflow",
        trigger_type: TriggerType = TriggerType.DEAL_STAGE_CHANGED,
        trigger_config: Optional[Dict[str, Any]] = None,
        workflow_id: Optional[str] = None,
        active: bool = True,
    ) -> "WorkflowDefinition":
        """Fresh definition holding only a default trigger node"""
        trigger = WorkflowNode(
            id=generate_node_id(),
            kind=NodeKind.TRIGGER,
            payload=TriggerPayload(trigger_type=trigger_type, config=trigger_config or {}),
        )
        return cls(
            name=name,
            trigger_node_id=trigger.id,
            nodes=NodeStore([trigger]),
            active=active,
            workflow_id=workflow_id,
        )

    @property
    def trigger(self) -> WorkflowNode:
        return self.nodes.get(self.trigger_node_id)

    @property
    def trigger_type(self) -> TriggerType:
        return self.trigger.payload.trigger_type

    @property
    def trigger_config(self) -> Dict[str, Any]:
        return self.trigger.payload.config

    def walk(self) -> Iterator[WorkflowNode]:
        """
        Pre-order traversal from the trigger following edges.

        Each node is yielded at most once, so a malformed graph cannot loop.
        """
        seen = set()
        stack = [self.trigger_node_id]
        while stack:
            node_id = stack.pop()
            if node_id in seen or not self.nodes.contains(node_id):
                continue
            seen.add(node_id)
            node = self.nodes.get(node_id)
            yield node
            # Reverse so the true branch is visited before the false branch
            for _, target in reversed(node.successors()):
                if target is not None:
                    stack.append(target)

    def copy(self) -> "WorkflowDefinition":
        return WorkflowDefinition(
            name=self.name,
            trigger_node_id=self.trigger_node_id,
            nodes=self.nodes.copy(),
            active=self.active,
            workflow_id=self.workflow_id,
            version=self.version,
        )

    # ------------------------------------------------------------------
    # Persisted shape
    # ------------------------------------------------------------------

    def to_persisted(self) -> Dict[str, Any]:
        ordered: List[WorkflowNode] = list(self.walk())
        reached = {node.id for node in ordered}
        ordered.extend(node for node in self.nodes if node.id not in reached)

        persisted_nodes = []
        for node in ordered:
            entry: Dict[str, Any] = {
                "id": node.id,
                "type": node.kind.value,
                "data": node.payload.model_dump(mode="json", by_alias=True),
            }
            if node.is_condition:
                entry["trueBranchId"] = node.true_next
                entry["falseBranchId"] = node.false_next
            else:
                entry["nextNodeId"] = node.next
            persisted_nodes.append(entry)

        data: Dict[str, Any] = {
            "name": self.name,
            "triggerType": self.trigger_type.value,
            "active": self.active,
            "config": {
                "nodes": persisted_nodes,
                **self.trigger_config,
            },
        }
        if self.workflow_id is not None:
            data["id"] = self.workflow_id
        if self.version is not None:
            data["version"] = self.version
        return data

    @classmethod
    def from_persisted(cls, data: Dict[str, Any]) -> "WorkflowDefinition":
        """
        Build a definition from the persisted shape.

        Raises WorkflowValidationError for malformed data, unknown node,
        trigger or action types, or a trigger count other than one.
        """
        try:
            workflow = PersistedWorkflow.model_validate(data)
            raw_nodes = workflow.config.get("nodes") or []
            if not isinstance(raw_nodes, list):
                raise WorkflowValidationError("config.nodes must be a list", field="config.nodes")
            persisted = [PersistedNode.model_validate(raw) for raw in raw_nodes]
            nodes = [
                WorkflowNode(
                    id=p.id,
                    kind=p.type,
                    payload=p.data,
                    next=p.next_node_id if p.type != NodeKind.CONDITION else None,
                    true_next=p.true_branch_id if p.type == NodeKind.CONDITION else None,
                    false_next=p.false_branch_id if p.type == NodeKind.CONDITION else None,
                )
                for p in persisted
            ]
        except PydanticValidationError as e:
            raise WorkflowValidationError(f"Invalid workflow data: {e}", field="config.nodes")

        node_ids = [node.id for node in nodes]
        if len(node_ids) != len(set(node_ids)):
            duplicates = {nid for nid in node_ids if node_ids.count(nid) > 1}
            raise WorkflowValidationError(f"Duplicate node IDs found: {duplicates}", field="config.nodes")

        triggers = [node for node in nodes if node.kind == NodeKind.TRIGGER]
        if len(triggers) != 1:
            raise WorkflowValidationError(
                f"Workflow must have exactly one trigger, found {len(triggers)}",
                field="config.nodes",
            )

        # Top-level triggerType and config keys are the workflow's binding
        trigger = triggers[0]
        top_level_config = {k: v for k, v in workflow.config.items() if k != "nodes"}
        trigger = trigger.model_copy(update={"payload": TriggerPayload(
            trigger_type=workflow.trigger_type,
            config={**top_level_config, **trigger.payload.config},
        )})
        nodes = [trigger if node.id == trigger.id else node for node in nodes]

        return cls(
            name=workflow.name,
            trigger_node_id=trigger.id,
            nodes=NodeStore(nodes),
            active=workflow.active,
            workflow_id=workflow.id,
            version=workflow.version,
        )
