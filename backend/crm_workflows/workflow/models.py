# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Models

Pydantic models for the workflow graph, its persisted shape, and the runtime
enrollment state.
"""

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ============================================================================
# Kinds
# ============================================================================

class NodeKind(str, Enum):
    """Step kinds a workflow graph is built from"""
    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"
    DELAY = "delay"


class Branch(str, Enum):
    """Labeled outgoing edges of a condition node"""
    TRUE = "true"
    FALSE = "false"


class TriggerType(str, Enum):
    """CRM events a workflow can be bound to"""
    DEAL_STAGE_CHANGED = "deal_stage_changed"
    PATIENT_CREATED = "patient_created"
    APPOINTMENT_CREATED = "appointment_created"
    APPOINTMENT_COMPLETED = "appointment_completed"
    FORM_SUBMITTED = "form_submitted"
    TASK_COMPLETED = "task_completed"
    MANUAL = "manual"


class ActionType(str, Enum):
    """Side effects an action node can perform"""
    SEND_EMAIL = "send_email"
    SEND_NOTIFICATION = "send_notification"
    CREATE_TASK = "create_task"
    UPDATE_TASK = "update_task"
    CREATE_DEAL = "create_deal"
    UPDATE_DEAL = "update_deal"
    UPDATE_PATIENT = "update_patient"
    WEBHOOK = "webhook"
    DELAY = "delay"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


class DelayUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"

    def to_timedelta(self, amount: int) -> timedelta:
        return timedelta(**{self.value: amount})


# ============================================================================
# Payloads
# ============================================================================

class TriggerPayload(BaseModel):
    """Trigger binding - event type plus trigger-specific filter"""
    model_config = ConfigDict(populate_by_name=True)

    trigger_type: TriggerType = Field(TriggerType.DEAL_STAGE_CHANGED, alias="triggerType")
    config: Dict[str, Any] = Field(default_factory=dict)


class ActionPayload(BaseModel):
    """Action step - config keys vary by action_type"""
    model_config = ConfigDict(populate_by_name=True)

    action_type: ActionType = Field(ActionType.SEND_EMAIL, alias="actionType")
    config: Dict[str, Any] = Field(default_factory=dict)


class ConditionPayload(BaseModel):
    """Predicate over the enrollment's fact snapshot"""
    field: str = "patient.email"
    operator: ConditionOperator = ConditionOperator.IS_NOT_EMPTY
    value: Any = ""


class DelayPayload(BaseModel):
    """Wait before continuing to the next step"""
    model_config = ConfigDict(populate_by_name=True)

    unit: DelayUnit = Field(DelayUnit.HOURS, alias="delayType")
    amount: int = Field(1, alias="delayValue", ge=0)

    def duration(self) -> timedelta:
        return self.unit.to_timedelta(self.amount)


Payload = Union[TriggerPayload, ActionPayload, ConditionPayload, DelayPayload]

PAYLOAD_MODELS = {
    NodeKind.TRIGGER: TriggerPayload,
    NodeKind.ACTION: ActionPayload,
    NodeKind.CONDITION: ConditionPayload,
    NodeKind.DELAY: DelayPayload,
}


# ============================================================================
# Graph
# ============================================================================

class WorkflowNode(BaseModel):
    """
    Single node of the workflow graph.

    Condition nodes route through true_next/false_next; every other kind
    routes through next. Edges are node ids only.
    """
    id: str
    kind: NodeKind
    payload: Payload
    next: Optional[str] = None
    true_next: Optional[str] = None
    false_next: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _coerce_payload(cls, data: Any) -> Any:
        # Payload model is chosen by the node kind, not by payload contents
        if isinstance(data, dict) and "kind" in data:
            model = PAYLOAD_MODELS[NodeKind(data["kind"])]
            payload = data.get("payload")
            if not isinstance(payload, model):
                data = {**data, "payload": model.model_validate(payload or {})}
        return data

    @model_validator(mode="after")
    def _check_edge_slots(self) -> "WorkflowNode":
        if self.kind == NodeKind.CONDITION:
            if self.next is not None:
                raise ValueError(f"Condition node '{self.id}' cannot use next")
        elif self.true_next is not None or self.false_next is not None:
            raise ValueError(f"{self.kind.value} node '{self.id}' cannot use branch edges")
        return self

    @property
    def is_condition(self) -> bool:
        return self.kind == NodeKind.CONDITION

    def branches(self) -> List[Optional[Branch]]:
        """Outgoing edge slots for this node's kind"""
        if self.is_condition:
            return [Branch.TRUE, Branch.FALSE]
        return [None]

    def target(self, branch: Optional[Branch]) -> Optional[str]:
        if branch is None:
            return self.next
        if branch == Branch.TRUE:
            return self.true_next
        return self.false_next

    def with_target(self, branch: Optional[Branch], target: Optional[str]) -> "WorkflowNode":
        """Copy of this node with one edge slot pointed at target"""
        slot = {None: "next", Branch.TRUE: "true_next", Branch.FALSE: "false_next"}[branch]
        return self.model_copy(update={slot: target})

    def successors(self) -> List[Tuple[Optional[Branch], Optional[str]]]:
        return [(branch, self.target(branch)) for branch in self.branches()]


class EdgeRef(BaseModel):
    """Reverse-edge index entry: which parent slot points at a child"""
    model_config = ConfigDict(frozen=True)

    parent_id: str
    branch: Optional[Branch] = None


# ============================================================================
# Persisted shape
# ============================================================================

class PersistedNode(BaseModel):
    """Node as stored and exchanged - flat array entry with id-reference edges"""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: NodeKind
    data: Dict[str, Any] = Field(default_factory=dict)
    next_node_id: Optional[str] = Field(None, alias="nextNodeId")
    true_branch_id: Optional[str] = Field(None, alias="trueBranchId")
    false_branch_id: Optional[str] = Field(None, alias="falseBranchId")


class PersistedWorkflow(BaseModel):
    """Workflow as stored and exchanged across the API boundary"""
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    version: Optional[int] = None
    name: str
    trigger_type: TriggerType = Field(alias="triggerType")
    active: bool = True
    config: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Runtime
# ============================================================================

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CRMEvent(BaseModel):
    """Domain event emitted by the CRM"""
    trigger_type: TriggerType
    entity_id: str
    snapshot: Dict[str, Any] = Field(default_factory=dict)
    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)


class EnrollmentStatus(str, Enum):
    RUNNING = "running"
    WAITING_DELAY = "waiting_delay"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SCHEDULED = "scheduled"
    SKIPPED = "skipped"


class StepRecord(BaseModel):
    """One executed step of an enrollment"""
    node_id: str
    step_type: NodeKind
    step_action: Optional[str] = None
    status: StepStatus
    executed_at: datetime = Field(default_factory=utcnow)
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None


class Enrollment(BaseModel):
    """One in-flight execution of a workflow version for a single triggering event"""
    enrollment_id: str = Field(default_factory=lambda: f"enr_{uuid.uuid4().hex}")
    workflow_id: str
    workflow_version: int
    event_key: str
    fact_snapshot: Dict[str, Any] = Field(default_factory=dict)
    cursor: Optional[str] = None
    status: EnrollmentStatus = EnrollmentStatus.RUNNING
    scheduled_resume_at: Optional[datetime] = None
    pending_node_id: Optional[str] = None  # Action whose scheduled effect is outstanding
    pending_wakeup_id: Optional[str] = None
    consumed_wakeups: List[str] = Field(default_factory=list)
    occurrences: Dict[str, int] = Field(default_factory=dict)  # node_id -> sends so far
    error: Optional[str] = None
    steps: List[StepRecord] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in (EnrollmentStatus.COMPLETED, EnrollmentStatus.FAILED)
