# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Engine

Graph model, editor, validation, condition evaluation, action dispatch and
the enrollment runner.
"""

from .models import (
    ActionPayload,
    ActionType,
    Branch,
    ConditionOperator,
    ConditionPayload,
    CRMEvent,
    DelayPayload,
    DelayUnit,
    Enrollment,
    EnrollmentStatus,
    NodeKind,
    StepRecord,
    StepStatus,
    TriggerPayload,
    TriggerType,
    WorkflowNode,
)
from .node_store import NodeStore
from .definition import WorkflowDefinition
from .editor import GraphEditor
from .validation import validate_definition
from .conditions import evaluate, evaluate_condition
from .actions import ActionDispatcher, Done, Scheduled
from .runner import EnrollmentRunner, RetryPolicy
from .scheduler import InMemoryScheduler
from .store import EnrollmentStore
from .triggers import matches_trigger
from .exceptions import (
    ActionConfigurationError,
    ActionError,
    CannotDeleteTrigger,
    ConditionHasBranches,
    CyclicGraph,
    GraphEditError,
    InvalidBranch,
    InvalidNodeKind,
    InvalidPayload,
    NodeNotFound,
    TransientActionError,
    WorkflowException,
    WorkflowValidationError,
)

__all__ = [
    "ActionPayload",
    "ActionType",
    "Branch",
    "ConditionOperator",
    "ConditionPayload",
    "CRMEvent",
    "DelayPayload",
    "DelayUnit",
    "Enrollment",
    "EnrollmentStatus",
    "NodeKind",
    "StepRecord",
    "StepStatus",
    "TriggerPayload",
    "TriggerType",
    "WorkflowNode",
    "NodeStore",
    "WorkflowDefinition",
    "GraphEditor",
    "validate_definition",
    "evaluate",
    "evaluate_condition",
    "ActionDispatcher",
    "Done",
    "Scheduled",
    "EnrollmentRunner",
    "RetryPolicy",
    "InMemoryScheduler",
    "EnrollmentStore",
    "matches_trigger",
    "ActionConfigurationError",
    "ActionError",
    "CannotDeleteTrigger",
    "ConditionHasBranches",
    "CyclicGraph",
    "GraphEditError",
    "InvalidBranch",
    "InvalidNodeKind",
    "InvalidPayload",
    "NodeNotFound",
    "TransientActionError",
    "WorkflowException",
    "WorkflowValidationError",
]
