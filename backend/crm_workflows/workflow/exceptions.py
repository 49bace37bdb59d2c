# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Exceptions

Editor errors are local to the caller and never leave a graph half-mutated.
Action errors are split into fatal configuration errors and retryable
transient errors.
"""


class WorkflowException(Exception):
    """Base exception for the workflow package"""
    pass


# ----------------------------------------------------------------------------
# Graph editing
# ----------------------------------------------------------------------------

class GraphEditError(WorkflowException):
    """Structural edit rejected"""
    pass


class NodeNotFound(GraphEditError):
    """Referenced node does not exist"""
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node '{node_id}' not found")


class InvalidBranch(GraphEditError):
    """Branch does not apply to the parent node's kind"""
    def __init__(self, node_id: str, kind: str, branch):
        self.node_id = node_id
        self.kind = kind
        self.branch = branch
        super().__init__(f"Branch {branch!r} does not apply to {kind} node '{node_id}'")


class InvalidNodeKind(GraphEditError):
    """Node kind cannot be inserted"""
    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Cannot insert a node of kind '{kind}'")


class CannotDeleteTrigger(GraphEditError):
    """The trigger node is the root of every workflow"""
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Cannot delete trigger node '{node_id}'")


class ConditionHasBranches(GraphEditError):
    """Deleting a condition with children requires choosing the surviving branch"""
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(
            f"Condition '{node_id}' still has branches; choose which branch to keep"
        )


class InvalidPayload(GraphEditError):
    """Payload update does not produce a valid payload for the node kind"""
    def __init__(self, node_id: str, message: str):
        self.node_id = node_id
        super().__init__(f"Invalid payload for node '{node_id}': {message}")


# ----------------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------------

class WorkflowValidationError(WorkflowException):
    """Workflow validation failed"""
    def __init__(self, message: str, field: str = None):
        self.message = message
        self.field = field
        super().__init__(message)


class CyclicGraph(WorkflowValidationError, GraphEditError):
    """Edge relation contains a cycle"""
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Cycle detected at node '{node_id}'", field="nodes")


# ----------------------------------------------------------------------------
# Execution
# ----------------------------------------------------------------------------

class ActionError(WorkflowException):
    """Action execution failed"""
    def __init__(self, action_type: str, message: str):
        self.action_type = action_type
        super().__init__(f"Action '{action_type}' failed: {message}")


class ActionConfigurationError(ActionError):
    """Action is misconfigured - fatal for the enrollment, never retried"""
    pass


class TransientActionError(ActionError):
    """Collaborator failed in a way that may succeed on retry"""
    pass


class CollaboratorError(WorkflowException):
    """External collaborator (mailer, repository, HTTP endpoint) failed"""
    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)
