# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for the node arena and its reverse-edge index
"""

import pytest

from crm_workflows.workflow.exceptions import NodeNotFound
from crm_workflows.workflow.models import (
    ActionPayload,
    Branch,
    ConditionPayload,
    EdgeRef,
    NodeKind,
    WorkflowNode,
)
from crm_workflows.workflow.node_store import NodeStore


def action(node_id, next=None):
    return WorkflowNode(id=node_id, kind=NodeKind.ACTION, payload=ActionPayload(), next=next)


def condition(node_id, true_next=None, false_next=None):
    return WorkflowNode(
        id=node_id, kind=NodeKind.CONDITION, payload=ConditionPayload(),
        true_next=true_next, false_next=false_next
    )


def test_get_missing_node_raises():
    store = NodeStore()
    with pytest.raises(NodeNotFound) as exc:
        store.get("nope")
    assert exc.value.node_id == "nope"


def test_parent_index_follows_edges():
    store = NodeStore([action("a", next="b"), action("b")])
    assert store.parent_of("b") == EdgeRef(parent_id="a", branch=None)
    assert store.parent_of("a") is None


def test_condition_branches_are_indexed_separately():
    store = NodeStore([condition("c", true_next="t", false_next="f"), action("t"), action("f")])
    assert store.parent_of("t") == EdgeRef(parent_id="c", branch=Branch.TRUE)
    assert store.parent_of("f") == EdgeRef(parent_id="c", branch=Branch.FALSE)


def test_put_replaces_node_and_reindexes():
    store = NodeStore([action("a", next="b"), action("b"), action("c")])
    store.put(action("a", next="c"))

    assert store.parent_of("b") is None
    assert store.parent_of("c") == EdgeRef(parent_id="a", branch=None)


def test_remove_drops_outgoing_edges_from_index():
    store = NodeStore([action("a", next="b"), action("b")])
    removed = store.remove("a")

    assert removed.id == "a"
    assert not store.contains("a")
    assert store.parents_of("b") == []


def test_shared_child_reports_every_parent():
    store = NodeStore([action("a", next="x"), action("b", next="x"), action("x")])
    parents = {ref.parent_id for ref in store.parents_of("x")}
    assert parents == {"a", "b"}


def test_copy_is_independent():
    store = NodeStore([action("a", next="b"), action("b")])
    clone = store.copy()
    clone.remove("b")

    assert store.contains("b")
    assert len(store) == 2
    assert len(clone) == 1


def test_edge_slots_are_checked_per_kind():
    with pytest.raises(ValueError):
        WorkflowNode(id="c", kind=NodeKind.CONDITION, payload=ConditionPayload(), next="x")
    with pytest.raises(ValueError):
        WorkflowNode(id="a", kind=NodeKind.ACTION, payload=ActionPayload(), true_next="x")
