# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Node Store

Id-keyed arena of workflow nodes. Nodes reference each other only by id;
a reverse-edge index (child -> parent slot) makes parent lookup O(1).
"""

from typing import Dict, Iterator, List, Optional, Set

from .models import EdgeRef, WorkflowNode
from .exceptions import NodeNotFound


class NodeStore:
    """
    Arena of nodes plus reverse-edge index.

    No iteration order is guaranteed; traversal order comes only from
    following edges.
    """

    def __init__(self, nodes: Optional[List[WorkflowNode]] = None):
        self._nodes: Dict[str, WorkflowNode] = {}
        self._parents: Dict[str, Set[EdgeRef]] = {}
        for node in nodes or []:
            self.put(node)

    def get(self, node_id: str) -> WorkflowNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeNotFound(node_id)
        return node

    def contains(self, node_id: str) -> bool:
        return node_id in self._nodes

    def put(self, node: WorkflowNode) -> None:
        """Insert or replace a node, keeping the reverse-edge index in sync"""
        previous = self._nodes.get(node.id)
        if previous is not None:
            self._unindex(previous)
        self._nodes[node.id] = node
        self._index(node)

    def remove(self, node_id: str) -> WorkflowNode:
        node = self.get(node_id)
        self._unindex(node)
        del self._nodes[node_id]
        return node

    def parents_of(self, node_id: str) -> List[EdgeRef]:
        """All parent slots currently pointing at node_id"""
        return list(self._parents.get(node_id, ()))

    def parent_of(self, node_id: str) -> Optional[EdgeRef]:
        """The single parent slot of a node in a well-formed tree"""
        refs = self._parents.get(node_id)
        if not refs:
            return None
        return next(iter(refs))

    def ids(self) -> Set[str]:
        return set(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[WorkflowNode]:
        return iter(list(self._nodes.values()))

    def copy(self) -> "NodeStore":
        return NodeStore(list(self._nodes.values()))

    def _index(self, node: WorkflowNode) -> None:
        for branch, target in node.successors():
            if target is not None:
                self._parents.setdefault(target, set()).add(EdgeRef(parent_id=node.id, branch=branch))

    def _unindex(self, node: WorkflowNode) -> None:
        for branch, target in node.successors():
            if target is None:
                continue
            refs = self._parents.get(target)
            if refs is None:
                continue
            refs.discard(EdgeRef(parent_id=node.id, branch=branch))
            if not refs:
                del self._parents[target]
