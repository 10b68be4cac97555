from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from wayfinder.geometry import Vec3, distance, vec3


def new_id() -> str:
    return str(uuid.uuid4()).upper()


@dataclass(frozen=True)
class NavNode:
    node_id: str
    position: Vec3


@dataclass(frozen=True)
class NavEdge:
    edge_id: str
    a_node_id: str
    b_node_id: str
    cost_m: float

    def other(self, node_id: str) -> Optional[str]:
        if self.a_node_id == node_id:
            return self.b_node_id
        if self.b_node_id == node_id:
            return self.a_node_id
        return None


class SpatialGraph:
    """
    Undirected, additive node/edge graph built from a walked trajectory.

    Nodes and edges are only ever appended; the only removal is ``clear()``.
    Every edge joins two distinct existing nodes and a node pair carries at
    most one edge regardless of direction.
    """

    def __init__(
        self,
        nodes: Optional[Iterable[NavNode]] = None,
        edges: Optional[Iterable[NavEdge]] = None,
    ) -> None:
        self._nodes: List[NavNode] = []
        self._nodes_by_id: Dict[str, NavNode] = {}
        self._edges: List[NavEdge] = []
        self._edge_pairs: Set[FrozenSet[str]] = set()
        self._adjacency: Dict[str, List[NavEdge]] = {}

        for node in nodes or []:
            if node.node_id in self._nodes_by_id:
                raise ValueError(f"Duplicate node id: {node.node_id}")
            self._append_node(node)

        for edge in edges or []:
            self._validate_edge(edge)
            self._append_edge(edge)

    @property
    def nodes(self) -> List[NavNode]:
        return list(self._nodes)

    @property
    def edges(self) -> List[NavEdge]:
        return list(self._edges)

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        return len(self._edges)

    def is_empty(self) -> bool:
        return not self._nodes

    def node(self, node_id: str) -> Optional[NavNode]:
        return self._nodes_by_id.get(node_id)

    def has_edge(self, a: str, b: str) -> bool:
        return frozenset((a, b)) in self._edge_pairs

    def merge_or_add_node(self, position: Vec3, merge_distance: float) -> Tuple[str, Vec3]:
        """Return the first node closer than ``merge_distance``, or add a new one.

        A merge hands back the existing node untouched; a new node sits at
        exactly ``position``.
        """
        for node in self._nodes:
            if distance(node.position, position) < merge_distance:
                return node.node_id, node.position

        node = NavNode(node_id=new_id(), position=vec3(position))
        self._append_node(node)
        return node.node_id, node.position

    def add_edge_between(self, a: str, b: str) -> bool:
        """Connect two nodes; self-edges, duplicates and unknown ids are ignored."""
        if a == b:
            return False
        if self.has_edge(a, b):
            return False

        node_a = self._nodes_by_id.get(a)
        node_b = self._nodes_by_id.get(b)
        if node_a is None or node_b is None:
            return False

        edge = NavEdge(
            edge_id=new_id(),
            a_node_id=a,
            b_node_id=b,
            cost_m=distance(node_a.position, node_b.position),
        )
        self._append_edge(edge)
        return True

    def nearest_node(self, position: Vec3) -> Optional[NavNode]:
        best: Optional[NavNode] = None
        best_dist = float("inf")
        for node in self._nodes:
            dist = distance(node.position, position)
            if dist < best_dist:
                best = node
                best_dist = dist
        return best

    def neighbors(self, node_id: str) -> List[Tuple[NavNode, float]]:
        result: List[Tuple[NavNode, float]] = []
        for edge in self._adjacency.get(node_id, []):
            other_id = edge.other(node_id)
            if other_id is None:
                continue
            other = self._nodes_by_id.get(other_id)
            if other is not None:
                result.append((other, edge.cost_m))
        return result

    def clear(self) -> None:
        self._nodes.clear()
        self._nodes_by_id.clear()
        self._edges.clear()
        self._edge_pairs.clear()
        self._adjacency.clear()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [
                {"id": node.node_id, "position": list(node.position)}
                for node in self._nodes
            ],
            "edges": [
                {
                    "id": edge.edge_id,
                    "aNodeID": edge.a_node_id,
                    "bNodeID": edge.b_node_id,
                    "costMeters": edge.cost_m,
                }
                for edge in self._edges
            ],
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "SpatialGraph":
        """Rebuild a graph from its sidecar form.

        Raises ValueError (or KeyError/TypeError) on any structural problem so
        the caller can decide how to degrade.
        """
        if not isinstance(payload, dict):
            raise ValueError("Graph payload must be a JSON object.")

        nodes = [
            NavNode(node_id=str(item["id"]), position=vec3(item["position"]))
            for item in payload.get("nodes", [])
        ]
        edges = [
            NavEdge(
                edge_id=str(item["id"]),
                a_node_id=str(item["aNodeID"]),
                b_node_id=str(item["bNodeID"]),
                cost_m=float(item["costMeters"]),
            )
            for item in payload.get("edges", [])
        ]
        return cls(nodes=nodes, edges=edges)

    def _append_node(self, node: NavNode) -> None:
        self._nodes.append(node)
        self._nodes_by_id[node.node_id] = node
        self._adjacency.setdefault(node.node_id, [])

    def _append_edge(self, edge: NavEdge) -> None:
        self._edges.append(edge)
        self._edge_pairs.add(frozenset((edge.a_node_id, edge.b_node_id)))
        self._adjacency.setdefault(edge.a_node_id, []).append(edge)
        self._adjacency.setdefault(edge.b_node_id, []).append(edge)

    def _validate_edge(self, edge: NavEdge) -> None:
        if edge.a_node_id == edge.b_node_id:
            raise ValueError(f"Edge {edge.edge_id} is a self-edge.")
        if edge.a_node_id not in self._nodes_by_id or edge.b_node_id not in self._nodes_by_id:
            raise ValueError(f"Edge {edge.edge_id} references an unknown node.")
        if self.has_edge(edge.a_node_id, edge.b_node_id):
            raise ValueError(f"Edge {edge.edge_id} duplicates an existing edge.")
        if edge.cost_m < 0.0:
            raise ValueError(f"Edge {edge.edge_id} has a negative cost.")
