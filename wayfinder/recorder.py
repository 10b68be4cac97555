from __future__ import annotations

from typing import Optional

from wayfinder.geometry import Vec3, distance
from wayfinder.graph import SpatialGraph


class GraphRecorder:
    """
    Incrementally turns a walked trajectory into graph structure.

    - samples closer than ``sample_distance`` to the last accepted one are skipped,
    - accepted samples merge into an existing node within ``merge_distance``,
    - consecutive nodes of one run are joined by an edge (the walked corridor),
    - every node within ``junction_distance`` of the new node is joined too,
      which closes loops where paths cross or run alongside each other.
    """

    def __init__(
        self,
        sample_distance: float = 1.0,
        merge_distance: Optional[float] = None,
        junction_distance: float = 1.0,
        initial_graph: Optional[SpatialGraph] = None,
    ) -> None:
        self.sample_distance = float(sample_distance)
        self.merge_distance = float(sample_distance if merge_distance is None else merge_distance)
        self.junction_distance = float(junction_distance)

        self._graph = initial_graph if initial_graph is not None else SpatialGraph()
        self._last_node_id: Optional[str] = None
        self._last_sample_position: Optional[Vec3] = None

    @property
    def graph(self) -> SpatialGraph:
        return self._graph

    @property
    def last_node_id(self) -> Optional[str]:
        return self._last_node_id

    def reset(self, graph: Optional[SpatialGraph] = None) -> None:
        self._graph = graph if graph is not None else SpatialGraph()
        self._last_node_id = None
        self._last_sample_position = None

    def add_sample(self, position: Vec3) -> bool:
        if (
            self._last_sample_position is not None
            and distance(self._last_sample_position, position) < self.sample_distance
        ):
            return False

        node_id, effective_position = self._graph.merge_or_add_node(position, self.merge_distance)
        if self._last_node_id is not None and self._last_node_id != node_id:
            self._graph.add_edge_between(self._last_node_id, node_id)

        self._connect_nearby_junctions(node_id)

        self._last_node_id = node_id
        self._last_sample_position = effective_position
        return True

    def _connect_nearby_junctions(self, node_id: str) -> None:
        node = self._graph.node(node_id)
        if node is None:
            return
        for other in self._graph.nodes:
            if other.node_id == node_id:
                continue
            if distance(node.position, other.position) < self.junction_distance:
                self._graph.add_edge_between(node_id, other.node_id)
