from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from wayfinder.geometry import Vec3, distance, path_length, vec3
from wayfinder.graph import SpatialGraph

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Route:
    """Planned waypoints: exact start, graph nodes along the path, exact goal."""

    waypoints: Tuple[Vec3, ...]
    node_ids: Tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.waypoints)

    @property
    def total_distance_m(self) -> float:
        return path_length(self.waypoints)


class RoutePlanner:
    def plan_route(self, graph: SpatialGraph, start: Vec3, goal: Vec3) -> Optional[Route]:
        start_node = graph.nearest_node(start)
        goal_node = graph.nearest_node(goal)
        if start_node is None or goal_node is None:
            return None

        path = self._astar(graph, start_node.node_id, goal_node.node_id)
        if not path:
            logger.info("No route between nodes %s and %s.", start_node.node_id, goal_node.node_id)
            return None

        waypoints: List[Vec3] = [vec3(start)]
        for node_id in path:
            node = graph.node(node_id)
            if node is not None:
                waypoints.append(node.position)
        waypoints.append(vec3(goal))
        return Route(waypoints=tuple(waypoints), node_ids=tuple(path))

    def _astar(self, graph: SpatialGraph, start_id: str, goal_id: str) -> List[str]:
        goal_node = graph.node(goal_id)
        if goal_node is None or graph.node(start_id) is None:
            return []

        def heuristic(node_id: str) -> float:
            node = graph.node(node_id)
            if node is None:
                return 0.0
            return distance(node.position, goal_node.position)

        open_heap: List[Tuple[float, float, str]] = []
        heapq.heappush(open_heap, (heuristic(start_id), 0.0, start_id))

        came_from: Dict[str, str] = {}
        g_score: Dict[str, float] = {start_id: 0.0}
        closed: Set[str] = set()

        while open_heap:
            _, current_cost, current = heapq.heappop(open_heap)
            if current in closed:
                continue
            if current == goal_id:
                path = [current]
                while current in came_from:
                    current = came_from[current]
                    path.append(current)
                path.reverse()
                return path

            closed.add(current)

            for neighbor, cost in graph.neighbors(current):
                neighbor_id = neighbor.node_id
                if neighbor_id in closed:
                    continue

                tentative_g = current_cost + cost
                if tentative_g >= g_score.get(neighbor_id, float("inf")):
                    continue

                g_score[neighbor_id] = tentative_g
                came_from[neighbor_id] = current
                f_score = tentative_g + heuristic(neighbor_id)
                heapq.heappush(open_heap, (f_score, tentative_g, neighbor_id))

        return []


def plan_route(graph: SpatialGraph, start: Vec3, goal: Vec3) -> Optional[Route]:
    return RoutePlanner().plan_route(graph, start, goal)
