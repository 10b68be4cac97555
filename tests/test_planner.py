"""Unit tests for the A* route planner."""

import pytest

from wayfinder.graph import NavEdge, NavNode, SpatialGraph
from wayfinder.planner import Route, RoutePlanner, plan_route


def test_route_wraps_graph_path_with_exact_endpoints():
    """Waypoints are start, node positions, goal."""
    graph = SpatialGraph(
        nodes=[NavNode("A", (0.0, 0.0, 0.0)), NavNode("B", (10.0, 0.0, 0.0))],
        edges=[NavEdge("e1", "A", "B", 10.0)],
    )

    route = plan_route(graph, (0.0, 0.0, 1.0), (10.0, 0.0, -1.0))

    assert route is not None
    assert route.waypoints == (
        (0.0, 0.0, 1.0),
        (0.0, 0.0, 0.0),
        (10.0, 0.0, 0.0),
        (10.0, 0.0, -1.0),
    )
    assert route.node_ids == ("A", "B")
    assert route.total_distance_m == pytest.approx(12.0)


def test_empty_graph_has_no_route():
    assert plan_route(SpatialGraph(), (0.0, 0.0, 0.0), (1.0, 0.0, 0.0)) is None


def test_disconnected_components_have_no_route():
    graph = SpatialGraph(
        nodes=[NavNode("A", (0.0, 0.0, 0.0)), NavNode("B", (10.0, 0.0, 0.0))],
    )

    assert RoutePlanner().plan_route(graph, (0.0, 0.0, 0.0), (10.0, 0.0, 0.0)) is None


def test_prefers_the_cheaper_detour():
    """Two detours between A and B; the shorter one through D wins."""
    nodes = [
        NavNode("A", (0.0, 0.0, 0.0)),
        NavNode("B", (10.0, 0.0, 0.0)),
        NavNode("C", (5.0, 0.0, 5.0)),
        NavNode("D", (5.0, 0.0, 1.0)),
    ]
    graph = SpatialGraph(nodes=nodes)
    graph.add_edge_between("A", "C")
    graph.add_edge_between("C", "B")
    graph.add_edge_between("A", "D")
    graph.add_edge_between("D", "B")

    route = plan_route(graph, (0.0, 0.0, 0.0), (10.0, 0.0, 0.0))

    assert route is not None
    assert route.node_ids == ("A", "D", "B")


def test_follows_edges_not_straight_line():
    """Nodes close in space but unconnected force the long way round."""
    nodes = [
        NavNode("A", (0.0, 0.0, 0.0)),
        NavNode("B", (0.0, 0.0, -10.0)),
        NavNode("C", (3.0, 0.0, -10.0)),
        NavNode("D", (3.0, 0.0, 0.0)),
    ]
    graph = SpatialGraph(nodes=nodes)
    graph.add_edge_between("A", "B")
    graph.add_edge_between("B", "C")
    graph.add_edge_between("C", "D")

    route = plan_route(graph, (0.0, 0.0, 0.0), (3.0, 0.0, 0.0))

    assert route is not None
    assert route.node_ids == ("A", "B", "C", "D")
    assert route.total_distance_m == pytest.approx(23.0)


def test_start_and_goal_on_same_node():
    graph = SpatialGraph(nodes=[NavNode("A", (0.0, 0.0, 0.0))])

    route = plan_route(graph, (0.2, 0.0, 0.0), (-0.2, 0.0, 0.0))

    assert route is not None
    assert len(route) == 3
    assert route.node_ids == ("A",)


def test_route_length_counts_waypoints():
    route = Route(waypoints=((0.0, 0.0, 0.0), (3.0, 0.0, 4.0)))
    assert len(route) == 2
    assert route.total_distance_m == pytest.approx(5.0)
