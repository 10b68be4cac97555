"""Unit tests for GraphRecorder."""

from wayfinder.recorder import GraphRecorder


def test_straight_walk_builds_a_chain():
    """One node per meter walked, consecutive nodes joined."""
    recorder = GraphRecorder(sample_distance=1.0, merge_distance=1.0, junction_distance=1.0)

    for step in range(6):
        assert recorder.add_sample((0.0, 0.0, -float(step))) is True

    graph = recorder.graph
    assert graph.node_count == 6
    assert graph.edge_count == 5, "Only the walked corridor edges, nodes are exactly 1 m apart"


def test_samples_closer_than_sample_distance_are_skipped():
    recorder = GraphRecorder(sample_distance=1.0)

    assert recorder.add_sample((0.0, 0.0, 0.0)) is True
    assert recorder.add_sample((0.5, 0.0, 0.0)) is False
    assert recorder.add_sample((0.9, 0.0, 0.0)) is False
    assert recorder.add_sample((1.0, 0.0, 0.0)) is True
    assert recorder.graph.node_count == 2


def test_returning_to_start_closes_the_loop():
    """Walking back near an existing node merges into it and adds the closing edge."""
    recorder = GraphRecorder(sample_distance=1.0, merge_distance=1.0, junction_distance=1.0)
    for position in [(0.0, 0.0, 0.0), (2.0, 0.0, 0.0), (2.0, 0.0, 2.0), (0.0, 0.0, 2.0)]:
        recorder.add_sample(position)
    start_id = recorder.graph.nodes[0].node_id
    last_id = recorder.last_node_id

    assert recorder.add_sample((0.0, 0.0, 0.5)) is True

    graph = recorder.graph
    assert graph.node_count == 4
    assert graph.edge_count == 4
    assert graph.has_edge(last_id, start_id)
    assert recorder.last_node_id == start_id


def test_merged_position_becomes_the_reference_sample():
    """After a merge the next sample is measured from the merged node."""
    recorder = GraphRecorder(sample_distance=1.0, merge_distance=1.0)
    recorder.add_sample((0.0, 0.0, 0.0))
    recorder.add_sample((2.0, 0.0, 0.0))
    recorder.add_sample((0.0, 0.0, 0.6))  # merges into the origin node

    assert recorder.add_sample((0.0, 0.0, 0.8)) is False
    assert recorder.add_sample((0.0, 0.0, -0.5)) is False, "Raw sample would be 1.1 m away"
    assert recorder.add_sample((0.0, 0.0, -1.2)) is True


def test_junction_links_parallel_runs():
    """A new run passing close to an old node is linked to it."""
    recorder = GraphRecorder(sample_distance=1.0, merge_distance=0.3, junction_distance=1.0)
    for x in (0.0, 2.0, 4.0):
        recorder.add_sample((x, 0.0, 0.0))
    middle_id = recorder.graph.nodes[1].node_id

    recorder.reset(recorder.graph)
    recorder.add_sample((2.0, 0.0, 0.5))

    graph = recorder.graph
    new_id = recorder.last_node_id
    assert graph.node_count == 4
    assert graph.has_edge(new_id, middle_id)
    assert graph.edge_count == 3


def test_reset_without_graph_starts_empty():
    recorder = GraphRecorder()
    recorder.add_sample((0.0, 0.0, 0.0))
    recorder.reset()

    assert recorder.graph.is_empty()
    assert recorder.last_node_id is None
