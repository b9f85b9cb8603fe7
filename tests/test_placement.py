"""Tests for child card placement."""

from canvas_ask.core.placement import (
    apply_result_as_child,
    find_free_spot_below,
    rects_overlap,
    slot_offsets,
    snap,
)

from conftest import make_canvas


def _card(node_id, x, y, w=200, h=100):
    return {"id": node_id, "type": "text", "text": node_id, "x": x, "y": y, "width": w, "height": h}


def test_rects_overlap_is_strict():
    """Test that touching rectangles do not overlap."""
    assert rects_overlap(0, 0, 10, 10, 5, 5, 10, 10)
    assert not rects_overlap(0, 0, 10, 10, 10, 0, 10, 10)
    assert not rects_overlap(0, 0, 10, 10, 0, 10, 10, 10)


def test_snap_rounds_half_up():
    """Test snapping to the 20px grid."""
    assert snap(29) == 20
    assert snap(30) == 40
    assert snap(-10) == 0
    assert snap(13, grid=1) == 13


def test_slot_offsets_fan_out():
    """Test the symmetric slot order."""
    assert list(slot_offsets(2)) == [0, 1, -1, 2, -2]


def test_free_spot_directly_below():
    """Test the first slot on an empty area."""
    graph = make_canvas([_card("P", 0, 0)])
    parent = graph.lookup_node("P")
    spot = find_free_spot_below(graph, parent, 200, 100)
    assert (spot.x, spot.y) == (0, 160)


def test_free_spot_skips_occupied_slot():
    """Test that an occupied slot moves the card to the right."""
    graph = make_canvas([_card("P", 0, 0), _card("X", 0, 160)])
    parent = graph.lookup_node("P")
    spot = find_free_spot_below(graph, parent, 200, 100)
    assert (spot.x, spot.y) == (260, 160)


def test_free_spot_fallback_when_full():
    """Test the fallback when every slot is blocked."""
    graph = make_canvas([_card("P", 0, 0), _card("WALL", -10000, 100, w=20000, h=20000)])
    parent = graph.lookup_node("P")
    spot = find_free_spot_below(graph, parent, 200, 100, max_cols=2, max_rows=2)
    assert (spot.x, spot.y) == (0, 160)


def test_apply_result_as_child_adds_card_and_edge():
    """Test the new file card and its connecting edge."""
    graph = make_canvas([_card("P", 0, 0, w=300, h=120), _card("Q", 0, 240)])
    parent = graph.lookup_node("P")
    label = "one two three four five six seven eight nine ten eleven twelve thirteen"

    apply_result_as_child(graph, parent, "Ask Canvas/Answer.md", label)

    child = graph.nodes[-1]
    edge = graph.edges[-1]
    assert child.type == "file"
    assert child.file == "Ask Canvas/Answer.md"
    assert (child.width, child.height) == (300, 120)
    assert child.label == "one two three four five six seven eight nine ten eleven twelve…"
    assert (edge.from_node, edge.to_node) == ("P", child.id)
    assert (edge.from_side, edge.to_side) == ("bottom", "top")
    assert edge.label == child.label

    for other in graph.nodes[:-1]:
        if other.id == "P":
            continue
        assert not rects_overlap(child.x, child.y, child.width, child.height,
                                 other.x, other.y, other.width, other.height)


def test_apply_result_as_child_default_edge_label():
    """Test the edge label when no label is given."""
    graph = make_canvas([_card("P", 0, 0)])
    apply_result_as_child(graph, graph.lookup_node("P"), "a.md", "")
    assert graph.edges[-1].label == "answer"
    assert graph.nodes[-1].label is None
