"""Tests for context assembly."""

import pytest

from canvas_ask.core.canvas import CanvasNode
from canvas_ask.core.context_assembler import assemble_context, materialize_node

from conftest import make_canvas, top_edge


@pytest.mark.asyncio
async def test_assemble_root_first_then_upstream(stacked_canvas, vault):
    """Test ordering, formatting and sources for A -> B -> C."""
    context = await assemble_context(stacked_canvas, "C", vault, hop_limit=3)

    assert context.node_ids == ["C", "B", "A"]
    parts = context.text.split("\n\n### ")
    assert parts[0] == "### Text card (C)\nWhat about tokio?\nMore detail"
    assert parts[1].startswith("File: notes/Rust Async.md\n---\ntitle: Rust async runtimes")
    assert parts[2] == "Text card (A)\nTop card"
    assert context.sources_markdown == "- Text card (C)\n- [[notes/Rust Async.md]]\n- Text card (A)"


@pytest.mark.asyncio
async def test_hop_limit_zero_keeps_root_only(stacked_canvas, vault):
    """Test that the root is included even without upstream hops."""
    context = await assemble_context(stacked_canvas, "C", vault, hop_limit=0)
    assert context.node_ids == ["C"]


@pytest.mark.asyncio
async def test_char_limit_truncates(vault):
    """Test the per-card character budget."""
    graph = make_canvas([{"id": "T", "type": "text", "text": "x" * 50}])
    context = await assemble_context(graph, "T", vault, char_limit=10)
    assert context.text == "### Text card (T)\n" + "x" * 10


@pytest.mark.asyncio
async def test_missing_file_becomes_citation(vault):
    """Test an unreadable file card."""
    graph = make_canvas(
        [
            {"id": "F", "type": "file", "file": "notes/Nope.md"},
            {"id": "T", "type": "text", "text": "below"},
        ],
        [top_edge("e", "F", "T")],
    )
    context = await assemble_context(graph, "T", vault)
    assert context.text == "### Text card (T)\nbelow"
    assert context.sources_markdown == "- Text card (T)\n- Missing file: notes/Nope.md"


@pytest.mark.asyncio
async def test_unknown_root(stacked_canvas, vault):
    """Test an id that is not in the canvas."""
    context = await assemble_context(stacked_canvas, "nope", vault)
    assert context.text == ""
    assert context.sources_markdown == ""


@pytest.mark.asyncio
async def test_link_group_and_unknown_kinds(vault):
    """Test the remaining card kinds."""
    link = await materialize_node(CanvasNode(id="L", type="link", url="https://x.dev", label="Docs"), vault)
    assert link.part == "### Link: https://x.dev\nLabel: Docs"
    assert link.sources == ["- Link: https://x.dev"]

    group = await materialize_node(CanvasNode(id="G", type="group", label="Cluster"), vault)
    assert group.part == "### Group: Cluster"
    assert group.sources == ["- Group: Cluster"]

    other = await materialize_node(CanvasNode(id="W", type="widget"), vault)
    assert other.part is None
    assert other.sources == []


@pytest.mark.asyncio
async def test_record_shaped_payloads(vault):
    """Test text and file payloads given as records."""
    text = await materialize_node(CanvasNode(id="T", type="text", text={"content": "hello"}), vault)
    assert text.part == "### Text card (T)\nhello"

    file = await materialize_node(CanvasNode(id="F", type="file", file={"path": "notes/Gardening.md"}), vault)
    assert file.sources == ["- [[notes/Gardening.md]]"]
    assert "Tomatoes need sun." in file.part
