"""Collision-free placement of new cards below a parent card.

Rows start one spacing below the parent and step down by the card height
plus spacing. Within a row, slots fan out symmetrically around the parent's
x: 0, +1, -1, +2, -2, ... each one card width plus spacing apart. The first
slot overlapping no existing card (the parent excluded) wins; coordinates
are snapped to the canvas grid. When every slot is taken the card goes
directly below the parent anyway.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from typing import Iterator, List, Union

from canvas_ask.core.canvas import CanvasData, CanvasEdge, CanvasNode
from canvas_ask.core.notes import truncate_words

logger = logging.getLogger(__name__)

Number = Union[int, float]

DEFAULT_V_SPACING = 60
DEFAULT_H_SPACING = 60
CHILD_V_SPACING = 120
MAX_COLS = 24
MAX_ROWS = 48
GRID = 20
LABEL_WORDS = 12


@dataclass(frozen=True)
class Position:
    x: Number
    y: Number


def rects_overlap(ax: Number, ay: Number, aw: Number, ah: Number,
                  bx: Number, by: Number, bw: Number, bh: Number) -> bool:
    """Strict axis-aligned overlap; touching edges do not count."""
    return ax < bx + bw and ax + aw > bx and ay < by + bh and ay + ah > by


def snap(value: Number, grid: int = GRID) -> Number:
    if grid > 1:
        return int(math.floor(value / grid + 0.5) * grid)
    return value


def slot_offsets(max_cols: int) -> Iterator[int]:
    """0, 1, -1, 2, -2, ..., max_cols, -max_cols."""
    yield 0
    for step in range(1, max_cols + 1):
        yield step
        yield -step


def find_free_spot_below(
    graph: CanvasData,
    parent: CanvasNode,
    width: Number,
    height: Number,
    v_spacing: Number = DEFAULT_V_SPACING,
    h_spacing: Number = DEFAULT_H_SPACING,
    max_cols: int = MAX_COLS,
    max_rows: int = MAX_ROWS,
    grid: int = GRID,
) -> Position:
    """First free grid-snapped slot below `parent`; never fails."""
    base_y = parent.y + parent.height + v_spacing
    slot_width = width + h_spacing
    obstacles: List[CanvasNode] = [n for n in graph.nodes if n.id != parent.id]

    for row in range(max_rows):
        y = snap(base_y + row * (height + v_spacing), grid)
        for step in slot_offsets(max_cols):
            x = snap(parent.x + step * slot_width, grid)
            collided = any(
                rects_overlap(x, y, width, height, n.x, n.y, n.width, n.height)
                for n in obstacles
            )
            if not collided:
                return Position(x=x, y=y)

    logger.info(f"No free slot below {parent.id}; placing directly underneath")
    return Position(x=snap(parent.x, grid), y=snap(base_y, grid))


def apply_result_as_child(
    graph: CanvasData,
    parent: CanvasNode,
    new_file_path: str,
    label: str,
) -> CanvasData:
    """Append a file card for `new_file_path` below `parent` and connect them.

    The graph is mutated in place and returned. The card takes the parent's
    size; card and edge are labelled with the first words of `label`.
    """
    width, height = parent.width, parent.height
    spot = find_free_spot_below(graph, parent, width, height, v_spacing=CHILD_V_SPACING)
    short_label = truncate_words(label, LABEL_WORDS)

    child = graph.append_node(CanvasNode(
        id=str(uuid.uuid4()),
        type="file",
        x=spot.x,
        y=spot.y,
        width=width,
        height=height,
        file=new_file_path,
        label=short_label or None,
    ))
    graph.append_edge(CanvasEdge(
        id=str(uuid.uuid4()),
        from_node=parent.id,
        to_node=child.id,
        from_side="bottom",
        to_side="top",
        label=short_label or "answer",
    ))
    logger.info(f"Placed {new_file_path} under {parent.id} at ({spot.x}, {spot.y})")
    return graph


__all__ = [
    "Position",
    "rects_overlap",
    "snap",
    "slot_offsets",
    "find_free_spot_below",
    "apply_result_as_child",
]
