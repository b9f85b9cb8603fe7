"""Upstream chain traversal.

Canvases built for questioning are stacked vertically: a card's predecessor
connects into its *top* side, normally from its own *bottom* side. Walking
upstream therefore follows a single chain: at each hop take the incoming
edges that land on the current card's top, prefer one leaving a bottom side,
otherwise the first one found.

The walk ends quietly at the first inconsistency (dangling edge, self-loop,
cycle) rather than reporting it; those are ordinary data-quality conditions
in hand-edited canvases.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from canvas_ask.core.canvas import CanvasData, CanvasEdge, CanvasNode, build_incoming_index

logger = logging.getLogger(__name__)

ASK_HOP_LIMIT = 3
MAX_EXPORT_HOPS = 10


@dataclass
class UpstreamChain:
    """Predecessors of a root card, nearest first."""
    root_id: str
    nodes: List[CanvasNode] = field(default_factory=list)
    depth_by_id: Dict[str, int] = field(default_factory=dict)


def choose_upstream_edge(incoming: List[CanvasEdge]) -> Optional[CanvasEdge]:
    """Pick the edge to follow among edges arriving at a card.

    Only edges landing on the `top` side qualify. Among those, one leaving a
    `bottom` side wins; otherwise the first in edge order.
    """
    top_edges = [e for e in incoming if e.to_side == "top"]
    if not top_edges:
        return None
    for edge in top_edges:
        if edge.from_side == "bottom":
            return edge
    return top_edges[0]


def collect_upstream(graph: CanvasData, root_id: str, max_hops: int = ASK_HOP_LIMIT) -> UpstreamChain:
    """Walk up to `max_hops` predecessors from `root_id`.

    Args:
        graph: Canvas to walk
        root_id: Card the walk starts from (never part of the result)
        max_hops: Maximum number of hops; negative values mean zero

    Returns:
        UpstreamChain with nodes ordered hop 1, hop 2, ... and their hop numbers
    """
    chain = UpstreamChain(root_id=root_id)
    hops = max(0, max_hops)
    if hops == 0:
        return chain

    node_by_id = graph.node_index()
    incoming_by_node = build_incoming_index(graph.edges)
    seen = {root_id}

    current_id = root_id
    depth = 0
    while depth < hops:
        edge = choose_upstream_edge(incoming_by_node.get(current_id, []))
        if edge is None:
            break

        prev_id = edge.from_node
        if not prev_id or prev_id == current_id:
            logger.debug(f"Stopping walk at {current_id}: self-loop or empty source")
            break
        if prev_id in seen:
            logger.debug(f"Stopping walk at {current_id}: cycle back to {prev_id}")
            break
        prev_node = node_by_id.get(prev_id)
        if prev_node is None:
            logger.debug(f"Stopping walk at {current_id}: dangling edge {edge.id}")
            break

        seen.add(prev_id)
        depth += 1
        chain.nodes.append(prev_node)
        chain.depth_by_id[prev_id] = depth
        current_id = prev_id

    return chain


def chain_edges(graph: CanvasData, nodes: List[CanvasNode]) -> List[CanvasEdge]:
    """Edges whose both endpoints belong to `nodes`."""
    ids = {n.id for n in nodes}
    return [e for e in graph.edges if e.from_node in ids and e.to_node in ids]


__all__ = [
    "UpstreamChain",
    "choose_upstream_edge",
    "collect_upstream",
    "chain_edges",
    "ASK_HOP_LIMIT",
    "MAX_EXPORT_HOPS",
]
