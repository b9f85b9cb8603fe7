"""Export an upstream chain of cards as a single markdown note.

The chain reads top to bottom: the furthest predecessor first, the selected
card last. The question that led to each card (the label of the edge that
lands on its top side) is quoted above the card's content. File and link
references are collected into a trailing `# References` section.
"""

import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Awaitable, Callable, Dict, List, Optional

from canvas_ask.core.canvas import CanvasData, CanvasEdge, CanvasNode, first_line, node_label
from canvas_ask.core.concurrency import get_concurrency, run_with_concurrency
from canvas_ask.core.context_assembler import DocumentReader
from canvas_ask.core.notes import demote_headings, quote_block, sanitize_filename
from canvas_ask.core.traversal import MAX_EXPORT_HOPS, chain_edges, collect_upstream
from canvas_ask.core.vault import normalize_vault_path

logger = logging.getLogger(__name__)

EXPORT_CONCURRENCY = 6


@dataclass
class ChainPart:
    part: Optional[str] = None
    refs: List[str] = field(default_factory=list)


@dataclass
class ExportedChain:
    """Rendered chain note plus the cards it covers, root last."""
    markdown: str
    nodes: List[CanvasNode]
    edges: List[CanvasEdge]


def incoming_top_labels(edges: List[CanvasEdge]) -> Dict[str, str]:
    """Label of the best top-side edge per target card (bottom-side sources win)."""
    best: Dict[str, CanvasEdge] = {}
    for edge in edges:
        if edge.to_side != "top":
            continue
        existing = best.get(edge.to_node)
        if existing is None or (existing.from_side != "bottom" and edge.from_side == "bottom"):
            best[edge.to_node] = edge
    return {node_id: edge.label_value.strip() for node_id, edge in best.items()}


async def render_chain_node(node: CanvasNode, question: str, reader: DocumentReader) -> ChainPart:
    quoted = quote_block(question) if question else ""

    if node.kind == "file":
        path = normalize_vault_path(node.file_path)
        if not path:
            return ChainPart()
        refs = [f"[[{path}]]"]
        try:
            raw = await reader.aread(path)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            logger.debug(f"Chain export: cannot read {path}: {e}")
            return ChainPart(part=quoted or None, refs=refs)
        demoted = demote_headings(raw)
        return ChainPart(part=f"{quoted}\n\n{demoted}" if quoted else demoted, refs=refs)

    if node.kind == "text":
        raw = node.text_value
        return ChainPart(part=quote_block(raw)) if raw else ChainPart()

    if node.kind == "link":
        url = node.url_value
        return ChainPart(refs=[url]) if url else ChainPart()

    return ChainPart()


async def render_chain(nodes: List[CanvasNode], edges: List[CanvasEdge], reader: DocumentReader) -> str:
    """Render `nodes` (already in reading order) into the exported markdown."""
    labels = incoming_top_labels(edges)

    def make_job(node: CanvasNode) -> Callable[[], Awaitable[ChainPart]]:
        async def job() -> ChainPart:
            return await render_chain_node(node, labels.get(node.id, ""), reader)
        return job

    results = await run_with_concurrency(
        [make_job(n) for n in nodes], get_concurrency(EXPORT_CONCURRENCY)
    )

    parts: List[str] = []
    refs: List[str] = []
    for result in results:
        if result.part:
            parts.append(result.part)
        for ref in result.refs:
            if ref not in refs:
                refs.append(ref)

    markdown = "\n\n".join(parts)
    if markdown:
        markdown += "\n\n"
    return markdown + "# References\n" + "\n".join(refs)


async def export_chain(
    graph: CanvasData,
    root_id: str,
    reader: DocumentReader,
    hop_limit: int = MAX_EXPORT_HOPS,
) -> Optional[ExportedChain]:
    """Collect and render the chain ending at `root_id`; None for an unknown root."""
    root = graph.lookup_node(root_id)
    if root is None:
        return None

    upstream = collect_upstream(graph, root_id, min(hop_limit, MAX_EXPORT_HOPS))
    nodes = [*reversed(upstream.nodes), root]
    edges = chain_edges(graph, nodes)
    markdown = await render_chain(nodes, edges, reader)
    logger.info(f"Exported chain of {len(nodes)} cards ending at {root_id}")
    return ExportedChain(markdown=markdown, nodes=nodes, edges=edges)


def chain_filename(root: CanvasNode) -> str:
    """`Chain - <name>.md`, named after the root file's stem or the card label."""
    if root.kind == "file":
        name = PurePosixPath(root.file_path.strip()).stem.strip() or root.id
    else:
        name = first_line(node_label(root)) or root.id
    return sanitize_filename(f"Chain - {name}") + ".md"


__all__ = [
    "ChainPart",
    "ExportedChain",
    "incoming_top_labels",
    "render_chain_node",
    "render_chain",
    "export_chain",
    "chain_filename",
]
