"""Context assembler for canvas questions.

Turns the selected card and its upstream chain into the text sent to the
model plus a markdown source list for the answer note. Each card is
materialized independently (file cards need a document read) on the bounded
task runner, so output order always follows the input card order.

Per card kind:
- text:  the card text, truncated to the per-node character budget
- file:  the referenced note, truncated likewise; a "missing file" citation
         when it cannot be read
- link:  the URL and its label
- group: the group label
Unknown kinds contribute nothing.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Protocol

from canvas_ask.core.canvas import CanvasData, CanvasNode
from canvas_ask.core.concurrency import get_concurrency, run_with_concurrency
from canvas_ask.core.traversal import ASK_HOP_LIMIT, collect_upstream
from canvas_ask.core.vault import normalize_vault_path


logger = logging.getLogger(__name__)

DEFAULT_CHAR_LIMIT = 2000
MATERIALIZE_CONCURRENCY = 6


class DocumentReader(Protocol):
    async def aread(self, note_path: str) -> str: ...


@dataclass
class ContextFragment:
    """Materialized text and citations for one card."""
    part: Optional[str] = None
    sources: List[str] = field(default_factory=list)


@dataclass
class AssembledContext:
    """Context blob for the model plus the markdown sources list."""
    text: str
    sources_markdown: str
    node_ids: List[str] = field(default_factory=list)


async def materialize_node(
    node: CanvasNode,
    reader: DocumentReader,
    char_limit: int = DEFAULT_CHAR_LIMIT,
) -> ContextFragment:
    """Materialize one card into a context fragment.

    Never raises for unreadable documents; they become citation-only.
    """
    if node.kind == "text":
        text = node.text_value[:char_limit]
        return ContextFragment(
            part=f"### Text card ({node.id})\n{text}",
            sources=[f"- Text card ({node.id})"],
        )

    if node.kind == "file":
        path = normalize_vault_path(node.file_path)
        if not path:
            return ContextFragment()
        try:
            content = (await reader.aread(path))[:char_limit]
        except (OSError, UnicodeDecodeError, ValueError) as e:
            logger.debug(f"File card {node.id} unresolved ({path}): {e}")
            return ContextFragment(sources=[f"- Missing file: {path}"])
        return ContextFragment(part=f"### File: {path}\n{content}", sources=[f"- [[{path}]]"])

    if node.kind == "link":
        url = node.url_value
        return ContextFragment(
            part=f"### Link: {url}\nLabel: {node.label_value}",
            sources=[f"- Link: {url}"],
        )

    if node.kind == "group":
        label = node.label_value or node.id
        return ContextFragment(part=f"### Group: {label}", sources=[f"- Group: {label}"])

    logger.debug(f"Ignoring card {node.id} of unknown kind {node.kind!r}")
    return ContextFragment()


async def materialize_context(
    nodes: List[CanvasNode],
    reader: DocumentReader,
    char_limit: int = DEFAULT_CHAR_LIMIT,
) -> AssembledContext:
    """Materialize cards in parallel and join them in input order.

    Args:
        nodes: Cards to include (selected card first, then upstream)
        reader: Document repository for file cards
        char_limit: Per-card character budget

    Returns:
        AssembledContext with fragments joined by blank lines and
        citations joined by newlines
    """
    def make_job(node: CanvasNode) -> Callable[[], Awaitable[ContextFragment]]:
        async def job() -> ContextFragment:
            return await materialize_node(node, reader, char_limit)
        return job

    fragments = await run_with_concurrency(
        [make_job(n) for n in nodes], get_concurrency(MATERIALIZE_CONCURRENCY)
    )

    parts: List[str] = []
    sources: List[str] = []
    for fragment in fragments:
        if fragment.part:
            parts.append(fragment.part)
        sources.extend(fragment.sources)

    logger.info(f"Context assembled from {len(nodes)} cards: {len(parts)} parts, {len(sources)} sources")
    return AssembledContext(
        text="\n\n".join(parts),
        sources_markdown="\n".join(sources),
        node_ids=[n.id for n in nodes],
    )


async def assemble_context(
    graph: CanvasData,
    root_id: str,
    reader: DocumentReader,
    hop_limit: int = ASK_HOP_LIMIT,
    char_limit: int = DEFAULT_CHAR_LIMIT,
) -> AssembledContext:
    """Assemble context for the card `root_id` and its upstream chain.

    The root card itself comes first so a selected text card's content is
    part of the context. An unknown root yields an empty context.
    """
    root = graph.lookup_node(root_id)
    if root is None:
        logger.warning(f"Root card {root_id} not found in canvas")
        return AssembledContext(text="", sources_markdown="")

    chain = collect_upstream(graph, root_id, hop_limit)
    return await materialize_context([root, *chain.nodes], reader, char_limit)


__all__ = [
    "AssembledContext",
    "ContextFragment",
    "DocumentReader",
    "materialize_node",
    "materialize_context",
    "assemble_context",
]
