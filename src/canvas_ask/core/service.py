"""
Canvas Ask service.

Ties the pieces together for one vault: reading and rewriting canvases,
asking the model about a card and its upstream chain, finding related
notes, and exporting chains.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import List, Optional

from canvas_ask.config import Settings
from canvas_ask.core.canvas import CanvasData, CanvasNode, first_line, node_label
from canvas_ask.core.chain_export import chain_filename
from canvas_ask.core.chain_export import export_chain as render_exported_chain
from canvas_ask.core.context_assembler import AssembledContext
from canvas_ask.core.context_assembler import assemble_context as assemble_node_context
from canvas_ask.core.notes import answer_title, build_answer_note, join_vault_path, sanitize_filename
from canvas_ask.core.placement import apply_result_as_child
from canvas_ask.core.prompts import build_user_message, resolve_system_prompt
from canvas_ask.core.requests import RequestRegistry
from canvas_ask.core.search import ScoredCandidate, ScoringWeights, search_related
from canvas_ask.core.vault import VaultService, normalize_vault_path
from canvas_ask.lib.llm import CompletionClient, CompletionDisabled, CompletionRequest

logger = logging.getLogger(__name__)

ASK_REQUEST = "ask"
SEARCH_TEXT_CONTENT_CHARS = 2000


class NodeNotFoundError(LookupError):
    """Raised when a card id is not present in the canvas."""


@dataclass
class AskOutcome:
    """Result of a successful ask."""
    note_path: str
    answer: str
    graph: CanvasData
    context: AssembledContext


class CanvasAskService:
    """Operations on the canvases and notes of one vault."""

    def __init__(
        self,
        settings: Settings,
        vault: Optional[VaultService] = None,
        client: Optional[CompletionClient] = None,
        registry: Optional[RequestRegistry] = None,
        weights: Optional[ScoringWeights] = None,
    ):
        """
        Initialize the service.

        Args:
            settings: Loaded settings
            vault: Vault access (defaults to one rooted at settings.vault_path)
            client: Completion client (built from settings on first ask when omitted)
            registry: Per-kind request tracking for cancellation
            weights: Related-note scoring weights
        """
        self.settings = settings
        self.vault = vault or VaultService(settings.vault_path)
        self.registry = registry or RequestRegistry()
        self.weights = weights or ScoringWeights()
        self._client = client

    @property
    def client(self) -> CompletionClient:
        if self._client is None:
            self._client = CompletionClient(
                base_url=self.settings.openai_base_url,
                api_key=self.settings.openai_api_key or "",
                policy=self.settings.retry_policy(),
            )
        return self._client

    # ------------------------------------------------------------------
    # Canvas IO
    # ------------------------------------------------------------------

    def read_canvas(self, canvas_path: str) -> CanvasData:
        """Load a canvas document from the vault.

        Raises:
            FileNotFoundError: If the canvas does not exist
            ValueError: If the path is invalid or the document is not a JSON object
        """
        return CanvasData.from_json(self.vault.read(canvas_path))

    def write_canvas(self, canvas_path: str, graph: CanvasData) -> None:
        """Rewrite the whole canvas document."""
        self.vault.write(canvas_path, graph.to_json())

    @staticmethod
    def require_node(graph: CanvasData, node_id: str) -> CanvasNode:
        node = graph.lookup_node(node_id)
        if node is None:
            raise NodeNotFoundError(f"Node not found in canvas: {node_id}")
        return node

    def output_folder_for(self, canvas_path: str) -> str:
        """Configured output folder, else the folder holding the canvas."""
        if self.settings.output_folder:
            return self.settings.output_folder
        parent = PurePosixPath(canvas_path).parent.as_posix()
        return "" if parent == "." else parent

    # ------------------------------------------------------------------
    # Node text
    # ------------------------------------------------------------------

    def question_for_node(self, node: CanvasNode) -> Optional[str]:
        """Suggested question for a card, or None when nothing sensible exists."""
        if node.kind == "text":
            return first_line(node.text_value) or None
        if node.kind == "file":
            path = normalize_vault_path(node.file_path)
            return self.vault.title_or_h1(path) if path else None
        if node.kind == "link":
            return node.label_value or node.url_value or None
        if node.kind == "group":
            return node.label_value or None
        return None

    async def search_text_for_node(self, node: CanvasNode) -> str:
        """Free text describing a card, used as the related-notes query."""
        if node.kind == "text":
            return node.text_value

        if node.kind == "file":
            path = normalize_vault_path(node.file_path)
            if not path:
                return ""
            meta = self.vault.metadata(path)
            try:
                content = await self.vault.aread(path)
            except (OSError, UnicodeDecodeError, ValueError):
                return path
            parts: List[str] = []
            if meta is not None:
                if meta.frontmatter_title:
                    parts.append(meta.frontmatter_title)
                parts.extend(meta.aliases)
                parts.extend(meta.headings)
            parts.append(content[:SEARCH_TEXT_CONTENT_CHARS])
            return "\n".join(parts)

        if node.kind == "link":
            return "\n".join(p for p in (node.label_value, node.url_value) if p)

        if node.kind == "group":
            return node.label_value

        return node_label(node)

    @staticmethod
    def short_name_for_node(node: CanvasNode) -> str:
        if node.kind == "text":
            return first_line(node.text_value)
        if node.kind == "file":
            return node.file_path
        return node_label(node)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def assemble_context(
        self,
        graph: CanvasData,
        root_id: str,
        hop_limit: Optional[int] = None,
    ) -> AssembledContext:
        """Selected card plus its upstream chain, materialized for the model."""
        hops = self.settings.ask_hop_limit if hop_limit is None else hop_limit
        return await assemble_node_context(
            graph,
            root_id,
            self.vault,
            hop_limit=hops,
            char_limit=self.settings.context_char_limit_per_node,
        )

    async def find_related(
        self,
        graph: CanvasData,
        root_id: str,
        top_k: Optional[int] = None,
        canvas_path: Optional[str] = None,
    ) -> List[ScoredCandidate]:
        """Notes in the vault related to a card, best first.

        The canvas itself and the card's own note are never returned.

        Raises:
            NodeNotFoundError: If `root_id` is not in the canvas
        """
        root = self.require_node(graph, root_id)
        query_text = await self.search_text_for_node(root)
        exclude = [canvas_path or ""]
        if root.kind == "file":
            exclude.append(normalize_vault_path(root.file_path))

        return await search_related(
            self.vault,
            query_text,
            top_k=top_k if top_k is not None else self.settings.top_related_results,
            exclude=exclude,
            weights=self.weights,
        )

    def place_child(self, graph: CanvasData, parent_id: str, new_doc_path: str, label: str) -> CanvasData:
        """Add a file card for `new_doc_path` below `parent_id`, connected to it.

        Raises:
            NodeNotFoundError: If `parent_id` is not in the canvas
        """
        parent = self.require_node(graph, parent_id)
        return apply_result_as_child(graph, parent, new_doc_path, label)

    async def ask(self, canvas_path: str, root_id: str, question: Optional[str] = None) -> AskOutcome:
        """Ask the model about a card and save the answer next to it.

        A newer ask cancels any ask still in flight.

        Args:
            canvas_path: Vault-relative path of the canvas
            root_id: Selected card
            question: The question; defaults to the card's suggested question

        Returns:
            AskOutcome with the written note path and the updated canvas

        Raises:
            CompletionDisabled: Remote calls are not allowed or not configured
            CompletionAborted: Cancelled, or the last attempt timed out
            CompletionError: The model call failed
            NodeNotFoundError: If `root_id` is not in the canvas, before or after the model answers
            ValueError: If no question is available
        """
        settings = self.settings
        if not settings.allow_api_calls:
            raise CompletionDisabled(
                "API calls are disabled. Set CANVAS_ASK_ALLOW_API_CALLS=true to send canvas context to the model."
            )
        if not settings.openai_api_key:
            raise CompletionDisabled("Set CANVAS_ASK_OPENAI_API_KEY to call the model.")

        graph = self.read_canvas(canvas_path)
        root = self.require_node(graph, root_id)

        question = (question or "").strip() or (self.question_for_node(root) or "").strip()
        if not question:
            raise ValueError("No question provided.")

        context = await self.assemble_context(graph, root_id)
        request = CompletionRequest(
            model=settings.openai_model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            system=resolve_system_prompt(settings.system_prompt),
            user=build_user_message(question, context.text, settings.max_tokens),
        )

        token = self.registry.acquire(ASK_REQUEST)
        try:
            answer = await self.client.complete(request, token)
        finally:
            self.registry.release(ASK_REQUEST, token)

        # Reread so edits made while the model was busy are kept
        graph = self.read_canvas(canvas_path)
        if graph.lookup_node(root_id) is None:
            raise NodeNotFoundError(f"Node {root_id} was removed from the canvas before the answer arrived")

        filename = sanitize_filename(answer_title(answer, question)) + ".md"
        note_path = join_vault_path(self.output_folder_for(canvas_path), filename)
        self.vault.write(note_path, build_answer_note(answer, context.sources_markdown))

        self.place_child(graph, root_id, note_path, question)
        self.write_canvas(canvas_path, graph)
        logger.info(f"Answer saved to {note_path} as child of {root_id}")
        return AskOutcome(note_path=note_path, answer=answer, graph=graph, context=context)

    def cancel_ask(self, reason: str = "cancelled by user") -> bool:
        """Cancel the ask in flight, if any."""
        return self.registry.cancel(ASK_REQUEST, reason)

    def add_related(self, canvas_path: str, root_id: str, note_path: str) -> CanvasData:
        """Add an existing note as a child card of `root_id`.

        Raises:
            NodeNotFoundError: If `root_id` is not in the canvas
            ValueError: If `note_path` is the card's own note
            FileNotFoundError: If `note_path` does not exist
        """
        graph = self.read_canvas(canvas_path)
        root = self.require_node(graph, root_id)
        note_path = normalize_vault_path(note_path)

        if root.kind == "file" and normalize_vault_path(root.file_path) == note_path:
            raise ValueError("Skipping: the selected note itself.")
        if not self.vault.exists(note_path):
            raise FileNotFoundError(f"Note not found: {note_path}")

        label = f"Related: {root.label_value or self.short_name_for_node(root)}"
        self.place_child(graph, root_id, note_path, label)
        self.write_canvas(canvas_path, graph)
        logger.info(f"Added related note {note_path} under {root_id}")
        return graph

    async def export_chain(self, canvas_path: str, root_id: str) -> str:
        """Write the chain ending at `root_id` to a note and return its path.

        Raises:
            NodeNotFoundError: If `root_id` is not in the canvas
        """
        graph = self.read_canvas(canvas_path)
        root = self.require_node(graph, root_id)
        exported = await render_exported_chain(graph, root_id, self.vault, self.settings.export_hop_limit)
        if exported is None:
            raise NodeNotFoundError(f"Node not found in canvas: {root_id}")

        note_path = join_vault_path(self.output_folder_for(canvas_path), chain_filename(root))
        self.vault.write(note_path, exported.markdown)
        return note_path


__all__ = ["CanvasAskService", "AskOutcome", "NodeNotFoundError", "ASK_REQUEST"]
