"""JSON Canvas graph model.

Nodes and edges are kept close to the on-disk shape so a canvas can be read,
extended with one node and one edge, and rewritten in full without losing
keys this package does not understand (colors, custom attributes, ...).

Canvas writers disagree on payload shapes: `text`, `file`, `url` and `label`
may each be a bare string or a small record. The normalizers below accept
either shape and always return a plain string.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError

logger = logging.getLogger(__name__)


# ============================================================================
# Payload normalization
# ============================================================================

def extract_text_field(value: Any) -> str:
    """Normalize a text payload (string or {text|content|source}) to a string."""
    if not value:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for key in ("text", "content", "source"):
            candidate = value.get(key)
            if candidate is not None:
                return str(candidate)
    return ""


def resolve_file_path(value: Any) -> str:
    """Normalize a file reference (string or {path|file}) to a vault path."""
    if not value:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for key in ("path", "file"):
            candidate = value.get(key)
            if isinstance(candidate, str):
                return candidate
    return ""


def extract_url(value: Any) -> str:
    """Normalize a link payload to its URL string."""
    if isinstance(value, str):
        return value
    return extract_text_field(value)


def label_text(value: Any) -> str:
    """Normalize a node label to a string."""
    if isinstance(value, str):
        return value
    return extract_text_field(value)


def first_line(text: Optional[str]) -> str:
    """First non-empty line of `text`, or the whole stripped text."""
    if not text:
        return ""
    lines = text.splitlines()
    line = lines[0].strip() if lines else ""
    return line if line else text.strip()


# ============================================================================
# Wire records
# ============================================================================

class CanvasNode(BaseModel):
    """A canvas card.

    `type` is the kind tag (`text`, `file`, `link`, `group`). Unknown kinds are
    kept as-is; consumers treat them as contributing nothing.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    type: str = "text"
    x: Union[int, float] = 0
    y: Union[int, float] = 0
    width: Union[int, float] = 250
    height: Union[int, float] = 60
    text: Any = None
    file: Any = None
    url: Any = None
    label: Any = None

    @property
    def kind(self) -> str:
        return self.type

    @property
    def text_value(self) -> str:
        return extract_text_field(self.text)

    @property
    def file_path(self) -> str:
        return resolve_file_path(self.file)

    @property
    def url_value(self) -> str:
        return extract_url(self.url)

    @property
    def label_value(self) -> str:
        return label_text(self.label)


class CanvasEdge(BaseModel):
    """A directed connection between two cards."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    from_node: str = Field(alias="fromNode")
    to_node: str = Field(alias="toNode")
    from_side: Optional[str] = Field(default=None, alias="fromSide")
    to_side: Optional[str] = Field(default=None, alias="toSide")
    label: Any = None

    @property
    def label_value(self) -> str:
        return label_text(self.label)


class CanvasData(BaseModel):
    """An ordered list of nodes plus a list of edges.

    Entries that fail validation are not modelled, but their raw JSON is kept
    with its original position so a rewrite puts them back where they were.
    """

    nodes: List[CanvasNode] = Field(default_factory=list)
    edges: List[CanvasEdge] = Field(default_factory=list)

    _raw_nodes: List[Tuple[int, Any]] = PrivateAttr(default_factory=list)
    _raw_edges: List[Tuple[int, Any]] = PrivateAttr(default_factory=list)

    @classmethod
    def from_json(cls, raw: str) -> "CanvasData":
        """Parse a canvas document.

        Absent arrays default to empty. Entries that fail validation are set
        aside with a warning instead of rejecting the whole document.

        Raises:
            ValueError: If `raw` is not a JSON object
        """
        data = json.loads(raw) if raw.strip() else {}
        if not isinstance(data, dict):
            raise ValueError("Canvas document must be a JSON object")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CanvasData":
        nodes: List[CanvasNode] = []
        raw_nodes: List[Tuple[int, Any]] = []
        for position, item in enumerate(data.get("nodes") or []):
            try:
                nodes.append(CanvasNode.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed canvas node: {e.errors()[0]['msg']}")
                raw_nodes.append((position, item))

        edges: List[CanvasEdge] = []
        raw_edges: List[Tuple[int, Any]] = []
        for position, item in enumerate(data.get("edges") or []):
            try:
                edges.append(CanvasEdge.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed canvas edge: {e.errors()[0]['msg']}")
                raw_edges.append((position, item))

        graph = cls(nodes=nodes, edges=edges)
        graph._raw_nodes = raw_nodes
        graph._raw_edges = raw_edges
        return graph

    @staticmethod
    def _merge_raw(dumped: List[Any], raw: List[Tuple[int, Any]]) -> List[Any]:
        # Positions ascend, so each insert lands at its original index.
        merged = list(dumped)
        for position, item in raw:
            merged.insert(position, item)
        return merged

    def to_dict(self) -> Dict[str, Any]:
        nodes = [n.model_dump(by_alias=True, exclude_none=True) for n in self.nodes]
        edges = [e.model_dump(by_alias=True, exclude_none=True) for e in self.edges]
        return {
            "nodes": self._merge_raw(nodes, self._raw_nodes),
            "edges": self._merge_raw(edges, self._raw_edges),
        }

    def to_json(self) -> str:
        """Serialize as minified JSON for a full rewrite of the canvas file."""
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))

    def lookup_node(self, node_id: str) -> Optional[CanvasNode]:
        """Return the node with `node_id`, or None."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def node_index(self) -> Dict[str, CanvasNode]:
        """Map node id to node (first occurrence wins)."""
        index: Dict[str, CanvasNode] = {}
        for node in self.nodes:
            index.setdefault(node.id, node)
        return index

    def append_node(self, node: CanvasNode) -> CanvasNode:
        self.nodes.append(node)
        return node

    def append_edge(self, edge: CanvasEdge) -> CanvasEdge:
        self.edges.append(edge)
        return edge


def build_incoming_index(edges: List[CanvasEdge]) -> Dict[str, List[CanvasEdge]]:
    """Map each node id to the edges terminating there, in edge order."""
    incoming: Dict[str, List[CanvasEdge]] = {}
    for edge in edges:
        incoming.setdefault(edge.to_node, []).append(edge)
    return incoming


def node_label(node: CanvasNode) -> str:
    """Human-readable label for pickers and listings."""
    label = node.label_value

    if node.kind == "text":
        return first_line(node.text_value) or label or "(text card)"

    if node.kind == "file":
        return f"📄 {node.file_path or label or '(file)'}".strip()

    if node.kind == "link":
        composed = f"🔗 {node.url_value}{' — ' + label if label else ''}".strip()
        return composed or "(link)"

    if node.kind == "group":
        return f"🗂 {label or '(group)'}"

    return label or node.text_value or "(untitled)"


__all__ = [
    "CanvasNode",
    "CanvasEdge",
    "CanvasData",
    "build_incoming_index",
    "extract_text_field",
    "resolve_file_path",
    "extract_url",
    "label_text",
    "first_line",
    "node_label",
]
