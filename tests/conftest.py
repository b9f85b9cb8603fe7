"""Shared fixtures: a temporary vault with a small stacked canvas."""

import json
import os
from pathlib import Path

import pytest

from canvas_ask.config import Settings, get_settings
from canvas_ask.core.canvas import CanvasData
from canvas_ask.core.vault import VaultService


def make_canvas(nodes, edges=None) -> CanvasData:
    """Build a canvas from plain dicts."""
    return CanvasData.from_dict({"nodes": nodes, "edges": edges or []})


def top_edge(edge_id, source, target, label=None, from_side="bottom"):
    edge = {"id": edge_id, "fromNode": source, "toNode": target, "fromSide": from_side, "toSide": "top"}
    if label is not None:
        edge["label"] = label
    return edge


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Keep the user's environment and ~/.canvas-ask/.env out of every test."""
    for key in list(os.environ):
        if key.startswith("CANVAS_ASK_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setitem(Settings.model_config, "env_file", str(tmp_path / "missing.env"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def vault_root(tmp_path) -> Path:
    root = tmp_path / "vault"
    root.mkdir()
    (root / "notes").mkdir()
    (root / "notes" / "Rust Async.md").write_text(
        "---\ntitle: Rust async runtimes\naliases: [tokio notes]\ntags: [rust]\n---\n"
        "# Rust async runtimes\n\nTokio and async-std compared. Async rust is fun.\n",
        encoding="utf-8",
    )
    (root / "notes" / "Gardening.md").write_text(
        "# Gardening\n\nTomatoes need sun.\n", encoding="utf-8"
    )
    (root / "notes" / "Systems.md").write_text(
        "# Systems\n\n## Rust\n\nRust has ownership.\n", encoding="utf-8"
    )
    return root


@pytest.fixture
def vault(vault_root) -> VaultService:
    return VaultService(vault_root)


@pytest.fixture
def stacked_canvas() -> CanvasData:
    """A -> B -> C stacked vertically; C is the bottom card."""
    return make_canvas(
        [
            {"id": "A", "type": "text", "text": "Top card", "x": 0, "y": 0, "width": 300, "height": 100},
            {"id": "B", "type": "file", "file": "notes/Rust Async.md", "x": 0, "y": 200, "width": 300, "height": 100},
            {"id": "C", "type": "text", "text": "What about tokio?\nMore detail", "x": 0, "y": 400, "width": 300, "height": 100},
        ],
        [
            top_edge("e1", "A", "B", label="Why async?"),
            top_edge("e2", "B", "C"),
        ],
    )


@pytest.fixture
def canvas_file(vault_root, stacked_canvas) -> str:
    """Write the stacked canvas into the vault and return its vault path."""
    (vault_root / "boards").mkdir()
    (vault_root / "boards" / "Board.canvas").write_text(
        json.dumps(stacked_canvas.to_dict()), encoding="utf-8"
    )
    return "boards/Board.canvas"
