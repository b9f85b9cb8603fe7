import asyncio
import contextlib
import logging
import signal
from pathlib import Path
from typing import Optional

import typer
from rich import print
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from canvas_ask.config import Settings, get_settings
from canvas_ask.core.canvas import node_label
from canvas_ask.core.service import CanvasAskService, NodeNotFoundError
from canvas_ask.lib.llm import CompletionAborted, CompletionDisabled, CompletionError

logger = logging.getLogger(__name__)

APP_HELP = """
canvas-ask: Ask questions against a JSON Canvas board.

A card's context is the card itself plus the chain of cards stacked above it
(connected into its top side). Answers are written as notes in the vault and
attached below the card they answer.

CORE WORKFLOW:
1. LIST:    `canvas-ask nodes Board.canvas` to find card ids.
2. ASK:     `canvas-ask ask Board.canvas <id>` to question a card.
3. RELATE:  `canvas-ask related Board.canvas <id>` to find related notes.
4. EXPORT:  `canvas-ask export-chain Board.canvas <id>` to save a chain as one note.

Remote calls are off until CANVAS_ASK_ALLOW_API_CALLS=true and
CANVAS_ASK_OPENAI_API_KEY are set.
"""

EXIT_FAILED = 1
EXIT_DISABLED = 2
EXIT_CANCELLED = 130

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

app = typer.Typer(name="canvas-ask", help=APP_HELP, no_args_is_help=True)
config_app = typer.Typer(name="config", help="Inspect configuration.")
app.add_typer(config_app, name="config")

state = {"vault": None}


@app.callback()
def main(
    vault: Optional[Path] = typer.Option(None, "--vault", help="Vault root (overrides CANVAS_ASK_VAULT_PATH)."),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="-v for INFO, -vv for DEBUG."),
):
    """
    Canvas Ask: context-aware questions over canvases and notes.
    """
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format=LOG_FORMAT)
    state["vault"] = vault


def _settings() -> Settings:
    settings = get_settings()
    if state["vault"] is not None:
        settings = settings.model_copy(update={"vault_path": Path(state["vault"]).expanduser().resolve()})
    return settings


def _service() -> CanvasAskService:
    return CanvasAskService(_settings())


def _canvas_ref(service: CanvasAskService, canvas: str) -> str:
    """Accept a vault-relative canvas path or a filesystem path inside the vault."""
    path = Path(canvas).expanduser()
    if path.is_absolute():
        try:
            return service.vault.relative(path)
        except ValueError:
            print(f"[red]Error: {canvas} is outside the vault {service.vault.root}[/red]")
            raise typer.Exit(code=EXIT_FAILED)
    return path.as_posix()


def _fail(message: str, code: int = EXIT_FAILED) -> None:
    print(f"[red]Error: {escape(message)}[/red]")
    raise typer.Exit(code=code)


@app.command("nodes")
def list_nodes(canvas: str = typer.Argument(..., help="Canvas path, relative to the vault")):
    """
    List the cards of a canvas with their ids.
    """
    service = _service()
    try:
        graph = service.read_canvas(_canvas_ref(service, canvas))
    except (OSError, ValueError) as e:
        _fail(str(e))

    if not graph.nodes:
        print("[yellow]Canvas is empty.[/yellow]")
        return

    table = Table(title=canvas)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Kind", style="magenta")
    table.add_column("Label")
    for node in graph.nodes:
        table.add_row(node.id, node.kind, node_label(node))
    print(table)


@app.command("ask")
def ask(
    canvas: str = typer.Argument(..., help="Canvas path, relative to the vault"),
    node_id: str = typer.Argument(..., help="Selected card id"),
    question: Optional[str] = typer.Option(None, "--question", "-q", help="Question to ask (prompted when omitted)"),
):
    """
    Ask the model about a card and its upstream chain.

    The answer is saved as a note and attached below the card. Press Ctrl-C to
    cancel a request in flight.
    """
    service = _service()
    canvas_path = _canvas_ref(service, canvas)

    if not service.settings.is_api_configured:
        if not service.settings.allow_api_calls:
            _fail(
                "API calls are disabled. Set CANVAS_ASK_ALLOW_API_CALLS=true to send canvas context to the model.",
                EXIT_DISABLED,
            )
        _fail("Set CANVAS_ASK_OPENAI_API_KEY to call the model.", EXIT_DISABLED)

    if question is None:
        try:
            graph = service.read_canvas(canvas_path)
            root = service.require_node(graph, node_id)
        except (OSError, ValueError, NodeNotFoundError) as e:
            _fail(str(e))
        question = typer.prompt("Question", default=service.question_for_node(root) or "")

    async def run_ask():
        loop = asyncio.get_running_loop()
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGINT, service.cancel_ask)
        try:
            return await service.ask(canvas_path, node_id, question)
        finally:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(signal.SIGINT)

    print("[dim]Asking... (Ctrl-C to cancel)[/dim]")
    try:
        outcome = asyncio.run(run_ask())
    except CompletionDisabled as e:
        _fail(e.message, EXIT_DISABLED)
    except CompletionAborted as e:
        if e.reason == "cancelled":
            print("[yellow]Ask cancelled.[/yellow]")
            raise typer.Exit(code=EXIT_CANCELLED)
        _fail(f"Request failed: {e.message}")
    except CompletionError as e:
        _fail(f"Request failed: {e.message}")
    except (OSError, ValueError, NodeNotFoundError) as e:
        _fail(str(e))

    print(Panel(Markdown(outcome.answer), title=outcome.note_path, border_style="blue"))
    print(f"[green]Answer saved to {outcome.note_path} and added below {node_id}[/green]")


@app.command("related")
def related(
    canvas: str = typer.Argument(..., help="Canvas path, relative to the vault"),
    node_id: str = typer.Argument(..., help="Selected card id"),
    add: Optional[str] = typer.Option(None, "--add", help="Add this note below the card instead of searching"),
    top: Optional[int] = typer.Option(None, "--top", "-n", help="Number of results (3-12)"),
):
    """
    Find notes related to a card, or attach one with --add.
    """
    service = _service()
    canvas_path = _canvas_ref(service, canvas)

    if add:
        try:
            service.add_related(canvas_path, node_id, add)
        except (OSError, ValueError, NodeNotFoundError) as e:
            _fail(str(e))
        print(f"[green]Added related note {add} below {node_id}[/green]")
        return

    try:
        graph = service.read_canvas(canvas_path)
        results = asyncio.run(service.find_related(graph, node_id, top_k=top, canvas_path=canvas_path))
    except (OSError, ValueError, NodeNotFoundError) as e:
        _fail(str(e))

    if not results:
        print("[yellow]No related notes found.[/yellow]")
        return

    table = Table(title=f"Related to {node_id}")
    table.add_column("Score", style="magenta", justify="right")
    table.add_column("Note", style="cyan", no_wrap=True)
    table.add_column("Snippet", style="dim")
    for candidate in results:
        table.add_row(str(candidate.score), candidate.path, candidate.snippet or "")
    print(table)


@app.command("export-chain")
def export_chain(
    canvas: str = typer.Argument(..., help="Canvas path, relative to the vault"),
    node_id: str = typer.Argument(..., help="Last card of the chain"),
):
    """
    Export a card and the chain above it as a single note.
    """
    service = _service()
    canvas_path = _canvas_ref(service, canvas)
    try:
        note_path = asyncio.run(service.export_chain(canvas_path, node_id))
    except (OSError, ValueError, NodeNotFoundError) as e:
        _fail(str(e))
    print(f"[green]Exported chain to {note_path}[/green]")


@config_app.command("show")
def config_show():
    """
    Show the effective configuration (API key masked).
    """
    settings = _settings()
    key = settings.openai_api_key
    masked = f"{key[:3]}...{key[-4:]}" if key and len(key) > 8 else ("***" if key else "(not set)")

    table = Table(title="canvas-ask configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("vault_path", str(settings.vault_path))
    table.add_row("allow_api_calls", str(settings.allow_api_calls))
    table.add_row("openai_api_key", masked)
    table.add_row("openai_base_url", settings.openai_base_url)
    table.add_row("openai_model", settings.openai_model)
    table.add_row("temperature", str(settings.temperature))
    table.add_row("max_tokens", str(settings.max_tokens))
    table.add_row("request_timeout", f"{settings.request_timeout:g}s")
    table.add_row("max_attempts", str(settings.max_attempts))
    table.add_row("output_folder", settings.output_folder or "(canvas folder)")
    table.add_row("top_related_results", str(settings.top_related_results))
    table.add_row("ask_hop_limit", str(settings.ask_hop_limit))
    table.add_row("export_hop_limit", str(settings.export_hop_limit))
    print(table)


if __name__ == "__main__":
    app()
