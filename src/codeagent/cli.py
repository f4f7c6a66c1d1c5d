"""Command-line interface for codeagent."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import typer
from rich import print
from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table

from . import __version__
from .actions import AgentAction, describe_action
from .agent import AgentOrchestrator, AgentResult
from .config import AgentSettings, ConfigManager
from .errors import AgentError
from .indexer import CodebaseIndexer
from .models import ActionResult
from .monitor import WorkspaceMonitor
from .safety import SafetyManager, ValidationReport

app = typer.Typer(
    name="codeagent",
    help="AI coding agent that edits a workspace through an indexed, undoable pipeline.",
    rich_markup_mode="rich",
)
console = Console()
logger = logging.getLogger(__name__)

WORKSPACE_ARGUMENT = typer.Option(
    None,
    "--workspace",
    "-w",
    help="Workspace directory (defaults to current directory)",
)


def version_callback(value: bool):
    """Show version and exit."""
    if value:
        print(f"[cyan]codeagent[/cyan] version [green]{__version__}[/green]")
        raise typer.Exit()


def setup_logging(config_manager: ConfigManager, verbose: bool = False):
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(config_manager.log_file, encoding='utf-8'),
            stream_handler,
        ],
        force=True,
    )


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging.",
    ),
):
    """
    codeagent - natural-language code changes with backups and undo.

    API keys are read from CODEAGENT_* environment variables or a .env file.
    """
    config_manager = ConfigManager()
    setup_logging(config_manager, verbose)
    ctx.obj = config_manager


def _workspace(path: Optional[Path]) -> Path:
    path = (path or Path.cwd()).resolve()
    if not path.is_dir():
        print(f"[red]Error:[/red] {path} is not a valid directory")
        raise typer.Exit(1)
    return path


def _indexer(config_manager: ConfigManager, workspace: Path) -> CodebaseIndexer:
    indexer = CodebaseIndexer(config_manager.workspace_config(workspace))
    with console.status(f"Indexing {workspace}..."):
        report = indexer.index_all()
    logger.info(f"Indexed {workspace}: {report.to_dict()}")
    return indexer


class ConsoleObserver:
    """Prints agent progress to the terminal."""

    def on_progress(self, message: str, percent: int) -> None:
        console.print(f"[dim]{percent:3d}% {message}[/dim]")

    def on_action_result(self, result: ActionResult) -> None:
        if result.executed:
            console.print(f"[green]✓[/green] {result.type} [cyan]{result.path}[/cyan]")
        else:
            console.print(f"[red]✗[/red] {result.type} [cyan]{result.path}[/cyan]: {result.error}")

    def on_files_changed(self, paths: List[str]) -> None:
        logger.debug(f"Files changed: {', '.join(paths)}")


def confirmation_prompt(assume_yes: bool):
    """Confirmation gate that asks on the terminal unless ``assume_yes``."""

    async def gate(actions: Sequence[AgentAction], report: ValidationReport) -> bool:
        console.print("[yellow]These changes need confirmation:[/yellow]")
        for warning in report.warnings:
            console.print(f"  [yellow]![/yellow] {warning}")
        for action in actions:
            console.print(f"  • {describe_action(action)}")
        if assume_yes:
            return True
        return await asyncio.to_thread(Confirm.ask, "Apply these changes?", default=False)

    return gate


def _orchestrator(config_manager: ConfigManager, workspace: Path, assume_yes: bool) -> AgentOrchestrator:
    settings = config_manager.settings
    if not assume_yes:
        # An interactive prompt answers for itself.
        settings = settings.model_copy(update={"confirmation_timeout": None})
    try:
        agent = AgentOrchestrator.create(
            workspace,
            settings=settings,
            config_manager=config_manager,
            confirmation_gate=confirmation_prompt(assume_yes),
            observers=[ConsoleObserver()],
        )
    except AgentError as e:
        print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    with console.status(f"Indexing {workspace}..."):
        agent.indexer.index_all()
    return agent


def _print_result(result: AgentResult):
    if result.analysis:
        console.print(f"\n[bold]Analysis:[/bold] {result.analysis}")
    if result.explanation:
        console.print(f"[bold]Explanation:[/bold] {result.explanation}")
    if result.success:
        executed = sum(1 for action in result.actions if action.executed)
        console.print(
            f"[green]Done[/green] in {result.duration_ms}ms: "
            f"{executed}/{len(result.actions)} actions applied"
        )
    else:
        console.print(f"[red]Failed:[/red] {result.error}")


@app.command(name="index", help="Index a workspace and show what was found")
def index_workspace(
    ctx: typer.Context,
    workspace: Optional[Path] = WORKSPACE_ARGUMENT,
):
    """Index a workspace."""
    path = _workspace(workspace)
    indexer = _indexer(ctx.obj, path)
    stats = indexer.get_index_stats()

    table = Table(title=f"Index of {path}")
    table.add_column("Language", style="cyan")
    table.add_column("Files", justify="right")
    for language, count in sorted(stats["languages"].items()):
        table.add_row(language, str(count))
    console.print(table)
    print(f"[green]{stats['total_files']} files, {stats['total_chunks']} chunks[/green]")


@app.command(name="search", help="Search the workspace index")
def search(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Search text"),
    limit: int = typer.Option(10, "--limit", "-n", help="Number of results"),
    workspace: Optional[Path] = WORKSPACE_ARGUMENT,
):
    """Search indexed chunks by similarity."""
    indexer = _indexer(ctx.obj, _workspace(workspace))
    results = indexer.search(query, limit)
    if not results:
        print("[yellow]No results[/yellow]")
        return

    table = Table(title=f"Results for '{query}'")
    table.add_column("Score", justify="right", style="green")
    table.add_column("File", style="cyan")
    table.add_column("Lines", justify="right")
    table.add_column("Preview")
    for result in results:
        chunk = result.chunk
        preview = chunk.text.splitlines()[0][:60] if chunk.text else ""
        table.add_row(f"{result.score:.3f}", chunk.file_path, f"{chunk.start_line}-{chunk.end_line}", preview)
    console.print(table)


@app.command(name="stats", help="Show index statistics and project type")
def show_stats(
    ctx: typer.Context,
    workspace: Optional[Path] = WORKSPACE_ARGUMENT,
):
    """Show index statistics."""
    indexer = _indexer(ctx.obj, _workspace(workspace))
    stats = indexer.get_index_stats()
    project = indexer.detect_project_type()

    table = Table(title="Index Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Files", str(stats["total_files"]))
    table.add_row("Chunks", str(stats["total_chunks"]))
    table.add_row("Embeddings", str(stats["total_embeddings"]))
    table.add_row("Last update", stats["last_update"] or "-")
    table.add_row("Preferred language", project["preferred_language"])
    for category, count in sorted(stats["categories"].items()):
        table.add_row(f"Category: {category}", str(count))
    console.print(table)


@app.command(name="ask", help="Run a single request against the workspace")
def ask(
    ctx: typer.Context,
    request: str = typer.Argument(..., help="What the agent should do"),
    current_file: Optional[Path] = typer.Option(
        None,
        "--file",
        "-f",
        help="File the request refers to",
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Apply changes without asking"),
    workspace: Optional[Path] = WORKSPACE_ARGUMENT,
):
    """Run one agent request."""
    path = _workspace(workspace)
    agent = _orchestrator(ctx.obj, path, yes)

    current = None
    if current_file is not None:
        file_path = current_file if current_file.is_absolute() else path / current_file
        try:
            current = {
                "path": agent.indexer.relative_path(file_path) or str(current_file),
                "content": file_path.read_text(encoding='utf-8'),
            }
        except (OSError, UnicodeDecodeError) as e:
            print(f"[red]Error:[/red] Cannot read {current_file}: {e}")
            raise typer.Exit(1)

    result = asyncio.run(agent.process(request, current))
    _print_result(result)
    if not result.success:
        raise typer.Exit(1)


CHAT_HELP = """[bold]Commands:[/bold]
  /undo        undo the last action
  /undo N      undo the action with index N
  /history     list undoable actions
  /stats       index statistics
  /session     session summary
  /clear       clear session and undo history
  /quit        leave"""


def _show_history(agent: AgentOrchestrator):
    details = agent.get_undo_details()["actions"]
    if not details:
        print("[yellow]Nothing to undo[/yellow]")
        return
    table = Table(title="Undo History")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Action")
    table.add_column("Time", style="dim")
    for entry in details:
        table.add_row(str(entry["index"]), entry["description"], entry["timestamp"])
    console.print(table)


def _chat_command(agent: AgentOrchestrator, line: str) -> bool:
    """Handle a slash command; returns False when the loop should end."""
    parts = line.split()
    command = parts[0].lower()
    if command in ("/quit", "/exit"):
        return False
    if command == "/undo":
        if len(parts) > 1:
            try:
                indices = [int(part) for part in parts[1:]]
            except ValueError:
                print("[red]Usage:[/red] /undo [N ...]")
                return True
            outcome = agent.undo_multiple(indices) if len(indices) > 1 else agent.undo(indices[0])
        else:
            outcome = agent.undo()
        for item in outcome.get("results", [outcome]):
            if item["success"]:
                print(f"[green]Undone:[/green] {item['description']}")
            else:
                print(f"[red]Undo failed:[/red] {item['error']}")
    elif command == "/history":
        _show_history(agent)
    elif command == "/stats":
        stats = agent.get_index_stats()["stats"]
        print(f"{stats['total_files']} files, {stats['total_chunks']} chunks")
    elif command == "/session":
        outcome = agent.get_session_stats()
        if outcome["success"]:
            session = outcome["session"]
            print(f"[cyan]{session['total_operations']} operations[/cyan] - {session['summary']}")
        else:
            print(f"[yellow]{outcome['error']}[/yellow]")
    elif command == "/clear":
        agent.clear_session()
        agent.clear_undo()
        print("[green]Session and undo history cleared[/green]")
    else:
        console.print(CHAT_HELP)
    return True


async def _chat_loop(agent: AgentOrchestrator):
    while True:
        try:
            line = await asyncio.to_thread(console.input, "[bold cyan]codeagent>[/bold cyan] ")
        except (EOFError, KeyboardInterrupt):
            break
        line = line.strip()
        if not line:
            continue
        if line.startswith("/"):
            if not _chat_command(agent, line):
                break
            continue
        _print_result(await agent.process(line))


@app.command(name="chat", help="Interactive session with follow-up requests and undo")
def chat(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Apply changes without asking"),
    workspace: Optional[Path] = WORKSPACE_ARGUMENT,
):
    """Start an interactive agent session."""
    path = _workspace(workspace)
    agent = _orchestrator(ctx.obj, path, yes)
    print(f"[green]Workspace:[/green] {path} ({len(agent.indexer.files)} files indexed)")
    console.print(CHAT_HELP)
    asyncio.run(_chat_loop(agent))
    print("[yellow]Bye[/yellow]")


@app.command(name="cleanup", help="Remove old backups")
def cleanup_backups(
    ctx: typer.Context,
    max_age: Optional[float] = typer.Option(
        None,
        "--max-age",
        help="Maximum backup age in hours (defaults to the configured retention)",
    ),
    workspace: Optional[Path] = WORKSPACE_ARGUMENT,
):
    """Delete backups older than the retention period."""
    config_manager: ConfigManager = ctx.obj
    path = _workspace(workspace)
    settings: AgentSettings = config_manager.settings
    seconds = max_age * 3600 if max_age is not None else settings.backup_max_age

    safety = SafetyManager(path, config_manager.backup_dir(path))
    outcome = safety.cleanup_backups(seconds)
    print(f"[green]Removed {outcome['removed_backups']} backups[/green] from {safety.backup_dir}")


@app.command(name="watch", help="Keep the index current while files change")
def watch(
    ctx: typer.Context,
    workspace: Optional[Path] = WORKSPACE_ARGUMENT,
):
    """Watch a workspace and re-index changed files."""
    config_manager: ConfigManager = ctx.obj
    path = _workspace(workspace)
    indexer = _indexer(config_manager, path)

    def on_update(report):
        print(f"[green]Updated index:[/green] {report.indexed} indexed, {report.removed} removed")

    monitor = WorkspaceMonitor(indexer, config_manager.settings.update_delay, on_update=on_update)
    print(f"[green]Watching {path}[/green] ({len(indexer.files)} files)")
    print("[yellow]Press Ctrl+C to stop[/yellow]")
    try:
        asyncio.run(monitor.run())
    except KeyboardInterrupt:
        print("\n[yellow]Stopped watching[/yellow]")


@app.command(name="logs", help="Show recent log output")
def show_logs(
    ctx: typer.Context,
    lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
):
    """Show the tail of the log file."""
    log_file = ctx.obj.log_file
    if not log_file.exists():
        print("[yellow]No log file found[/yellow]")
        print(f"Expected location: {log_file}")
        return
    with open(log_file, 'r', encoding='utf-8', errors='replace') as f:
        tail = f.readlines()[-lines:]
    for line in tail:
        console.print(line.rstrip(), markup=False, highlight=False)


if __name__ == "__main__":
    app()
