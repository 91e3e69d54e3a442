"""
brok: command line front end for the mastery engine.

Commands:
- brok init GRAPH      - Create initial mastery states for every node of a thread
- brok submit GRAPH    - Apply a graded attempt to a node and persist it
- brok next GRAPH      - Ask the scheduler what to practise next
- brok status GRAPH    - Show per-node gate status and thread progress

GRAPH is a skill graph JSON file ({"nodes": [...], "edges": [...]}) as produced
by the content generation service.
"""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from brok.config import Settings, get_settings
from brok.db import MasteryStore, create_db_engine, init_db, make_session_factory
from brok.errors import BrokError
from brok.mastery import (
    Evidence,
    MasteryBand,
    MasteryEngine,
    SkillGraph,
    ThreadBlocked,
    ThreadCompleted,
    UnitType,
)

app = typer.Typer(
    name="brok",
    help="brok: adaptive mastery tracking and scheduling",
    no_args_is_help=True,
)
console = Console()

LEARNER_OPTION = typer.Option(..., "--learner", "-l", help="Learner identifier")
THREAD_OPTION = typer.Option(..., "--thread", "-t", help="Learning thread identifier")
DB_OPTION = typer.Option(None, "--db", help="Database URL (defaults to BROK_DATABASE_URL)")


# =============================================================================
# Setup helpers
# =============================================================================


def configure_logging(settings: Settings) -> None:
    """Route loguru output according to settings."""
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level, format="<level>{message}</level>")
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="10 MB", retention="14 days")


def _load_graph(path: Path) -> SkillGraph:
    try:
        return SkillGraph.model_validate_json(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        console.print(f"[red]Graph file not found:[/red] {path}")
        raise typer.Exit(1)
    except ValidationError as exc:
        console.print(f"[red]Invalid skill graph:[/red] {escape(str(exc))}")
        raise typer.Exit(1)


def _open_store(db_url: str | None) -> MasteryStore:
    engine = create_db_engine(db_url or get_settings().database_url)
    init_db(engine)
    return MasteryStore(make_session_factory(engine))


def _engine() -> MasteryEngine:
    return MasteryEngine.from_settings(get_settings())


# =============================================================================
# Commands
# =============================================================================


@app.command()
def init(
    graph_path: Path = typer.Argument(..., help="Skill graph JSON file"),
    learner: str = LEARNER_OPTION,
    thread: str = THREAD_OPTION,
    db: Optional[str] = DB_OPTION,
) -> None:
    """Create initial mastery states for every node in the graph."""
    graph = _load_graph(graph_path)
    engine = _engine()
    store = _open_store(db)

    states = store.initialize_thread(
        learner, thread, graph.node_ids(), decay_rate=engine.config.default_decay_rate
    )
    console.print(f"[green]Initialized {len(states)} nodes[/green] for thread [bold]{thread}[/bold]")


@app.command()
def submit(
    graph_path: Path = typer.Argument(..., help="Skill graph JSON file"),
    node_id: str = typer.Argument(..., help="Node the attempt was for"),
    unit_type: UnitType = typer.Argument(..., help="Format of the attempted unit"),
    score: float = typer.Argument(..., help="Graded score (0-1)"),
    learner: str = LEARNER_OPTION,
    thread: str = THREAD_OPTION,
    misconception: list[str] = typer.Option(
        [], "--misconception", "-m", help="Misconception tag detected by grading (repeatable)"
    ),
    hints: int = typer.Option(0, "--hints", help="Hints used"),
    retries: int = typer.Option(0, "--retries", help="Retries before the graded answer"),
    target_misconception: Optional[str] = typer.Option(
        None, "--target-misconception", help="Misconception an error_reversal unit addressed"
    ),
    db: Optional[str] = DB_OPTION,
) -> None:
    """Apply a graded attempt to a node and store the result."""
    graph = _load_graph(graph_path)
    node = graph.get_node(node_id)
    if node is None:
        console.print(f"[red]Unknown node:[/red] {node_id}")
        raise typer.Exit(1)

    engine = _engine()
    store = _open_store(db)

    try:
        evidence = Evidence(
            score=score,
            format_strength=engine.config.format_strength(unit_type),
            difficulty=node.difficulty,
            misconceptions_detected=tuple(misconception),
            hint_count=hints,
            retry_count=retries,
        )
        state = store.require(learner, thread, node_id)
        outcome = engine.apply_attempt(
            state, evidence, unit_type, target_misconception=target_misconception, node=node
        )
        store.commit_attempt(outcome)
    except ValidationError as exc:
        console.print(f"[red]Invalid attempt:[/red] {escape(str(exc))}")
        raise typer.Exit(1)
    except BrokError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(1)

    before, after = state, outcome.state
    console.print(f"\n[bold]{node.name or node.id}[/bold] ({unit_type.display_name})")
    console.print(f"  Mastery:     {before.mastery_p:.2f} -> {after.mastery_p:.2f}")
    console.print(f"  Uncertainty: {before.uncertainty:.2f} -> {after.uncertainty:.2f}")
    console.print(f"  Stability:   {before.stability:.2f} -> {after.stability:.2f}")

    if outcome.gate.is_mastered:
        console.print("[bold green]Skill mastered![/bold green]")
    else:
        for blocker in outcome.gate.blockers:
            console.print(f"  [yellow]-[/yellow] {blocker}")


@app.command(name="next")
def next_unit(
    graph_path: Path = typer.Argument(..., help="Skill graph JSON file"),
    learner: str = LEARNER_OPTION,
    thread: str = THREAD_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print the raw scheduler result"),
    db: Optional[str] = DB_OPTION,
) -> None:
    """Show what the learner should practise next."""
    graph = _load_graph(graph_path)
    engine = _engine()
    store = _open_store(db)

    result = engine.next_unit(thread, graph, store.list_for_thread(learner, thread))

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
        return

    if isinstance(result, ThreadCompleted):
        console.print(f"[bold green]Thread complete![/bold green] {result.summary['totalNodes']} skills mastered")
        return

    if isinstance(result, ThreadBlocked):
        console.print(f"[bold red]Blocked:[/bold red] {result.reason}")
        raise typer.Exit(1)

    console.print(
        f"\nNext: [bold cyan]{result.node.name or result.node.id}[/bold cyan] "
        f"as [magenta]{result.unit_type.display_name}[/magenta]"
    )
    console.print(f"  Mastery {result.mastery_progress.mastery_percent}%")

    table = Table(title="Frontier")
    table.add_column("Node")
    table.add_column("Priority", justify="right")
    table.add_column("Unit type")
    for candidate in result.frontier:
        table.add_row(candidate.node_id, f"{candidate.priority:.3f}", candidate.unit_type.value)
    console.print(table)


@app.command()
def status(
    graph_path: Path = typer.Argument(..., help="Skill graph JSON file"),
    learner: str = LEARNER_OPTION,
    thread: str = THREAD_OPTION,
    db: Optional[str] = DB_OPTION,
) -> None:
    """Show per-node mastery gate status for a thread."""
    graph = _load_graph(graph_path)
    engine = _engine()
    store = _open_store(db)

    node_ids = set(graph.node_ids())
    states = {
        state.node_id: state
        for state in store.list_for_thread(learner, thread)
        if state.node_id in node_ids
    }
    bands = engine.bands(graph, states.values())

    table = Table(title=f"Thread {thread}")
    table.add_column("Node")
    table.add_column("Band")
    table.add_column("Mastery", justify="right")
    table.add_column("Blockers")

    for node in graph.nodes:
        band = bands[node.id]
        state = states.get(node.id)
        if state is None:
            label = band.value if band is MasteryBand.LOCKED else "not started"
            table.add_row(node.id, f"[dim]{label}[/dim]", "-", "")
            continue
        gate = engine.gate(state, node)
        table.add_row(
            node.id,
            f"[{band.rich_style}]{band.value}[/{band.rich_style}]",
            f"{gate.progress.mastery_percent}%",
            "; ".join(gate.blockers),
        )
    console.print(table)

    progress = engine.thread_progress(states.values(), graph)
    console.print(
        f"Mastered {progress.mastered_nodes}/{progress.total_nodes} "
        f"({progress.overall_progress}%), average mastery {progress.avg_mastery}%"
    )


# =============================================================================
# Entry Point
# =============================================================================


def run() -> None:
    """CLI entry point."""
    configure_logging(get_settings())
    app()


if __name__ == "__main__":
    run()
