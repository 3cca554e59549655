from __future__ import annotations

import logging
import random
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from app.config import AppSettings, load_settings
from app.editor_wiring import EditorSession, build_editor_session
from domain.models import BlockType, ContainerSize, ContentData, ContentItem, ContentType, Position, Viewport
from domain.services.anchor_geometry import value_slot_origin
from domain.services.chain_output import render_chain_output
from domain.services.graph_invariants import check_graph_invariants

app = typer.Typer(no_args_is_help=True)
console = Console()


def _load(config: Path | None, log_level: str | None) -> AppSettings:
    try:
        settings = load_settings(config)
    except FileNotFoundError as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(code=1) from exc
    logging.basicConfig(level=(log_level or settings.engine.log_level).upper())
    return settings


@app.command("show-config")
def show_config(
    config: Path | None = typer.Option(None, help="YAML settings file."),
) -> None:
    settings = _load(config, None)
    console.print_json(settings.model_dump_json())


@app.command("cull-bench")
def cull_bench(
    blocks: int = typer.Option(10_000, min=1, help="Number of synthetic blocks."),
    visible: int = typer.Option(20, min=0, help="Blocks placed inside the viewport."),
    width: float = typer.Option(1920.0, help="Container width."),
    height: float = typer.Option(1080.0, help="Container height."),
    zoom: float = typer.Option(1.0, help="Viewport zoom."),
    seed: int = typer.Option(7, help="Random seed for block placement."),
    config: Path | None = typer.Option(None, help="YAML settings file."),
    log_level: str | None = typer.Option(None, help="Logging level."),
) -> None:
    settings = _load(config, log_level)
    session = build_editor_session(settings)
    rng = random.Random(seed)
    inside = min(visible, blocks)
    for index in range(blocks):
        if index < inside:
            position = Position(x=rng.uniform(0, width - 200), y=rng.uniform(0, height - 60))
        else:
            position = Position(x=rng.uniform(10_000, 100_000), y=rng.uniform(10_000, 100_000))
        session.store.create_block(BlockType.WORKS, position)

    viewport = Viewport(zoom=zoom)
    shown = session.culler.calculate_visible_blocks(
        session.store.get_all_blocks(), viewport, ContainerSize(width, height)
    )
    stats = session.culler.get_performance_stats()

    table = Table(title="Culling")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("total", str(stats.total_blocks))
    table.add_row("visible", str(len(shown)))
    table.add_row("culled", str(stats.culled_blocks))
    table.add_row("efficiency", f"{stats.culling_efficiency:.3f}")
    table.add_row("time (ms)", f"{stats.last_calculation_ms:.2f}")
    console.print(table)


def _drop(session: EditorSession, block_id: str, position: Position) -> None:
    session.drag.start_drag(block_id)
    session.drag.update_drag_position(position)
    session.drag.end_drag()


def _build_demo(session: EditorSession) -> str:
    blocks = session.blocks
    constants = session.constants
    start = blocks.create_block(BlockType.FLAG, Position(x=40, y=40), title="start", output="// start")
    loop = blocks.create_block(
        BlockType.LOOP,
        Position(x=40, y=400),
        title="repeat",
        output="for (let i = 0; i < ${count}; i++) {",
        content=[ContentItem(id="count", type=ContentType.CONTENT_VALUE, data=ContentData(value="3"))],
    )
    move = blocks.create_block(
        BlockType.MOVE,
        Position(x=500, y=40),
        title="move",
        output="move(${steps});",
        content=[ContentItem(id="steps", type=ContentType.CONTENT_VALUE, data=ContentData(value="1"))],
    )
    turn = blocks.create_block(BlockType.WORKS, Position(x=500, y=400), title="turn", output="turn();")
    speed = blocks.create_block(BlockType.VALUE, Position(x=900, y=40), title="speed")

    store = session.store
    _drop(session, loop, Position(x=40, y=40 + constants.chain_step))
    loop_block = store.require_block(loop)
    _drop(
        session,
        move,
        loop_block.position.shifted(constants.loop_indent, constants.vertical_spacing),
    )
    _drop(session, turn, store.require_block(move).position.shifted(0, constants.chain_step))
    _drop(session, speed, value_slot_origin(store.require_block(move).position, 0, constants))
    return start


@app.command("demo")
def demo(
    config: Path | None = typer.Option(None, help="YAML settings file."),
    log_level: str | None = typer.Option(None, help="Logging level."),
) -> None:
    settings = _load(config, log_level)
    session = build_editor_session(settings)
    start = _build_demo(session)

    for line in render_chain_output(session.store, start):
        console.print(line, highlight=False, markup=False)

    issues = check_graph_invariants(session.store.get_all_blocks())
    if issues:
        for issue in issues:
            console.print(f"[red]{issue.rule}[/] {issue.block_id}: {issue.detail}")
        raise typer.Exit(code=1)
    console.print(f"[green]Graph consistent[/] ({session.store.block_count} blocks)")


if __name__ == "__main__":
    app()
