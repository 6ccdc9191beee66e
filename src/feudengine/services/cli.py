"""Typer CLI entry point for hosting survey-game sessions in the terminal."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import structlog
import typer
from dotenv import load_dotenv

from ..config.settings import DEFAULT_CONFIG_PATH, load_engine_config
from ..core.matching import levenshtein_distance, loosely_matches, similarity
from ..core.normalize import normalize_answer
from ..core.packs import PackLibrary, decode_pack_token
from ..core.persistence import JsonFileStore
from ..core.schemas import GamePhase
from ..engine import FeudEngine
from ..narrator import BoardNarrator
from ..utils.rng import build_rng

LOGGER = structlog.get_logger(__name__)

app = typer.Typer(help="Host a survey-style team game.", invoke_without_command=False)
packs_app = typer.Typer(help="Manage question packs.")
app.add_typer(packs_app, name="packs")
_configured_logging = False

PLAY_HELP = (
    "Type a guess, or a command: :reveal N, :strike, :bank TEAM, :next, :end, :quit"
)


def configure_logging(level: int = logging.INFO) -> None:
    global _configured_logging
    if _configured_logging:
        return
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
    _configured_logging = True


def _handle_command(engine: FeudEngine, narrator: BoardNarrator, line: str) -> bool:
    """Run a ``:command``; return False when the session should stop."""

    name, _, argument = line[1:].partition(" ")
    name = name.lower()
    if name == "quit":
        return False
    if name == "reveal":
        try:
            engine.reveal_answer_by_index(int(argument) - 1)
        except ValueError:
            narrator.console.print("[red]Usage: :reveal N[/red]")
    elif name == "strike":
        engine.register_strike()
    elif name == "bank":
        try:
            engine.bank_round_to_team(int(argument) - 1)
        except ValueError:
            narrator.console.print("[red]Usage: :bank 1|2[/red]")
    elif name == "next":
        if engine.next_round() is None and engine.phase is not GamePhase.RESULTS:
            narrator.console.print("[red]Cannot advance right now.[/red]")
    elif name == "end":
        engine.end_game()
    else:
        narrator.console.print(f"[red]Unknown command: {name}[/red]")
    return True


@app.command("play")
def play(
    team_a: str = typer.Option("", "--team-a", help="Name of the first team"),
    team_b: str = typer.Option("", "--team-b", help="Name of the second team"),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, help="Path to engine configuration JSON"),
    seed: Optional[int] = typer.Option(None, help="Seed for a deterministic question order"),
    resume: bool = typer.Option(False, "--resume", help="Continue the saved game instead of starting over"),
) -> None:
    """Play an interactive game in the terminal."""

    load_dotenv()
    configure_logging(logging.WARNING)
    engine_config = load_engine_config(config)
    engine = FeudEngine(
        config=engine_config,
        storage=JsonFileStore(engine_config.storage_dir),
        rng=build_rng(seed=seed),
    )
    narrator = BoardNarrator()

    if not (resume and engine.phase in (GamePhase.PLAYING, GamePhase.STEAL)):
        if not engine.start_game(team_a, team_b):
            narrator.console.print("[red]The active pack has no questions.[/red]")
            raise typer.Exit(code=1)

    narrator.console.print(f"[dim]{PLAY_HELP}[/dim]")
    try:
        while engine.phase is not GamePhase.RESULTS:
            state = engine.state
            narrator.divider(engine.packs.active_pack.name)
            narrator.scoreboard(state)
            narrator.board(state)
            if state.current_question is None:
                # Saved between rounds: the turn already passed, only the question is missing.
                question = engine.draw_next_question()
                if question is None:
                    engine.end_game()
                    break
                engine.set_next_question(question)
                continue
            if state.round_ended:
                narrator.round_result(state)
                if engine.next_round() is None:
                    break
                continue

            prompt = "Steal guess" if state.phase is GamePhase.STEAL else f"{state.active_team.name}"
            line = typer.prompt(prompt, default="", show_default=False).strip()
            if line.startswith(":"):
                if not _handle_command(engine, narrator, line):
                    return
                continue

            if state.phase is GamePhase.STEAL:
                resolution = asyncio.run(engine.submit_steal(line))
            else:
                resolution = asyncio.run(engine.submit_answer(line))
            narrator.verdict(resolution)
    finally:
        engine.close()

    narrator.game_over(engine.state)


@app.command("check")
def check(
    canonical: str = typer.Argument(..., help="Board answer"),
    guess: str = typer.Argument(..., help="Player guess"),
) -> None:
    """Show how the local matcher judges a guess against one answer."""

    left, right = normalize_answer(canonical), normalize_answer(guess)
    typer.echo(f"normalized: {left!r} vs {right!r}")
    typer.echo(f"distance: {levenshtein_distance(left, right)}")
    typer.echo(f"similarity: {similarity(left, right):.2f}")
    typer.echo(f"match: {'yes' if loosely_matches(left, right) else 'no'}")


def _library(config: Path) -> PackLibrary:
    engine_config = load_engine_config(config)
    return PackLibrary(JsonFileStore(engine_config.storage_dir))


def _is_file(source: str) -> bool:
    # Share tokens routinely exceed the filesystem's name length limit.
    try:
        return Path(source).is_file()
    except OSError:
        return False


@packs_app.command("list")
def list_packs(
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, help="Path to engine configuration JSON"),
) -> None:
    """List every pack, builtin first."""

    library = _library(config)
    active_id = library.active_pack.id
    for pack in library.packs:
        marker = "*" if pack.id == active_id else " "
        typer.echo(f"{marker} {pack.id}\t{pack.name}\t{len(pack.questions)} questions\t{pack.origin.value}")


@packs_app.command("export")
def export_pack(
    pack_id: str = typer.Argument(..., help="Pack id to export"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write JSON here instead of stdout"),
    token: bool = typer.Option(False, "--token", help="Print a share token instead of JSON"),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, help="Path to engine configuration JSON"),
) -> None:
    """Export a pack as pretty JSON or as a share token."""

    library = _library(config)
    text = library.share_token(pack_id) if token else library.export_pack(pack_id)
    if text is None:
        typer.echo(f"Unknown pack: {pack_id}", err=True)
        raise typer.Exit(code=1)
    if output is not None:
        output.write_text(text, encoding="utf-8")
        typer.echo(f"Pack saved to {output}")
    else:
        typer.echo(text)


@packs_app.command("import")
def import_pack(
    source: str = typer.Argument(..., help="Path to a pack JSON file, or a share token"),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, help="Path to engine configuration JSON"),
) -> None:
    """Import a pack and make it active."""

    library = _library(config)
    if _is_file(source):
        pack = library.import_json(Path(source).read_text(encoding="utf-8"))
    else:
        decoded = decode_pack_token(source)
        pack = library.import_pack(decoded) if decoded is not None else None
    if pack is None:
        typer.echo("Could not read a valid question pack.", err=True)
        raise typer.Exit(code=1)
    LOGGER.info("packs.import_complete", pack_id=pack.id)
    typer.echo(f"Imported {pack.name} ({len(pack.questions)} questions) as {pack.id}")


@packs_app.command("select")
def select_pack(
    pack_id: str = typer.Argument(..., help="Pack id to activate"),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, help="Path to engine configuration JSON"),
) -> None:
    """Choose the pack new games draw from."""

    library = _library(config)
    active = library.set_active(pack_id)
    if active.id != pack_id:
        typer.echo(f"Unknown pack: {pack_id}; using {active.name}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Active pack: {active.name}")


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind"),
    port: int = typer.Option(8000, help="Port to listen on"),
) -> None:
    """Run the answer-validation web service."""

    import uvicorn

    load_dotenv()
    configure_logging()
    LOGGER.info("server.start", host=host, port=port)
    uvicorn.run("feudengine.services.web_api:app", host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    app()
