"""Cadence CLI — record attempts, inspect due cards, manage the card catalog and server."""

import asyncio
import json
import logging
import sys
from dataclasses import asdict
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Annotated, Any

import typer

from cadence.application.config import AppConfig, resolve_config
from cadence.domain import constants as C
from cadence.domain.errors import InvalidInputError, PersistenceError

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="cadence: spaced-repetition scheduler for flashcards.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Subgroups
# ---------------------------------------------------------------------------

cards_app = typer.Typer(help="Manage the card catalog.", no_args_is_help=True)
app.add_typer(cards_app, name="cards")

config_app = typer.Typer(help="Manage cadence configuration.", no_args_is_help=True)
app.add_typer(config_app, name="config")

DbOption = Annotated[
    Path | None, typer.Option("--db", help="SQLite database path. Defaults to config.")
]
AtOption = Annotated[
    datetime | None,
    typer.Option("--at", help="Evaluate at this time (UTC if no offset). Defaults to now."),
]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON.")]


def _resolve_with_overrides(**overrides: Any) -> AppConfig:
    return resolve_config({k: v for k, v in overrides.items() if v is not None})


def _scheduler(db: Path | None):
    from cadence.application.factory import build_scheduler

    return build_scheduler(_resolve_with_overrides(database_path=db))


def _run(coro):
    """Run a coroutine, turning domain errors into CLI exit codes."""
    try:
        return asyncio.run(coro)
    except InvalidInputError as e:
        typer.secho(f"Invalid input: {e}", fg="red", err=True)
        raise typer.Exit(2) from e
    except PersistenceError as e:
        typer.secho(f"Storage error: {e}", fg="red", err=True)
        raise typer.Exit(1) from e


def _jsonable(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {k: _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_jsonable(v) for v in obj]
    return obj


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 0,
):
    """Global settings for cadence."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    level = logging.DEBUG if verbose >= 2 else logging.INFO if verbose == 1 else logging.WARNING
    logging.getLogger().setLevel(level)


# ---------------------------------------------------------------------------
# Scheduling commands
# ---------------------------------------------------------------------------


@app.command()
def record(
    learner_id: Annotated[str, typer.Argument(help="Learner identifier.")],
    card_id: Annotated[str, typer.Argument(help="Card identifier.")],
    correct: Annotated[
        bool, typer.Option("--correct/--incorrect", help="Outcome of the answer.")
    ] = True,
    at: AtOption = None,
    attempt_id: Annotated[
        str | None, typer.Option(help="Idempotency key; a repeated key is not applied twice.")
    ] = None,
    db: DbOption = None,
):
    """[bold green]Record[/bold green] one answered card and print its new progress."""
    scheduler = _scheduler(db)
    result = _run(
        scheduler.record_attempt(learner_id, card_id, correct, now=at, attempt_id=attempt_id)
    )
    typer.echo(json.dumps(_jsonable(asdict(result)), indent=2))


@app.command()
def due(
    learner_id: Annotated[str, typer.Argument(help="Learner identifier.")],
    at: AtOption = None,
    exclude_recent: Annotated[
        int | None,
        typer.Option(help="Skip cards answered within this many minutes."),
    ] = None,
    json_output: JsonOption = False,
    db: DbOption = None,
):
    """List cards due for a learner, never-seen cards first."""
    scheduler = _scheduler(db)
    window = timedelta(minutes=exclude_recent) if exclude_recent is not None else None
    items = _run(scheduler.due_items(learner_id, now=at, exclude_recent=window))

    if json_output:
        payload = [
            {
                "card": asdict(item.card),
                "progress": asdict(item.progress) if item.progress else None,
            }
            for item in items
        ]
        typer.echo(json.dumps(_jsonable(payload), indent=2))
        return

    if not items:
        typer.secho("Nothing due.", fg="green")
        return

    for item in items:
        if item.progress is None:
            typer.echo(f"  {item.card.card_id}  new")
        else:
            p = item.progress
            typer.echo(f"  {item.card.card_id}  {p.state}  due {p.due_at.isoformat()}")
    typer.echo(f"Due: {len(items)}")


@app.command()
def summary(
    learner_id: Annotated[str, typer.Argument(help="Learner identifier.")],
    at: AtOption = None,
    json_output: JsonOption = False,
    db: DbOption = None,
):
    """Count cards due now, within 15 minutes, the next hour, today and tomorrow."""
    scheduler = _scheduler(db)
    result = _run(scheduler.due_summary(learner_id, now=at))
    data = {**asdict(result), "total": result.total}

    if json_output:
        typer.echo(json.dumps(data, indent=2))
        return
    for key, value in data.items():
        typer.echo(f"{key.replace('_', ' '):>18}: {value}")


@app.command()
def progress(
    learner_id: Annotated[str, typer.Argument(help="Learner identifier.")],
    card_id: Annotated[str | None, typer.Argument(help="Single card to show.")] = None,
    db: DbOption = None,
):
    """Show stored progress for a learner (or one card) as JSON."""
    scheduler = _scheduler(db)
    if card_id is None:
        records = _run(scheduler.list_progress(learner_id))
        typer.echo(json.dumps(_jsonable([asdict(r) for r in records]), indent=2))
        return

    record = _run(scheduler.get_progress(learner_id, card_id))
    if record is None:
        typer.secho(f"No progress for {learner_id}/{card_id}.", fg="yellow")
        raise typer.Exit(1)
    typer.echo(json.dumps(_jsonable(asdict(record)), indent=2))


@app.command()
def activity(
    learner_id: Annotated[str, typer.Argument(help="Learner identifier.")],
    day: Annotated[
        datetime | None,
        typer.Option(formats=["%Y-%m-%d"], help="UTC day (YYYY-MM-DD). Defaults to today."),
    ] = None,
    db: DbOption = None,
):
    """Show how many cards a learner answered on a day."""
    from cadence.application.scheduler.service import utc_now

    scheduler = _scheduler(db)
    target = day.date() if day else utc_now().date()
    count = _run(scheduler.study_count(learner_id, target))
    typer.echo(f"{learner_id} {target.isoformat()}: {count}")


@app.command()
def prune(
    learner_id: Annotated[str, typer.Argument(help="Learner identifier.")],
    older_than_days: Annotated[
        int, typer.Option(min=0, help="Delete attempt log entries older than this many days.")
    ] = C.ATTEMPT_RETENTION_DAYS,
    at: AtOption = None,
    db: DbOption = None,
):
    """Delete old attempt log entries. Progress and daily counts are kept."""
    scheduler = _scheduler(db)
    deleted = _run(
        scheduler.prune_attempts(learner_id, older_than=timedelta(days=older_than_days), now=at)
    )
    typer.secho(f"Deleted {deleted} attempts.", fg="green")


# ---------------------------------------------------------------------------
# Cards subgroup
# ---------------------------------------------------------------------------


@cards_app.command("load")
def cards_load(
    path: Annotated[Path, typer.Argument(help="YAML file with a list of cards.")],
    db: DbOption = None,
):
    """Insert or update cards from a YAML file."""
    from cadence.application.factory import get_progress_store
    from cadence.infrastructure.adapters.card_loader import CardFileError, load_cards

    try:
        cards = load_cards(path)
    except (OSError, CardFileError) as e:
        typer.secho(f"Could not read cards: {e}", fg="red", err=True)
        raise typer.Exit(1) from e

    store = get_progress_store(_resolve_with_overrides(database_path=db))
    written = _run(store.upsert_cards(cards))
    typer.secho(f"Loaded {written} cards.", fg="green")


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show():
    """Display final resolved configuration."""
    config = resolve_config()
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    typer.echo(json.dumps(d, indent=2))


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@app.command()
def serve(
    port: Annotated[int | None, typer.Option(help="Port to bind the server to.")] = None,
    host: Annotated[str | None, typer.Option(help="Host to bind the server to.")] = None,
    reload: Annotated[bool, typer.Option(help="Enable auto-reload.")] = False,
):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    config = _resolve_with_overrides(host=host, port=port)
    uvicorn.run("cadence.server:app", host=config.host, port=config.port, reload=reload)
