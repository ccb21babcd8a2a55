"""
Command-line interface for the task ledger.

Commands share one database path and access context resolved from options or
environment variables, so scripts can set them once:

    export DATABASE_PATH=ledger.db LEDGER_ORGANIZATION_ID=acme
    task-ledger init-db
    task-ledger import project.yaml
    task-ledger ready AUTH
"""

import logging
from contextlib import contextmanager
from typing import Iterator

import click
import uvicorn

from .api import create_app
from .config import DEFAULT_DB_PATH, LedgerSettings, configure_logging
from .database import LedgerDatabase
from .errors import LedgerError
from .importer import import_project_from_file
from .tasks import TaskService

logger = logging.getLogger(__name__)


@contextmanager
def ledger_errors() -> Iterator[None]:
    """Turn ledger errors into click errors with a non-zero exit code."""
    try:
        yield
    except LedgerError as e:
        if e.internal:
            logger.error(f"Internal error: {e.message} {e.details}")
            raise click.ClickException("Internal server error")
        raise click.ClickException(e.message)


def open_database(ctx: click.Context) -> LedgerDatabase:
    db = LedgerDatabase(ctx.obj["db_path"])
    ctx.call_on_close(db.close)
    return db


@click.group()
@click.option("--db-path", envvar="DATABASE_PATH", default=DEFAULT_DB_PATH, show_default=True,
              help="SQLite database file")
@click.option("--org", "organization_id", envvar="LEDGER_ORGANIZATION_ID", default="default",
              show_default=True, help="Organization the commands act for")
@click.option("--user", "user_id", envvar="LEDGER_USER_ID", default="cli", show_default=True,
              help="User recorded on created versions")
@click.option("--log-level", envvar="LEDGER_LOG_LEVEL", default="WARNING", show_default=True,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
@click.pass_context
def main(ctx: click.Context, db_path: str, organization_id: str, user_id: str, log_level: str):
    """Versioned projects, tasks and documents with a task dependency graph."""
    configure_logging(log_level)
    ctx.ensure_object(dict)
    ctx.obj.update(db_path=db_path, organization_id=organization_id, user_id=user_id)


@main.command("init-db")
@click.option("--fresh", is_flag=True, help="Drop all existing tables first")
@click.pass_context
def init_db(ctx: click.Context, fresh: bool):
    """Create the database schema."""
    db = open_database(ctx)
    if fresh:
        db.initialize_fresh()
    click.echo(f"Database ready at {ctx.obj['db_path']}")


@main.command("import")
@click.argument("yaml_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_command(ctx: click.Context, yaml_file: str):
    """Create a project with its epics, tasks and dependencies from YAML."""
    db = open_database(ctx)
    with ledger_errors():
        stats = import_project_from_file(db, yaml_file, ctx.obj["organization_id"], ctx.obj["user_id"])

    click.echo(
        f"Imported project {stats['project_key']}: {stats['epics_created']} epics, "
        f"{stats['tasks_created']} tasks, {stats['dependencies_set']} dependencies"
    )
    for ref, display_id in stats["refs"].items():
        click.echo(f"  {ref} -> {display_id}")


@main.command("ready")
@click.argument("project_key")
@click.pass_context
def ready(ctx: click.Context, project_key: str):
    """List tasks that can be worked on now, in dependency order."""
    db = open_database(ctx)
    with ledger_errors():
        tasks = TaskService(db).get_ready_tasks(ctx.obj["organization_id"], project_key)

    if not tasks:
        click.echo("No ready tasks")
        return
    for task in tasks:
        priority = "-" if task.priority is None else f"P{task.priority}"
        click.echo(f"{task.key}\t{task.status}\t{priority}\t{task.title}")


@main.command("serve")
@click.option("--host", envvar="LEDGER_HOST", default="127.0.0.1", show_default=True)
@click.option("--port", envvar="LEDGER_PORT", default=8000, type=int, show_default=True)
@click.pass_context
def serve(ctx: click.Context, host: str, port: int):
    """Run the HTTP API with uvicorn."""
    settings = LedgerSettings.from_env()
    settings.database_path = ctx.obj["db_path"]
    settings.host = host
    settings.port = port

    click.echo(f"Serving task ledger API on http://{host}:{port} (database: {settings.database_path})")
    uvicorn.run(create_app(settings=settings), host=host, port=port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
