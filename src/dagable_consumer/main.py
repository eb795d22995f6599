"""CLI entrypoint for dagable-consumer."""

from pathlib import Path

import rich_click as click

from dagable_consumer import __version__
from dagable_consumer.controllers import (
    BatchExportCommand,
    ConsumerCliController,
    EnqueueCommand,
    JobShowCommand,
    MigrateCommand,
    WorkerCommand,
)
from dagable_consumer.errors import MessageDecodeError
from dagable_consumer.models import GraphSettings

click.rich_click.USE_MARKDOWN = True
CONTROLLER = ConsumerCliController()


@click.group()
@click.version_option(version=__version__, prog_name="dagable-consumer")
def dagable_consumer() -> None:
    """Task graph batch consumer CLI."""


@dagable_consumer.command("worker")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--once", is_flag=True, default=False, help="Handle at most one message and exit.")
@click.option(
    "--max-messages",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many messages (default: unlimited).",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many consecutive empty polls (default: never).",
)
def worker(
    db_path: Path | None,
    once: bool,
    max_messages: int | None,
    max_idle_polls: int | None,
) -> None:
    """Consume job requests from the broker and persist task graph batches."""

    _emit_lines(
        CONTROLLER.run_worker(
            WorkerCommand(
                db_path=db_path,
                once=once,
                max_messages=max_messages,
                max_idle_polls=max_idle_polls,
            ),
        ),
    )


@dagable_consumer.command("enqueue")
@click.option("--graph-count", type=click.IntRange(min=0), required=True, help="Graphs to generate.")
@click.option("--request-guid", default=None, help="Request id (default: random UUID).")
@click.option("--user-guid", default=None, help="Submitting user id (default: random UUID).")
@click.option("--include-cp", is_flag=True, default=False, help="Set the IncludeCP flag.")
@click.option("--min-layer", type=click.IntRange(min=0), default=2, show_default=True)
@click.option("--max-layer", type=click.IntRange(min=0), default=5, show_default=True)
@click.option("--min-nodes", type=click.IntRange(min=0), default=10, show_default=True)
@click.option("--max-nodes", type=click.IntRange(min=0), default=30, show_default=True)
@click.option("--min-comm", type=click.IntRange(min=0), default=1, show_default=True)
@click.option("--max-comm", type=click.IntRange(min=0), default=10, show_default=True)
@click.option("--min-comp", type=click.IntRange(min=0), default=1, show_default=True)
@click.option("--max-comp", type=click.IntRange(min=0), default=10, show_default=True)
@click.option("--min-processors", type=click.IntRange(min=0), default=2, show_default=True)
@click.option("--max-processors", type=click.IntRange(min=0), default=4, show_default=True)
def enqueue(  # noqa: PLR0913
    graph_count: int,
    request_guid: str | None,
    user_guid: str | None,
    include_cp: bool,
    min_layer: int,
    max_layer: int,
    min_nodes: int,
    max_nodes: int,
    min_comm: int,
    max_comm: int,
    min_comp: int,
    max_comp: int,
    min_processors: int,
    max_processors: int,
) -> None:
    """Publish a job request onto the work queue."""

    try:
        lines = CONTROLLER.enqueue(
            EnqueueCommand(
                graph_count=graph_count,
                request_guid=request_guid,
                user_guid=user_guid,
                include_cp=include_cp,
                graph_settings=GraphSettings(
                    min_layer=min_layer,
                    max_layer=max_layer,
                    min_nodes=min_nodes,
                    max_nodes=max_nodes,
                    min_comm=min_comm,
                    max_comm=max_comm,
                    min_comp=min_comp,
                    max_comp=max_comp,
                    min_processors=min_processors,
                    max_processors=max_processors,
                ),
            ),
        )
    except MessageDecodeError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@dagable_consumer.group()
def jobs() -> None:
    """Job inspection commands."""


@jobs.command("show")
@click.argument("request_guid")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def jobs_show(request_guid: str, db_path: Path | None) -> None:
    """Show progress and batches of one job."""

    _emit_lines(CONTROLLER.show_job(JobShowCommand(db_path=db_path, request_guid=request_guid)))


@dagable_consumer.group()
def batches() -> None:
    """Batch payload commands."""


@batches.command("export")
@click.argument("request_guid")
@click.argument("batch_number", type=click.IntRange(min=1))
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--output",
    "output_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Write JSON here instead of stdout.",
)
def batches_export(
    request_guid: str,
    batch_number: int,
    db_path: Path | None,
    output_path: Path | None,
) -> None:
    """Decompress a stored batch into task graph JSON."""

    _emit_lines(
        CONTROLLER.export_batch(
            BatchExportCommand(
                db_path=db_path,
                request_guid=request_guid,
                batch_number=batch_number,
                output_path=output_path,
            ),
        ),
    )


@dagable_consumer.group()
def db() -> None:
    """Database maintenance commands."""


@db.command("upgrade")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def db_upgrade(db_path: Path | None) -> None:
    """Apply schema migrations up to head."""

    _emit_lines(CONTROLLER.migrate(MigrateCommand(db_path=db_path)))


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    dagable_consumer()
