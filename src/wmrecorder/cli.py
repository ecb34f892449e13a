# src/wmrecorder/cli.py
import logging
from typing import Optional

import typer

from wmrecorder.config import Settings
from wmrecorder.db.store import open_store
from wmrecorder.errors import ConfigError, StoreError
from wmrecorder.metrics import start_metrics_server
from wmrecorder.monitor.i3_source import I3EventSource
from wmrecorder.monitor.supervisor import Backoff, Supervisor

logger = logging.getLogger("wmrecorder")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Commands:
#   wmrecorder record     run the recorder until killed
#   wmrecorder init-db    create the database schema and exit
cli = typer.Typer(help="Record i3 window events into an SQLite database.", no_args_is_help=True)


def setup_logging(log_level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        force=True,
    )


def _load_settings(**overrides) -> Settings:
    try:
        return Settings.from_env().with_overrides(**overrides)
    except ConfigError as exc:
        setup_logging()
        logger.error("Invalid configuration: %s", exc)
        raise typer.Exit(code=1)


@cli.command()
def record(
    db: Optional[str] = typer.Option(None, "--db", help="Database file or SQLAlchemy URL."),
    socket: Optional[str] = typer.Option(None, "--socket", help="i3 IPC socket path."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR."),
    idle_timeout: Optional[float] = typer.Option(
        None, "--idle-timeout", min=0.1, help="Seconds without events before probing i3."
    ),
    metrics_port: Optional[int] = typer.Option(
        None, "--metrics-port", min=1, max=65535, help="Expose Prometheus metrics on this port."
    ),
):
    """Subscribe to i3 window events and record them until killed."""
    settings = _load_settings(
        db_path=db,
        socket_path=socket,
        log_level=log_level,
        idle_timeout=idle_timeout,
        metrics_port=metrics_port,
    )
    setup_logging(settings.log_level)

    try:
        store = open_store(settings.db_path)
    except StoreError as exc:
        logger.error("Unable to open database: %s", exc)
        raise typer.Exit(code=1)

    if settings.metrics_port:
        start_metrics_server(settings.metrics_port)

    supervisor = Supervisor(
        source=I3EventSource(settings.socket_path),
        store=store,
        backoff=Backoff(initial=settings.backoff_initial, maximum=settings.backoff_max),
        idle_timeout=settings.idle_timeout,
    )
    logger.info("Recording window events into %s", settings.db_path)
    try:
        supervisor.run()
    except KeyboardInterrupt:
        logger.info("Stopped by user")
    finally:
        store.close()


@cli.command("init-db")
def init_db(db: Optional[str] = typer.Option(None, "--db", help="Database file or SQLAlchemy URL.")):
    """Create the window_events table if it does not exist."""
    settings = _load_settings(db_path=db)
    setup_logging(settings.log_level)

    try:
        store = open_store(settings.db_path)
    except StoreError as exc:
        logger.error("Unable to open database: %s", exc)
        raise typer.Exit(code=1)
    store.close()
    typer.echo(f"Schema ready in {settings.db_path}")


if __name__ == "__main__":
    cli()
