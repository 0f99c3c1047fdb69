"""Command entry point: wires storage, cache, broker, scheduler and HTTP server."""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import Any, Sequence

from delaynotify.cache import Cache, connect_cache
from delaynotify.config import read_config
from delaynotify.db import connect_database
from delaynotify.rabbit import connect_rabbit
from delaynotify.scheduler import Scheduler
from delaynotify.server import create_app, run_server

logger = logging.getLogger("delayed-notifier")

STATIC_DIR = "./web"


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="delaynotify", description="Delayed notification service."
    )
    parser.add_argument("--env", default=".env", help="path of the .env configuration file")
    return parser.parse_args(argv)


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def handle(signum: int, frame: Any) -> None:
        stop_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(signum, handle)
        except ValueError:
            logger.debug("cannot install signal handlers outside the main thread")
            return


def _run_scheduler(scheduler: Scheduler, stop_event: threading.Event) -> None:
    try:
        scheduler.run(stop_event)
    except Exception:
        logger.exception("scheduler stopped with an error")
        stop_event.set()


def main(argv: Sequence[str] | None = None) -> int:
    """Run the service until interrupted; return the process exit status."""
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    try:
        config = read_config(args.env)
    except (OSError, ValueError) as exc:
        logger.error("failed to load configuration: %s", exc)
        return 1

    stop_event = threading.Event()
    _install_signal_handlers(stop_event)

    try:
        database = connect_database(config.db)
    except Exception as exc:
        logger.error("database connection failed: %s", exc)
        return 1

    with database:
        cache: Cache | None
        try:
            cache = connect_cache(config.redis, database)
        except Exception as exc:
            logger.warning("cache is not available: %s", exc)
            cache = None

        try:
            publisher = connect_rabbit(config.rabbitmq, config.consumer)
        except Exception as exc:
            logger.error("RabbitMQ connection failed: %s", exc)
            return 1

        with publisher:
            scheduler = Scheduler(database, publisher, config.scheduler.interval, cache)
            scheduler_thread = threading.Thread(
                target=_run_scheduler, args=(scheduler, stop_event), name="scheduler", daemon=True
            )
            scheduler_thread.start()

            app = create_app(database, cache, STATIC_DIR, config.server.gin_mode == "debug")
            try:
                run_server(app, config.server, stop_event)
            except Exception as exc:
                logger.error("server error: %s", exc)
                stop_event.set()
                scheduler_thread.join(5)
                return 1

            stop_event.set()
            scheduler_thread.join(5)

    logger.info("application stopped cleanly")
    return 0