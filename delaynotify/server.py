"""The HTTP application and its server loop."""

from __future__ import annotations

import logging
import os
import socketserver
import threading
import time
from typing import Any
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from flask import Flask, g, request, send_from_directory

from delaynotify.api import make_blueprint
from delaynotify.cache import Cache
from delaynotify.config import ServerConfig
from delaynotify.db import Database

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.2
_SHUTDOWN_SECONDS = 5.0


class _ThreadingWSGIServer(socketserver.ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.debug(format, *args)


def create_app(
    database: Database,
    cache: Cache | None,
    static_dir: str | os.PathLike[str] = "./web",
    debug: bool = False,
) -> Flask:
    """Build the application: the notification API, static files and the index page."""
    static_path = os.path.abspath(os.fspath(static_dir))
    app = Flask(__name__, static_folder=static_path, static_url_path="/static")
    app.debug = debug
    app.register_blueprint(make_blueprint(database, cache))

    @app.before_request
    def _start_timer() -> None:
        g.request_started = time.perf_counter()

    @app.after_request
    def _log_request(response: Any) -> Any:
        started = g.get("request_started")
        duration = 0.0 if started is None else time.perf_counter() - started
        logger.info(
            "%s %s -> %d in %.3f ms",
            request.method,
            request.path,
            response.status_code,
            duration * 1000,
        )
        return response

    @app.get("/")
    def index() -> Any:
        return send_from_directory(static_path, "index.html")

    return app


def run_server(app: Flask, config: ServerConfig, stop_event: threading.Event) -> None:
    """Serve ``app`` until ``stop_event`` is set; raise if the server cannot run."""
    server = make_server(
        config.host_name,
        config.port,
        app,
        server_class=_ThreadingWSGIServer,
        handler_class=_QuietHandler,
    )
    logger.info("starting HTTP server on %s:%d", config.host_name, config.port)

    failures: list[BaseException] = []

    def serve() -> None:
        try:
            server.serve_forever()
        except BaseException as exc:
            failures.append(exc)

    thread = threading.Thread(target=serve, name="http-server", daemon=True)
    thread.start()
    try:
        while not stop_event.wait(_POLL_SECONDS):
            if not thread.is_alive():
                break
    finally:
        if thread.is_alive():
            logger.info("shutdown requested, stopping the server")
            server.shutdown()
        server.server_close()
        thread.join(_SHUTDOWN_SECONDS)

    if failures:
        logger.error("server stopped with an error: %s", failures[0])
        raise failures[0]
    logger.info("server stopped")