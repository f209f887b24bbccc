"""Operational HTTP surface: liveness, readiness and the run-now trigger."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from flask import Flask
from werkzeug.serving import make_server

from powerdns_manager.loop import ConvergenceLoop

logger = logging.getLogger(__name__)

SHUTDOWN_GRACE_SECONDS = 5.0


def create_app(loop: ConvergenceLoop) -> Flask:
    app = Flask(__name__)

    @app.route("/v1/liveness", methods=["GET"])
    def liveness():
        return "", 204

    @app.route("/v1/readiness", methods=["GET"])
    def readiness():
        return "", 204

    @app.route("/v1/manager/jobs", methods=["POST"])
    def run_now():
        if not loop.request_run():
            logger.info("True up requested while a run is in progress, refusing")
            return "", 503
        logger.info("True up requested via API")
        return "", 204

    return app


class APIServer:
    """Serves the Flask app from a background thread."""

    def __init__(self, app: Flask, host: str, port: int):
        self._server = make_server(host, port, app, threaded=True)
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self._server.server_port

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="api-server", daemon=True
        )
        self._thread.start()
        logger.info(f"API server listening on {self._server.host}:{self.port}")

    def shutdown(self, grace_seconds: float = SHUTDOWN_GRACE_SECONDS) -> None:
        """Stop accepting requests and give in-flight ones grace_seconds to finish."""
        self._server.shutdown()
        if self._thread is not None:
            self._thread.join(timeout=grace_seconds)
            if self._thread.is_alive():
                logger.warning("API server did not stop within the grace period")
        self._server.server_close()
        logger.info("API server shutdown")
