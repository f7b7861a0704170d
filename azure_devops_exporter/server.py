"""HTTP endpoint exposing the collected metrics."""

import logging

import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from azure_devops_exporter import __version__
from azure_devops_exporter.settings import ServerSettings

logger = logging.getLogger(__name__)


def create_app(registry: CollectorRegistry) -> FastAPI:
    """Create the exporter application serving `registry`.

    `/metrics` renders whatever the registry holds at request time; the
    health endpoints only report that the process is serving.
    """
    app = FastAPI(title="Azure DevOps Exporter", version=__version__)

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz", response_class=PlainTextResponse)
    def healthz() -> str:
        return "Ok"

    @app.get("/readyz", response_class=PlainTextResponse)
    def readyz() -> str:
        return "Ok"

    return app


def serve(app: FastAPI, settings: ServerSettings) -> None:
    """Serve `app` until the process is interrupted."""
    logger.info("Starting HTTP server on %s:%d", settings.host, settings.port)
    # log_config=None keeps the logging configured by main
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
