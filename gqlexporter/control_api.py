"""HTTP API serving scrapes using FastAPI."""
from contextlib import asynccontextmanager
from typing import Dict, List, Tuple
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST
from starlette.concurrency import run_in_threadpool
import logging
import time

from gqlexporter.engine import ScrapeEngine
from gqlexporter.errors import (
    ExporterError, FlattenError, PreprocessError, QueryError,
    QueryNotFoundError, ScrapeRequestError, TransportError,
)

logger = logging.getLogger(__name__)

INDEX_TEXT = (
    "GraphQL exporter for Prometheus.\n"
    "Exporter metrics available at /metrics.\n"
    "Querying available at /query?endpoint=<url>&query=<graphql>.\n"
    "Query files available at /queries/<queryfile>.\n"
)

# Checked in order, subclasses first
STATUS_CODES: List[Tuple[type, int]] = [
    (QueryNotFoundError, 404),
    (ScrapeRequestError, 400),
    (PreprocessError, 400),
    (TransportError, 502),
    (QueryError, 502),
    (FlattenError, 500),
]


def status_for(error: ExporterError) -> int:
    for cls, status in STATUS_CODES:
        if isinstance(error, cls):
            return status
    return 500


async def collect_params(request: Request) -> List[Tuple[str, str]]:
    """Form-encoded body parameters (POST only) followed by URL parameters."""
    params: List[Tuple[str, str]] = []
    if request.method == "POST":
        form = await request.form()
        params.extend((k, v) for k, v in form.multi_items() if isinstance(v, str))
    params.extend(request.query_params.multi_items())
    return params


def split_params(params: List[Tuple[str, str]]) -> Tuple[str, List[str], Dict[str, str]]:
    """
    Split scrape parameters into endpoint, queries and GraphQL variables.

    Only the first endpoint counts. Every other parameter becomes a
    variable, the last value winning when a key repeats.
    """
    endpoint = ""
    queries: List[str] = []
    variables: Dict[str, str] = {}
    for key, value in params:
        if key == "endpoint":
            if not endpoint:
                endpoint = value
        elif key == "query":
            queries.append(value)
        else:
            variables[key] = value
    return endpoint, queries, variables


class ExporterAPI:
    """FastAPI application exposing scrape endpoints."""

    def __init__(self, engine: ScrapeEngine):
        """
        Initialize the API.

        Args:
            engine: Scrape engine shared by all requests
        """
        self.engine = engine
        self.app = FastAPI(title="GraphQL Prometheus Exporter", lifespan=self._lifespan)

        # Setup routes
        self._setup_routes()

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        yield
        self.engine.close()

    def _error_response(self, error: ExporterError, context: str) -> PlainTextResponse:
        status = status_for(error)
        if status >= 500:
            logger.error(f"{context}: {error}")
        else:
            logger.info(f"{context}: {error}")
        return PlainTextResponse(f"{context}: {error}\n", status_code=status)

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/", response_class=PlainTextResponse)
        async def index():
            """Basic info about the exporter."""
            return INDEX_TEXT

        @self.app.get("/healthz")
        async def healthz():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": time.time()}

        @self.app.get("/metrics")
        async def metrics():
            """Metrics for the exporter itself."""
            return Response(self.engine.self_metrics.render(), media_type=CONTENT_TYPE_LATEST)

        @self.app.api_route("/query", methods=["GET", "POST"])
        async def query(request: Request):
            """Scrape the GraphQL queries given as request parameters."""
            endpoint, queries, variables = split_params(await collect_params(request))

            # Authentication is done by passing the scrape headers through,
            # so query the exporter with the credentials the API expects.
            headers = dict(request.headers)

            try:
                output = await run_in_threadpool(
                    self.engine.scrape, endpoint, queries, variables, headers
                )
            except ExporterError as e:
                return self._error_response(e, "queryHandler")
            except Exception as e:
                logger.error(f"Unexpected error while scraping {endpoint}: {e}", exc_info=True)
                return PlainTextResponse(f"queryHandler: internal error: {e}\n", status_code=500)

            return Response(output, media_type=CONTENT_TYPE_LATEST)

        @self.app.get("/queries/{name}")
        async def named_query(name: str, request: Request):
            """Scrape a query file against the configured endpoint."""
            try:
                output = await run_in_threadpool(
                    self.engine.scrape_named, name, dict(request.headers)
                )
            except ExporterError as e:
                return self._error_response(e, f"query {name}")
            except Exception as e:
                logger.error(f"Unexpected error while scraping query {name}: {e}", exc_info=True)
                return PlainTextResponse(f"query {name}: internal error: {e}\n", status_code=500)

            return Response(output, media_type=CONTENT_TYPE_LATEST)

    def run(self, host: str = "127.0.0.1", port: int = 9199, ssl_certfile=None, ssl_keyfile=None):
        """Run the API server."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=host,
            port=port,
            ssl_certfile=ssl_certfile,
            ssl_keyfile=ssl_keyfile,
            log_level="info"
        )
