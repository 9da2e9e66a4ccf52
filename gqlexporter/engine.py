"""Scrape orchestration: templating, caching, querying and flattening."""
import os
import re
import time
import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx

from gqlexporter.cache import ResponseCache
from gqlexporter.config import Config
from gqlexporter.errors import (
    ExporterError, FlattenError, PreprocessError, QueryError,
    QueryNotFoundError, ScrapeRequestError, TransportError,
)
from gqlexporter.flatten import ROOT_PATH, flatten
from gqlexporter.graphql import GraphQLClient, GraphQLRequest
from gqlexporter.prom_exporter import ScrapeRegistry, SelfMetrics
from gqlexporter.templating import preprocess_queries

logger = logging.getLogger(__name__)

QUERY_FILE_EXTENSION = ".gql"
_QUERY_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")

ERROR_KINDS = {
    PreprocessError: "preprocess",
    TransportError: "transport",
    QueryError: "query",
    FlattenError: "flatten",
    ScrapeRequestError: "request",
}


def error_kind(error: Exception) -> str:
    for cls, kind in ERROR_KINDS.items():
        if isinstance(error, cls):
            return kind
    return "internal"


class ScrapeEngine:
    """
    Context shared by every scrape: HTTP connection pool, response cache and
    self-metrics. Created once at startup and passed to the HTTP layer.
    """

    def __init__(self, config: Config, http: Optional[httpx.Client] = None, self_metrics: Optional[SelfMetrics] = None):
        self.config = config
        self.http = http if http is not None else httpx.Client()
        self.cache = ResponseCache(config.cache.directory, config.cache.expiration_s)
        self.self_metrics = self_metrics if self_metrics is not None else SelfMetrics()

        if self.cache.enabled:
            self.cache.ensure_directory()
            logger.info(
                f"Response cache at {config.cache.directory} "
                f"(expiration {config.cache.expiration_minutes}m)"
            )
        else:
            logger.info("Response cache disabled")

    def close(self):
        """Release the shared HTTP client."""
        self.http.close()

    def scrape(
        self,
        endpoint: str,
        queries: List[str],
        variables: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> bytes:
        """
        Serve one scrape: rendered exposition text for ``queries`` run
        against ``endpoint``.

        Raises:
            ExporterError: Any scrape failure, see gqlexporter.errors
        """
        scrape_start = time.time()
        try:
            output, outcome = self._scrape(endpoint, queries, dict(variables or {}), headers)
        except ExporterError as e:
            self.self_metrics.record_error(error_kind(e))
            self.self_metrics.record_scrape("error", time.time() - scrape_start)
            raise
        self.self_metrics.record_scrape(outcome, time.time() - scrape_start)
        return output

    def _scrape(self, endpoint, queries, variables, headers):
        if not endpoint:
            raise ScrapeRequestError("no querying endpoint provided")
        if not queries:
            raise ScrapeRequestError("no queries provided")

        expanded = preprocess_queries(queries)

        key = self.cache.key_for(endpoint, queries, variables)
        cached = self.cache.get_fresh(key)
        self.self_metrics.record_cache(cached is not None)
        if cached is not None:
            logger.debug(f"Serving {endpoint} scrape from cache entry {key}")
            return cached, "cache_hit"

        output = self.execute(endpoint, expanded, variables, headers)

        if self.cache.enabled:
            if self.cache.write(key, output):
                logger.info(f"Refreshed cache entry {key} for {endpoint} ({len(queries)} queries)")
            else:
                self.self_metrics.record_cache_write_error()

        return output, "success"

    def execute(
        self,
        endpoint: str,
        queries: List[str],
        variables: Dict[str, Any],
        headers: Optional[Mapping[str, str]] = None,
    ) -> bytes:
        """Run already expanded queries concurrently and render their data."""
        client = GraphQLClient(endpoint, headers, http=self.http, timeout=self.config.graphql.timeout_s)
        registry = ScrapeRegistry()

        requests = [GraphQLRequest(query=q, variables=variables) for q in queries]
        batch = client.query_many(requests)

        # Every response is drained, even after the first GraphQL error, so
        # the caller sees all query errors in one round trip. Draining also
        # waits for the batch, since the queue closes after the last query.
        query_errors: List[Any] = []
        flatten_error: Optional[FlattenError] = None
        for response in batch.iter_responses():
            query_errors.extend(response.errors)

            if query_errors or flatten_error is not None:
                continue

            try:
                registry.export_points(flatten(response.data, {"endpoint": endpoint}, ROOT_PATH))
            except FlattenError as e:
                flatten_error = e

        # Transport errors are shared infrastructure problems: first one wins
        for error in batch.iter_errors():
            if isinstance(error, TransportError):
                raise error
            raise TransportError(f"pre-querying error: {error}") from error

        # No partial metrics: any query error fails every query's output
        if query_errors:
            logger.warning(f"{len(query_errors)} GraphQL errors from {endpoint}")
            raise QueryError(query_errors)

        if flatten_error is not None:
            raise flatten_error

        return registry.render()

    def load_named_query(self, name: str) -> str:
        """Read ``<queries_dir>/<name>.gql``."""
        if not _QUERY_NAME.match(name) or name.startswith("."):
            raise QueryNotFoundError(f"invalid query name {name!r}")

        path = os.path.join(self.config.graphql.queries_dir, name + QUERY_FILE_EXTENSION)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
        except FileNotFoundError:
            raise QueryNotFoundError(f"query {name!r} not found in {self.config.graphql.queries_dir}")
        except OSError as e:
            raise ScrapeRequestError(f"failed to read query file {path}: {e}")

    def scrape_named(self, name: str, headers: Optional[Mapping[str, str]] = None) -> bytes:
        """Scrape a query file against the configured default endpoint."""
        endpoint = self.config.graphql.url
        if not endpoint:
            raise ScrapeRequestError("no default GraphQL endpoint configured (EXPORTER_GRAPHQL_URL)")

        query = self.load_named_query(name)

        forwarded = dict(headers or {})
        if self.config.graphql.auth and not any(k.lower() == "authorization" for k in forwarded):
            forwarded["Authorization"] = self.config.graphql.auth

        return self.scrape(endpoint, [query], {}, forwarded)
