"""GraphQL client: single queries and concurrent query batches."""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional
import json
import logging
import queue
import threading

import httpx

from gqlexporter.errors import TransportError

logger = logging.getLogger(__name__)

# Headers that describe the inbound scrape rather than the outbound query
STRIPPED_HEADERS = frozenset({
    "accept",
    "accept-encoding",
    "host",
    "content-length",
    "content-type",
    "connection",
    "transfer-encoding",
})


@dataclass
class GraphQLRequest:
    """Common structure of every GraphQL request."""
    query: str
    variables: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> bytes:
        return json.dumps({"query": self.query, "variables": self.variables}).encode("utf-8")


@dataclass
class GraphQLResponse:
    """Common structure of every GraphQL response.

    A non-empty ``errors`` list is a query-level failure; the transport
    itself succeeded.
    """
    data: Any = None
    errors: List[Any] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any) -> "GraphQLResponse":
        if not isinstance(payload, dict):
            raise TransportError(
                f"response body is a JSON {type(payload).__name__}, expected an object"
            )
        errors = payload.get("errors") or []
        if not isinstance(errors, list):
            errors = [errors]
        return cls(data=payload.get("data"), errors=errors)


def forwardable_headers(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Copy scrape headers for forwarding, minus content negotiation and framing."""
    forwarded = {}
    for name, value in (headers or {}).items():
        if name.lower() not in STRIPPED_HEADERS:
            forwarded[name] = value
    forwarded["Content-Type"] = "application/json"
    return forwarded


class GraphQLClient:
    """Talks to one GraphQL endpoint with a fixed set of headers."""

    def __init__(
        self,
        endpoint: str,
        headers: Optional[Mapping[str, str]] = None,
        http: Optional[httpx.Client] = None,
        timeout: float = 20.0,
    ):
        """
        Initialize the client.

        Args:
            endpoint: Absolute http(s) URL of the GraphQL API
            headers: Scrape headers to forward (Authorization and friends)
            http: Shared httpx client; one is created and owned if omitted
            timeout: Per-request timeout in seconds
        """
        try:
            url = httpx.URL(endpoint)
        except (httpx.InvalidURL, TypeError) as e:
            raise TransportError(f"invalid endpoint {endpoint!r}: {e}")
        if url.scheme not in ("http", "https") or not url.host:
            raise TransportError(f"invalid endpoint {endpoint!r}: expected an absolute http(s) URL")

        self.endpoint = endpoint
        self.headers = forwardable_headers(headers)
        self.timeout = timeout
        self._owns_http = http is None
        self.http = http if http is not None else httpx.Client()

    def close(self):
        if self._owns_http:
            self.http.close()

    def query(self, request: GraphQLRequest) -> GraphQLResponse:
        """
        Perform a single query.

        GraphQL errors are returned inside the response; only transport
        problems raise.

        Raises:
            TransportError: On serialization, connection, timeout or decoding failure
        """
        try:
            body = request.to_json()
        except (TypeError, ValueError) as e:
            raise TransportError(f"error while serializing request: {e}")

        try:
            response = self.http.post(
                self.endpoint,
                content=body,
                headers=self.headers,
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"error while querying {self.endpoint}: {e}")

        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError(
                f"error while decoding response from {self.endpoint} "
                f"(HTTP {response.status_code}): {e}"
            )

        return GraphQLResponse.from_payload(payload)

    def query_many(self, requests: List[GraphQLRequest]) -> "QueryBatch":
        """Start every request concurrently and return immediately."""
        return QueryBatch(self, requests)


_CLOSED = object()


class QueryBatch:
    """
    A set of queries running concurrently, one thread each.

    Successful calls land on ``responses``, failed calls on ``errors``.
    Both queues are closed once every query has finished, so draining them
    to the end doubles as waiting for the batch.
    """

    def __init__(self, client: GraphQLClient, requests: List[GraphQLRequest]):
        self.client = client
        self.requests = list(requests)
        self.responses: "queue.Queue" = queue.Queue()
        self.errors: "queue.Queue" = queue.Queue()

        self._workers = [
            threading.Thread(target=self._run, args=(i, r), daemon=True, name=f"graphql-query-{i}")
            for i, r in enumerate(self.requests)
        ]
        for worker in self._workers:
            worker.start()

        self._closer = threading.Thread(target=self._close_when_done, daemon=True, name="graphql-batch-closer")
        self._closer.start()

    def _run(self, index: int, request: GraphQLRequest):
        try:
            response = self.client.query(request)
        except Exception as e:
            logger.debug(f"Query {index} against {self.client.endpoint} failed: {e}")
            self.errors.put(e)
        else:
            self.responses.put(response)

    def _close_when_done(self):
        for worker in self._workers:
            worker.join()
        self.responses.put(_CLOSED)
        self.errors.put(_CLOSED)

    @staticmethod
    def _drain(channel: "queue.Queue") -> Iterator[Any]:
        while True:
            item = channel.get()
            if item is _CLOSED:
                # Leave the marker for any later drain of the same queue
                channel.put(_CLOSED)
                return
            yield item

    def iter_responses(self) -> Iterator[GraphQLResponse]:
        """Yield responses in completion order until every query is done."""
        return self._drain(self.responses)

    def iter_errors(self) -> Iterator[Exception]:
        """Yield transport errors; blocks until every query is done."""
        return self._drain(self.errors)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Join the batch. Returns True once every query has completed."""
        self._closer.join(timeout)
        return not self._closer.is_alive()
