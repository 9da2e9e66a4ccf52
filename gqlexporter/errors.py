"""Exception taxonomy for the exporter.

Every failure a scrape can surface derives from ExporterError so the HTTP
layer can map it to a status code in one place:

- ScrapeRequestError: the inbound request is unusable (no endpoint, no query)
- PreprocessError: a query template could not be expanded
- TransportError: network, serialization or decoding failure for a query
- QueryError: the upstream answered with GraphQL errors
- FlattenError: the response data could not be expressed as gauges
"""
import json
from typing import Any, Dict, List


class ExporterError(Exception):
    """Base class for all scrape failures."""


class ScrapeRequestError(ExporterError):
    """Inbound scrape parameters are missing or invalid."""


class QueryNotFoundError(ScrapeRequestError):
    """A named query file does not exist."""


class PreprocessError(ExporterError):
    """One or more query templates failed to expand."""

    def __init__(self, failures: Dict[int, str]):
        self.failures = dict(failures)
        details = "; ".join(
            f"query {index}: {message}" for index, message in sorted(self.failures.items())
        )
        super().__init__(f"error while templating queries: {details}")


class TransportError(ExporterError):
    """A single query could not be sent or its response not decoded."""


class QueryError(ExporterError):
    """The upstream returned GraphQL errors for one or more queries."""

    def __init__(self, errors: List[Any]):
        self.errors = list(errors)
        super().__init__(f"post-querying errors: {json.dumps(self.errors, default=str)}")


class FlattenError(ExporterError):
    """Response data cannot be mapped onto gauge families."""
