"""Query template expansion.

Queries may embed time-relative placeholders using jinja2 expression syntax:

    { events(since: "{{ Now("-1h") }}") { count } }

``Now`` takes a signed duration (``300ms``, ``-1.5h``, ``1h30m``) and renders
the UTC time shifted by it as an RFC 3339 timestamp. Nothing else is
available inside placeholders; request variables are sent as GraphQL
variables instead of being pasted into the query text.
"""
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence
import logging
import re

from jinja2 import StrictUndefined, TemplateError
from jinja2.sandbox import ImmutableSandboxedEnvironment

from gqlexporter.errors import PreprocessError

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")

# Largest duration Go can represent, in seconds (int64 nanoseconds)
MAX_DURATION_S = 9223372036.854775807


def parse_duration(text: str) -> timedelta:
    """Parse a signed duration such as ``-1h30m`` or ``250ms``."""
    if not isinstance(text, str):
        raise ValueError(f"duration must be a string, got {type(text).__name__}")

    s = text.strip()
    sign = 1.0
    if s[:1] in ("-", "+"):
        sign = -1.0 if s[0] == "-" else 1.0
        s = s[1:]

    if s == "0":
        return timedelta(0)
    if not s:
        raise ValueError(f"invalid duration {text!r}")

    total = 0.0
    pos = 0
    while pos < len(s):
        match = _DURATION_PART.match(s, pos)
        if not match:
            raise ValueError(f"invalid duration {text!r}")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()

    if total > MAX_DURATION_S:
        raise ValueError(f"duration {text!r} out of range")
    return timedelta(seconds=sign * total)


class QueryTemplater:
    """Expands ``Now(...)`` placeholders against a fixed reference instant."""

    def __init__(self, now: Optional[datetime] = None):
        if now is None:
            now = datetime.now(timezone.utc)
        elif now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        self.now = now.astimezone(timezone.utc)

        self.env = ImmutableSandboxedEnvironment(
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        # Only Now is reachable from templates
        self.env.globals.clear()
        self.env.filters.clear()
        self.env.tests.clear()
        self.env.globals["Now"] = self._now

    def _now(self, duration: str) -> str:
        shift = parse_duration(duration)
        try:
            shifted = self.now + shift
        except OverflowError:
            raise ValueError(f"Now({duration!r}) is outside the supported date range")
        return shifted.strftime(TIMESTAMP_FORMAT)

    def render(self, query: str) -> str:
        """Expand one query, raising ValueError or TemplateError on failure."""
        template = self.env.from_string(query)
        return template.render()


def preprocess_query(query: str, now: Optional[datetime] = None) -> str:
    """Expand a single query template."""
    return preprocess_queries([query], now)[0]


def preprocess_queries(queries: Sequence[str], now: Optional[datetime] = None) -> List[str]:
    """
    Expand every query template.

    All queries are attempted even after a failure so the error names every
    broken query at once.

    Raises:
        PreprocessError: If any query failed; no expanded queries are returned.
    """
    templater = QueryTemplater(now)
    expanded: List[str] = []
    failures: Dict[int, str] = {}

    for i, query in enumerate(queries):
        try:
            expanded.append(templater.render(query))
        except (TemplateError, ValueError, TypeError, OverflowError) as e:
            logger.debug(f"Query {i} failed to expand: {e}")
            failures[i] = f"{type(e).__name__}: {e}"

    if failures:
        raise PreprocessError(failures)

    return expanded
