"""Flattening of GraphQL response data into gauge observations."""
from typing import Any, Dict, Iterator, Sequence, Tuple

from gqlexporter.errors import FlattenError
from gqlexporter.series import SeriesPoint

ROOT_PATH: Tuple[str, ...] = ("query",)
VALUE_LABEL = "value"


def metric_name(path: Sequence[str]) -> str:
    return "_".join(path)


def parse_string_value(text: str) -> float:
    """Numeric strings keep their value, anything else reports presence as 1."""
    # float() tolerates padding and digit separators, which are not clean numbers
    if text != text.strip() or "_" in text:
        return 1.0
    try:
        return float(text)
    except ValueError:
        return 1.0


def flatten(
    data: Any,
    labels: Dict[str, str],
    path: Sequence[str] = ROOT_PATH,
) -> Iterator[SeriesPoint]:
    """
    Recursively turn decoded JSON into gauge observations.

    Every value must end up as a float, so by convention:

    - null produces nothing;
    - booleans are 1 if true, 0 otherwise;
    - numbers are kept as they are;
    - strings are stored in a "value" label, and the gauge is the string
      parsed as a float when possible, 1 otherwise. A string switching
      between numeric and non-numeric therefore moves to a different
      series, and a field that disappears is not reported as 0;
    - arrays add a label named after the last path segment whose value is
      the item index (0..n-1), items stay on the same path;
    - objects append their keys to the path, so
      {"com": {"example": {"www": 3.14}}} becomes
      query_com_example_www 3.14. Keys must therefore already be valid
      Prometheus metric name characters; they are not sanitized.

    ``labels`` is never modified: every descent works on a copy.
    """
    path = tuple(path)
    if not path:
        raise FlattenError("metric path must have at least one segment")

    # bool is a subclass of int, so it has to be checked first
    if data is None:
        return

    elif isinstance(data, bool):
        yield SeriesPoint(metric_name(path), dict(labels), 1.0 if data else 0.0)

    elif isinstance(data, (int, float)):
        yield SeriesPoint(metric_name(path), dict(labels), float(data))

    elif isinstance(data, str):
        yield SeriesPoint(
            metric_name(path),
            {**labels, VALUE_LABEL: data},
            parse_string_value(data),
        )

    elif isinstance(data, list):
        index_label = path[-1]
        for i, item in enumerate(data):
            yield from flatten(item, {**labels, index_label: str(i)}, path)

    elif isinstance(data, dict):
        for key, value in data.items():
            if not isinstance(key, str):
                raise FlattenError(f"object key {key!r} at {metric_name(path)} is not a string")
            yield from flatten(value, labels, path + (key,))

    else:
        raise FlattenError(
            f"unsupported value of type {type(data).__name__} at {metric_name(path)}"
        )
