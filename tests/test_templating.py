"""Tests for query template expansion."""
from datetime import datetime, timedelta, timezone

import pytest

from gqlexporter.errors import PreprocessError
from gqlexporter.templating import parse_duration, preprocess_queries, preprocess_query

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("text,expected", [
    ("0", timedelta(0)),
    ("1h", timedelta(hours=1)),
    ("-1h30m", -timedelta(hours=1, minutes=30)),
    ("+15m", timedelta(minutes=15)),
    ("1.5h", timedelta(minutes=90)),
    ("250ms", timedelta(milliseconds=250)),
    ("2h45m10s", timedelta(hours=2, minutes=45, seconds=10)),
])
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "5", "1d", "h", "1h-5m", "--1h", "1 h", "99999999999h", "-2562048h", "9" * 400 + "s"])
def test_parse_duration_rejects(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_query_without_placeholders_is_unchanged():
    query = '{ repository(owner: "a", name: "b") { stargazers { totalCount } } }'
    assert preprocess_query(query, NOW) == query


def test_now_placeholder():
    query = '{ events(since: "{{ Now("-1h") }}", until: "{{ Now("0") }}") { count } }'
    assert preprocess_query(query, NOW) == (
        '{ events(since: "2024-05-01T11:00:00Z", until: "2024-05-01T12:00:00Z") { count } }'
    )


def test_now_converts_to_utc():
    local = datetime(2024, 5, 1, 14, 0, 0, tzinfo=timezone(timedelta(hours=2)))
    assert preprocess_query('{{ Now("30m") }}', local) == "2024-05-01T12:30:00Z"


def test_unparseable_duration_fails():
    with pytest.raises(PreprocessError) as exc_info:
        preprocess_query('{ a(since: "{{ Now("yesterday") }}") }', NOW)
    assert 0 in exc_info.value.failures
    assert "yesterday" in str(exc_info.value)


@pytest.mark.parametrize("query", [
    "{{ Then('-1h') }}",
    "{{ Now('-1h') | upper }}",
    "{{ Now( }}",
    "{{ range(3) }}",
    "{{ Now() }}",
])
def test_unknown_placeholder_syntax_fails(query):
    with pytest.raises(PreprocessError):
        preprocess_query(query, NOW)


def test_every_query_is_attempted():
    queries = [
        "{ ok }",
        "{{ Now('nope') }}",
        "{ fine }",
        "{{ Missing }}",
    ]
    with pytest.raises(PreprocessError) as exc_info:
        preprocess_queries(queries, NOW)

    assert sorted(exc_info.value.failures) == [1, 3]
    assert "query 1" in str(exc_info.value)
    assert "query 3" in str(exc_info.value)


def test_queries_share_reference_instant():
    expanded = preprocess_queries(["{{ Now('0') }}", "{{ Now('0') }}"])
    assert expanded[0] == expanded[1]


def test_largest_go_duration_is_accepted():
    assert parse_duration("2562047h") == timedelta(hours=2562047)


def test_huge_duration_fails_only_its_query():
    with pytest.raises(PreprocessError) as exc_info:
        preprocess_queries(['{{ Now("99999999999h") }}', "{ ok }"], NOW)
    assert set(exc_info.value.failures) == {0}


def test_shift_past_last_representable_date_fails():
    end_of_time = datetime(9999, 12, 31, 23, 0, 0, tzinfo=timezone.utc)
    with pytest.raises(PreprocessError) as exc_info:
        preprocess_query('{{ Now("2h") }}', end_of_time)
    assert "outside the supported date range" in str(exc_info.value)
