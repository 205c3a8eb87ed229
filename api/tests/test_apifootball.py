from __future__ import annotations

import pytest
import requests

from oddsraiders.errors import FetchError
from oddsraiders.services.apifootball import ApiFootballClient, FetchContext, FIXTURE_STATUSES


class FakeResponse:
    def __init__(self, status_code=200, payload=None, headers=None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.headers = headers or {}

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeHttp:
    """Stands in for the `requests` module: hands out queued responses in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, headers=None, params=None, timeout=None):
        self.calls.append({"url": url, "params": dict(params or {}), "headers": headers, "timeout": timeout})
        nxt = self.responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


def ok(rows, paging=None):
    body = {"errors": [], "response": rows}
    if paging:
        body["paging"] = paging
    return FakeResponse(200, body)


@pytest.fixture
def sleeps():
    return []


def _client(http, sleeps, retries=3):
    return ApiFootballClient(
        base_url="https://api.test", api_key="k", host="api.test",
        timeout=7, retries=retries, http=http, sleep=sleeps.append,
    )


def test_global_fetch_sends_rapidapi_headers(sleeps):
    http = FakeHttp(ok([{"id": 1, "name": "Match Winner"}]))

    rows = _client(http, sleeps).fetch("markets", FetchContext())

    assert rows == [{"id": 1, "name": "Match Winner"}]
    call = http.calls[0]
    assert call["url"] == "https://api.test/odds/bets"
    assert call["headers"]["x-rapidapi-key"] == "k"
    assert call["headers"]["x-rapidapi-host"] == "api.test"
    assert call["timeout"] == 7


def test_league_scope_calls_once_per_league_with_season(sleeps):
    http = FakeHttp(ok([{"team": {"id": 33}}]), ok([{"team": {"id": 529}}]))

    rows = _client(http, sleeps).fetch("teams", FetchContext(leagues=[39, 140], season=2025))

    assert [r["team"]["id"] for r in rows] == [33, 529]
    assert [c["params"] for c in http.calls] == [
        {"league": 39, "season": 2025},
        {"league": 140, "season": 2025},
    ]


def test_fixture_scope_rows_remember_their_fixture(sleeps):
    http = FakeHttp(ok([{"team": {"id": 33}}, {"team": {"id": 34}}]))

    rows = _client(http, sleeps).fetch("lineups", FetchContext(fixture_ids=[1001]))

    assert http.calls[0]["params"] == {"fixture": 1001}
    assert all(r["_scope"] == {"fixture": 1001} for r in rows)


def test_paged_endpoint_follows_paging_total(sleeps):
    http = FakeHttp(
        ok([{"player": {"id": 1}}], paging={"current": 1, "total": 3}),
        ok([{"player": {"id": 2}}], paging={"current": 2, "total": 3}),
        ok([{"player": {"id": 3}}], paging={"current": 3, "total": 3}),
    )

    rows = _client(http, sleeps).fetch("players", FetchContext(leagues=[39], season=2025))

    assert [r["player"]["id"] for r in rows] == [1, 2, 3]
    assert [c["params"].get("page") for c in http.calls] == [None, 2, 3]


def test_server_errors_are_retried_then_succeed(sleeps):
    http = FakeHttp(FakeResponse(502), FakeResponse(503), ok([{"name": "England"}]))

    rows = _client(http, sleeps).fetch("countries", FetchContext())

    assert rows == [{"name": "England"}]
    assert len(http.calls) == 3
    assert sleeps == [0.75, 1.5]


def test_rate_limit_honours_retry_after(sleeps):
    http = FakeHttp(FakeResponse(429, headers={"Retry-After": "12"}), ok([]))

    _client(http, sleeps).fetch("countries", FetchContext())

    assert sleeps == [12.0]


def test_gives_up_after_retries(sleeps):
    http = FakeHttp(FakeResponse(500), FakeResponse(500), FakeResponse(500))

    with pytest.raises(FetchError) as exc:
        _client(http, sleeps).fetch("standings", FetchContext(leagues=[39], season=2025))

    assert exc.value.resource == "standings"
    assert len(http.calls) == 3


def test_network_errors_become_fetch_errors(sleeps):
    http = FakeHttp(requests.ConnectionError("down"), requests.Timeout("slow"))

    with pytest.raises(FetchError):
        _client(http, sleeps, retries=2).fetch("countries", FetchContext())


def test_provider_errors_in_body_are_failures(sleeps):
    http = FakeHttp(FakeResponse(200, {"errors": {"token": "Error/Missing application key."}, "response": []}))

    with pytest.raises(FetchError) as exc:
        _client(http, sleeps).fetch("countries", FetchContext())

    assert "application key" in exc.value.message


def test_client_errors_are_not_retried(sleeps):
    http = FakeHttp(FakeResponse(403))

    with pytest.raises(FetchError):
        _client(http, sleeps).fetch("countries", FetchContext())
    assert len(http.calls) == 1


def test_static_catalogue_needs_no_http(sleeps):
    http = FakeHttp()

    rows = _client(http, sleeps).fetch("fixture_statuses", FetchContext())

    assert len(rows) == len(FIXTURE_STATUSES)
    assert {"short": "FT", "long": "Match Finished", "type": "Finished"} in rows
    assert http.calls == []


def test_unknown_resource(sleeps):
    with pytest.raises(FetchError):
        _client(FakeHttp(), sleeps).fetch("weather", FetchContext())
