from __future__ import annotations

from typing import Any
from typing import Literal

import httpx

from searchpulse.core.config import Settings
from searchpulse.providers.content_resolver import (
    HttpContentResolver,
    MappingContentResolver,
    MemoizingContentResolver,
    NullContentResolver,
    build_content_resolver,
)

MODULE = "searchpulse.providers.content_resolver"


class _FakeResponse:
    def __init__(self, *, status_code: int, payload: Any) -> None:
        self.status_code = status_code
        self._payload = payload

    def json(self) -> Any:
        return self._payload


class _FakeClient:
    def __init__(self, actions: list[Any], calls: list[dict[str, Any]]) -> None:
        self._actions = actions
        self._calls = calls

    def __enter__(self) -> "_FakeClient":
        return self

    def __exit__(self, _exc_type, _exc, _tb) -> Literal[False]:
        return False

    def get(self, url: str, params: dict[str, str], timeout: float):
        self._calls.append({"url": url, "params": params, "timeout": timeout})
        action = self._actions.pop(0)
        if isinstance(action, Exception):
            raise action
        return action


def _patch_http_client(monkeypatch, actions: list[Any], calls: list[dict[str, Any]]) -> None:
    monkeypatch.setattr(f"{MODULE}.httpx.Client", lambda: _FakeClient(actions=actions, calls=calls))


def test_http_resolver_returns_content_id(monkeypatch) -> None:
    calls: list[dict[str, Any]] = []
    _patch_http_client(monkeypatch, [_FakeResponse(status_code=200, payload={"content_id": 42})], calls)

    resolver = HttpContentResolver("https://cms.example.com/lookup", timeout_seconds=3.0)

    assert resolver.url_to_content_id("https://example.com/guide/") == "42"
    assert calls == [
        {"url": "https://cms.example.com/lookup", "params": {"url": "https://example.com/guide/"}, "timeout": 3.0}
    ]


def test_http_resolver_treats_not_found_as_unresolved(monkeypatch) -> None:
    calls: list[dict[str, Any]] = []
    _patch_http_client(monkeypatch, [_FakeResponse(status_code=404, payload={})], calls)

    assert HttpContentResolver("https://cms.example.com/lookup").url_to_content_id("https://example.com/x") is None


def test_http_resolver_degrades_on_transport_error(monkeypatch, caplog) -> None:
    calls: list[dict[str, Any]] = []
    _patch_http_client(monkeypatch, [httpx.ConnectError("refused")], calls)

    with caplog.at_level("WARNING", logger="searchpulse.providers"):
        result = HttpContentResolver("https://cms.example.com/lookup").url_to_content_id("https://example.com/x")

    assert result is None
    assert "Content lookup failed" in caplog.text


def test_http_resolver_degrades_on_server_error(monkeypatch) -> None:
    calls: list[dict[str, Any]] = []
    _patch_http_client(monkeypatch, [_FakeResponse(status_code=502, payload={})], calls)

    assert HttpContentResolver("https://cms.example.com/lookup").url_to_content_id("https://example.com/x") is None


def test_mapping_resolver_ignores_trailing_slash() -> None:
    resolver = MappingContentResolver({"https://example.com/guide/": "7"})
    assert resolver.url_to_content_id("https://example.com/guide") == "7"
    assert resolver.url_to_content_id("https://example.com/other") is None


def test_memoizing_resolver_looks_each_url_up_once() -> None:
    seen: list[str] = []

    class _Recording:
        def url_to_content_id(self, url: str) -> str | None:
            seen.append(url)
            return None

    memo = MemoizingContentResolver(_Recording())
    for _ in range(3):
        assert memo.url_to_content_id("https://example.com/a") is None
    memo.url_to_content_id("https://example.com/b")

    assert seen == ["https://example.com/a", "https://example.com/b"]


def test_build_content_resolver_picks_http_when_configured() -> None:
    assert isinstance(build_content_resolver(Settings(app_env="test")), NullContentResolver)
    configured = Settings(app_env="test", content_lookup_url="https://cms.example.com/lookup")
    assert isinstance(build_content_resolver(configured), HttpContentResolver)
