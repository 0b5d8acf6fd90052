from __future__ import annotations

import logging
from typing import Mapping, Protocol

import httpx

from searchpulse.core.config import Settings

logger = logging.getLogger("searchpulse.providers")


class ContentResolver(Protocol):
    def url_to_content_id(self, url: str) -> str | None: ...


class NullContentResolver:
    def url_to_content_id(self, url: str) -> str | None:
        return None


class MappingContentResolver:
    def __init__(self, mapping: Mapping[str, str]) -> None:
        self._mapping = {_normalize_url(key): str(value) for key, value in mapping.items()}

    def url_to_content_id(self, url: str) -> str | None:
        return self._mapping.get(_normalize_url(url))


class HttpContentResolver:
    """Looks URLs up against the content repository: GET {lookup_url}?url=<url>.

    A 200 body of {"content_id": ...} resolves the URL; 404 means unknown content.
    Transport failures and other statuses are logged and treated as unresolved.
    """

    def __init__(self, lookup_url: str, *, timeout_seconds: float = 10.0) -> None:
        self._lookup_url = lookup_url
        self._timeout_seconds = timeout_seconds

    def url_to_content_id(self, url: str) -> str | None:
        try:
            with httpx.Client() as client:
                response = client.get(self._lookup_url, params={"url": url}, timeout=self._timeout_seconds)
        except httpx.HTTPError as exc:
            logger.warning("Content lookup failed for %s: %s", url, exc)
            return None
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning("Content lookup for %s returned status %d", url, response.status_code)
            return None
        try:
            body = response.json()
        except ValueError:
            logger.warning("Content lookup for %s returned invalid JSON", url)
            return None
        content_id = body.get("content_id") if isinstance(body, dict) else None
        if content_id in (None, ""):
            return None
        return str(content_id)


class MemoizingContentResolver:
    """Resolves each distinct URL at most once per sync invocation."""

    def __init__(self, inner: ContentResolver) -> None:
        self._inner = inner
        self._cache: dict[str, str | None] = {}

    def url_to_content_id(self, url: str) -> str | None:
        if url not in self._cache:
            self._cache[url] = self._inner.url_to_content_id(url)
        return self._cache[url]


def build_content_resolver(settings: Settings) -> ContentResolver:
    if settings.content_lookup_url.strip():
        return HttpContentResolver(
            settings.content_lookup_url.strip(), timeout_seconds=settings.content_lookup_timeout_seconds
        )
    return NullContentResolver()


def _normalize_url(url: str) -> str:
    return url.strip().rstrip("/") or url.strip()
