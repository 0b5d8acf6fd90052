from __future__ import annotations

from dataclasses import dataclass
from datetime import date
import logging
import threading
from typing import Any
from urllib.parse import quote

import httpx

from searchpulse.core.config import Settings
from searchpulse.providers.errors import (
    ProviderAuthError,
    ProviderBadRequestError,
    ProviderConnectionError,
    ProviderDependencyError,
    ProviderQuotaExceededError,
    ProviderRateLimitError,
    ProviderResponseFormatError,
    ProviderTimeoutError,
)
from searchpulse.providers.rate_limit import TokenBucket
from searchpulse.providers.retry import RetryPolicy

logger = logging.getLogger("searchpulse.providers")


class FetchCancelledError(Exception):
    pass


@dataclass(frozen=True)
class SearchAnalyticsRow:
    keys: list[str]
    clicks: float
    impressions: float
    ctr: float
    position: float


class SearchAnalyticsClient:
    """Search Console searchAnalytics/query client scoped to one sync invocation."""

    def __init__(
        self,
        *,
        site_url: str,
        access_token: str,
        endpoint_base: str = "https://searchconsole.googleapis.com/webmasters/v3",
        search_type: str = "web",
        timeout_seconds: float = 30.0,
        row_limit: int = 5000,
        page_size: int = 1000,
        retry_policy: RetryPolicy | None = None,
        rate_limiter: TokenBucket | None = None,
    ) -> None:
        if not site_url.strip():
            raise ProviderBadRequestError("site_url is required for Search Console calls.")
        if row_limit <= 0 or page_size <= 0:
            raise ProviderBadRequestError("row_limit and page_size must be greater than 0.")
        self.site_url = site_url.strip()
        self._access_token = access_token.strip()
        self._endpoint_base = endpoint_base.rstrip("/")
        self._search_type = search_type or "web"
        self._timeout_seconds = float(timeout_seconds)
        self._row_limit = row_limit
        self._page_size = min(page_size, row_limit)
        self._retry_policy = retry_policy or RetryPolicy()
        self._rate_limiter = rate_limiter or TokenBucket.per_minute(30)

    @classmethod
    def from_settings(cls, settings: Settings, *, site_url: str | None = None) -> "SearchAnalyticsClient":
        return cls(
            site_url=site_url or settings.gsc_site_url,
            access_token=settings.gsc_access_token,
            endpoint_base=settings.gsc_api_endpoint,
            search_type=settings.gsc_search_type,
            timeout_seconds=settings.gsc_http_timeout_seconds,
            row_limit=settings.gsc_row_limit,
            page_size=settings.gsc_page_size,
            retry_policy=RetryPolicy.from_settings(settings),
            rate_limiter=TokenBucket.per_minute(settings.gsc_rate_limit_per_minute),
        )

    @property
    def query_endpoint(self) -> str:
        return f"{self._endpoint_base}/sites/{quote(self.site_url, safe='')}/searchAnalytics/query"

    def fetch_rows(
        self,
        dimensions: list[str],
        date_from: date,
        date_to: date,
        *,
        cancel_event: threading.Event | None = None,
    ) -> list[SearchAnalyticsRow]:
        """Fetch every row for the range, following startRow pages up to the row limit.

        Either all pages succeed or a ProviderError is raised; partial results are never returned.
        """
        if not self._access_token:
            raise ProviderAuthError("Search Console access token is not configured.")
        if not dimensions:
            raise ProviderBadRequestError("dimensions must not be empty.")
        if date_from > date_to:
            raise ProviderBadRequestError("date_from must not be after date_to.")

        rows: list[SearchAnalyticsRow] = []
        start_row = 0
        while start_row < self._row_limit:
            if cancel_event is not None and cancel_event.is_set():
                raise FetchCancelledError(f"Search Console fetch cancelled at startRow={start_row}.")
            page_limit = min(self._page_size, self._row_limit - start_row)
            request_body = {
                "startDate": date_from.isoformat(),
                "endDate": date_to.isoformat(),
                "dimensions": list(dimensions),
                "rowLimit": page_limit,
                "startRow": start_row,
                "type": self._search_type,
            }
            page = self._retry_policy.execute(lambda: self._post_page(request_body))
            rows.extend(page)
            logger.debug(
                "Fetched %d rows for %s (dimensions=%s, startRow=%d)", len(page), self.site_url, dimensions, start_row
            )
            if len(page) < page_limit:
                break
            start_row += len(page)
        return rows

    def _post_page(self, request_body: dict[str, Any]) -> list[SearchAnalyticsRow]:
        self._rate_limiter.acquire()
        try:
            with httpx.Client() as client:
                response = client.post(
                    self.query_endpoint,
                    json=request_body,
                    headers={"Authorization": f"Bearer {self._access_token}"},
                    timeout=self._timeout_seconds,
                )
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError("Google Search Console request timed out.") from exc
        except httpx.ConnectError as exc:
            raise ProviderConnectionError("Google Search Console connection failed.") from exc
        except httpx.HTTPError as exc:
            raise ProviderDependencyError("Google Search Console dependency call failed.") from exc

        if response.status_code >= 400:
            _raise_for_google_error(response)

        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderResponseFormatError("Google Search Console response is not valid JSON.") from exc
        if not isinstance(body, dict):
            raise ProviderResponseFormatError("Google Search Console response must be a JSON object.")
        return _parse_rows(body.get("rows", []))


def _parse_rows(raw_rows: Any) -> list[SearchAnalyticsRow]:
    if not isinstance(raw_rows, list):
        raise ProviderResponseFormatError("Google Search Console rows must be a list.")
    parsed: list[SearchAnalyticsRow] = []
    for item in raw_rows:
        if not isinstance(item, dict):
            raise ProviderResponseFormatError("Google Search Console row must be an object.")
        keys = item.get("keys", [])
        if not isinstance(keys, list):
            raise ProviderResponseFormatError("Google Search Console row keys must be a list.")
        try:
            parsed.append(
                SearchAnalyticsRow(
                    keys=[str(value) for value in keys],
                    clicks=float(item.get("clicks", 0.0)),
                    impressions=float(item.get("impressions", 0.0)),
                    ctr=float(item.get("ctr", 0.0)),
                    position=float(item.get("position", 0.0)),
                )
            )
        except (TypeError, ValueError) as exc:
            raise ProviderResponseFormatError("Google Search Console row metrics must be numeric.") from exc
    return parsed


def _raise_for_google_error(response: httpx.Response) -> None:
    status = response.status_code
    body = _safe_json(response)
    reason = _extract_google_reason(body)
    message = f"Google Search Console request failed with status {status}."
    if status in {401, 403}:
        if "quota" in reason:
            raise ProviderQuotaExceededError(message, upstream_payload=body)
        raise ProviderAuthError(message, upstream_payload=body)
    if status == 429:
        if "quota" in reason and "rate" not in reason:
            raise ProviderQuotaExceededError(message, upstream_payload=body)
        raise ProviderRateLimitError(message, upstream_payload=body)
    if status in {408, 504}:
        raise ProviderTimeoutError(message, upstream_payload=body)
    if 400 <= status < 500:
        raise ProviderBadRequestError(message, upstream_payload=body)
    raise ProviderDependencyError(message, upstream_payload=body)


def _safe_json(response: httpx.Response) -> dict[str, Any] | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    return payload


def _extract_google_reason(payload: dict[str, Any] | None) -> str:
    if not payload:
        return ""
    error = payload.get("error")
    if not isinstance(error, dict):
        return ""
    details = error.get("errors")
    if isinstance(details, list) and details and isinstance(details[0], dict):
        return str(details[0].get("reason", "")).lower()
    status_text = error.get("status")
    return status_text.lower() if isinstance(status_text, str) else ""
