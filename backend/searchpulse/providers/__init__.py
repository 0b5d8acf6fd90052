from searchpulse.providers.content_resolver import (
    ContentResolver,
    HttpContentResolver,
    MappingContentResolver,
    MemoizingContentResolver,
    NullContentResolver,
    build_content_resolver,
)
from searchpulse.providers.errors import ProviderError, classify_provider_error
from searchpulse.providers.rate_limit import TokenBucket
from searchpulse.providers.retry import RetryExhaustedError, RetryPolicy
from searchpulse.providers.search_analytics import FetchCancelledError, SearchAnalyticsClient, SearchAnalyticsRow

__all__ = [
    "ContentResolver",
    "FetchCancelledError",
    "HttpContentResolver",
    "MappingContentResolver",
    "MemoizingContentResolver",
    "NullContentResolver",
    "ProviderError",
    "RetryExhaustedError",
    "RetryPolicy",
    "SearchAnalyticsClient",
    "SearchAnalyticsRow",
    "TokenBucket",
    "build_content_resolver",
    "classify_provider_error",
]
