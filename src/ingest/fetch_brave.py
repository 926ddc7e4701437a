"""Brave Web Search fetcher for card evidence.

API Documentation: https://api-dashboard.search.brave.com/app/documentation/web-search
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Union
import requests
from urllib3.util.retry import Retry
from requests.adapters import HTTPAdapter

from src.card_sync.models import Evidence
from .base_fetcher import BaseSearchFetcher, FetchError

logger = logging.getLogger(__name__)

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"

# Request timeout (connect, read) in seconds
REQUEST_TIMEOUT = (10, 30)

# Session-level retry for network transients
_retry = Retry(total=1, allowed_methods=["GET"], backoff_factor=1, status_forcelist=[502, 503, 504])
_session = requests.Session()
_session.mount("https://", HTTPAdapter(max_retries=_retry))


class BraveSearchFetcher(BaseSearchFetcher):
    """Fetch ranked web results from the Brave Search API."""

    source_id = "brave_search"

    def __init__(
        self,
        api_key: str,
        url: str = BRAVE_SEARCH_URL,
        timeout: Union[float, Tuple[float, float]] = REQUEST_TIMEOUT,
        freshness: Optional[str] = "py",
        retry_config: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(retry_config)
        self.api_key = api_key
        self.url = url
        self.timeout = tuple(timeout) if isinstance(timeout, list) else timeout
        self.freshness = freshness

    def _search_impl(self, query: str, count: int) -> List[Evidence]:
        """Run one search request (no retry logic here)."""
        params = {
            "q": query,
            "count": str(count),
            "text_decorations": "false",
        }
        if self.freshness:
            params["freshness"] = self.freshness

        headers = {
            "Accept": "application/json",
            "X-Subscription-Token": self.api_key,
        }

        try:
            response = _session.get(self.url, params=params, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise FetchError(self.source_id, f"Brave Search request failed: {e}", e) from e

        return parse_results(data)


def parse_results(data: Dict[str, Any]) -> List[Evidence]:
    """Convert a Brave web search payload into Evidence, skipping entries without a URL."""
    web = data.get("web") or {}
    results = []
    for item in web.get("results") or []:
        if not isinstance(item, dict):
            continue
        url = item.get("url")
        if not url:
            continue
        results.append(Evidence(
            title=str(item.get("title") or ""),
            url=str(url),
            snippet=str(item.get("description") or ""),
        ))
    return results
