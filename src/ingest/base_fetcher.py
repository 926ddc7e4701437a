"""Abstract base class for web search fetchers with retry logic."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple
import os
import time

import yaml

from src.card_sync.models import Evidence

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config/card_update.yaml"

# Default retry configuration (can be overridden by config/card_update.yaml)
DEFAULT_MAX_RETRIES = 2
DEFAULT_INITIAL_BACKOFF_SECONDS = 2
DEFAULT_BACKOFF_MULTIPLIER = 2


def load_card_update_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load pipeline configuration from config/card_update.yaml.

    Args:
        path: Explicit config path (default: search cwd then repo root)

    Returns:
        Config dict or empty dict if file not found
    """
    if path is not None:
        config_paths = [path]
    else:
        config_paths = [
            CONFIG_FILENAME,
            os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), CONFIG_FILENAME),
        ]

    for config_path in config_paths:
        if os.path.exists(config_path):
            try:
                with open(config_path, 'r') as f:
                    return yaml.safe_load(f) or {}
            except Exception as e:
                logger.warning(f"Failed to load card update config from {config_path}: {e}")

    return {}


def get_retry_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Get retry configuration, preferring config/card_update.yaml over defaults.

    Returns:
        Dict with max_retries, initial_backoff_seconds, backoff_multiplier
    """
    if config is None:
        config = load_card_update_config()
    retry_config = config.get('retry', {}) or {}

    return {
        'max_retries': retry_config.get('max_retries', DEFAULT_MAX_RETRIES),
        'initial_backoff_seconds': retry_config.get('initial_backoff_seconds', DEFAULT_INITIAL_BACKOFF_SECONDS),
        'backoff_multiplier': retry_config.get('backoff_multiplier', DEFAULT_BACKOFF_MULTIPLIER),
    }


class FetchError(Exception):
    """Exception raised when a search request fails."""
    def __init__(self, source_id: str, message: str, original_error: Optional[Exception] = None):
        self.source_id = source_id
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_id}: {message}")


class BaseSearchFetcher(ABC):
    """Abstract base for search-backed evidence fetchers with built-in retries."""

    source_id = "search"

    def __init__(self, retry_config: Optional[Dict[str, Any]] = None):
        retry = dict(get_retry_config({}))
        if retry_config:
            retry.update(retry_config)
        self.max_retries = max(1, int(retry['max_retries']))
        self.initial_backoff_seconds = retry['initial_backoff_seconds']
        self.backoff_multiplier = retry['backoff_multiplier']

    @abstractmethod
    def _search_impl(self, query: str, count: int) -> List[Evidence]:
        """
        Internal search implementation - to be overridden by subclasses.

        Args:
            query: Search query string
            count: Maximum number of results wanted

        Returns:
            Ranked list of Evidence

        Raises:
            Exception on search failure
        """
        pass

    def search(self, query: str, count: int = 5) -> Tuple[List[Evidence], Optional[str]]:
        """
        Search with automatic retries and exponential backoff.

        Returns:
            Tuple of (results, error_message)
            - On success: (results, None)
            - On failure: ([], error_message)
        """
        last_error = None
        backoff = self.initial_backoff_seconds

        for attempt in range(1, self.max_retries + 1):
            try:
                results = self._search_impl(query, count)
                return results[:count], None
            except Exception as e:
                last_error = str(e)
                if attempt < self.max_retries:
                    logger.warning(f"Retry {attempt}/{self.max_retries} for {self.source_id} in {backoff}s: {e}")
                    time.sleep(backoff)
                    backoff *= self.backoff_multiplier
                else:
                    logger.error(f"Failed after {self.max_retries} attempts for {self.source_id}: {e}")

        return [], last_error
