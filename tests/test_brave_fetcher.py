"""Tests for the Brave Search fetcher and its retry base class."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from src.card_sync.models import Evidence
from src.ingest.base_fetcher import BaseSearchFetcher, get_retry_config, load_card_update_config
from src.ingest.fetch_brave import BRAVE_SEARCH_URL, BraveSearchFetcher, parse_results


NO_BACKOFF = {"max_retries": 2, "initial_backoff_seconds": 0, "backoff_multiplier": 2}


def _response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status = MagicMock()
    return response


SAMPLE_PAYLOAD = {
    "web": {
        "results": [
            {
                "title": "Chase Sapphire Preferred | Chase",
                "url": "https://creditcards.chase.com/sapphire-preferred",
                "description": "Annual fee of $95. Earn 60,000 bonus points.",
            },
            {
                "title": "No URL entry",
                "description": "should be dropped",
            },
            {
                "title": "Review",
                "url": "https://example.com/review",
            },
        ]
    }
}


class TestParseResults:

    def test_maps_fields(self):
        results = parse_results(SAMPLE_PAYLOAD)
        assert results[0] == Evidence(
            title="Chase Sapphire Preferred | Chase",
            url="https://creditcards.chase.com/sapphire-preferred",
            snippet="Annual fee of $95. Earn 60,000 bonus points.",
        )

    def test_skips_entries_without_url(self):
        results = parse_results(SAMPLE_PAYLOAD)
        assert [r.url for r in results] == [
            "https://creditcards.chase.com/sapphire-preferred",
            "https://example.com/review",
        ]
        assert results[1].snippet == ""

    def test_missing_web_section(self):
        assert parse_results({}) == []
        assert parse_results({"web": None}) == []


class TestBraveSearchFetcher:
    """Tests for the HTTP layer (session patched)."""

    @patch('src.ingest.fetch_brave._session.get')
    def test_search_success(self, mock_get):
        mock_get.return_value = _response(SAMPLE_PAYLOAD)

        fetcher = BraveSearchFetcher(api_key="test-key", retry_config=NO_BACKOFF)
        results, error = fetcher.search('"Chase Sapphire Preferred" Chase', count=5)

        assert error is None
        assert len(results) == 2
        args, kwargs = mock_get.call_args
        assert args[0] == BRAVE_SEARCH_URL
        assert kwargs["params"]["q"] == '"Chase Sapphire Preferred" Chase'
        assert kwargs["params"]["count"] == "5"
        assert kwargs["params"]["freshness"] == "py"
        assert kwargs["params"]["text_decorations"] == "false"
        assert kwargs["headers"]["X-Subscription-Token"] == "test-key"

    @patch('src.ingest.fetch_brave._session.get')
    def test_results_truncated_to_count(self, mock_get):
        mock_get.return_value = _response(SAMPLE_PAYLOAD)
        fetcher = BraveSearchFetcher(api_key="k", retry_config=NO_BACKOFF)
        results, error = fetcher.search("q", count=1)
        assert error is None
        assert len(results) == 1

    @patch('src.ingest.fetch_brave._session.get')
    def test_freshness_disabled(self, mock_get):
        mock_get.return_value = _response({"web": {"results": []}})
        fetcher = BraveSearchFetcher(api_key="k", freshness=None, retry_config=NO_BACKOFF)
        fetcher.search("q")
        assert "freshness" not in mock_get.call_args[1]["params"]

    @patch('src.ingest.fetch_brave._session.get')
    def test_retries_then_succeeds(self, mock_get):
        mock_get.side_effect = [
            requests.ConnectionError("reset"),
            _response(SAMPLE_PAYLOAD),
        ]
        fetcher = BraveSearchFetcher(api_key="k", retry_config=NO_BACKOFF)
        results, error = fetcher.search("q")

        assert error is None
        assert len(results) == 2
        assert mock_get.call_count == 2

    @patch('src.ingest.fetch_brave._session.get')
    def test_failure_after_retries(self, mock_get):
        mock_get.side_effect = requests.Timeout("timed out")
        fetcher = BraveSearchFetcher(api_key="k", retry_config=NO_BACKOFF)
        results, error = fetcher.search("q")

        assert results == []
        assert "timed out" in error
        assert mock_get.call_count == 2

    @patch('src.ingest.fetch_brave._session.get')
    def test_http_error_reported(self, mock_get):
        response = _response({})
        response.raise_for_status.side_effect = requests.HTTPError("429 Too Many Requests")
        mock_get.return_value = response

        fetcher = BraveSearchFetcher(api_key="k", retry_config={"max_retries": 1})
        results, error = fetcher.search("q")
        assert results == []
        assert "429" in error

    @patch('src.ingest.fetch_brave._session.get')
    def test_invalid_json_reported(self, mock_get):
        response = _response(None)
        response.json.side_effect = ValueError("Expecting value")
        mock_get.return_value = response

        fetcher = BraveSearchFetcher(api_key="k", retry_config={"max_retries": 1})
        results, error = fetcher.search("q")
        assert results == []
        assert "Expecting value" in error


class TestRetryConfig:

    def test_defaults_when_empty(self):
        assert get_retry_config({}) == {
            "max_retries": 2,
            "initial_backoff_seconds": 2,
            "backoff_multiplier": 2,
        }

    def test_overrides(self):
        config = {"retry": {"max_retries": 5}}
        assert get_retry_config(config)["max_retries"] == 5

    def test_backoff_sleeps(self):
        class Flaky(BaseSearchFetcher):
            source_id = "flaky"

            def _search_impl(self, query, count):
                raise RuntimeError("down")

        fetcher = Flaky({"max_retries": 3, "initial_backoff_seconds": 1, "backoff_multiplier": 2})
        with patch('src.ingest.base_fetcher.time.sleep') as mock_sleep:
            results, error = fetcher.search("q")

        assert results == []
        assert error == "down"
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1, 2]

    def test_load_config_explicit_path(self, tmp_path):
        path = tmp_path / "card_update.yaml"
        path.write_text("selection:\n  cards_per_day: 7\n")
        assert load_card_update_config(str(path)) == {"selection": {"cards_per_day": 7}}

    def test_load_config_missing_path(self, tmp_path):
        assert load_card_update_config(str(tmp_path / "missing.yaml")) == {}
