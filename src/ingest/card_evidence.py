"""
Per-card evidence retrieval.

Evidence is best effort: a failed search leaves that card with an empty
list and the run carries on. Searches are serialized with a fixed delay
between cards to stay inside the search API's rate limits.
"""

import logging
import time
from datetime import date
from typing import Callable, Dict, List, Optional

from src.card_sync.models import Evidence, Record
from .base_fetcher import BaseSearchFetcher

logger = logging.getLogger(__name__)

# Delay between searches (seconds)
SEARCH_DELAY = 1.2

# Results kept per card
MAX_RESULTS = 5


def build_query(record: Record, year: Optional[int] = None) -> str:
    """
    Build the search query for a card.

    The current year is appended to bias results toward fresh terms.
    """
    if year is None:
        year = date.today().year
    parts = [f'"{record.name}"']
    if record.issuer:
        parts.append(record.issuer)
    parts.append(f"credit card annual fee rewards benefits {year}")
    return " ".join(parts)


def fetch_evidence(
    record: Record,
    fetcher: BaseSearchFetcher,
    max_results: int = MAX_RESULTS,
    year: Optional[int] = None,
) -> List[Evidence]:
    """
    Search for one card.

    Returns:
        Up to max_results Evidence entries; [] if the search failed
    """
    query = build_query(record, year)
    try:
        results, error = fetcher.search(query, count=max_results)
    except Exception as e:
        results, error = [], str(e)

    if error:
        logger.warning(f"Search failed for '{record.name}' ({record.id}): {error}")
        return []

    return results[:max_results]


def collect_evidence(
    records: List[Record],
    fetcher: BaseSearchFetcher,
    delay_seconds: float = SEARCH_DELAY,
    max_results: int = MAX_RESULTS,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, List[Evidence]]:
    """
    Fetch evidence for each record in order.

    Args:
        records: Records selected for this run
        fetcher: Search backend
        delay_seconds: Pause between consecutive searches
        max_results: Results kept per record
        sleep: Sleep function (injectable for tests)

    Returns:
        Mapping of record id -> evidence list (every record present)
    """
    evidence: Dict[str, List[Evidence]] = {}
    for i, record in enumerate(records):
        if i > 0 and delay_seconds > 0:
            sleep(delay_seconds)
        results = fetch_evidence(record, fetcher, max_results=max_results)
        evidence[record.id] = results
        logger.info(f"  '{record.name}' -> {len(results)} results")
    return evidence
