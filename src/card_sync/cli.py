"""
Command-line interface for the card update run.

Usage:
    python -m src.card_sync.cli
    python -m src.card_sync.cli --day-index 3 --dry-run
    DAY_OFFSET=1 python -m src.card_sync.cli
"""

import argparse
import logging
import sys
from typing import Optional

from src.config.secrets import MissingAPIKeyError, get_anthropic_key, get_brave_search_key
from src.ingest.base_fetcher import load_card_update_config
from src.ingest.fetch_brave import BraveSearchFetcher
from src.logging_config import configure_logging

from .pipeline import load_settings, run_card_update
from .proposer import ChangeProposer, ProposerError
from .store import CardStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="card-update",
        description="Check a rotating subset of cards for data changes and patch their YAML files"
    )
    parser.add_argument("--config", help="Path to card_update.yaml (default: config/card_update.yaml)")
    parser.add_argument("--cards-dir", help="Directory of card YAML files")
    parser.add_argument("--summary-file", help="Where to write the review summary")
    parser.add_argument("--day-index", type=int, help="Force the rotation day index (testing/replay)")
    parser.add_argument("--day-offset", type=int, help="Shift the date-derived day index")
    parser.add_argument("--active-quota", type=int, help="Cards per day from the active pool")
    parser.add_argument("--total-quota", type=int, help="Cards per day in total")
    parser.add_argument("--dry-run", action="store_true", help="Don't write card files or the summary")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: Optional[list] = None) -> int:
    """Main CLI entrypoint."""
    args = build_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    logger.info("=== Auto Card Data Update ===")

    config = load_card_update_config(args.config)
    settings = load_settings(config, overrides={
        "cards_dir": args.cards_dir,
        "summary_file": args.summary_file,
        "day_index": args.day_index,
        "day_offset": args.day_offset,
        "active_quota": args.active_quota,
        "total_quota": args.total_quota,
        "dry_run": args.dry_run or None,
    })

    try:
        search_key = get_brave_search_key()
        anthropic_key = get_anthropic_key()
    except MissingAPIKeyError as e:
        logger.error(f"Error: {e}")
        return 1

    fetcher = BraveSearchFetcher(
        api_key=search_key,
        timeout=settings.search_timeout,
        retry_config=settings.retry,
    )
    proposer = ChangeProposer(
        api_key=anthropic_key,
        model=settings.model,
        max_tokens=settings.max_tokens,
        timeout=settings.proposer_timeout,
    )
    store = CardStore(settings.cards_dir)

    try:
        result = run_card_update(store, fetcher, proposer, settings)
    except ProposerError as e:
        logger.error(f"Fatal error: {e}")
        return 1

    logger.info("=== Complete ===")
    if result.applied:
        logger.info(
            f"{len(result.applied)} card file(s) updated, "
            f"{len(result.skipped)} change(s) skipped. Review the diff before merging."
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
