"""
Daily card reconciliation run.

Selection -> evidence search per card -> one batched reasoning call ->
validation -> surgical patches -> review summary. Runs are sequential and
assumed not to overlap; each record's file is written once, after all of
its changes have been applied in memory.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, Union

from src.ingest.base_fetcher import BaseSearchFetcher
from src.ingest.card_evidence import MAX_RESULTS, SEARCH_DELAY, collect_evidence

from . import patcher
from .models import AppliedChangeSet, Record, RunResult, SkippedChange
from .proposer import ChangeProposer, DEFAULT_MAX_TOKENS, DEFAULT_MODEL, DEFAULT_TIMEOUT_SECONDS
from .reporter import SUMMARY_FILE, summarize, write_summary
from .selector import build_selection, compute_day_index
from .store import CARDS_DIR, CardStore
from .validator import FIELD_SCHEMAS, validate

logger = logging.getLogger(__name__)

CARDS_PER_DAY = 20
ACTIVE_PER_DAY = 15


@dataclass
class UpdateSettings:
    """Resolved configuration for one run."""
    cards_dir: Path = CARDS_DIR
    summary_file: Path = SUMMARY_FILE
    total_quota: int = CARDS_PER_DAY
    active_quota: int = ACTIVE_PER_DAY
    day_offset: int = 0
    day_index: Optional[int] = None
    search_delay: float = SEARCH_DELAY
    max_results: int = MAX_RESULTS
    search_timeout: Union[float, Tuple[float, float]] = (10, 30)
    retry: Dict[str, Any] = field(default_factory=dict)
    model: str = DEFAULT_MODEL
    max_tokens: int = DEFAULT_MAX_TOKENS
    proposer_timeout: float = DEFAULT_TIMEOUT_SECONDS
    enforce_field_schemas: bool = True
    dry_run: bool = False


def _timeout(value: Any) -> Union[float, Tuple[float, float]]:
    """(connect, read) pair from a YAML list; a single number stays a scalar."""
    if isinstance(value, (list, tuple)):
        return tuple(value)
    return float(value)

def load_settings(
    config: Optional[Dict[str, Any]] = None,
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> UpdateSettings:
    """
    Merge config file values, environment and explicit overrides.

    Precedence (highest first): overrides, DAY_OFFSET env var, config file,
    defaults. Override values of None are ignored.
    """
    config = config or {}
    environ = os.environ if environ is None else environ
    selection = config.get("selection", {}) or {}
    search = config.get("search", {}) or {}
    proposer = config.get("proposer", {}) or {}
    paths = config.get("paths", {}) or {}
    validation = config.get("validation", {}) or {}

    settings = UpdateSettings(
        cards_dir=Path(paths.get("cards_dir", CARDS_DIR)),
        summary_file=Path(paths.get("summary_file", SUMMARY_FILE)),
        total_quota=int(selection.get("cards_per_day", CARDS_PER_DAY)),
        active_quota=int(selection.get("active_per_day", ACTIVE_PER_DAY)),
        day_offset=int(selection.get("day_offset", 0)),
        search_delay=float(search.get("delay_seconds", SEARCH_DELAY)),
        max_results=int(search.get("max_results", MAX_RESULTS)),
        search_timeout=_timeout(search.get("timeout", (10, 30))),
        retry=dict(config.get("retry", {}) or {}),
        model=str(proposer.get("model", DEFAULT_MODEL)),
        max_tokens=int(proposer.get("max_tokens", DEFAULT_MAX_TOKENS)),
        proposer_timeout=float(proposer.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
        enforce_field_schemas=bool(validation.get("enforce_field_schemas", True)),
    )

    env_offset = environ.get("DAY_OFFSET", "").strip()
    if env_offset:
        try:
            settings.day_offset = int(env_offset)
        except ValueError:
            logger.warning(f"Ignoring non-integer DAY_OFFSET={env_offset!r}")

    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if not hasattr(settings, key):
            raise ValueError(f"Unknown setting: {key}")
        if key in ("cards_dir", "summary_file"):
            value = Path(value)
        setattr(settings, key, value)

    return settings


def _split_unknown(proposals, selected_ids):
    known, skipped = [], []
    for proposal in proposals:
        if proposal.record_id in selected_ids:
            known.append(proposal)
            continue
        logger.warning(
            f"  Skipping {proposal.field_path} for unknown record '{proposal.record_id}' "
            f"(not in today's selection)"
        )
        skipped.append(SkippedChange(proposal.record_id, proposal.field_path, "record not in selection"))
    return known, skipped


def run_card_update(
    store: CardStore,
    fetcher: BaseSearchFetcher,
    proposer: ChangeProposer,
    settings: UpdateSettings,
    today: Optional[date] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RunResult:
    """
    Execute one reconciliation run.

    Args:
        store: Card record store
        fetcher: Search backend for evidence
        proposer: Reasoning-service client
        settings: Resolved settings
        today: Date the day index is derived from (default: today)
        sleep: Sleep function used between searches

    Returns:
        RunResult describing selection, proposals, applied and skipped changes

    Raises:
        ProposerError: If the reasoning call fails (nothing has been written)
    """
    records = store.load_all()
    by_id: Dict[str, Record] = {r.id: r for r in records}
    logger.info(f"Found {len(records)} cards")

    day_index = settings.day_index
    if day_index is None:
        day_index = compute_day_index(today, settings.day_offset)
    batch = build_selection(store.pools(records), day_index, settings.active_quota, settings.total_quota)
    result = RunResult(batch=batch)

    selected = [by_id[record_id] for record_id in batch.chosen_ids]
    active_count = sum(1 for r in selected if r.is_active)
    logger.info(
        f"Selected {len(selected)} cards for day {day_index} "
        f"({active_count} active, {len(selected) - active_count} inactive)"
    )
    for record in selected:
        logger.info(f"  - {record.name} ({record.id})")

    if not selected:
        logger.info("No cards selected. Exiting.")
        if not settings.dry_run:
            write_summary("", settings.summary_file)
        return result

    logger.info("Searching for card info...")
    evidence = collect_evidence(
        selected,
        fetcher,
        delay_seconds=settings.search_delay,
        max_results=settings.max_results,
        sleep=sleep,
    )

    logger.info("Analyzing changes...")
    result.proposals = proposer.propose(selected, evidence)
    logger.info(f"Received {len(result.proposals)} proposed change(s)")

    known, unknown = _split_unknown(result.proposals, set(batch.chosen_ids))
    result.skipped.extend(unknown)

    field_schemas = FIELD_SCHEMAS if settings.enforce_field_schemas else None
    result.validated, rejected = validate(known, records=by_id, field_schemas=field_schemas)
    result.skipped.extend(rejected)
    logger.info(f"Found {len(result.validated)} card(s) with high-confidence changes")

    if not result.validated:
        logger.info("No changes detected. Exiting.")
        if not settings.dry_run:
            write_summary("", settings.summary_file)
        return result

    logger.info("Applying changes...")
    for group in result.validated:
        record = by_id[group.record_id]
        patch = patcher.apply(record, group.changes)
        result.skipped.extend(patch.skipped)
        if not patch.success:
            continue

        if not settings.dry_run:
            store.write(record.id, patch.raw_text)
        result.applied.append(AppliedChangeSet(
            record_id=record.id,
            record_name=group.record_name or record.name,
            location=record.location,
            changes=patch.applied,
        ))
    logger.info(f"Applied changes to {len(result.applied)} card(s)")

    summary = summarize(result.applied)
    if settings.dry_run:
        if summary:
            logger.info(f"Dry run, summary not written:\n{summary}")
    else:
        result.report_path = write_summary(summary, settings.summary_file)
        if result.report_path:
            logger.info(f"Summary written to {result.report_path}")

    for skip in result.skipped:
        logger.info(f"  skipped {skip.record_id} {skip.field_path}: {skip.reason}")

    return result
