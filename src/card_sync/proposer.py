"""
Client for the card reasoning service.

Builds one prompt for the whole day's selection, sends it in a single
Messages API call and parses the reply into ChangeProposal objects. The
reply is checked against schemas/card_changes.schema.json, which ships as
package data; entries that do not match are dropped rather than trusted.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import anthropic
import jsonschema

from .models import ChangeProposal, Confidence, Evidence, Record

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_TIMEOUT_SECONDS = 120.0

SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "card_changes.schema.json"

# Fields the reasoning service is shown and may propose changes to
PROPOSABLE_FIELDS = ("annual_fee", "reward_type", "rewards", "signup_bonus")

_FENCE_RE = re.compile(r"^\s*```[A-Za-z]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


class ProposerError(Exception):
    """Raised when the reasoning service cannot be reached or errors out."""
    pass


def load_schema(path: Path = SCHEMA_PATH) -> Dict[str, Any]:
    with open(path, 'r') as f:
        return json.load(f)


def current_snapshot(record: Record) -> Dict[str, Any]:
    """Current values of the proposable fields (None when absent)."""
    return {name: record.fields.get(name) for name in PROPOSABLE_FIELDS}


def format_evidence(results: List[Evidence]) -> str:
    if not results:
        return "  No results found"
    lines = []
    for j, r in enumerate(results, 1):
        lines.append(f"  [{j}] {r.title}\n  URL: {r.url}\n  Description: {r.snippet or 'N/A'}")
    return "\n".join(lines)


def build_prompt(records: List[Record], evidence: Dict[str, List[Evidence]]) -> str:
    """
    Build the single batched prompt for a run.

    Args:
        records: Selected records, in selection order
        evidence: Record id -> evidence list

    Returns:
        Prompt text
    """
    sections = []
    for record in records:
        current = json.dumps(current_snapshot(record), indent=2, ensure_ascii=False, default=str)
        sections.append(
            f"### {record.name} (record_id: {record.id}, bank: {record.issuer or 'unknown'})\n"
            f"Current data:\n{current}\n\n"
            f"Search results:\n{format_evidence(evidence.get(record.id, []))}"
        )
    cards_context = "\n\n---\n\n".join(sections)

    return f"""You are a credit card data analyst. Compare each card's current data against the search results and identify any factual changes.

## Cards to Check

{cards_context}

## Instructions
- Compare current values against information found in search results
- Only report changes you are CONFIDENT about from official issuer pages or multiple reliable sources
- old_value must be the current value exactly as given above; never report a change whose new_value equals it
- For annual_fee: must be a number (e.g., 95, 0, 550). Use the standard annual fee, NOT intro/waived fees.
- For reward_type: must be one of "cashback", "points", "miles"
- For rewards: array of objects with {{category, value, unit, note?}}
  - unit must be "percent" or "points_per_dollar"
  - category examples: "dining", "travel", "groceries", "gas", "streaming", "everything_else", etc.
- For signup_bonus: object with {{value, type, spend_requirement, timeframe_months}}
  - value = number of points/miles/dollars
  - type = "points", "miles", or "cashback"
  - spend_requirement = dollar amount
  - timeframe_months = number of months
- Confidence levels:
  - "high" = official card issuer page or multiple reliable sources confirm the change
  - "medium" = single reliable source
  - "low" = anything weaker
- If you are NOT sure about a change, DO NOT report it. False positives are much worse than missed updates.
- Report each field_path at most once per card.
- If no changes exist for a card, omit it entirely from the output.

## Output Format
Return ONLY a JSON array (no markdown code fences, no extra text). Each element:
{{
  "record_id": "card-slug",
  "record_name": "Card Name",
  "changes": [
    {{
      "field_path": "annual_fee",
      "old_value": 95,
      "new_value": 250,
      "confidence": "high",
      "citation_url": "https://example.com"
    }}
  ]
}}

For nested fields use dot notation: "signup_bonus.value", "signup_bonus.spend_requirement", "signup_bonus.timeframe_months", "signup_bonus.type"
For rewards changes, use field_path "rewards" with the full new array as new_value.

If NO changes found for ANY card, return: []"""


def strip_formatting(text: str) -> str:
    """
    Remove incidental formatting around a JSON array reply.

    Handles Markdown code fences and prose before or after the array.
    """
    if not text:
        return ""
    stripped = text.strip()

    fence = _FENCE_RE.match(stripped)
    if fence:
        stripped = fence.group(1).strip()

    # Prose may sit on either side of the array
    start = stripped.find("[")
    end = stripped.rfind("]")
    if start >= 0 and end > start:
        stripped = stripped[start:end + 1]

    return stripped


def _schema_error(error: jsonschema.ValidationError) -> str:
    path = ".".join(str(p) for p in error.absolute_path)
    return f"{path}: {error.message}" if path else error.message


def parse_response(text: str, schema: Optional[Dict[str, Any]] = None) -> List[ChangeProposal]:
    """
    Parse a reasoning-service reply into proposals.

    An undecodable or wrongly shaped reply yields no proposals. Individual
    record or change entries that fail the schema are dropped with a warning
    and the rest of the reply is kept.

    Args:
        text: Raw reply text
        schema: Parsed card_changes schema (default: loaded from SCHEMA_PATH)

    Returns:
        Proposals in reply order
    """
    if schema is None:
        schema = load_schema()
    definitions = schema.get("definitions", {})

    body = strip_formatting(text)
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        logger.warning(f"Could not parse reasoning response as JSON: {e}")
        logger.warning(f"Response: {(text or '')[:500]}")
        return []

    top_level = {k: v for k, v in schema.items() if k != "definitions"}
    try:
        jsonschema.validate(data, top_level)
    except jsonschema.ValidationError as e:
        logger.warning(f"Reasoning response has unexpected shape: {_schema_error(e)}")
        return []

    proposals: List[ChangeProposal] = []
    for i, entry in enumerate(data):
        try:
            jsonschema.validate(entry, definitions["record_entry"])
        except jsonschema.ValidationError as e:
            logger.warning(f"Dropping response entry {i}: {_schema_error(e)}")
            continue

        record_id = entry["record_id"]
        record_name = entry.get("record_name") or ""
        for j, change in enumerate(entry["changes"]):
            try:
                jsonschema.validate(change, definitions["change"])
            except jsonschema.ValidationError as e:
                logger.warning(f"Dropping change {j} for '{record_id}': {_schema_error(e)}")
                continue

            proposals.append(ChangeProposal(
                record_id=record_id,
                field_path=change["field_path"],
                old_value=change["old_value"],
                new_value=change["new_value"],
                confidence=Confidence.parse(change["confidence"]),
                citation_url=change["citation_url"],
                record_name=record_name,
            ))

    return proposals


class ChangeProposer:
    """Sends the batched prompt to the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[Any] = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.client = client or anthropic.Anthropic(api_key=api_key, timeout=timeout)

    def complete(self, prompt: str) -> str:
        """Send one prompt and return the reply text."""
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            raise ProposerError(f"Reasoning service request failed: {e}") from e

        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.info(
                f"Reasoning service usage: {usage.input_tokens} input / "
                f"{usage.output_tokens} output tokens"
            )

        return "".join(
            getattr(block, "text", "") for block in response.content
            if getattr(block, "type", "text") == "text"
        )

    def propose(self, records: List[Record], evidence: Dict[str, List[Evidence]]) -> List[ChangeProposal]:
        """
        Ask for changes to every selected record in one call.

        Raises:
            ProposerError: If the service call fails
        """
        if not records:
            return []
        text = self.complete(build_prompt(records, evidence))
        return parse_response(text)
