"""
Trust filter for proposed card changes.

A wrong edit silently corrupts public data while a missed edit is merely
stale, so every rule here only ever drops proposals. Rules are applied to
each proposal independently:

1. Anything not labelled high confidence is dropped.
2. No-ops are dropped: old and new values compared in canonical form.
3. With the current records at hand, a new value that already matches the
   record is dropped as well.
4. With field schemas supplied, fields outside the updatable set or
   values of the wrong shape for their field are dropped.

Survivors are grouped per record in proposal order.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import jsonschema

from .models import ChangeProposal, Confidence, Record, RecordChanges, SkippedChange

logger = logging.getLogger(__name__)

MISSING = object()

_NUMBER = {"type": "number", "minimum": 0}

# Value schemas for every field the pipeline may write
FIELD_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "annual_fee": _NUMBER,
    "reward_type": {"type": "string", "enum": ["cashback", "points", "miles"]},
    "rewards": {
        "type": "array",
        "items": {
            "type": "object",
            "required": ["category", "value", "unit"],
            "properties": {
                "category": {"type": "string", "minLength": 1},
                "value": _NUMBER,
                "unit": {"type": "string", "enum": ["percent", "points_per_dollar"]},
                "note": {"type": "string"},
            },
        },
    },
    "signup_bonus": {
        "type": "object",
        "properties": {
            "value": _NUMBER,
            "type": {"type": "string", "enum": ["points", "miles", "cashback"]},
            "spend_requirement": _NUMBER,
            "timeframe_months": _NUMBER,
        },
    },
}


def normalize(value: Any) -> Any:
    """Normalize types so equal values serialize identically."""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        return {str(k): normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize(v) for v in value]
    return value


def canonicalize(value: Any) -> str:
    """Canonical JSON text for a value: sorted keys, normalized types."""
    return json.dumps(normalize(value), sort_keys=True, ensure_ascii=False, default=str)


def values_equal(a: Any, b: Any) -> bool:
    return canonicalize(a) == canonicalize(b)


def lookup_path(fields: Dict[str, Any], field_path: str) -> Any:
    """Value at a dotted path, or MISSING. Numeric parts index into lists."""
    current: Any = fields
    for part in field_path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return MISSING
    return current


def field_schema_for(
    field_path: str,
    field_schemas: Dict[str, Dict[str, Any]] = FIELD_SCHEMAS,
) -> Optional[Dict[str, Any]]:
    """
    Value schema for an updatable field path, or None if not updatable.

    Only one level of sub-field is supported (signup_bonus.value etc.).
    """
    parts = field_path.split(".")
    schema = field_schemas.get(parts[0])
    if schema is None or len(parts) > 2:
        return None
    if len(parts) == 1:
        return schema
    if schema.get("type") != "object":
        return None
    return schema.get("properties", {}).get(parts[1])


def check_field_value(
    field_path: str,
    value: Any,
    field_schemas: Dict[str, Dict[str, Any]] = FIELD_SCHEMAS,
) -> Optional[str]:
    """Return a rejection reason, or None if the value fits the field."""
    schema = field_schema_for(field_path, field_schemas)
    if schema is None:
        return f"field '{field_path}' is not updatable"
    if isinstance(value, bool):
        # bool is an int subclass; never a valid card amount
        if schema.get("type") == "number":
            return f"invalid value for {field_path}: {value!r}"
    try:
        jsonschema.validate(value, schema)
    except jsonschema.ValidationError as e:
        return f"invalid value for {field_path}: {e.message}"
    return None


def check_proposal(
    proposal: ChangeProposal,
    record: Optional[Record] = None,
    field_schemas: Optional[Dict[str, Dict[str, Any]]] = None,
) -> Optional[str]:
    """
    Apply the validation rules to one proposal.

    Returns:
        Rejection reason, or None if the proposal survives
    """
    confidence = Confidence.parse(proposal.confidence)
    if confidence is not Confidence.HIGH:
        label = confidence.value if confidence else "unknown"
        return f"confidence {label} (high required)"

    if values_equal(proposal.old_value, proposal.new_value):
        return f"no-op ({canonicalize(proposal.old_value)} unchanged)"

    if record is not None:
        current = lookup_path(record.fields, proposal.field_path)
        if current is not MISSING and values_equal(current, proposal.new_value):
            return f"no-op (record already has {canonicalize(current)})"
        current_value = None if current is MISSING else current
        if not values_equal(current_value, proposal.old_value):
            logger.warning(
                f"  '{proposal.record_id}': {proposal.field_path} old_value "
                f"{canonicalize(proposal.old_value)} differs from current "
                f"{canonicalize(current_value)}"
            )

    if field_schemas is not None:
        return check_field_value(proposal.field_path, proposal.new_value, field_schemas)
    return None


def validate(
    proposals: List[ChangeProposal],
    records: Optional[Dict[str, Record]] = None,
    field_schemas: Optional[Dict[str, Dict[str, Any]]] = None,
) -> Tuple[List[RecordChanges], List[SkippedChange]]:
    """
    Filter proposals down to trustworthy changes.

    Args:
        proposals: Proposals in reply order
        records: Optional record id -> Record for the current-value re-check
        field_schemas: Optional field name -> value schema; when given, only
            those fields (and valid values) are accepted

    Returns:
        (grouped survivors, rejected proposals with reasons)
    """
    grouped: Dict[str, RecordChanges] = {}
    rejected: List[SkippedChange] = []

    for proposal in proposals:
        record = records.get(proposal.record_id) if records else None
        reason = check_proposal(proposal, record, field_schemas)
        if reason:
            logger.info(f"  Skipping '{proposal.record_id}' {proposal.field_path}: {reason}")
            rejected.append(SkippedChange(proposal.record_id, proposal.field_path, reason))
            continue

        group = grouped.get(proposal.record_id)
        if group is None:
            name = proposal.record_name or (record.name if record else proposal.record_id)
            group = RecordChanges(record_id=proposal.record_id, record_name=name)
            grouped[proposal.record_id] = group
        group.changes.append(proposal)

    return list(grouped.values()), rejected
