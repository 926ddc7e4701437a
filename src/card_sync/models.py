"""
Data models for the card reconciliation pipeline.

Kept as plain dataclasses so records and proposals can be built in tests
without touching the filesystem or any external service.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


class Confidence(Enum):
    """Trust label attached to a proposed change."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def parse(cls, value: Any) -> Optional["Confidence"]:
        """Map a raw label to a Confidence, or None if unrecognised."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass
class Record:
    """One card file: structured view plus the verbatim text it came from."""
    id: str
    location: Path
    fields: Dict[str, Any]
    raw_text: str

    @property
    def name(self) -> str:
        return str(self.fields.get("name") or self.id)

    @property
    def issuer(self) -> str:
        return str(self.fields.get("bank") or "")

    @property
    def is_active(self) -> bool:
        # Cards without the flag are treated as accepting applications
        return self.fields.get("accepting_applications") is not False


@dataclass
class CoveragePool:
    """Active and inactive record ids, each sorted for reproducible rotation."""
    active: List[str] = field(default_factory=list)
    inactive: List[str] = field(default_factory=list)


@dataclass
class SelectionBatch:
    day_index: int
    chosen_ids: List[str] = field(default_factory=list)


@dataclass
class Evidence:
    title: str
    url: str
    snippet: str = ""


@dataclass
class ChangeProposal:
    """A field-level change suggested by the reasoning service."""
    record_id: str
    field_path: str
    old_value: Any
    new_value: Any
    confidence: Confidence
    citation_url: str = ""
    record_name: str = ""


@dataclass
class RecordChanges:
    """Validated proposals for a single record, in proposal order."""
    record_id: str
    record_name: str = ""
    changes: List[ChangeProposal] = field(default_factory=list)


@dataclass
class SkippedChange:
    """A proposal that was rejected or could not be applied."""
    record_id: str
    field_path: str
    reason: str


@dataclass
class AppliedChangeSet:
    """Changes written back into one record's file."""
    record_id: str
    record_name: str
    location: Optional[Path] = None
    changes: List[ChangeProposal] = field(default_factory=list)


@dataclass
class RunResult:
    """Everything a run produced, for logging and tests."""
    batch: SelectionBatch
    proposals: List[ChangeProposal] = field(default_factory=list)
    validated: List[RecordChanges] = field(default_factory=list)
    applied: List[AppliedChangeSet] = field(default_factory=list)
    skipped: List[SkippedChange] = field(default_factory=list)
    report_path: Optional[Path] = None
