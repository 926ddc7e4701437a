"""
Card record store backed by one YAML file per card.

Each record keeps the parsed fields next to the exact file text so the
patch engine can edit the text and leave everything else untouched.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .models import CoveragePool, Record

logger = logging.getLogger(__name__)

CARDS_DIR = Path("data/cards")


class StoreError(Exception):
    """Raised when a record id is unknown to the store."""
    pass


def parse_card_text(raw_text: str) -> Dict[str, Any]:
    """
    Parse card YAML text into a field mapping.

    Raises:
        yaml.YAMLError: If the text is not valid YAML
        ValueError: If the document is not a mapping
    """
    data = yaml.safe_load(raw_text)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"expected a mapping, got {type(data).__name__}")
    return data


class CardStore:
    """Loads card records from a directory and writes patched text back."""

    def __init__(self, cards_dir: Path = CARDS_DIR):
        self.cards_dir = Path(cards_dir)
        self._records: Dict[str, Record] = {}

    def load_all(self) -> List[Record]:
        """
        Load every *.yaml card in the directory.

        Files that fail to parse or have no slug are skipped with a warning.

        Returns:
            Records in filename order
        """
        self._records = {}
        if not self.cards_dir.is_dir():
            logger.warning(f"Cards directory not found: {self.cards_dir}")
            return []

        records = []
        for path in sorted(self.cards_dir.glob("*.yaml")):
            try:
                # newline="" keeps CRLF files byte-identical on round trip
                with open(path, "r", encoding="utf-8", newline="") as f:
                    raw_text = f.read()
                fields = parse_card_text(raw_text)
            except (OSError, yaml.YAMLError, ValueError) as e:
                logger.warning(f"Could not parse {path.name}: {e}")
                continue

            slug = fields.get("slug")
            if not slug:
                logger.warning(f"Skipping {path.name}: no slug")
                continue
            slug = str(slug)
            if slug in self._records:
                logger.warning(
                    f"Duplicate slug '{slug}' in {path.name}, "
                    f"keeping {self._records[slug].location.name}"
                )
                continue

            record = Record(id=slug, location=path, fields=fields, raw_text=raw_text)
            self._records[slug] = record
            records.append(record)

        return records

    def get(self, record_id: str) -> Optional[Record]:
        return self._records.get(record_id)

    def read(self, record_id: str) -> Tuple[Dict[str, Any], str]:
        """Return (fields, raw_text) for a loaded record."""
        record = self._records.get(record_id)
        if record is None:
            raise StoreError(f"Unknown record id: {record_id}")
        return record.fields, record.raw_text

    def write(self, record_id: str, new_raw_text: str) -> bool:
        """
        Persist new text for a record, verbatim.

        The file is replaced atomically (temp file then rename). Text that is
        byte-identical to what is already stored is not rewritten.

        Returns:
            True if the file was written, False if it was unchanged
        """
        record = self._records.get(record_id)
        if record is None:
            raise StoreError(f"Unknown record id: {record_id}")
        if new_raw_text == record.raw_text:
            return False

        path = record.location
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8", newline="") as f:
                f.write(new_raw_text)
            os.replace(temp_path, path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise

        record.raw_text = new_raw_text
        record.fields = parse_card_text(new_raw_text)
        return True

    def pools(self, records: Optional[List[Record]] = None) -> CoveragePool:
        """Split records into sorted active and inactive id lists."""
        if records is None:
            records = list(self._records.values())
        active = sorted(r.id for r in records if r.is_active)
        inactive = sorted(r.id for r in records if not r.is_active)
        return CoveragePool(active=active, inactive=inactive)
