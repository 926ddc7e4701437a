"""
Format-preserving patch engine for card YAML files.

Changes are applied as text-region substitutions on the original file, never
as a load-modify-dump of the whole document, so comments, key order and the
maintainers' formatting survive. Three strategies share one interface:

    ScalarFieldPatch  top-level `key: value` line; only the value text changes
    BlockFieldPatch   top-level key plus its indented continuation lines,
                      replaced by that one field serialized on its own
                      (appended at the end of the file when absent)
    SubFieldPatch     dotted path inside a block; the parent block is
                      re-parsed, updated and rewritten as a unit

After every change the text is re-parsed: the patched path must hold the new
value and every other top-level field must be unchanged, otherwise the change
is reverted and reported as skipped.
"""

import copy
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .models import ChangeProposal, Record, SkippedChange
from .store import parse_card_text
from .validator import lookup_path, values_equal, MISSING

logger = logging.getLogger(__name__)

# Effectively disables line folding in PyYAML output
_NO_WRAP = 1_000_000

_PLAIN_UNSAFE_START = tuple("-?:,[]{}#&*!|>'\"%@`")


class PatchError(Exception):
    """Raised when a single change cannot be applied to a file's text."""
    pass


@dataclass
class FileStyle:
    """Formatting conventions observed in a card file."""
    indent: int = 2
    indent_sequences: bool = True
    string_quote: Optional[str] = '"'  # '"', "'" or None for plain
    newline: str = "\n"


@dataclass
class PatchResult:
    """Outcome of applying one record's changes."""
    raw_text: str
    success: bool
    applied: List[ChangeProposal] = field(default_factory=list)
    skipped: List[SkippedChange] = field(default_factory=list)
    fields: Optional[Dict[str, Any]] = None


# =============================================================================
# Style detection
# =============================================================================

_KEY_VALUE_RE = re.compile(r'^[ \t]*(?:-[ \t]+)?[A-Za-z_][\w-]*[ \t]*:[ \t]+(?P<value>\S.*)$')
_KEY_ONLY_RE = re.compile(r'^(?P<indent>[ \t]*)[A-Za-z_][\w-]*[ \t]*:[ \t]*(?:#.*)?$')
_SEQ_ITEM_RE = re.compile(r'^(?P<indent>[ \t]*)-(?:[ \t]|$)')


def _indent_of(line: str) -> int:
    return len(line) - len(line.lstrip(" \t"))


def detect_style(raw_text: str) -> FileStyle:
    """
    Infer indentation, sequence style, string quoting and line endings.

    Falls back to two-space indentation, indented sequences and
    double-quoted strings when the file gives no evidence.
    """
    style = FileStyle()
    if "\r\n" in raw_text:
        style.newline = "\r\n"

    lines = [line.rstrip("\r\n") for line in raw_text.splitlines()]
    content = [line for line in lines if line.strip() and not line.lstrip().startswith("#")]

    indents = [_indent_of(line) for line in content if _indent_of(line) > 0]
    if indents:
        style.indent = max(2, min(indents))

    # Sequence style: is "- " indented under its parent key or flush with it?
    indented_votes = flush_votes = 0
    for i, line in enumerate(content[:-1]):
        key_match = _KEY_ONLY_RE.match(line)
        if not key_match:
            continue
        item_match = _SEQ_ITEM_RE.match(content[i + 1])
        if not item_match:
            continue
        if len(item_match.group("indent")) > len(key_match.group("indent")):
            indented_votes += 1
        else:
            flush_votes += 1
    if flush_votes > indented_votes:
        style.indent_sequences = False

    # String quoting: majority vote over scalar string values
    votes = {'"': 0, "'": 0, None: 0}
    for line in content:
        match = _KEY_VALUE_RE.match(line)
        if not match:
            continue
        value = match.group("value")
        if value[0] in ('"', "'"):
            votes[value[0]] += 1
            continue
        scalar, _, _ = split_value(value)
        try:
            parsed = yaml.safe_load(scalar)
        except yaml.YAMLError:
            continue
        if isinstance(parsed, str):
            votes[None] += 1
    if votes[None] > votes['"'] and votes[None] > votes["'"]:
        style.string_quote = None
    elif votes["'"] > votes['"']:
        style.string_quote = "'"

    return style


# =============================================================================
# Serialization helpers
# =============================================================================

def split_value(value: str) -> Tuple[str, str, Optional[str]]:
    """
    Split the text after `key:` into (scalar, trailing, quote).

    `trailing` keeps whatever follows the scalar (spacing and an inline
    comment). `quote` is the quote character of a quoted scalar, else None.
    An unterminated quoted scalar is returned whole with empty trailing.
    """
    if value.startswith('"'):
        i = 1
        while i < len(value):
            if value[i] == "\\":
                i += 2
                continue
            if value[i] == '"':
                return value[:i + 1], value[i + 1:], '"'
            i += 1
        return value, "", '"'

    if value.startswith("'"):
        i = 1
        while i < len(value):
            if value[i] == "'":
                if value[i + 1:i + 2] == "'":
                    i += 2
                    continue
                return value[:i + 1], value[i + 1:], "'"
            i += 1
        return value, "", "'"

    comment = re.search(r'[ \t]#', value)
    scalar = value[:comment.start()] if comment else value
    trailing = value[comment.start():] if comment else ""
    stripped = scalar.rstrip()
    return stripped, scalar[len(stripped):] + trailing, None


def _is_plain_safe(text: str) -> bool:
    if not text or text != text.strip() or "\n" in text:
        return False
    if text.startswith(_PLAIN_UNSAFE_START) or ": " in text or " #" in text or text.endswith(":"):
        return False
    try:
        return yaml.safe_load(text) == text
    except yaml.YAMLError:
        return False


def format_scalar(value: Any, quote: Optional[str]) -> str:
    """Render a scalar for an inline `key: value` line in the given quote style."""
    if isinstance(value, str):
        if quote == "'" and "\n" not in value:
            return "'" + value.replace("'", "''") + "'"
        if quote is None and _is_plain_safe(value):
            return value
        return json.dumps(value, ensure_ascii=False)

    dumped = yaml.safe_dump(value, default_flow_style=True, allow_unicode=True, width=_NO_WRAP)
    if dumped.endswith("\n...\n"):
        dumped = dumped[:-len("\n...\n")]
    return dumped.strip()


def _make_dumper(style: FileStyle):
    class BlockDumper(yaml.SafeDumper):
        string_quote = style.string_quote

        def increase_indent(self, flow=False, indentless=False):
            if style.indent_sequences:
                indentless = False
            return super().increase_indent(flow, indentless)

        def ignore_aliases(self, data):
            return True

    def represent_str(dumper, data):
        quote = dumper.string_quote
        if "\n" in data:
            quote = '"'
        elif quote is None and not _is_plain_safe(data):
            quote = '"'
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style=quote)

    def represent_dict(dumper, data):
        # Keys stay plain whatever the string quoting convention
        pairs = []
        node = yaml.MappingNode("tag:yaml.org,2002:map", pairs, flow_style=False if data else True)
        for key, value in data.items():
            if isinstance(key, str):
                key_node = yaml.SafeDumper.represent_str(dumper, key)
            else:
                key_node = dumper.represent_data(key)
            pairs.append((key_node, dumper.represent_data(value)))
        return node

    def represent_list(dumper, data):
        return dumper.represent_sequence("tag:yaml.org,2002:seq", data, flow_style=False if data else True)

    BlockDumper.add_representer(str, represent_str)
    BlockDumper.add_representer(dict, represent_dict)
    BlockDumper.add_representer(list, represent_list)
    return BlockDumper


def serialize_block(key: str, value: Any, style: FileStyle) -> str:
    """Serialize one top-level field on its own, in the file's conventions."""
    text = yaml.dump(
        {key: value},
        Dumper=_make_dumper(style),
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
        indent=style.indent,
        width=_NO_WRAP,
    )
    if style.newline != "\n":
        text = text.replace("\n", style.newline)
    return text


# =============================================================================
# Text regions
# =============================================================================

def _key_pattern(key: str) -> str:
    escaped = re.escape(key)
    return rf'(?:{escaped}|"{escaped}"|\'{escaped}\')'


def find_key_line(lines: List[str], key: str) -> Optional[int]:
    """Index of the top-level `key:` line, or None."""
    pattern = re.compile(rf'^{_key_pattern(key)}[ \t]*:(?=[ \t]|$)')
    for i, line in enumerate(lines):
        if pattern.match(line.rstrip("\r\n")):
            return i
    return None


def find_block(lines: List[str], key: str) -> Optional[Tuple[int, int]]:
    """
    Locate a top-level field's region as (start, end) line indices.

    The region is the key line plus every following line that is more
    indented than the key, or a `- ` sequence item flush with it. Blank lines
    belong to the region only when more of the block follows them.
    """
    start = find_key_line(lines, key)
    if start is None:
        return None

    end = start + 1
    j = start + 1
    while j < len(lines):
        body = lines[j].rstrip("\r\n")
        if not body.strip():
            j += 1
            continue
        if _indent_of(body) > 0 or (_SEQ_ITEM_RE.match(body) and not body.startswith("---")):
            j += 1
            end = j
            continue
        break
    return start, end


def replace_region(lines: List[str], start: int, end: int, new_text: str) -> str:
    """Swap lines[start:end] for new_text, keeping a missing final newline missing."""
    if end == len(lines) and lines and not lines[-1].endswith(("\n", "\r")):
        new_text = new_text.rstrip("\r\n")
    return "".join(lines[:start]) + new_text + "".join(lines[end:])


# =============================================================================
# Strategies
# =============================================================================

class FieldPatch(ABC):
    """One way of writing a change into a file's text."""

    name = "field"

    @abstractmethod
    def apply(self, raw_text: str, field_path: str, new_value: Any, style: FileStyle) -> str:
        """
        Return the patched text.

        Raises:
            PatchError: If the change cannot be placed
        """
        pass


class BlockFieldPatch(FieldPatch):
    """Rewrite a whole top-level field; append it when absent."""

    name = "block"

    def apply(self, raw_text: str, field_path: str, new_value: Any, style: FileStyle) -> str:
        block = serialize_block(field_path, new_value, style)
        lines = raw_text.splitlines(keepends=True)
        region = find_block(lines, field_path)
        if region is not None:
            return replace_region(lines, region[0], region[1], block)

        # Older cards may not have this structure yet
        if raw_text and not raw_text.endswith(("\n", "\r")):
            raw_text += style.newline
        return raw_text + block


class ScalarFieldPatch(FieldPatch):
    """Replace only the value text on an existing top-level `key: value` line."""

    name = "scalar"

    def apply(self, raw_text: str, field_path: str, new_value: Any, style: FileStyle) -> str:
        lines = raw_text.splitlines(keepends=True)
        index = find_key_line(lines, field_path)
        if index is None:
            raise PatchError(f"field '{field_path}' not found")

        line = lines[index]
        body = line.rstrip("\r\n")
        eol = line[len(body):]
        match = re.match(rf'^(?P<key>{_key_pattern(field_path)})(?P<sep>[ \t]*:[ \t]*)(?P<value>.*)$', body)
        if match is None:
            raise PatchError(f"field '{field_path}' not found")

        value_text = match.group("value")
        scalar, trailing, quote = split_value(value_text)
        multiline = (
            not scalar
            or scalar[0] in "|>&!"
            or (quote is not None and not trailing and not scalar.endswith(quote))
            or (quote is not None and len(scalar) == 1)
        )
        if multiline:
            # Value spans several lines; swap the whole region for one line
            region = find_block(lines, field_path)
            new_line = f"{match.group('key')}: {format_scalar(new_value, style.string_quote)}{eol or style.newline}"
            return replace_region(lines, region[0], region[1], new_line)

        if quote is None and isinstance(new_value, str):
            # Plain style in this file unless the old value was a number etc.
            try:
                old_parsed = yaml.safe_load(scalar)
            except yaml.YAMLError:
                old_parsed = None
            quote = None if isinstance(old_parsed, str) else style.string_quote

        lines[index] = (
            f"{match.group('key')}{match.group('sep')}"
            f"{format_scalar(new_value, quote)}{trailing}{eol}"
        )
        return "".join(lines)


def _set_path(container: Any, parts: List[str], new_value: Any) -> Any:
    """Set a value inside nested dicts/lists, creating dicts along the way."""
    if not parts:
        return new_value
    head, rest = parts[0], parts[1:]
    if container is None:
        container = {}
    if isinstance(container, dict):
        container[head] = _set_path(container.get(head), rest, new_value)
        return container
    if isinstance(container, list) and head.isdigit() and int(head) < len(container):
        container[int(head)] = _set_path(container[int(head)], rest, new_value)
        return container
    raise PatchError(f"cannot set '{head}' inside {type(container).__name__}")


class SubFieldPatch(FieldPatch):
    """Update one property of a block field by rewriting the parent block."""

    name = "sub-field"

    def __init__(self, block: Optional[BlockFieldPatch] = None):
        self.block = block or BlockFieldPatch()

    def apply(self, raw_text: str, field_path: str, new_value: Any, style: FileStyle) -> str:
        parent_key, _, sub_path = field_path.partition(".")
        if not sub_path:
            raise PatchError(f"'{field_path}' is not a sub-field path")
        try:
            fields = parse_card_text(raw_text)
        except (yaml.YAMLError, ValueError) as e:
            raise PatchError(f"cannot parse current text: {e}") from e

        parent = copy.deepcopy(fields.get(parent_key))
        if parent is not None and not isinstance(parent, (dict, list)):
            raise PatchError(f"'{parent_key}' is not a block field")
        parent = _set_path(parent, sub_path.split("."), new_value)
        return self.block.apply(raw_text, parent_key, parent, style)


SCALAR = ScalarFieldPatch()
BLOCK = BlockFieldPatch()
SUB_FIELD = SubFieldPatch(BLOCK)


def strategy_for(field_path: str, new_value: Any, fields: Dict[str, Any]) -> FieldPatch:
    """Pick the strategy matching the field's shape."""
    if "." in field_path:
        return SUB_FIELD
    if isinstance(new_value, (dict, list)) or isinstance(fields.get(field_path), (dict, list)):
        return BLOCK
    return SCALAR


# =============================================================================
# Record-level application
# =============================================================================

def verify_patch(
    before: Dict[str, Any],
    patched_text: str,
    field_path: str,
    new_value: Any,
) -> Dict[str, Any]:
    """
    Re-parse patched text and check only the targeted field changed.

    Returns:
        Parsed fields of the patched text

    Raises:
        PatchError: If the text no longer parses or the fields disagree
    """
    try:
        after = parse_card_text(patched_text)
    except (yaml.YAMLError, ValueError) as e:
        raise PatchError(f"patched text does not parse: {e}") from e

    actual = lookup_path(after, field_path)
    if actual is MISSING or not values_equal(actual, new_value):
        raise PatchError(f"patched text does not hold the new value for {field_path}")

    top = field_path.split(".", 1)[0]
    for key in set(before) | set(after):
        if key == top:
            continue
        if key not in before or key not in after or not values_equal(before[key], after[key]):
            raise PatchError(f"patch for {field_path} disturbed field '{key}'")

    return after


def apply(record: Record, changes: List[ChangeProposal]) -> PatchResult:
    """
    Apply a record's validated changes, in order, to its text.

    Each change sees the text produced by the previous one. A change that
    cannot be placed or fails verification is skipped; the others still
    apply. The record itself is not modified.

    Returns:
        PatchResult; success is True when the text changed
    """
    text = record.raw_text
    style = detect_style(text)
    try:
        fields = parse_card_text(text)
    except (yaml.YAMLError, ValueError):
        fields = dict(record.fields)

    applied: List[ChangeProposal] = []
    skipped: List[SkippedChange] = []

    for change in changes:
        strategy = strategy_for(change.field_path, change.new_value, fields)
        try:
            patched = strategy.apply(text, change.field_path, change.new_value, style)
            if patched == text:
                raise PatchError("text unchanged")
            fields = verify_patch(fields, patched, change.field_path, change.new_value)
        except PatchError as e:
            logger.warning(f"  Skipping '{record.id}' {change.field_path} ({strategy.name}): {e}")
            skipped.append(SkippedChange(record.id, change.field_path, str(e)))
            continue

        text = patched
        applied.append(change)
        logger.info(
            f"  '{record.name}': {change.field_path} "
            f"{json.dumps(change.old_value, default=str)} -> {json.dumps(change.new_value, default=str)} "
            f"(source: {change.citation_url})"
        )

    return PatchResult(
        raw_text=text,
        success=text != record.raw_text,
        applied=applied,
        skipped=skipped,
        fields=fields,
    )
