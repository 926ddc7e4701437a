"""Tests for format-preserving YAML patches."""

from pathlib import Path

import pytest
import yaml

from src.card_sync.models import ChangeProposal, Confidence, Record
from src.card_sync.patcher import (
    BLOCK,
    SCALAR,
    SUB_FIELD,
    PatchError,
    apply,
    detect_style,
    format_scalar,
    split_value,
    strategy_for,
)


CARD = (
    "# Chase Sapphire Preferred\n"
    'name: "Chase Sapphire Preferred"\n'
    'slug: "csp"\n'
    'bank: "Chase"\n'
    "annual_fee: 95  # standard fee\n"
    'reward_type: "points"\n'
    "rewards:\n"
    '  - category: "dining"\n'
    "    value: 3\n"
    '    unit: "points_per_dollar"\n'
    "signup_bonus:\n"
    "  value: 60000\n"
    '  type: "points"\n'
    "  spend_requirement: 4000\n"
    "  timeframe_months: 3\n"
)


def _record(text=CARD, slug="csp"):
    return Record(id=slug, location=Path(f"{slug}.yaml"), fields=yaml.safe_load(text) or {}, raw_text=text)


def _change(field_path, old, new, record_id="csp"):
    return ChangeProposal(
        record_id=record_id,
        field_path=field_path,
        old_value=old,
        new_value=new,
        confidence=Confidence.HIGH,
        citation_url="https://example.com",
    )


def _changed_lines(before, after):
    a, b = before.splitlines(), after.splitlines()
    assert len(a) == len(b)
    return [(x, y) for x, y in zip(a, b) if x != y]


# =============================================================================
# Scalar fields
# =============================================================================

class TestScalarPatch:
    """Tests for single-line value replacement."""

    def test_single_line_diff_keeps_comment(self):
        result = apply(_record(), [_change("annual_fee", 95, 250)])

        assert result.success
        assert _changed_lines(CARD, result.raw_text) == [
            ("annual_fee: 95  # standard fee", "annual_fee: 250  # standard fee"),
        ]
        assert result.fields["annual_fee"] == 250

    def test_double_quoted_string_stays_quoted(self):
        result = apply(_record(), [_change("reward_type", "points", "miles")])
        assert _changed_lines(CARD, result.raw_text) == [
            ('reward_type: "points"', 'reward_type: "miles"'),
        ]

    def test_single_quoted_string(self):
        text = "slug: csp\nreward_type: 'points'\n"
        result = apply(_record(text), [_change("reward_type", "points", "miles")])
        assert result.raw_text == "slug: csp\nreward_type: 'miles'\n"

    def test_plain_string_stays_plain(self):
        text = "slug: csp\nname: Old Name\nreward_type: points\n"
        result = apply(_record(text), [_change("reward_type", "points", "miles")])
        assert result.raw_text == "slug: csp\nname: Old Name\nreward_type: miles\n"

    def test_number_to_string_uses_file_quote(self):
        result = apply(_record(), [_change("annual_fee", 95, "varies")])
        assert 'annual_fee: "varies"  # standard fee' in result.raw_text

    def test_missing_final_newline_kept(self):
        text = "slug: csp\nannual_fee: 95"
        result = apply(_record(text), [_change("annual_fee", 95, 250)])
        assert result.raw_text == "slug: csp\nannual_fee: 250"

    def test_crlf_line_endings(self):
        text = "slug: csp\r\nannual_fee: 95\r\nbank: Chase\r\n"
        result = apply(_record(text), [_change("annual_fee", 95, 250)])
        assert result.raw_text == "slug: csp\r\nannual_fee: 250\r\nbank: Chase\r\n"

    def test_nested_key_with_same_name_untouched(self):
        text = "slug: csp\nsignup_bonus:\n  annual_fee: 1\nannual_fee: 95\n"
        result = apply(_record(text), [_change("annual_fee", 95, 0)])
        assert result.raw_text == "slug: csp\nsignup_bonus:\n  annual_fee: 1\nannual_fee: 0\n"


# =============================================================================
# Block fields
# =============================================================================

class TestBlockPatch:
    """Tests for whole-field replacement and append."""

    def test_replace_rewards_block(self):
        new_rewards = [
            {"category": "dining", "value": 4, "unit": "points_per_dollar"},
            {"category": "travel", "value": 2, "unit": "points_per_dollar"},
        ]
        result = apply(_record(), [_change("rewards", None, new_rewards)])

        assert result.success
        assert result.fields["rewards"] == new_rewards
        # Everything outside the block is untouched
        assert result.raw_text.startswith(CARD[:CARD.index("rewards:")])
        assert result.raw_text.endswith(CARD[CARD.index("signup_bonus:"):])
        assert '  - category: "travel"\n' in result.raw_text

    def test_flush_sequences_and_plain_strings(self):
        text = (
            "slug: csp\n"
            "reward_type: points\n"
            "rewards:\n"
            "- category: dining\n"
            "  value: 3\n"
            "  unit: percent\n"
            "annual_fee: 0\n"
        )
        new_rewards = [{"category": "dining", "value": 4, "unit": "percent"}]
        result = apply(_record(text), [_change("rewards", None, new_rewards)])
        assert result.raw_text == text.replace("value: 3", "value: 4")

    def test_append_missing_block(self):
        text = "slug: csp\nannual_fee: 0\n"
        bonus = {"value": 200, "type": "cashback", "spend_requirement": 500, "timeframe_months": 3}
        result = apply(_record(text), [_change("signup_bonus", None, bonus)])

        assert result.raw_text.startswith(text)
        assert yaml.safe_load(result.raw_text)["signup_bonus"] == bonus

    def test_append_without_final_newline(self):
        text = "slug: csp\nannual_fee: 0"
        result = apply(_record(text), [_change("signup_bonus", None, {"value": 200})])
        assert result.raw_text.startswith("slug: csp\nannual_fee: 0\nsignup_bonus:\n")


class TestSubFieldPatch:

    def test_signup_bonus_value(self):
        result = apply(_record(), [_change("signup_bonus.value", 60000, 75000)])
        assert result.raw_text == CARD.replace("  value: 60000\n", "  value: 75000\n")

    def test_parent_created_when_absent(self):
        text = "slug: csp\n"
        result = apply(_record(text), [_change("signup_bonus.value", None, 1000)])
        assert yaml.safe_load(result.raw_text)["signup_bonus"] == {"value": 1000}

    def test_scalar_parent_rejected(self):
        result = apply(_record(), [_change("annual_fee.amount", None, 1)])
        assert not result.success
        assert result.raw_text == CARD
        assert "not a block field" in result.skipped[0].reason


# =============================================================================
# Record-level behavior
# =============================================================================

class TestApply:
    """Tests for sequential application and skips."""

    def test_missing_scalar_skipped_others_applied(self):
        text = "slug: csp\nreward_type: points\n"
        changes = [
            _change("annual_fee", 0, 95),
            _change("reward_type", "points", "miles"),
        ]
        result = apply(_record(text), changes)

        assert result.raw_text == "slug: csp\nreward_type: miles\n"
        assert [c.field_path for c in result.applied] == ["reward_type"]
        assert [s.field_path for s in result.skipped] == ["annual_fee"]
        assert "not found" in result.skipped[0].reason

    def test_multiple_changes_see_previous_text(self):
        changes = [
            _change("annual_fee", 95, 250),
            _change("signup_bonus.value", 60000, 75000),
            _change("signup_bonus.spend_requirement", 4000, 5000),
        ]
        result = apply(_record(), changes)
        fields = yaml.safe_load(result.raw_text)
        assert fields["annual_fee"] == 250
        assert fields["signup_bonus"]["value"] == 75000
        assert fields["signup_bonus"]["spend_requirement"] == 5000
        assert len(result.applied) == 3

    def test_change_reverted_when_verification_fails(self):
        """With a duplicated key the parsed value disagrees, so the edit is dropped."""
        text = "slug: csp\nannual_fee: 95\nannual_fee: 100\n"
        result = apply(_record(text), [_change("annual_fee", 95, 250)])
        assert not result.success
        assert result.raw_text == text
        assert "new value" in result.skipped[0].reason

    def test_record_not_mutated(self):
        record = _record()
        apply(record, [_change("annual_fee", 95, 250)])
        assert record.raw_text == CARD
        assert record.fields["annual_fee"] == 95

    def test_no_changes(self):
        result = apply(_record(), [])
        assert not result.success
        assert result.raw_text == CARD


# =============================================================================
# Helpers
# =============================================================================

class TestHelpers:

    def test_split_value(self):
        assert split_value("95  # fee") == ("95", "  # fee", None)
        assert split_value('"a # b"  # c') == ('"a # b"', "  # c", '"')
        assert split_value("'it''s'") == ("'it''s'", "", "'")

    def test_format_scalar(self):
        assert format_scalar(250, '"') == "250"
        assert format_scalar(None, '"') == "null"
        assert format_scalar(True, '"') == "true"
        assert format_scalar("it's", "'") == "'it''s'"
        assert format_scalar("a: b", None) == '"a: b"'

    def test_detect_style(self):
        style = detect_style("slug: csp\r\nrewards:\r\n- a: 1\r\n  b: 'x'\r\nname: 'y'\r\n")
        assert style.newline == "\r\n"
        assert style.indent_sequences is False
        assert style.string_quote == "'"

    def test_detect_style_defaults(self):
        style = detect_style("")
        assert style.indent == 2
        assert style.indent_sequences is True
        assert style.string_quote == '"'

    @pytest.mark.parametrize("path,value,fields,expected", [
        ("annual_fee", 250, {"annual_fee": 95}, SCALAR),
        ("rewards", [], {"rewards": []}, BLOCK),
        ("signup_bonus", {"value": 1}, {}, BLOCK),
        ("legacy", 5, {"legacy": {"a": 1}}, BLOCK),
        ("signup_bonus.value", 1, {}, SUB_FIELD),
    ])
    def test_strategy_for(self, path, value, fields, expected):
        assert strategy_for(path, value, fields) is expected

    def test_scalar_missing_raises(self):
        with pytest.raises(PatchError):
            SCALAR.apply("slug: csp\n", "annual_fee", 1, detect_style(""))
