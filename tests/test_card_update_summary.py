"""Tests for the markdown review summary."""

from src.card_sync.models import AppliedChangeSet, ChangeProposal, Confidence
from src.card_sync.reporter import format_value, summarize, write_summary


def _change(field_path, old, new, url="https://example.com/terms"):
    return ChangeProposal(
        record_id="csp",
        field_path=field_path,
        old_value=old,
        new_value=new,
        confidence=Confidence.HIGH,
        citation_url=url,
    )


class TestFormatValue:

    def test_values(self):
        assert format_value(None) == "none"
        assert format_value(95) == "95"
        assert format_value(False) == "false"
        assert format_value({"value": 1}) == '{"value": 1}'
        assert format_value("points") == "points"


class TestSummarize:
    """Tests for summary content."""

    def test_empty(self):
        assert summarize([]) == ""
        assert summarize([AppliedChangeSet("csp", "CSP")]) == ""

    def test_sections_and_checklist(self):
        sets = [
            AppliedChangeSet("csp", "Chase Sapphire Preferred", changes=[
                _change("annual_fee", 95, 250),
                _change("signup_bonus.value", 60000, 75000, url=""),
            ]),
            AppliedChangeSet("gold", "", changes=[_change("reward_type", "points", "miles")]),
        ]
        summary = summarize(sets)

        assert summary.startswith("## Auto Card Data Updates\n")
        assert "### Chase Sapphire Preferred\n" in summary
        assert "- **annual_fee**: 95 → 250 ([source](https://example.com/terms))" in summary
        assert "- **signup_bonus.value**: 60000 → 75000\n" in summary
        # Falls back to the id when the name is unknown
        assert "### gold\n" in summary
        assert "### How to Review" in summary
        assert summary.index("### Chase") < summary.index("### gold") < summary.index("### How to Review")


class TestWriteSummary:

    def test_writes_file(self, tmp_path):
        path = tmp_path / ".card-update-summary.md"
        assert write_summary("## hello\n", path) == path
        assert path.read_text() == "## hello\n"

    def test_empty_removes_stale_file(self, tmp_path):
        path = tmp_path / ".card-update-summary.md"
        path.write_text("old report")
        assert write_summary("", path) is None
        assert not path.exists()

    def test_empty_without_file(self, tmp_path):
        assert write_summary("", tmp_path / "missing.md") is None
