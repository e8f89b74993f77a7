"""Tests for remark tag extraction, tag builders and annotations."""

from datetime import date, datetime

from crm.services.remarks_service import (
    annotate,
    call_tag,
    dropped_tag,
    extract_tag,
    lost_tag,
    parse_tag_date,
    revisit_tag,
    specs_tag,
)


class TestExtractTag:

    def test_revisit_date(self):
        remarks = "[Re-visit: 17 Feb 2026 at 10:00] Feedback: positive."
        assert extract_tag(remarks, "Re-visit") == "17 Feb 2026"

    def test_revisit_scheduled_variant(self):
        remarks = "[Re-visit scheduled: 3 Mar 2026] manager on leave"
        assert extract_tag(remarks, "Re-visit") == "3 Mar 2026"
        assert extract_tag(remarks, "Re-visit scheduled") == "3 Mar 2026"

    def test_dropped_reason_and_total_visits(self):
        remarks = "[Dropped] Price concerns: too costly. Total visits: 3"
        assert extract_tag(remarks, "Dropped") == "Price concerns"
        assert extract_tag(remarks, "Total visits") == "3"

    def test_dropped_with_reason_prefix(self):
        assert extract_tag("[Dropped] Reason: details", "Dropped") == "details"

    def test_specs_line(self):
        remarks = "Good visit\n[Specs] Count/box: 18 | Ripeness: Hard | Follow-up: 20 Feb 2026"
        assert extract_tag(remarks, "Count/box") == "18"
        assert extract_tag(remarks, "Ripeness") == "Hard"
        assert extract_tag(remarks, "Follow-up") == "20 Feb 2026"

    def test_last_occurrence_wins(self):
        remarks = (
            "[Re-visit: 1 Feb 2026] first\n"
            "[Re-visit: 9 Feb 2026] second"
        )
        assert extract_tag(remarks, "Re-visit") == "9 Feb 2026"

    def test_generic_bracket_label(self):
        assert extract_tag("[Supplier: Fresh Farms] noted", "Supplier") == "Fresh Farms"

    def test_generic_inline_label(self):
        assert extract_tag("Feedback: positive. Next steps", "Feedback") == "positive"

    def test_missing_tag_is_none(self):
        assert extract_tag("Nothing structured here", "Re-visit") is None

    def test_empty_inputs_are_none(self):
        assert extract_tag(None, "Re-visit") is None
        assert extract_tag("", "Re-visit") is None
        assert extract_tag("[Re-visit: 1 Feb 2026]", "") is None

    def test_malformed_date_is_none(self):
        assert extract_tag("[Re-visit: someday soon]", "Re-visit") is None

    def test_regex_characters_in_label(self):
        assert extract_tag("weird (text", "a(b") is None


class TestBuilders:

    def test_revisit_tag_round_trips(self):
        tag = revisit_tag(date(2026, 2, 17), "10:00")
        assert tag == "[Re-visit: 17 Feb 2026 at 10:00]"
        assert parse_tag_date(extract_tag(tag, "Re-visit")) == date(2026, 2, 17)

    def test_dropped_tag(self):
        assert dropped_tag("Price", "too costly", 3) == "[Dropped] Price: too costly. Total visits: 3"
        assert dropped_tag("Price") == "[Dropped] Price"

    def test_lost_tag(self):
        assert lost_tag("Quality issue", "bruised") == "[Lost] Quality issue: bruised"

    def test_specs_tag_empty(self):
        assert specs_tag() is None
        assert specs_tag(ripeness="Ready") == "[Specs] Ripeness: Ready"

    def test_call_tag(self):
        when = datetime(2026, 2, 5, 14, 30)
        assert call_tag(when, "Interested", "wants sample") == "[Call 05/02 14:30] Interested: wants sample"

    def test_parse_tag_date_invalid(self):
        assert parse_tag_date("31 Foo 2026") is None
        assert parse_tag_date(None) is None


class TestAnnotate:

    def test_falls_back_to_remarks(self):
        remarks = (
            "[Re-visit: 17 Feb 2026] check\n"
            "[Dropped] Price concerns: too costly. Total visits: 3"
        )
        facts = annotate(remarks)
        assert facts.revisit_date == date(2026, 2, 17)
        assert facts.drop_reason == "Price concerns"
        assert facts.total_visits == 3
        assert facts.follow_up_date is None

    def test_metadata_takes_precedence(self):
        remarks = "[Re-visit: 17 Feb 2026] old"
        metadata = {"revisit_date": "2026-03-01", "drop_reason": "Moved away"}
        facts = annotate(remarks, metadata)
        assert facts.revisit_date == date(2026, 3, 1)
        assert facts.drop_reason == "Moved away"

    def test_lost_reason(self):
        assert annotate("[Lost] Competitor: cheaper").drop_reason == "Competitor"

    def test_to_dict(self):
        facts = annotate("[Specs] Follow-up: 20 Feb 2026")
        assert facts.to_dict() == {
            "revisit_date": None,
            "drop_reason": None,
            "follow_up_date": "2026-02-20",
            "total_visits": None,
        }

    def test_nothing_known(self):
        facts = annotate(None, None)
        assert facts.to_dict() == {
            "revisit_date": None,
            "drop_reason": None,
            "follow_up_date": None,
            "total_visits": None,
        }
