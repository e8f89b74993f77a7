"""Remarks service — tags embedded in free-text remark fields.

Field teams record a few typed facts inside remark text using a bracket
convention, e.g.:

    [Re-visit: 17 Feb 2026 at 10:00] Feedback: positive.
    [Dropped] Price concerns: too costly. Total visits: 3
    Visit notes...
    [Specs] Count/box: 18 | Ripeness: Hard | Follow-up: 20 Feb 2026

New writes also store these facts in ActivityLog.metadata (see
pipeline_service). This module builds the legacy tag text so stored rows
keep one format, and reads facts back out of it for rows that predate
the structured metadata.

Extraction never raises: a missing or malformed tag is None.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime

TAG_DATE_FORMAT = "%d %b %Y"
_DATE = r"(\d{1,2} [A-Za-z]{3} \d{4})"

# Keyed by lower-cased label. Each pattern has exactly one group: the value.
KNOWN_TAGS = {
    "re-visit": re.compile(r"\[Re-visit(?: scheduled)?:\s*" + _DATE, re.IGNORECASE),
    "re-visit scheduled": re.compile(r"\[Re-visit scheduled:\s*" + _DATE, re.IGNORECASE),
    "follow-up": re.compile(r"Follow-up:\s*" + _DATE, re.IGNORECASE),
    "dropped": re.compile(r"\[Dropped\]\s*(?:Reason:\s*)?([^:.\n\[]+)", re.IGNORECASE),
    "lost": re.compile(r"\[Lost\]\s*(?:Reason:\s*)?([^:.\n\[]+)", re.IGNORECASE),
    "total visits": re.compile(r"Total visits:\s*(\d+)", re.IGNORECASE),
    "count/box": re.compile(r"Count/box:\s*([^|\n\]]+)", re.IGNORECASE),
    "ripeness": re.compile(r"Ripeness:\s*([^|\n\]]+)", re.IGNORECASE),
    "call": re.compile(r"\[Call ([^\]]+)\]", re.IGNORECASE),
    "visit": re.compile(r"\[Visit ([^\]]+)\]", re.IGNORECASE),
}


def _generic_patterns(tag_name):
    label = re.escape(tag_name)
    return (
        re.compile(r"\[" + label + r":\s*([^\]]+)\]", re.IGNORECASE),
        re.compile(r"(?<![\w-])" + label + r":\s*([^|.\n\]]+)", re.IGNORECASE),
    )


def extract_tag(remarks, tag_name):
    """Return the value of `tag_name` embedded in `remarks`, or None.

    When a tag occurs more than once (lead remarks are appended to), the
    last occurrence wins.
    """
    if not remarks or not tag_name:
        return None

    known = KNOWN_TAGS.get(tag_name.strip().lower())
    patterns = (known,) if known else _generic_patterns(tag_name.strip())

    for pattern in patterns:
        matches = pattern.findall(remarks)
        if matches:
            value = matches[-1].strip()
            return value or None
    return None


def parse_tag_date(value):
    """Parse a "17 Feb 2026" tag value into a date. None if unparseable."""
    if not value:
        return None
    try:
        return datetime.strptime(value.strip(), TAG_DATE_FORMAT).date()
    except ValueError:
        return None


def format_tag_date(value):
    return value.strftime(TAG_DATE_FORMAT)


# ── Builders ──────────────────────────────────────────────────────

def revisit_tag(revisit_date, at_time=None):
    suffix = f" at {at_time}" if at_time else ""
    return f"[Re-visit: {format_tag_date(revisit_date)}{suffix}]"


def dropped_tag(reason, details=None, total_visits=None):
    text = f"[Dropped] {reason}"
    if details:
        text += f": {details}"
    if total_visits is not None:
        text += f". Total visits: {total_visits}"
    return text


def lost_tag(reason, details=None):
    return f"[Lost] {reason}: {details}" if details else f"[Lost] {reason}"


def specs_tag(count_per_box=None, ripeness=None, follow_up_date=None):
    """[Specs] line appended to sample order remarks. None when empty."""
    parts = []
    if count_per_box:
        parts.append(f"Count/box: {count_per_box}")
    if ripeness:
        parts.append(f"Ripeness: {ripeness}")
    if follow_up_date:
        parts.append(f"Follow-up: {format_tag_date(follow_up_date)}")
    if not parts:
        return None
    return "[Specs] " + " | ".join(parts)


def call_tag(when, outcome, remarks):
    return f"[Call {when.strftime('%d/%m %H:%M')}] {outcome}: {remarks}"


def visit_tag(when, remarks):
    return f"[Visit {when.strftime('%d/%m %H:%M')}] {remarks}"


# ── Annotations ───────────────────────────────────────────────────

@dataclass
class RemarkAnnotations:
    revisit_date: date = None
    drop_reason: str = None
    follow_up_date: date = None
    total_visits: int = None

    def to_dict(self):
        return {
            "revisit_date": self.revisit_date.isoformat() if self.revisit_date else None,
            "drop_reason": self.drop_reason,
            "follow_up_date": self.follow_up_date.isoformat() if self.follow_up_date else None,
            "total_visits": self.total_visits,
        }


def _iso_date(value):
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value) if value else None
    except (TypeError, ValueError):
        return None


def annotate(remarks, metadata=None):
    """Collect the typed facts of a record.

    Structured metadata (from the latest ActivityLog) wins; anything it
    does not carry is read from the legacy remark tags.
    """
    metadata = metadata or {}

    revisit = _iso_date(metadata.get("revisit_date"))
    if revisit is None:
        revisit = parse_tag_date(extract_tag(remarks, "Re-visit"))

    follow_up = _iso_date(metadata.get("follow_up_date"))
    if follow_up is None:
        follow_up = parse_tag_date(extract_tag(remarks, "Follow-up"))

    reason = metadata.get("drop_reason")
    if not reason:
        reason = extract_tag(remarks, "Dropped") or extract_tag(remarks, "Lost")

    visits = metadata.get("total_visits")
    if visits is None:
        raw = extract_tag(remarks, "Total visits")
        visits = int(raw) if raw else None

    return RemarkAnnotations(
        revisit_date=revisit,
        drop_reason=reason,
        follow_up_date=follow_up,
        total_visits=visits,
    )
