"""Funnel service — conversion metrics over the prospect pipeline.

compute_funnel() is a pure function over records that are already in
memory: the date range and pincode filter are explicit arguments, never
ambient state. load_snapshot() is the only part that touches the
database; each table read that fails is logged and treated as zero rows,
so a partial outage degrades the numbers instead of failing the view.

Rules:
  - Prospects are filtered by created_at (inclusive window) and pincode.
  - Leads must reference a filtered prospect AND fall inside the window
    themselves; the same double filter applies to orders and agreements.
  - Only signed agreements count toward the agreement total.
  - Each conversion rate is min(num, den) / den * 100, and 0.0 when den
    is zero. The clamp hides non-subset artifacts of date filtering.
  - Average days per transition skip children created before their
    parent and report NO_DATA when nothing is left.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError

from crm.extensions import db
from crm.models.activity_log import ActivityLog
from crm.models.agreement import Agreement
from crm.models.lead import Lead
from crm.models.lookup import DropReason
from crm.models.prospect import Prospect
from crm.models.sample_order import SampleOrder
from crm.services.territory_service import apply_scope

logger = logging.getLogger(__name__)

NO_DATA = "—"
ALL_PINCODES = "all"

DROPPED_LEAD_STATUSES = {"dropped", "failed"}
DROPPED_ORDER_STATUSES = {"dropped", "cancelled"}
DROPPED_AGREEMENT_STATUSES = {"dropped", "rejected"}

# (drop_reasons.step_number, label)
DROP_STAGES = [
    (2, "Lead stage"),
    (3, "Sample Order stage"),
    (4, "Agreement Signing stage"),
]


# ── Dates ─────────────────────────────────────────────────────────

def as_utc(value):
    """Treat naive datetimes (SQLite, CSV imports) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime

    def contains(self, value):
        value = as_utc(value)
        return value is not None and as_utc(self.start) <= value <= as_utc(self.end)

    @classmethod
    def last_days(cls, days, now=None):
        now = as_utc(now) or datetime.now(timezone.utc)
        return cls(start=now - timedelta(days=days), end=now)

    @classmethod
    def from_dates(cls, start_date, end_date):
        """Whole calendar days, both ends inclusive, in UTC."""
        return cls(
            start=datetime.combine(start_date, time.min, tzinfo=timezone.utc),
            end=datetime.combine(end_date, time.max, tzinfo=timezone.utc),
        )


def days_between(child_created, parent_created):
    """Whole days from parent to child, truncated toward zero.

    Returns None when either timestamp is missing.
    """
    if child_created is None or parent_created is None:
        return None
    delta = as_utc(child_created) - as_utc(parent_created)
    return int(delta / timedelta(days=1))


def _transition_days(child_created, parent_created):
    """Days for the stage averages, or None when the pair must be skipped."""
    child = as_utc(child_created)
    parent = as_utc(parent_created)
    if child is None or parent is None or child < parent:
        return None
    return days_between(child, parent)


# ── Aggregation ───────────────────────────────────────────────────

def conversion_rate(numerator, denominator):
    """Percentage capped at 100, rounded to one decimal; 0.0 on zero denominator."""
    if denominator == 0:
        return 0.0
    pct = min(numerator, denominator) / denominator * 100
    return round(min(pct, 100.0), 1)


def _average(values):
    if not values:
        return None
    return round(sum(values) / len(values), 1)


def _fmt(value):
    return NO_DATA if value is None else f"{value:.1f}"


@dataclass
class FunnelStats:
    total_prospects: int = 0
    total_leads: int = 0
    total_orders: int = 0
    total_signed_agreements: int = 0
    prospect_to_lead: float = 0.0
    lead_to_sample: float = 0.0
    sample_to_agreement: float = 0.0
    end_to_end: float = 0.0
    avg_days_prospect_to_lead: float = None
    avg_days_lead_to_order: float = None
    avg_days_order_to_agreement: float = None
    dropped_leads: int = 0
    dropped_orders: int = 0
    dropped_agreements: int = 0
    # Sample sets behind the averages, kept for drill-down and tests.
    prospect_to_lead_days: list = field(default_factory=list)
    lead_to_order_days: list = field(default_factory=list)
    order_to_agreement_days: list = field(default_factory=list)

    def to_dict(self):
        return {
            "total_prospects": self.total_prospects,
            "total_leads": self.total_leads,
            "total_orders": self.total_orders,
            "total_signed_agreements": self.total_signed_agreements,
            "prospect_to_lead": _fmt(self.prospect_to_lead),
            "lead_to_sample": _fmt(self.lead_to_sample),
            "sample_to_agreement": _fmt(self.sample_to_agreement),
            "end_to_end": _fmt(self.end_to_end),
            "avg_days_prospect_to_lead": _fmt(self.avg_days_prospect_to_lead),
            "avg_days_lead_to_order": _fmt(self.avg_days_lead_to_order),
            "avg_days_order_to_agreement": _fmt(self.avg_days_order_to_agreement),
            "dropped_leads": self.dropped_leads,
            "dropped_orders": self.dropped_orders,
            "dropped_agreements": self.dropped_agreements,
        }


def compute_funnel(prospects, leads, orders, agreements, date_range, pincode_filter=None):
    """Reduce pipeline records into funnel counts, rates and timings.

    Args:
        prospects, leads, orders, agreements: Iterables of model rows (or
            anything with the same attributes).
        date_range: DateRange applied to every level's created_at.
        pincode_filter: Prospect pincode, or None / "all" for no filter.

    Returns:
        FunnelStats
    """
    filtered_prospects = [p for p in prospects if date_range.contains(p.created_at)]
    if pincode_filter and pincode_filter != ALL_PINCODES:
        filtered_prospects = [p for p in filtered_prospects if p.pincode == pincode_filter]

    prospect_ids = {p.id for p in filtered_prospects}
    filtered_leads = [
        l for l in leads
        if l.prospect_id and l.prospect_id in prospect_ids and date_range.contains(l.created_at)
    ]
    lead_ids = {l.id for l in filtered_leads}
    filtered_orders = [
        o for o in orders
        if o.lead_id in lead_ids and date_range.contains(o.created_at)
    ]
    order_ids = {o.id for o in filtered_orders}
    filtered_agreements = [
        a for a in agreements
        if a.sample_order_id in order_ids and date_range.contains(a.created_at)
    ]
    signed = [a for a in filtered_agreements if a.status == "signed"]

    total_p = len(filtered_prospects)
    total_l = len(filtered_leads)
    total_o = len(filtered_orders)
    total_a = len(signed)

    # Parents are looked up across the full lists, not just the window.
    prospects_by_id = {p.id: p for p in prospects}
    leads_by_id = {l.id: l for l in leads}
    orders_by_id = {o.id: o for o in orders}

    stage1 = []
    for lead in filtered_leads:
        parent = prospects_by_id.get(lead.prospect_id)
        if parent is not None:
            d = _transition_days(lead.created_at, parent.created_at)
            if d is not None:
                stage1.append(d)

    stage2 = []
    for order in filtered_orders:
        parent = leads_by_id.get(order.lead_id)
        if parent is not None:
            d = _transition_days(order.created_at, parent.created_at)
            if d is not None:
                stage2.append(d)

    stage3 = []
    for agreement in filtered_agreements:
        parent = orders_by_id.get(agreement.sample_order_id)
        if parent is not None:
            d = _transition_days(agreement.created_at, parent.created_at)
            if d is not None:
                stage3.append(d)

    return FunnelStats(
        total_prospects=total_p,
        total_leads=total_l,
        total_orders=total_o,
        total_signed_agreements=total_a,
        prospect_to_lead=conversion_rate(total_l, total_p),
        lead_to_sample=conversion_rate(total_o, total_l),
        sample_to_agreement=conversion_rate(total_a, total_o),
        end_to_end=conversion_rate(total_a, total_p),
        avg_days_prospect_to_lead=_average(stage1),
        avg_days_lead_to_order=_average(stage2),
        avg_days_order_to_agreement=_average(stage3),
        dropped_leads=sum(1 for l in filtered_leads if l.status in DROPPED_LEAD_STATUSES),
        dropped_orders=sum(1 for o in filtered_orders if o.status in DROPPED_ORDER_STATUSES),
        dropped_agreements=sum(
            1 for a in filtered_agreements if a.status in DROPPED_AGREEMENT_STATUSES
        ),
        prospect_to_lead_days=stage1,
        lead_to_order_days=stage2,
        order_to_agreement_days=stage3,
    )


def funnel_csv_rows(stats):
    """Metric/value table for the CSV export."""
    data = stats.to_dict()
    return [
        ["Metric", "Value"],
        ["Total Prospects", str(stats.total_prospects)],
        ["Total Leads", str(stats.total_leads)],
        ["Total Sample Orders", str(stats.total_orders)],
        ["Total Agreements Signed", str(stats.total_signed_agreements)],
        [],
        ["Prospect → Lead Conversion %", f"{data['prospect_to_lead']}%"],
        ["Lead → Sample Order Conversion %", f"{data['lead_to_sample']}%"],
        ["Sample Order → Agreement Conversion %", f"{data['sample_to_agreement']}%"],
        ["End-to-End Conversion %", f"{data['end_to_end']}%"],
        [],
        ["Avg Days: Prospect → Lead", data["avg_days_prospect_to_lead"]],
        ["Avg Days: Lead → Sample Order", data["avg_days_lead_to_order"]],
        ["Avg Days: Sample Order → Agreement", data["avg_days_order_to_agreement"]],
        [],
        ["Dropped at Lead Stage", str(stats.dropped_leads)],
        ["Dropped at Sample Order Stage", str(stats.dropped_orders)],
        ["Dropped at Agreement Stage", str(stats.dropped_agreements)],
    ]


# ── Drop reasons ──────────────────────────────────────────────────

def drop_reason_breakdown(reasons, logs):
    """Count drop-related activity logs per configured reason.

    A log counts toward a reason when its action mentions "drop" and its
    notes contain the reason text (case-insensitive).

    Returns:
        dict of step_number -> list of {"reason_text", "count"}.
    """
    drop_logs = [
        (log.notes or "").lower()
        for log in logs
        if "drop" in (log.action or "").lower()
    ]
    breakdown = {step: [] for step, _ in DROP_STAGES}
    for reason in reasons:
        needle = reason.reason_text.lower()
        count = sum(1 for notes in drop_logs if needle in notes)
        breakdown.setdefault(reason.step_number, []).append(
            {"reason_text": reason.reason_text, "count": count}
        )
    return breakdown


def drop_off_summary(stats, breakdown):
    """Per-stage drop counts joined with the reason breakdown."""
    counts = {
        2: stats.dropped_leads,
        3: stats.dropped_orders,
        4: stats.dropped_agreements,
    }
    return [
        {
            "stage": label,
            "step_number": step,
            "count": counts[step],
            "reasons": breakdown.get(step, []),
        }
        for step, label in DROP_STAGES
    ]


# ── Loading ───────────────────────────────────────────────────────

@dataclass
class Snapshot:
    prospects: list = field(default_factory=list)
    leads: list = field(default_factory=list)
    orders: list = field(default_factory=list)
    agreements: list = field(default_factory=list)

    def entity_ids(self):
        ids = set()
        for rows in (self.prospects, self.leads, self.orders, self.agreements):
            ids.update(r.id for r in rows)
        return ids


def safe_all(query, label):
    """Run a read; on failure log it and return no rows."""
    try:
        return query.all()
    except SQLAlchemyError as e:
        logger.error(f"Failed to load {label}: {e}")
        db.session.rollback()
        return []


def load_snapshot(scope):
    """Read the four pipeline tables as visible under `scope`."""
    prospects = safe_all(
        apply_scope(Prospect.query, Prospect.pincode, scope)
        .order_by(Prospect.created_at.desc()),
        "prospects",
    )
    leads = safe_all(
        apply_scope(Lead.query, Lead.pincode, scope)
        .order_by(Lead.created_at.desc()),
        "leads",
    )
    orders = safe_all(
        apply_scope(
            SampleOrder.query.join(Lead, SampleOrder.lead_id == Lead.id),
            Lead.pincode,
            scope,
        ).order_by(SampleOrder.created_at.desc()),
        "sample_orders",
    )
    agreements = safe_all(
        apply_scope(
            Agreement.query
            .join(SampleOrder, Agreement.sample_order_id == SampleOrder.id)
            .join(Lead, SampleOrder.lead_id == Lead.id),
            Lead.pincode,
            scope,
        ).order_by(Agreement.created_at.desc()),
        "agreements",
    )
    return Snapshot(prospects=prospects, leads=leads, orders=orders, agreements=agreements)


def load_drop_reason_inputs(snapshot, scope, log_limit=500):
    """Active drop reasons plus drop-related logs visible under `scope`."""
    reasons = safe_all(
        DropReason.query.filter(DropReason.is_active.is_(True))
        .order_by(DropReason.step_number, DropReason.reason_text),
        "drop_reasons",
    )
    logs = safe_all(
        ActivityLog.query
        .filter(ActivityLog.action.ilike("%drop%"))
        .order_by(ActivityLog.timestamp.desc())
        .limit(log_limit),
        "activity_logs",
    )
    if not scope.is_unrestricted:
        visible = snapshot.entity_ids()
        logs = [log for log in logs if log.entity_id in visible]
    return reasons, logs
