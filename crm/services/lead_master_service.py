"""Lead master service — one journey row per prospect.

Each row follows the prospect down its chain (latest lead, that lead's
latest order, that order's latest agreement), classifies the stage and
reports per-transition durations plus the lead's interaction counters.
"""

from datetime import datetime, timezone

from crm.models.activity_log import ActivityLog
from crm.services.funnel_service import as_utc, days_between, safe_all
from crm.services.stage_service import Stage, classify

NONE_LABEL = "—"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _latest(rows):
    if not rows:
        return None
    return max(rows, key=lambda r: as_utc(r.created_at) or _EPOCH)


def _group_by(rows, attr):
    grouped = {}
    for row in rows:
        key = getattr(row, attr)
        if key:
            grouped.setdefault(key, []).append(row)
    return grouped


def build_master_rows(prospects, leads, orders, agreements):
    """Build the journey table.

    Returns:
        list of dicts, in the order of `prospects`.
    """
    leads_by_prospect = _group_by(leads, "prospect_id")
    orders_by_lead = _group_by(orders, "lead_id")
    agreements_by_order = _group_by(agreements, "sample_order_id")

    rows = []
    for prospect in prospects:
        lead = _latest(leads_by_prospect.get(prospect.id))
        order = _latest(orders_by_lead.get(lead.id)) if lead else None
        agreement = _latest(agreements_by_order.get(order.id)) if order else None

        stage = classify(prospect, lead, order, agreement)

        stage1 = days_between(lead.created_at, prospect.created_at) if lead else None
        stage2 = days_between(order.created_at, lead.created_at) if order else None
        stage3 = days_between(agreement.created_at, order.created_at) if agreement else None

        total_calls = (lead.call_count or 0) if lead else 0
        total_visits = (lead.visit_count or 0) if lead else 0
        total_days = 0
        if stage1 is not None:
            total_days = stage1 + (stage2 or 0) + (stage3 or 0)

        customer_id = NONE_LABEL
        if stage == Stage.CUSTOMER:
            customer_id = agreement.id[:8].upper()

        rows.append({
            "prospect_id": prospect.id,
            "restaurant_name": prospect.restaurant_name,
            "pincode": prospect.pincode,
            "locality": prospect.locality,
            "lead_id": lead.id if lead else None,
            "sample_order_id": order.id if order else None,
            "agreement_id": agreement.id if agreement else None,
            "current_stage": stage.label,
            "stage1": {
                "agent": prospect.mapped_to or NONE_LABEL,
                "calls": total_calls,
                "days": stage1 or 0,
            },
            "stage2": {
                "agent": (lead.created_by if lead else None) or NONE_LABEL,
                "visits": total_visits,
                "days": stage2 or 0,
            },
            "stage3": {
                "agent": "KAM" if agreement else NONE_LABEL,
                "days": stage3 or 0,
            },
            "total_calls": total_calls,
            "total_visits": total_visits,
            "total_days": total_days,
            "customer_id": customer_id,
        })
    return rows


def _agents_of(row):
    return (row["stage1"]["agent"], row["stage2"]["agent"], row["stage3"]["agent"])


def list_agents(rows):
    """Sorted distinct prospect assignees and lead creators."""
    agents = set()
    for row in rows:
        for agent in (row["stage1"]["agent"], row["stage2"]["agent"]):
            if agent != NONE_LABEL:
                agents.add(agent)
    return sorted(agents)


def filter_master_rows(rows, search=None, agent=None, stage=None):
    """Narrow journey rows by name substring, agent and stage label.

    "all" and empty values disable the agent and stage filters.
    """
    result = rows
    if search:
        needle = search.lower()
        result = [r for r in result if needle in (r["restaurant_name"] or "").lower()]
    if agent and agent != "all":
        result = [r for r in result if agent in _agents_of(r)]
    if stage and stage != "all":
        result = [r for r in result if r["current_stage"] == stage]
    return result


def recent_activity(logs, prospect_id, lead_id=None, limit=3):
    """Latest `limit` logs recorded against the prospect or its lead."""
    entity_ids = {prospect_id}
    if lead_id:
        entity_ids.add(lead_id)
    matching = [log for log in logs if log.entity_id in entity_ids]
    matching.sort(key=lambda log: as_utc(log.timestamp) or _EPOCH, reverse=True)
    return matching[:limit]


def load_recent_logs(limit=500):
    """Newest activity logs, for the per-row recent activity panel."""
    return safe_all(
        ActivityLog.query.order_by(ActivityLog.timestamp.desc()).limit(limit),
        "activity_logs",
    )
