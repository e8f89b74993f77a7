"""Pipeline service — stage transitions for prospects, leads, orders, agreements.

Every operation:
  - sanitizes free text with bleach.clean() before storing it,
  - writes one ActivityLog row per state change, with the typed facts
    (revisit date, drop reason, follow-up date, total visits) in metadata,
  - keeps the legacy remark tags in sync (see remarks_service),
  - flushes but does NOT commit. The caller commits.

Interactions logged at the sample order or agreement stage are counted on
the originating lead, so Lead.call_count and Lead.visit_count stay the
total for the outlet. Counters only ever go up.
"""

import logging
import math
import re
from datetime import date, datetime, timezone

import bleach

from crm.extensions import db
from crm.models.activity_log import ActivityLog
from crm.models.agreement import Agreement
from crm.models.lead import Lead
from crm.models.prospect import Prospect
from crm.models.sample_order import SampleOrder
from crm.services import remarks_service

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6371000.0

PASSING_RATING = 6
ORDERABLE_LEAD_STATUSES = {"new", "in_progress", "qualified"}
AGREEABLE_ORDER_STATUSES = {"sample_ordered", "sample_delivered"}
PAYMENT_TYPES = ["advance", "credit"]
BULK_PROSPECT_STATUSES = ["available", "assigned", "dropped"]

PROSPECT_FIELDS = [
    "restaurant_name",
    "pincode",
    "locality",
    "location",
    "source",
    "cuisine_type",
    "tag",
    "recall_date",
    "mapped_to",
    "geo_lat",
    "geo_lng",
]

LEAD_FIELDS = [
    "client_name",
    "pincode",
    "locality",
    "outlet_address",
    "contact_number",
    "email",
    "gst_id",
    "avocado_consumption",
    "purchase_manager_name",
    "pm_contact",
    "outlet_photo_url",
    "appointment_date",
    "appointment_time",
    "remarks",
    "geo_lat",
    "geo_lng",
]

AGREEMENT_TERMS = [
    "pricing_type",
    "agreed_price_per_kg",
    "payment_type",
    "credit_days",
    "expected_weekly_volume_kg",
    "expected_first_order_date",
    "delivery_slot",
    "distribution_partner",
    "mail_id",
    "remarks",
]

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

ENTITY_MODELS = {
    "prospect": Prospect,
    "lead": Lead,
    "sample_order": SampleOrder,
    "agreement": Agreement,
}


class GeofenceError(ValueError):
    """Reported position is outside the allowed radius of the outlet."""

    def __init__(self, distance_m, radius_m):
        self.distance_m = distance_m
        self.radius_m = radius_m
        super().__init__(
            f"You are {distance_m:.0f} m from the outlet; "
            f"delivery must be confirmed within {radius_m:.0f} m."
        )


# ── Helpers ───────────────────────────────────────────────────────

def _sanitize(text):
    """Strip all HTML tags from user input."""
    if text is None:
        return text
    return bleach.clean(str(text), tags=[], strip=True).strip()


def _now():
    return datetime.now(timezone.utc)


def _append_remarks(existing, line):
    if not line:
        return existing
    return f"{existing}\n{line}" if existing else line


def parse_date(value, field_name="date"):
    """Accept a date or an ISO "YYYY-MM-DD" string; None stays None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValueError(f"Invalid {field_name} '{value}'. Expected YYYY-MM-DD.")


def _to_float(value, field_name):
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field_name} must be a number.")
    if not math.isfinite(number):
        raise ValueError(f"{field_name} must be a number.")
    return number


COORDINATE_LIMITS = {"lat": 90.0, "lng": 180.0}


def parse_coordinate(value, axis, field_name=None):
    """Parse a latitude ("lat") or longitude ("lng"); None stays None.

    Raises:
        ValueError: If the value is not a finite number within the axis range.
    """
    field_name = field_name or axis
    number = _to_float(value, field_name)
    if number is None:
        return None
    limit = COORDINATE_LIMITS[axis]
    if not -limit <= number <= limit:
        raise ValueError(f"{field_name} must be between -{limit:g} and {limit:g}.")
    return number


def _to_int(value, field_name):
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValueError(f"{field_name} must be a whole number.")


def _log(entity_type, entity_id, action, actor=None, notes=None,
         before=None, after=None, metadata=None):
    log = ActivityLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        user_email=getattr(actor, "email", None),
        user_role=getattr(actor, "role", None),
        notes=notes,
        before_state=before,
        after_state=after,
        metadata_=metadata or {},
    )
    db.session.add(log)
    return log


def get_entity(entity_type, entity_id):
    """Load a pipeline record by type and id.

    Raises:
        ValueError: If the type is unknown or the record does not exist.
    """
    model = ENTITY_MODELS.get(entity_type)
    if model is None:
        raise ValueError(
            f"Invalid entity type '{entity_type}'. "
            f"Must be one of: {', '.join(ENTITY_MODELS)}"
        )
    entity = db.session.get(model, entity_id)
    if entity is None:
        raise ValueError(f"{model.__name__} {entity_id} not found.")
    return entity


def originating_lead(entity):
    """The lead an order or agreement descends from (a lead is its own)."""
    if isinstance(entity, Lead):
        return entity
    if isinstance(entity, SampleOrder):
        return entity.lead
    if isinstance(entity, Agreement):
        return entity.sample_order.lead if entity.sample_order else None
    return None


def record_pincode(entity):
    """Pincode governing territory access to `entity`."""
    if isinstance(entity, (Prospect, Lead)):
        return entity.pincode
    lead = originating_lead(entity)
    return lead.pincode if lead else None


def haversine_meters(lat1, lng1, lat2, lng2):
    """Great-circle distance between two WGS84 points, in meters."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(a))


# ── Prospects ─────────────────────────────────────────────────────

def _unknown_fields(fields, allowed, label):
    unknown = set(fields) - set(allowed)
    if unknown:
        raise ValueError(f"Unknown {label} fields: {', '.join(sorted(unknown))}")


def _prospect_values(fields):
    _unknown_fields(fields, PROSPECT_FIELDS, "prospect")
    values = {}
    for key, value in fields.items():
        if key in ("geo_lat", "geo_lng"):
            values[key] = parse_coordinate(value, key[4:], key)
        elif key == "recall_date":
            values[key] = parse_date(value, key)
        elif key == "mapped_to":
            values[key] = (_sanitize(value) or "").lower() or None
        else:
            values[key] = _sanitize(value) or None
    return values


def create_prospect(actor, **fields):
    """Add a prospect by hand (the sheet import covers bulk loads).

    Returns:
        The created Prospect, status available and tag New.

    Raises:
        ValueError: If restaurant name or pincode is missing, or a field is
            unknown or malformed.
    """
    values = _prospect_values(fields)
    if not values.get("restaurant_name") or not values.get("pincode"):
        raise ValueError("Restaurant name and pincode are required.")
    values["locality"] = values.get("locality") or ""
    values.setdefault("tag", "New")

    prospect = Prospect(
        status="available",
        created_by=getattr(actor, "email", None),
        **values,
    )
    db.session.add(prospect)
    db.session.flush()

    _log("prospect", prospect.id, "prospect.created", actor, after="available")
    db.session.flush()
    return prospect


def update_prospect(prospect_id, actor, **fields):
    """Edit prospect details. Status changes go through set_prospect_status."""
    prospect = get_entity("prospect", prospect_id)
    values = _prospect_values(fields)
    for key in ("restaurant_name", "pincode"):
        if key in values and not values[key]:
            raise ValueError(f"{key} cannot be blank.")
    if "locality" in values:
        values["locality"] = values["locality"] or ""

    changed = sorted(k for k, v in values.items() if getattr(prospect, k) != v)
    for key in changed:
        setattr(prospect, key, values[key])

    if changed:
        _log("prospect", prospect.id, "prospect.updated", actor,
             metadata={"fields": changed})
    db.session.flush()
    return prospect


def set_prospect_status(prospect_ids, status, actor):
    """Move several prospects to `status` at once.

    Conversion is not a bulk status: converted prospects have a lead and
    are left to convert_prospect_to_lead.

    Returns:
        The updated prospects, in the order of `prospect_ids`.
    """
    if status not in BULK_PROSPECT_STATUSES:
        raise ValueError(
            f"Invalid status '{status}'. Must be one of: {', '.join(BULK_PROSPECT_STATUSES)}"
        )
    if not prospect_ids:
        raise ValueError("At least one prospect id is required.")

    prospects = [get_entity("prospect", pid) for pid in dict.fromkeys(prospect_ids)]
    converted = [p.restaurant_name for p in prospects if p.status == "converted"]
    if converted:
        raise ValueError(f"Converted prospects cannot change status: {', '.join(converted)}")

    for prospect in prospects:
        before = prospect.status
        if before == status:
            continue
        prospect.status = status
        _log("prospect", prospect.id, "prospect.status_changed", actor,
             before=before, after=status)
    db.session.flush()
    logger.info(f"{len(prospects)} prospect(s) set to {status}")
    return prospects


# ── Prospect -> Lead ──────────────────────────────────────────────

def _lead_values(fields):
    _unknown_fields(fields, LEAD_FIELDS, "lead")
    values = {k: v for k, v in fields.items() if v not in (None, "")}
    for key in ("client_name", "pincode", "locality", "outlet_address", "contact_number",
                "email", "gst_id", "avocado_consumption", "purchase_manager_name",
                "pm_contact", "outlet_photo_url", "appointment_time", "remarks"):
        if key in values:
            values[key] = _sanitize(values[key])
    if "appointment_date" in values:
        values["appointment_date"] = parse_date(values["appointment_date"], "appointment_date")
    for key in ("geo_lat", "geo_lng"):
        if key in values:
            values[key] = parse_coordinate(values[key], key[4:], key)
    return values


def create_lead(actor, **fields):
    """Add a lead met in the field, with no prospect behind it.

    Returns:
        The created Lead, status new.
    """
    values = _lead_values(fields)
    if not values.get("client_name") or not values.get("pincode"):
        raise ValueError("Client name and pincode are required.")

    lead = Lead(
        prospect_id=None,
        status="new",
        call_count=0,
        visit_count=0,
        created_by=getattr(actor, "email", None),
        **values,
    )
    db.session.add(lead)
    db.session.flush()

    _log("lead", lead.id, "lead.created", actor, after="new")
    db.session.flush()
    return lead


def convert_prospect_to_lead(prospect_id, actor, **fields):
    """Create a lead from a prospect after a qualifying call.

    Args:
        prospect_id: Prospect UUID string.
        actor: The acting User.
        **fields: Lead columns (see LEAD_FIELDS). Name, pincode, locality,
            address and pin default to the prospect's.

    Returns:
        The created Lead.

    Raises:
        ValueError: If the prospect is missing or already converted/dropped.
    """
    prospect = get_entity("prospect", prospect_id)
    if prospect.status in ("converted", "dropped"):
        raise ValueError(f"Prospect is already {prospect.status}.")

    values = _lead_values(fields)
    values.setdefault("client_name", prospect.restaurant_name)
    values.setdefault("pincode", prospect.pincode)
    values.setdefault("locality", prospect.locality)
    if prospect.location:
        values.setdefault("outlet_address", prospect.location)
    if prospect.geo_lat is not None and prospect.geo_lng is not None:
        values.setdefault("geo_lat", prospect.geo_lat)
        values.setdefault("geo_lng", prospect.geo_lng)

    lead = Lead(
        prospect_id=prospect.id,
        status="new",
        call_count=0,
        visit_count=0,
        created_by=getattr(actor, "email", None),
        **values,
    )
    db.session.add(lead)

    before = prospect.status
    prospect.status = "converted"
    prospect.tag = "Qualified"
    db.session.flush()

    _log("prospect", prospect.id, "prospect.converted", actor,
         before=before, after="converted", metadata={"lead_id": lead.id})
    _log("lead", lead.id, "lead.created", actor,
         after="new", metadata={"prospect_id": prospect.id})
    db.session.flush()

    logger.info(f"Prospect {prospect.id} converted to lead {lead.id}")
    return lead


# ── Calls and visits ──────────────────────────────────────────────

def _status_after_call(outcome, current):
    text = outcome.lower()
    if "not interested" in text:
        return "failed"
    if "interested" in text and current in ("new", "in_progress"):
        return "in_progress"
    return current


def log_call(lead_id, actor, outcome, remarks=None, now=None):
    """Record a call on a lead.

    "Not Interested" fails the lead. "Interested" moves a new lead to
    in_progress but never demotes a qualified one. Any other outcome
    leaves the status alone.

    Returns:
        The updated Lead.
    """
    outcome = _sanitize(outcome)
    if not outcome:
        raise ValueError("Call outcome is required.")
    remarks = _sanitize(remarks)
    now = now or _now()

    lead = get_entity("lead", lead_id)
    before = lead.status

    lead.call_count = (lead.call_count or 0) + 1
    lead.last_activity_date = now
    if remarks:
        lead.remarks = _append_remarks(
            lead.remarks, remarks_service.call_tag(now, outcome, remarks)
        )
    lead.status = _status_after_call(outcome, lead.status)

    metadata = {"outcome": outcome, "call_count": lead.call_count}
    action = "lead.call_logged"
    if lead.status == "failed" and before != "failed":
        action = "lead.dropped"
        metadata["drop_reason"] = outcome

    _log("lead", lead.id, action, actor,
         notes=f"{outcome}: {remarks}" if remarks else outcome,
         before=before, after=lead.status, metadata=metadata)
    db.session.flush()
    return lead


def log_visit(entity_type, entity_id, actor, remarks=None, now=None):
    """Record a field visit against a lead, sample order or agreement.

    The visit is always counted on the originating lead.

    Returns:
        The originating Lead.
    """
    if entity_type not in ("lead", "sample_order", "agreement"):
        raise ValueError("Visits can only be logged on leads, sample orders or agreements.")
    entity = get_entity(entity_type, entity_id)
    lead = originating_lead(entity)
    if lead is None:
        raise ValueError(f"No lead found for {entity_type} {entity_id}.")

    remarks = _sanitize(remarks)
    now = now or _now()
    before = lead.status

    lead.visit_count = (lead.visit_count or 0) + 1
    lead.last_activity_date = now
    if remarks:
        lead.remarks = _append_remarks(lead.remarks, remarks_service.visit_tag(now, remarks))
    if entity_type == "lead" and lead.status == "new":
        lead.status = "in_progress"

    _log(entity_type, entity.id, f"{entity_type}.visit_logged", actor,
         notes=remarks, before=before, after=lead.status,
         metadata={"lead_id": lead.id, "visit_count": lead.visit_count})
    db.session.flush()
    return lead


# ── Sample orders ─────────────────────────────────────────────────

def create_sample_order(lead_id, actor, remarks, delivery_address=None,
                        delivery_date=None, delivery_slot=None,
                        sample_qty_units=None, demand_per_week_kg=None,
                        visit_date=None, count_per_box=None, ripeness=None,
                        follow_up_date=None, now=None):
    """Book a sample during a lead visit.

    The order starts at sample_ordered, the lead becomes qualified and the
    visit is counted on the lead.

    Returns:
        The created SampleOrder.
    """
    remarks = _sanitize(remarks)
    if not remarks:
        raise ValueError("Visit remarks are required.")

    lead = get_entity("lead", lead_id)
    if lead.status not in ORDERABLE_LEAD_STATUSES:
        raise ValueError(f"Cannot order a sample for a {lead.status} lead.")

    now = now or _now()
    follow_up = parse_date(follow_up_date, "follow_up_date")
    specs = remarks_service.specs_tag(
        _sanitize(count_per_box), _sanitize(ripeness), follow_up
    )

    order = SampleOrder(
        lead_id=lead.id,
        status="sample_ordered",
        remarks=_append_remarks(remarks, specs),
        visit_date=parse_date(visit_date, "visit_date") or now.date(),
        delivery_address=_sanitize(delivery_address) or lead.outlet_address,
        delivery_date=parse_date(delivery_date, "delivery_date"),
        delivery_slot=_sanitize(delivery_slot),
        sample_qty_units=_to_int(sample_qty_units, "sample_qty_units"),
        demand_per_week_kg=_to_float(demand_per_week_kg, "demand_per_week_kg"),
    )
    db.session.add(order)

    before = lead.status
    lead.status = "qualified"
    lead.visit_count = (lead.visit_count or 0) + 1
    lead.last_activity_date = now
    db.session.flush()

    metadata = {"lead_id": lead.id, "visit_count": lead.visit_count}
    if follow_up:
        metadata["follow_up_date"] = follow_up.isoformat()
    _log("sample_order", order.id, "sample_order.created", actor,
         notes=remarks, after="sample_ordered", metadata=metadata)
    _log("lead", lead.id, "lead.qualified", actor,
         before=before, after="qualified", metadata={"sample_order_id": order.id})
    db.session.flush()
    return order


def schedule_revisit(entity_type, entity_id, actor, revisit_date, remarks=None, at_time=None):
    """Put a sample order or agreement into revisit_needed.

    Returns:
        The updated SampleOrder or Agreement.
    """
    if entity_type not in ("sample_order", "agreement"):
        raise ValueError("Re-visits can only be scheduled on sample orders or agreements.")
    revisit = parse_date(revisit_date, "revisit_date")
    if revisit is None:
        raise ValueError("Re-visit date is required.")

    entity = get_entity(entity_type, entity_id)
    if entity.status in ("dropped", "signed", "lost"):
        raise ValueError(f"Cannot schedule a re-visit on a {entity.status} record.")

    remarks = _sanitize(remarks)
    at_time = _sanitize(at_time)
    tag = remarks_service.revisit_tag(revisit, at_time)
    line = f"{tag} {remarks}" if remarks else tag

    before = entity.status
    entity.status = "revisit_needed"
    entity.remarks = _append_remarks(entity.remarks, line)

    _log(entity_type, entity.id, f"{entity_type}.revisit_scheduled", actor,
         notes=remarks, before=before, after="revisit_needed",
         metadata={"revisit_date": revisit.isoformat(), "at_time": at_time})
    db.session.flush()
    return entity


def drop_sample_order(order_id, actor, reason, details=None):
    """Drop a sample order with a reason.

    Returns:
        The updated SampleOrder.
    """
    reason = _sanitize(reason)
    if not reason:
        raise ValueError("Drop reason is required.")
    details = _sanitize(details)

    order = get_entity("sample_order", order_id)
    if order.status == "dropped":
        raise ValueError("Sample order is already dropped.")

    lead = order.lead
    total_visits = (lead.visit_count or 0) if lead else 0

    before = order.status
    order.status = "dropped"
    order.remarks = _append_remarks(
        order.remarks, remarks_service.dropped_tag(reason, details, total_visits)
    )

    _log("sample_order", order.id, "sample_order.dropped", actor,
         notes=f"{reason}: {details}" if details else reason,
         before=before, after="dropped",
         metadata={"drop_reason": reason, "total_visits": total_visits})
    db.session.flush()
    return order


def mark_delivered(order_id, actor, lat, lng, radius_m=200, now=None):
    """Confirm sample delivery from the outlet.

    The reported position must be within `radius_m` of the lead's pinned
    location. Leads without a pin skip the check.

    Raises:
        GeofenceError: If the position is outside the radius.
        ValueError: If the order is not awaiting delivery or the position
            is missing.
    """
    lat = parse_coordinate(lat, "lat")
    lng = parse_coordinate(lng, "lng")
    if lat is None or lng is None:
        raise ValueError("Current location (lat, lng) is required.")

    order = get_entity("sample_order", order_id)
    if order.status != "sample_ordered":
        raise ValueError(f"Cannot mark a {order.status} sample order as delivered.")

    lead = order.lead
    distance = None
    if lead is not None and lead.geo_lat is not None and lead.geo_lng is not None:
        distance = haversine_meters(lat, lng, lead.geo_lat, lead.geo_lng)
        if distance > radius_m:
            raise GeofenceError(distance, radius_m)
    else:
        logger.warning(f"Sample order {order.id}: lead has no pinned location, geofence skipped")

    now = now or _now()
    before = order.status
    order.status = "sample_delivered"
    order.delivery_date = now.date()

    _log("sample_order", order.id, "sample_order.delivered", actor,
         before=before, after="sample_delivered",
         metadata={
             "lat": lat,
             "lng": lng,
             "distance_m": round(distance, 1) if distance is not None else None,
         })
    db.session.flush()
    return order


# ── Agreements ────────────────────────────────────────────────────

def _validate_terms(terms):
    unknown = set(terms) - set(AGREEMENT_TERMS)
    if unknown:
        raise ValueError(f"Unknown agreement fields: {', '.join(sorted(unknown))}")

    values = {k: v for k, v in terms.items() if v not in (None, "")}
    for key in ("pricing_type", "payment_type", "delivery_slot",
                "distribution_partner", "mail_id", "remarks"):
        if key in values:
            values[key] = _sanitize(values[key])

    price = _to_float(values.get("agreed_price_per_kg"), "agreed_price_per_kg")
    if price is None or price <= 0:
        raise ValueError("Agreed price per kg must be greater than 0.")
    values["agreed_price_per_kg"] = price

    payment_type = values.get("payment_type")
    if payment_type not in PAYMENT_TYPES:
        raise ValueError(
            f"Invalid payment type '{payment_type}'. Must be one of: {', '.join(PAYMENT_TYPES)}"
        )
    credit_days = _to_int(values.get("credit_days"), "credit_days")
    if payment_type == "credit":
        if not credit_days or credit_days <= 0:
            raise ValueError("Credit days are required for credit payment.")
        values["credit_days"] = credit_days
    else:
        values.pop("credit_days", None)

    if "expected_weekly_volume_kg" in values:
        volume = _to_float(values["expected_weekly_volume_kg"], "expected_weekly_volume_kg")
        if volume <= 0:
            raise ValueError("Expected weekly volume must be greater than 0.")
        values["expected_weekly_volume_kg"] = volume
    if "expected_first_order_date" in values:
        values["expected_first_order_date"] = parse_date(
            values["expected_first_order_date"], "expected_first_order_date"
        )

    mail_id = values.get("mail_id")
    if not mail_id or not _EMAIL_RE.match(mail_id):
        raise ValueError("A valid mail ID is required to send the agreement.")
    return values


def create_agreement(order_id, actor, rating, quality_remarks=None, **terms):
    """Record quality feedback on a sample and, if it passes, send terms.

    A rating below 6 stores a quality_failed agreement with no terms.
    Otherwise the agreement is sent for e-sign.

    Returns:
        The created Agreement.
    """
    rating = _to_int(rating, "rating")
    if rating is None or not 1 <= rating <= 10:
        raise ValueError("Quality rating must be between 1 and 10.")

    order = get_entity("sample_order", order_id)
    if order.status not in AGREEABLE_ORDER_STATUSES:
        raise ValueError(f"Cannot create an agreement for a {order.status} sample order.")
    existing = Agreement.query.filter_by(sample_order_id=order.id).first()
    if existing is not None:
        raise ValueError("This sample order already has an agreement.")

    quality_remarks = _sanitize(quality_remarks)

    if rating < PASSING_RATING:
        if not quality_remarks:
            raise ValueError("Quality remarks are required when the sample fails.")
        agreement = Agreement(
            sample_order_id=order.id,
            quality_feedback=False,
            quality_remarks=quality_remarks,
            status="quality_failed",
            esign_status="not_sent",
        )
        action = "agreement.quality_failed"
    else:
        values = _validate_terms(terms)
        agreement = Agreement(
            sample_order_id=order.id,
            quality_feedback=True,
            quality_remarks=quality_remarks,
            status="agreement_sent",
            esign_status="sent",
            **values,
        )
        action = "agreement.sent"

    db.session.add(agreement)
    db.session.flush()

    _log("agreement", agreement.id, action, actor,
         notes=quality_remarks, after=agreement.status,
         metadata={"sample_order_id": order.id, "rating": rating})
    db.session.flush()
    return agreement


def sign_agreement(agreement_id, actor):
    """Mark a sent agreement as signed; the outlet becomes a customer."""
    agreement = get_entity("agreement", agreement_id)
    if agreement.status != "agreement_sent":
        raise ValueError(f"Cannot sign a {agreement.status} agreement.")

    before = agreement.status
    agreement.status = "signed"
    agreement.esign_status = "signed"

    _log("agreement", agreement.id, "agreement.signed", actor,
         before=before, after="signed")
    db.session.flush()
    logger.info(f"Agreement {agreement.id} signed")
    return agreement


def mark_agreement_lost(agreement_id, actor, reason, details):
    """Close an agreement as lost with a reason and details."""
    reason = _sanitize(reason)
    details = _sanitize(details)
    if not reason:
        raise ValueError("Drop reason is required.")
    if not details:
        raise ValueError("Remarks are required when marking an agreement lost.")

    agreement = get_entity("agreement", agreement_id)
    if agreement.status in ("signed", "lost"):
        raise ValueError(f"Cannot mark a {agreement.status} agreement as lost.")

    before = agreement.status
    agreement.status = "lost"
    agreement.remarks = _append_remarks(
        agreement.remarks, remarks_service.lost_tag(reason, details)
    )

    _log("agreement", agreement.id, "agreement.dropped", actor,
         notes=f"{reason}: {details}", before=before, after="lost",
         metadata={"drop_reason": reason})
    db.session.flush()
    return agreement


def latest_metadata(entity_id):
    """All metadata recorded for `entity_id`; later logs override earlier ones."""
    logs = (
        ActivityLog.query
        .filter_by(entity_id=entity_id)
        .order_by(ActivityLog.timestamp.asc())
        .all()
    )
    merged = {}
    for log in logs:
        merged.update({k: v for k, v in (log.metadata_ or {}).items() if v is not None})
    return merged
