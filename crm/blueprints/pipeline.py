"""Pipeline blueprint — /api/*

JSON API over the prospect -> lead -> sample order -> agreement pipeline.
Every route requires login and runs inside the caller's territory scope:
records outside it are reported as 404. Writing a record into a pincode
outside it is a 403. CSRF-exempt (session auth + JSON only).

Route Map:
  GET  /api/funnel                              — Funnel stats (+ drop-offs)
  GET  /api/funnel/export.csv                   — Funnel stats as CSV
  GET  /api/funnel/drop-reasons                 — Drop reasons per stage
  GET  /api/lead-master                         — One journey row per prospect
  GET  /api/pincodes                            — Pincodes visible to the caller
  GET  /api/prospects                           — Prospects (search/pincode/tab)
  POST /api/prospects                           — Add a prospect
  PUT  /api/prospects/<id>                      — Edit a prospect
  POST /api/prospects/status                    — Bulk status change
  GET  /api/leads                               — Leads (search/pincode/tab)
  POST /api/leads                               — Add a lead with no prospect
  GET  /api/sample-orders                       — Sample orders
  GET  /api/agreements                          — Agreements
  GET  /api/prospects/<id>/stage                — Current stage of a prospect
  GET  /api/<kind>/<id>/annotations             — Typed facts from remarks/logs
  GET  /api/<kind>/<id>/activity                — Latest activity logs
  POST /api/prospects/<id>/convert              — Prospect -> Lead
  POST /api/leads/<id>/calls                    — Log a call
  POST /api/<kind>/<id>/visits                  — Log a visit
  POST /api/leads/<id>/sample-orders            — Book a sample
  POST /api/<kind>/<id>/revisit                 — Schedule a re-visit
  POST /api/sample-orders/<id>/drop             — Drop a sample order
  POST /api/sample-orders/<id>/deliver          — Confirm delivery (geofenced)
  POST /api/sample-orders/<id>/agreement        — Quality feedback + terms
  POST /api/agreements/<id>/sign                — Mark signed
  POST /api/agreements/<id>/lost                — Mark lost
"""

import csv
import io
import logging
from datetime import date, datetime, timezone

from flask import Blueprint, Response, abort, current_app, g, jsonify, request
from flask_login import current_user
from sqlalchemy import or_

from crm.decorators import role_required, territory_required
from crm.extensions import db
from crm.models.activity_log import ActivityLog
from crm.models.agreement import Agreement
from crm.models.lead import Lead
from crm.models.prospect import Prospect
from crm.models.sample_order import SampleOrder
from crm.services import funnel_service, lead_master_service, pipeline_service
from crm.services.remarks_service import annotate
from crm.services.stage_service import Stage, classify
from crm.services.territory_service import apply_scope

logger = logging.getLogger(__name__)

pipeline_bp = Blueprint("pipeline", __name__, url_prefix="/api")

# URL segment -> entity type
KINDS = {
    "prospects": "prospect",
    "leads": "lead",
    "sample-orders": "sample_order",
    "agreements": "agreement",
}

# Prospect list tab -> status
PROSPECT_TABS = {
    "fresh": "available",
    "revisit": "assigned",
    "dropped": "dropped",
}


# ─── Helpers ─────────────────────────────────────────────────────

def _iso(value):
    return value.isoformat() if value else None


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(400, description="Request body must be a JSON object.")
    return data


def _fields(data, allowed):
    """Keyword arguments for a service call; 400 on keys outside `allowed`."""
    unknown = set(data) - set(allowed)
    if unknown:
        abort(400, description=f"Unknown fields: {', '.join(sorted(unknown))}")
    return data


def _require_in_scope(pincode):
    """403 when a write would place a record outside the caller's territory."""
    if pincode and not g.scope.allows(str(pincode).strip()):
        abort(403, description=f"Pincode {pincode} is outside your territory.")


def _kind(segment, allowed=None):
    entity_type = KINDS.get(segment)
    if entity_type is None or (allowed and entity_type not in allowed):
        abort(404)
    return entity_type


def _scoped_entity(entity_type, entity_id):
    """Load a record the caller may see, else 404."""
    model = pipeline_service.ENTITY_MODELS[entity_type]
    entity = db.session.get(model, entity_id)
    if entity is None or not g.scope.allows(pipeline_service.record_pincode(entity)):
        abort(404)
    return entity


def _commit_or_400(operation, *args, **kwargs):
    """Run a pipeline operation; commit on success, 400 on ValueError."""
    try:
        result = operation(*args, **kwargs)
    except pipeline_service.GeofenceError as e:
        db.session.rollback()
        return None, (jsonify({
            "error": str(e),
            "distance_m": round(e.distance_m, 1),
            "radius_m": e.radius_m,
        }), 400)
    except ValueError as e:
        db.session.rollback()
        return None, (jsonify({"error": str(e)}), 400)
    db.session.commit()
    return result, None


def _parse_day(value, name):
    try:
        return date.fromisoformat(value)
    except ValueError:
        abort(400, description=f"Invalid '{name}' date. Expected YYYY-MM-DD.")


def _date_range_from_args():
    raw_from = request.args.get("from")
    raw_to = request.args.get("to")
    if not raw_from and not raw_to:
        return funnel_service.DateRange.last_days(current_app.config["FUNNEL_DEFAULT_DAYS"])
    if not raw_from or not raw_to:
        abort(400, description="Both 'from' and 'to' are required.")
    start = _parse_day(raw_from, "from")
    end = _parse_day(raw_to, "to")
    if start > end:
        abort(400, description="'from' must not be after 'to'.")
    return funnel_service.DateRange.from_dates(start, end)


def _prospect_dict(p):
    return {
        "id": p.id,
        "restaurant_name": p.restaurant_name,
        "pincode": p.pincode,
        "locality": p.locality,
        "location": p.location,
        "source": p.source,
        "cuisine_type": p.cuisine_type,
        "status": p.status,
        "tag": p.tag,
        "recall_date": _iso(p.recall_date),
        "mapped_to": p.mapped_to,
        "geo_lat": p.geo_lat,
        "geo_lng": p.geo_lng,
        "created_by": p.created_by,
        "created_at": _iso(p.created_at),
    }


def _lead_dict(l):
    return {
        "id": l.id,
        "prospect_id": l.prospect_id,
        "client_name": l.client_name,
        "pincode": l.pincode,
        "locality": l.locality,
        "outlet_address": l.outlet_address,
        "contact_number": l.contact_number,
        "appointment_date": _iso(l.appointment_date),
        "appointment_time": l.appointment_time,
        "status": l.status,
        "call_count": l.call_count,
        "visit_count": l.visit_count,
        "last_activity_date": _iso(l.last_activity_date),
        "remarks": l.remarks,
        "created_by": l.created_by,
        "created_at": _iso(l.created_at),
    }


def _order_dict(o):
    return {
        "id": o.id,
        "lead_id": o.lead_id,
        "status": o.status,
        "remarks": o.remarks,
        "visit_date": _iso(o.visit_date),
        "delivery_address": o.delivery_address,
        "delivery_date": _iso(o.delivery_date),
        "delivery_slot": o.delivery_slot,
        "sample_qty_units": o.sample_qty_units,
        "demand_per_week_kg": o.demand_per_week_kg,
        "created_at": _iso(o.created_at),
    }


def _agreement_dict(a):
    return {
        "id": a.id,
        "sample_order_id": a.sample_order_id,
        "status": a.status,
        "esign_status": a.esign_status,
        "quality_feedback": a.quality_feedback,
        "quality_remarks": a.quality_remarks,
        "agreed_price_per_kg": a.agreed_price_per_kg,
        "payment_type": a.payment_type,
        "credit_days": a.credit_days,
        "mail_id": a.mail_id,
        "remarks": a.remarks,
        "created_at": _iso(a.created_at),
    }


_SERIALIZERS = {
    "prospect": _prospect_dict,
    "lead": _lead_dict,
    "sample_order": _order_dict,
    "agreement": _agreement_dict,
}


def _funnel_for_request():
    date_range = _date_range_from_args()
    pincode = request.args.get("pincode") or funnel_service.ALL_PINCODES
    snapshot = funnel_service.load_snapshot(g.scope)
    stats = funnel_service.compute_funnel(
        snapshot.prospects,
        snapshot.leads,
        snapshot.orders,
        snapshot.agreements,
        date_range,
        pincode,
    )
    return stats, snapshot, date_range, pincode


# ─── Funnel ──────────────────────────────────────────────────────

@pipeline_bp.route("/funnel")
@territory_required
def funnel():
    """Funnel stats for a date window and pincode.

    The `generation` query param is echoed back unchanged so the client
    can drop responses for filters it has already replaced.
    """
    stats, snapshot, date_range, pincode = _funnel_for_request()
    reasons, logs = funnel_service.load_drop_reason_inputs(snapshot, g.scope)
    breakdown = funnel_service.drop_reason_breakdown(reasons, logs)
    return jsonify({
        "generation": request.args.get("generation"),
        "from": date_range.start.isoformat(),
        "to": date_range.end.isoformat(),
        "pincode": pincode,
        "stats": stats.to_dict(),
        "drop_offs": funnel_service.drop_off_summary(stats, breakdown),
    })


@pipeline_bp.route("/funnel/export.csv")
@territory_required
def funnel_export():
    stats, _, _, _ = _funnel_for_request()
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerows(funnel_service.funnel_csv_rows(stats))
    filename = f"funnel-report-{datetime.now(timezone.utc):%Y-%m-%d}.csv"
    return Response(
        buffer.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@pipeline_bp.route("/funnel/drop-reasons")
@territory_required
def drop_reasons():
    snapshot = funnel_service.load_snapshot(g.scope)
    reasons, logs = funnel_service.load_drop_reason_inputs(snapshot, g.scope)
    breakdown = funnel_service.drop_reason_breakdown(reasons, logs)
    return jsonify([
        {"stage": label, "step_number": step, "reasons": breakdown.get(step, [])}
        for step, label in funnel_service.DROP_STAGES
    ])


# ─── Views ───────────────────────────────────────────────────────

@pipeline_bp.route("/lead-master")
@territory_required
def lead_master():
    snapshot = funnel_service.load_snapshot(g.scope)
    rows = lead_master_service.build_master_rows(
        snapshot.prospects, snapshot.leads, snapshot.orders, snapshot.agreements
    )
    filtered = lead_master_service.filter_master_rows(
        rows,
        search=request.args.get("search"),
        agent=request.args.get("agent"),
        stage=request.args.get("stage"),
    )
    logs = lead_master_service.load_recent_logs()
    for row in filtered:
        row["recent_activity"] = [
            {
                "action": log.action,
                "user_email": log.user_email,
                "notes": log.notes,
                "timestamp": _iso(log.timestamp),
            }
            for log in lead_master_service.recent_activity(
                logs, row["prospect_id"], row["lead_id"]
            )
        ]
    return jsonify({
        "rows": filtered,
        "total": len(rows),
        "agents": lead_master_service.list_agents(rows),
        "stages": [s.label for s in Stage],
    })


@pipeline_bp.route("/pincodes")
@territory_required
def pincodes():
    query = apply_scope(
        db.session.query(Prospect.pincode, Prospect.locality).distinct(),
        Prospect.pincode,
        g.scope,
    )
    rows = sorted(query.all(), key=lambda r: (r.pincode, r.locality or ""))
    return jsonify([{"pincode": r.pincode, "locality": r.locality} for r in rows])


@pipeline_bp.route("/prospects/<prospect_id>/stage")
@territory_required
def prospect_stage(prospect_id):
    prospect = _scoped_entity("prospect", prospect_id)
    lead = (
        Lead.query.filter_by(prospect_id=prospect.id)
        .order_by(Lead.created_at.desc())
        .first()
    )
    order = None
    agreement = None
    if lead is not None:
        order = (
            SampleOrder.query.filter_by(lead_id=lead.id)
            .order_by(SampleOrder.created_at.desc())
            .first()
        )
    if order is not None:
        agreement = (
            Agreement.query.filter_by(sample_order_id=order.id)
            .order_by(Agreement.created_at.desc())
            .first()
        )
    stage = classify(prospect, lead, order, agreement)
    return jsonify({
        "prospect_id": prospect.id,
        "stage": stage.label,
        "stage_number": int(stage),
    })


@pipeline_bp.route("/<segment>/<entity_id>/annotations")
@territory_required
def annotations(segment, entity_id):
    entity_type = _kind(segment)
    entity = _scoped_entity(entity_type, entity_id)
    metadata = pipeline_service.latest_metadata(entity.id)
    facts = annotate(getattr(entity, "remarks", None), metadata)
    return jsonify(facts.to_dict())


@pipeline_bp.route("/<segment>/<entity_id>/activity")
@territory_required
def activity(segment, entity_id):
    entity_type = _kind(segment)
    entity = _scoped_entity(entity_type, entity_id)
    logs = (
        ActivityLog.query.filter_by(entity_id=entity.id)
        .order_by(ActivityLog.timestamp.desc())
        .limit(50)
        .all()
    )
    return jsonify([
        {
            "id": log.id,
            "action": log.action,
            "user_email": log.user_email,
            "notes": log.notes,
            "before_state": log.before_state,
            "after_state": log.after_state,
            "metadata": log.metadata_ or {},
            "timestamp": _iso(log.timestamp),
        }
        for log in logs
    ])


# ─── Lists ───────────────────────────────────────────────────────

def _search(query, term, *columns):
    term = (term or "").strip()
    if not term:
        return query
    pattern = f"%{term}%"
    return query.filter(or_(*(column.ilike(pattern) for column in columns)))


def _pincode_filter(query, column):
    pincode = request.args.get("pincode")
    if pincode and pincode != funnel_service.ALL_PINCODES:
        query = query.filter(column == pincode)
    return query


@pipeline_bp.route("/prospects")
@territory_required
def list_prospects():
    """Prospects in the caller's territory, newest first.

    Query params: search (name, locality or pincode), pincode, locality,
    status, and tab (fresh = available, revisit = assigned,
    dropped = dropped).
    """
    query = apply_scope(Prospect.query, Prospect.pincode, g.scope)
    query = _search(
        query, request.args.get("search"),
        Prospect.restaurant_name, Prospect.locality, Prospect.pincode,
    )
    query = _pincode_filter(query, Prospect.pincode)
    if request.args.get("locality"):
        query = query.filter(Prospect.locality == request.args["locality"])

    tab = request.args.get("tab")
    if tab:
        if tab not in PROSPECT_TABS:
            abort(400, description=f"Invalid tab '{tab}'. Must be one of: {', '.join(PROSPECT_TABS)}")
        query = query.filter(Prospect.status == PROSPECT_TABS[tab])
    if request.args.get("status"):
        query = query.filter(Prospect.status == request.args["status"])

    prospects = query.order_by(Prospect.created_at.desc()).all()
    return jsonify([_prospect_dict(p) for p in prospects])


@pipeline_bp.route("/leads")
@territory_required
def list_leads():
    """Leads in the caller's territory, newest first.

    Query params: search (name, locality or pincode), pincode, status, and
    tab (fresh = never called or visited, revisit = called or visited,
    dropped = failed).
    """
    query = apply_scope(Lead.query, Lead.pincode, g.scope)
    query = _search(
        query, request.args.get("search"),
        Lead.client_name, Lead.locality, Lead.pincode,
    )
    query = _pincode_filter(query, Lead.pincode)

    tab = request.args.get("tab")
    if tab == "fresh":
        query = query.filter(Lead.call_count == 0, Lead.visit_count == 0)
    elif tab == "revisit":
        query = query.filter(or_(Lead.call_count > 0, Lead.visit_count > 0))
    elif tab == "dropped":
        query = query.filter(Lead.status == "failed")
    elif tab:
        abort(400, description=f"Invalid tab '{tab}'. Must be one of: fresh, revisit, dropped")
    if request.args.get("status"):
        query = query.filter(Lead.status == request.args["status"])

    leads = query.order_by(Lead.created_at.desc()).all()
    return jsonify([_lead_dict(l) for l in leads])


@pipeline_bp.route("/sample-orders")
@territory_required
def list_sample_orders():
    query = apply_scope(
        SampleOrder.query.join(Lead, SampleOrder.lead_id == Lead.id),
        Lead.pincode,
        g.scope,
    )
    query = _pincode_filter(query, Lead.pincode)
    if request.args.get("status"):
        query = query.filter(SampleOrder.status == request.args["status"])
    orders = query.order_by(SampleOrder.created_at.desc()).all()
    return jsonify([_order_dict(o) for o in orders])


@pipeline_bp.route("/agreements")
@territory_required
def list_agreements():
    query = apply_scope(
        Agreement.query
        .join(SampleOrder, Agreement.sample_order_id == SampleOrder.id)
        .join(Lead, SampleOrder.lead_id == Lead.id),
        Lead.pincode,
        g.scope,
    )
    query = _pincode_filter(query, Lead.pincode)
    if request.args.get("status"):
        query = query.filter(Agreement.status == request.args["status"])
    agreements = query.order_by(Agreement.created_at.desc()).all()
    return jsonify([_agreement_dict(a) for a in agreements])


# ─── Records ─────────────────────────────────────────────────────

@pipeline_bp.route("/prospects", methods=["POST"])
@role_required("calling_agent", "lead_taker")
@territory_required
def create_prospect():
    data = _fields(_json_body(), pipeline_service.PROSPECT_FIELDS)
    _require_in_scope(data.get("pincode"))
    prospect, error = _commit_or_400(
        pipeline_service.create_prospect, current_user, **data,
    )
    if error:
        return error
    return jsonify(_prospect_dict(prospect)), 201


@pipeline_bp.route("/prospects/<prospect_id>", methods=["PUT"])
@role_required("calling_agent", "lead_taker")
@territory_required
def update_prospect(prospect_id):
    prospect = _scoped_entity("prospect", prospect_id)
    data = _fields(_json_body(), pipeline_service.PROSPECT_FIELDS)
    _require_in_scope(data.get("pincode"))
    prospect, error = _commit_or_400(
        pipeline_service.update_prospect, prospect.id, current_user, **data,
    )
    if error:
        return error
    return jsonify(_prospect_dict(prospect))


@pipeline_bp.route("/prospects/status", methods=["POST"])
@role_required("calling_agent", "lead_taker")
@territory_required
def set_prospect_status():
    """Bulk status change. Body: {"ids": [...], "status": "..."}."""
    data = _json_body()
    ids = data.get("ids")
    if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
        abort(400, description="'ids' must be a list of prospect ids.")
    for prospect_id in ids:
        _scoped_entity("prospect", prospect_id)
    prospects, error = _commit_or_400(
        pipeline_service.set_prospect_status, ids, data.get("status"), current_user,
    )
    if error:
        return error
    return jsonify([_prospect_dict(p) for p in prospects])


@pipeline_bp.route("/leads", methods=["POST"])
@role_required("calling_agent", "lead_taker")
@territory_required
def create_lead():
    data = _fields(_json_body(), pipeline_service.LEAD_FIELDS)
    _require_in_scope(data.get("pincode"))
    lead, error = _commit_or_400(
        pipeline_service.create_lead, current_user, **data,
    )
    if error:
        return error
    return jsonify(_lead_dict(lead)), 201


# ─── Operations ──────────────────────────────────────────────────

@pipeline_bp.route("/prospects/<prospect_id>/convert", methods=["POST"])
@role_required("calling_agent", "lead_taker")
@territory_required
def convert_prospect(prospect_id):
    prospect = _scoped_entity("prospect", prospect_id)
    data = _fields(_json_body(), pipeline_service.LEAD_FIELDS)
    _require_in_scope(data.get("pincode"))
    lead, error = _commit_or_400(
        pipeline_service.convert_prospect_to_lead, prospect.id, current_user, **data,
    )
    if error:
        return error
    return jsonify(_lead_dict(lead)), 201


@pipeline_bp.route("/leads/<lead_id>/calls", methods=["POST"])
@role_required("calling_agent", "lead_taker")
@territory_required
def log_call(lead_id):
    lead = _scoped_entity("lead", lead_id)
    data = _json_body()
    lead, error = _commit_or_400(
        pipeline_service.log_call,
        lead.id, current_user, data.get("outcome"), data.get("remarks"),
    )
    if error:
        return error
    return jsonify(_lead_dict(lead))


@pipeline_bp.route("/<segment>/<entity_id>/visits", methods=["POST"])
@territory_required
def log_visit(segment, entity_id):
    entity_type = _kind(segment, allowed=("lead", "sample_order", "agreement"))
    entity = _scoped_entity(entity_type, entity_id)
    lead, error = _commit_or_400(
        pipeline_service.log_visit,
        entity_type, entity.id, current_user, _json_body().get("remarks"),
    )
    if error:
        return error
    return jsonify(_lead_dict(lead))


@pipeline_bp.route("/leads/<lead_id>/sample-orders", methods=["POST"])
@role_required("lead_taker", "kam")
@territory_required
def create_sample_order(lead_id):
    lead = _scoped_entity("lead", lead_id)
    data = _json_body()
    fields = {
        key: data.get(key)
        for key in (
            "delivery_address", "delivery_date", "delivery_slot",
            "sample_qty_units", "demand_per_week_kg", "visit_date",
            "count_per_box", "ripeness", "follow_up_date",
        )
    }
    order, error = _commit_or_400(
        pipeline_service.create_sample_order,
        lead.id, current_user, data.get("remarks"), **fields,
    )
    if error:
        return error
    return jsonify(_order_dict(order)), 201


@pipeline_bp.route("/<segment>/<entity_id>/revisit", methods=["POST"])
@role_required("lead_taker", "kam")
@territory_required
def schedule_revisit(segment, entity_id):
    entity_type = _kind(segment, allowed=("sample_order", "agreement"))
    entity = _scoped_entity(entity_type, entity_id)
    data = _json_body()
    entity, error = _commit_or_400(
        pipeline_service.schedule_revisit,
        entity_type, entity.id, current_user,
        data.get("revisit_date"), data.get("remarks"), data.get("at_time"),
    )
    if error:
        return error
    return jsonify(_SERIALIZERS[entity_type](entity))


@pipeline_bp.route("/sample-orders/<order_id>/drop", methods=["POST"])
@role_required("lead_taker", "kam")
@territory_required
def drop_sample_order(order_id):
    order = _scoped_entity("sample_order", order_id)
    data = _json_body()
    order, error = _commit_or_400(
        pipeline_service.drop_sample_order,
        order.id, current_user, data.get("reason"), data.get("details"),
    )
    if error:
        return error
    return jsonify(_order_dict(order))


@pipeline_bp.route("/sample-orders/<order_id>/deliver", methods=["POST"])
@role_required("lead_taker", "kam")
@territory_required
def deliver_sample_order(order_id):
    order = _scoped_entity("sample_order", order_id)
    data = _json_body()
    order, error = _commit_or_400(
        pipeline_service.mark_delivered,
        order.id, current_user, data.get("lat"), data.get("lng"),
        radius_m=current_app.config["GEOFENCE_RADIUS_METERS"],
    )
    if error:
        return error
    return jsonify(_order_dict(order))


@pipeline_bp.route("/sample-orders/<order_id>/agreement", methods=["POST"])
@role_required("kam")
@territory_required
def create_agreement(order_id):
    order = _scoped_entity("sample_order", order_id)
    data = dict(_json_body())
    rating = data.pop("rating", None)
    quality_remarks = data.pop("quality_remarks", None)
    agreement, error = _commit_or_400(
        pipeline_service.create_agreement,
        order.id, current_user, rating, quality_remarks,
        **_fields(data, pipeline_service.AGREEMENT_TERMS),
    )
    if error:
        return error
    return jsonify(_agreement_dict(agreement)), 201


@pipeline_bp.route("/agreements/<agreement_id>/sign", methods=["POST"])
@role_required("kam")
@territory_required
def sign_agreement(agreement_id):
    agreement = _scoped_entity("agreement", agreement_id)
    agreement, error = _commit_or_400(
        pipeline_service.sign_agreement, agreement.id, current_user,
    )
    if error:
        return error
    return jsonify(_agreement_dict(agreement))


@pipeline_bp.route("/agreements/<agreement_id>/lost", methods=["POST"])
@role_required("kam")
@territory_required
def mark_agreement_lost(agreement_id):
    agreement = _scoped_entity("agreement", agreement_id)
    data = _json_body()
    agreement, error = _commit_or_400(
        pipeline_service.mark_agreement_lost,
        agreement.id, current_user, data.get("reason"), data.get("details"),
    )
    if error:
        return error
    return jsonify(_agreement_dict(agreement))
