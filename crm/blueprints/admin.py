"""Admin blueprint — /admin/api/*

Reference-table maintenance and user provisioning. All routes protected
by @admin_required. CSRF-exempt (admin-only + JSON).

Route Map:
  GET/POST   /admin/api/users                      — List / create users
  GET/POST   /admin/api/pincode-map                — List / create mappings
  DELETE     /admin/api/pincode-map/<id>           — Delete mapping
  GET/POST   /admin/api/drop-reasons               — List / create reasons
  PUT        /admin/api/drop-reasons/<id>          — Activate / deactivate
  DELETE     /admin/api/drop-reasons/<id>          — Delete reason
  GET/POST   /admin/api/sku-mappings               — List / create SKUs
  DELETE     /admin/api/sku-mappings/<id>          — Delete SKU
  GET/POST   /admin/api/stage-mappings             — List / create stages
  PUT        /admin/api/stage-mappings/<id>        — Update stage
  DELETE     /admin/api/stage-mappings/<id>        — Delete stage
"""

from flask import Blueprint, abort, jsonify, request

from crm.decorators import admin_required
from crm.extensions import db
from crm.models.lookup import DropReason, PincodePersonaMap, SkuMapping, StageMapping
from crm.models.user import User
from crm.services import lookup_service

admin_bp = Blueprint("admin", __name__, url_prefix="/admin/api")


def _body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(400, description="Request body must be a JSON object.")
    return data


def _save(operation, *args, **kwargs):
    """Run a lookup write; commit on success, 400 on ValueError."""
    try:
        result = operation(*args, **kwargs)
    except ValueError as e:
        db.session.rollback()
        return None, (jsonify({"error": str(e)}), 400)
    db.session.commit()
    return result, None


def _delete(model, row_id):
    row = db.session.get(model, row_id)
    if row:
        db.session.delete(row)
        db.session.commit()
    return jsonify({"success": True})


def _user_dict(u):
    return {
        "id": u.id,
        "email": u.email,
        "full_name": u.full_name,
        "role": u.role,
        "is_active": u.is_active,
    }


def _mapping_dict(m):
    return {
        "id": m.id,
        "pincode": m.pincode,
        "locality": m.locality,
        "role": m.role,
        "user_email": m.user_email,
    }


def _reason_dict(r):
    return {
        "id": r.id,
        "reason_text": r.reason_text,
        "step_number": r.step_number,
        "is_active": r.is_active,
    }


def _sku_dict(s):
    return {
        "id": s.id,
        "sku_name": s.sku_name,
        "grammage": s.grammage,
        "lot_size": s.lot_size,
        "box_count": s.box_count,
    }


def _stage_dict(s):
    return {
        "id": s.id,
        "stage_number": s.stage_number,
        "stage_description": s.stage_description,
        "consumption_days_min": s.consumption_days_min,
        "consumption_days_max": s.consumption_days_max,
    }


# ─── Users ───────────────────────────────────────────────────────

@admin_bp.route("/users")
@admin_required
def list_users():
    users = User.query.order_by(User.email).all()
    return jsonify([_user_dict(u) for u in users])


@admin_bp.route("/users", methods=["POST"])
@admin_required
def create_user():
    data = _body()
    user, error = _save(
        lookup_service.create_user,
        data.get("email"), data.get("password"),
        data.get("role", "calling_agent"), data.get("full_name"),
    )
    if error:
        return error
    return jsonify(_user_dict(user)), 201


# ─── Pincode persona map ─────────────────────────────────────────

@admin_bp.route("/pincode-map")
@admin_required
def list_pincode_map():
    rows = PincodePersonaMap.query.order_by(
        PincodePersonaMap.pincode, PincodePersonaMap.role
    ).all()
    return jsonify([_mapping_dict(m) for m in rows])


@admin_bp.route("/pincode-map", methods=["POST"])
@admin_required
def create_pincode_mapping():
    data = _body()
    mapping, error = _save(
        lookup_service.create_pincode_mapping,
        data.get("pincode"), data.get("locality"),
        data.get("role"), data.get("user_email"),
    )
    if error:
        return error
    return jsonify(_mapping_dict(mapping)), 201


@admin_bp.route("/pincode-map/<mapping_id>", methods=["DELETE"])
@admin_required
def delete_pincode_mapping(mapping_id):
    return _delete(PincodePersonaMap, mapping_id)


# ─── Drop reasons ────────────────────────────────────────────────

@admin_bp.route("/drop-reasons")
@admin_required
def list_drop_reasons():
    rows = DropReason.query.order_by(DropReason.step_number, DropReason.reason_text).all()
    return jsonify([_reason_dict(r) for r in rows])


@admin_bp.route("/drop-reasons", methods=["POST"])
@admin_required
def create_drop_reason():
    data = _body()
    reason, error = _save(
        lookup_service.create_drop_reason,
        data.get("reason_text"), data.get("step_number"),
    )
    if error:
        return error
    return jsonify(_reason_dict(reason)), 201


@admin_bp.route("/drop-reasons/<reason_id>", methods=["PUT"])
@admin_required
def update_drop_reason(reason_id):
    reason = db.session.get(DropReason, reason_id)
    if not reason:
        return jsonify({"error": "Drop reason not found"}), 404
    reason, error = _save(
        lookup_service.set_drop_reason_active, reason, _body().get("is_active", True)
    )
    if error:
        return error
    return jsonify(_reason_dict(reason))


@admin_bp.route("/drop-reasons/<reason_id>", methods=["DELETE"])
@admin_required
def delete_drop_reason(reason_id):
    return _delete(DropReason, reason_id)


# ─── SKU mappings ────────────────────────────────────────────────

@admin_bp.route("/sku-mappings")
@admin_required
def list_sku_mappings():
    rows = SkuMapping.query.order_by(SkuMapping.grammage).all()
    return jsonify([_sku_dict(s) for s in rows])


@admin_bp.route("/sku-mappings", methods=["POST"])
@admin_required
def create_sku_mapping():
    data = _body()
    sku, error = _save(
        lookup_service.create_sku_mapping,
        data.get("sku_name"), data.get("grammage"),
        data.get("lot_size"), data.get("box_count"),
    )
    if error:
        return error
    return jsonify(_sku_dict(sku)), 201


@admin_bp.route("/sku-mappings/<sku_id>", methods=["DELETE"])
@admin_required
def delete_sku_mapping(sku_id):
    return _delete(SkuMapping, sku_id)


# ─── Stage mappings ──────────────────────────────────────────────

@admin_bp.route("/stage-mappings")
@admin_required
def list_stage_mappings():
    rows = StageMapping.query.order_by(StageMapping.stage_number).all()
    return jsonify([_stage_dict(s) for s in rows])


def _save_stage(stage):
    data = _body()
    return _save(
        lookup_service.save_stage_mapping,
        stage,
        data.get("stage_number"),
        data.get("stage_description"),
        data.get("consumption_days_min"),
        data.get("consumption_days_max"),
    )


@admin_bp.route("/stage-mappings", methods=["POST"])
@admin_required
def create_stage_mapping():
    stage, error = _save_stage(None)
    if error:
        return error
    return jsonify(_stage_dict(stage)), 201


@admin_bp.route("/stage-mappings/<stage_id>", methods=["PUT"])
@admin_required
def update_stage_mapping(stage_id):
    stage = db.session.get(StageMapping, stage_id)
    if not stage:
        return jsonify({"error": "Stage mapping not found"}), 404
    stage, error = _save_stage(stage)
    if error:
        return error
    return jsonify(_stage_dict(stage))


@admin_bp.route("/stage-mappings/<stage_id>", methods=["DELETE"])
@admin_required
def delete_stage_mapping(stage_id):
    return _delete(StageMapping, stage_id)
