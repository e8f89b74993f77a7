"""Lookup service — admin maintenance of the reference tables.

Functions flush but do NOT commit — the caller commits.
"""

import bleach
from werkzeug.security import generate_password_hash

from crm.extensions import db
from crm.models.lookup import DropReason, PincodePersonaMap, SkuMapping, StageMapping
from crm.models.user import User

DROP_STEPS = [2, 3, 4]


def _clean(text):
    if text is None:
        return ""
    return bleach.clean(str(text), tags=[], strip=True).strip()


def _int(value, name, minimum=None):
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a whole number.")
    if minimum is not None and number < minimum:
        raise ValueError(f"{name} must be at least {minimum}.")
    return number


def _optional_int(value, name):
    if value is None or value == "":
        return None
    return _int(value, name, minimum=0)


def create_user(email, password, role, full_name=None):
    """Provision a login for a field user."""
    email = (email or "").lower().strip()
    if not email or "@" not in email:
        raise ValueError("A valid email is required.")
    if not password or len(password) < 8:
        raise ValueError("Password must be at least 8 characters.")
    if role not in User.ROLES:
        raise ValueError(f"Invalid role '{role}'. Must be one of: {', '.join(User.ROLES)}")
    if User.query.filter_by(email=email).first():
        raise ValueError("An account with this email already exists.")

    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        full_name=_clean(full_name) or None,
        role=role,
    )
    db.session.add(user)
    db.session.flush()
    return user


def create_pincode_mapping(pincode, locality, role, user_email):
    pincode = _clean(pincode)
    locality = _clean(locality)
    user_email = (user_email or "").lower().strip()
    if not pincode or not locality or not user_email:
        raise ValueError("Pincode, locality and user email are required.")
    if role not in User.ROLES:
        raise ValueError(f"Invalid role '{role}'. Must be one of: {', '.join(User.ROLES)}")

    duplicate = PincodePersonaMap.query.filter_by(
        pincode=pincode, role=role, user_email=user_email
    ).first()
    if duplicate:
        raise ValueError("This mapping already exists.")

    mapping = PincodePersonaMap(
        pincode=pincode, locality=locality, role=role, user_email=user_email
    )
    db.session.add(mapping)
    db.session.flush()
    return mapping


def create_drop_reason(reason_text, step_number):
    reason_text = _clean(reason_text)
    if not reason_text:
        raise ValueError("Reason text is required.")
    step = _int(step_number, "step_number")
    if step not in DROP_STEPS:
        raise ValueError(f"step_number must be one of: {', '.join(map(str, DROP_STEPS))}")

    reason = DropReason(reason_text=reason_text, step_number=step, is_active=True)
    db.session.add(reason)
    db.session.flush()
    return reason


def set_drop_reason_active(reason, is_active):
    reason.is_active = bool(is_active)
    db.session.flush()
    return reason


def create_sku_mapping(sku_name, grammage, lot_size=None, box_count=None):
    sku_name = _clean(sku_name)
    if not sku_name:
        raise ValueError("SKU name is required.")
    sku = SkuMapping(
        sku_name=sku_name,
        grammage=_int(grammage, "grammage", minimum=1),
        lot_size=_optional_int(lot_size, "lot_size"),
        box_count=_optional_int(box_count, "box_count"),
    )
    db.session.add(sku)
    db.session.flush()
    return sku


def save_stage_mapping(stage, stage_number, stage_description,
                       consumption_days_min, consumption_days_max):
    """Create (stage=None) or update a ripeness stage mapping."""
    description = _clean(stage_description)
    if not description:
        raise ValueError("Stage description is required.")
    days_min = _int(consumption_days_min, "consumption_days_min", minimum=0)
    days_max = _int(consumption_days_max, "consumption_days_max", minimum=0)
    if days_min > days_max:
        raise ValueError("consumption_days_min must not exceed consumption_days_max.")

    if stage is None:
        stage = StageMapping()
        db.session.add(stage)
    stage.stage_number = _int(stage_number, "stage_number", minimum=1)
    stage.stage_description = description
    stage.consumption_days_min = days_min
    stage.consumption_days_max = days_max
    db.session.flush()
    return stage
