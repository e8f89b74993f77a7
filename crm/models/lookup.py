"""Lookup tables maintained from the admin console.

- PincodePersonaMap: which user (by email) covers which pincode, in which role.
- DropReason: canned drop reasons per funnel step (2 = lead, 3 = sample order,
  4 = agreement).
- SkuMapping: grammage -> SKU name and packing.
- StageMapping: ripeness stage -> consumption window in days.
"""

import uuid

from crm.extensions import db


class PincodePersonaMap(db.Model):
    __tablename__ = "pincode_persona_map"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    pincode = db.Column(db.String(20), nullable=False, index=True)
    locality = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(50), nullable=False)  # one of User.ROLES
    user_email = db.Column(db.String(255), nullable=False, index=True)

    def __repr__(self):
        return f"<PincodePersonaMap {self.pincode} {self.role} {self.user_email}>"


class DropReason(db.Model):
    __tablename__ = "drop_reasons"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    reason_text = db.Column(db.String(255), nullable=False)
    step_number = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, default=True)

    def __repr__(self):
        return f"<DropReason step {self.step_number}: {self.reason_text}>"


class SkuMapping(db.Model):
    __tablename__ = "sku_mapping"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    sku_name = db.Column(db.String(255), nullable=False)
    grammage = db.Column(db.Integer, nullable=False)
    lot_size = db.Column(db.Integer, nullable=True)
    box_count = db.Column(db.Integer, nullable=True)

    def __repr__(self):
        return f"<SkuMapping {self.sku_name} {self.grammage}g>"


class StageMapping(db.Model):
    __tablename__ = "stage_mapping"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stage_number = db.Column(db.Integer, nullable=False)
    stage_description = db.Column(db.String(255), nullable=False)
    consumption_days_min = db.Column(db.Integer, nullable=False)
    consumption_days_max = db.Column(db.Integer, nullable=False)

    def __repr__(self):
        return f"<StageMapping {self.stage_number}>"
