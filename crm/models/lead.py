"""Lead model.

A prospect confirmed by a qualifying call or visit. prospect_id is
nullable: leads added directly in the field have no prospect.

call_count and visit_count only ever go up. Visits logged while the
outlet is at the sample order or agreement stage still land here.
"""

import uuid

from crm.extensions import db


class Lead(db.Model):
    __tablename__ = "leads"

    STATUSES = ["new", "in_progress", "qualified", "failed", "dropped"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    prospect_id = db.Column(
        db.String(36),
        db.ForeignKey("prospects.id"),
        nullable=True,
        index=True,
    )
    client_name = db.Column(db.String(255), nullable=False)
    pincode = db.Column(db.String(20), nullable=False, index=True)
    locality = db.Column(db.String(255), nullable=True)
    outlet_address = db.Column(db.String(500), nullable=True)
    contact_number = db.Column(db.String(50), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    gst_id = db.Column(db.String(50), nullable=True)
    avocado_consumption = db.Column(db.String(100), nullable=True)
    purchase_manager_name = db.Column(db.String(255), nullable=True)
    pm_contact = db.Column(db.String(50), nullable=True)
    outlet_photo_url = db.Column(db.String(500), nullable=True)
    appointment_date = db.Column(db.Date, nullable=True)
    appointment_time = db.Column(db.String(50), nullable=True)
    status = db.Column(db.String(50), default="new", nullable=False)
    remarks = db.Column(db.Text, nullable=True)
    call_count = db.Column(db.Integer, default=0, nullable=False)
    visit_count = db.Column(db.Integer, default=0, nullable=False)
    last_activity_date = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by = db.Column(db.String(255), nullable=True)
    geo_lat = db.Column(db.Float, nullable=True)
    geo_lng = db.Column(db.Float, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    prospect = db.relationship("Prospect", foreign_keys=[prospect_id])

    def __repr__(self):
        return f"<Lead {self.client_name} ({self.status})>"
