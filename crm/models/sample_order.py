"""SampleOrder model.

A product sample booked during a site visit. Always owned by one Lead.
Pipeline: pending_visit -> visited -> sample_ordered -> sample_delivered,
with revisit_needed and dropped as side exits.
"""

import uuid

from crm.extensions import db


class SampleOrder(db.Model):
    __tablename__ = "sample_orders"

    STATUSES = [
        "pending_visit",
        "visited",
        "sample_ordered",
        "sample_delivered",
        "revisit_needed",
        "dropped",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    lead_id = db.Column(
        db.String(36),
        db.ForeignKey("leads.id"),
        nullable=False,
        index=True,
    )
    status = db.Column(db.String(50), default="pending_visit", nullable=False)
    remarks = db.Column(db.Text, nullable=True)  # may carry [Tag: value] fragments
    visit_date = db.Column(db.Date, nullable=True)
    delivery_address = db.Column(db.String(500), nullable=True)
    delivery_date = db.Column(db.Date, nullable=True)
    delivery_slot = db.Column(db.String(100), nullable=True)
    sample_qty_units = db.Column(db.Integer, nullable=True)
    demand_per_week_kg = db.Column(db.Float, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    lead = db.relationship("Lead", foreign_keys=[lead_id])

    def __repr__(self):
        return f"<SampleOrder {self.id[:8]} ({self.status})>"
