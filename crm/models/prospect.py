"""Prospect model.

Root of the funnel: an unqualified restaurant/outlet discovered by an
operator or bulk import. Status tracks availability for calling agents;
tag is the calling agent's working label.
"""

import uuid

from crm.extensions import db


class Prospect(db.Model):
    __tablename__ = "prospects"

    # -- Valid statuses for pipeline tracking --
    STATUSES = [
        "available",
        "assigned",
        "converted",
        "dropped",
    ]

    TAGS = ["New", "In Progress", "Qualified", "Rescheduled", "Dropped"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    restaurant_name = db.Column(db.String(255), nullable=False)
    pincode = db.Column(db.String(20), nullable=False, index=True)
    locality = db.Column(db.String(255), nullable=False, default="")
    location = db.Column(db.String(500), nullable=True)  # free-form address
    source = db.Column(db.String(100), nullable=True)
    cuisine_type = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(50), default="available", nullable=False)
    tag = db.Column(db.String(50), nullable=True)
    recall_date = db.Column(db.Date, nullable=True)
    mapped_to = db.Column(db.String(255), nullable=True)  # assignee email
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

    def __repr__(self):
        return f"<Prospect {self.restaurant_name} ({self.status})>"
