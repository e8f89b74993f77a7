"""Agreement model.

Commercial terms sent after a delivered sample passes quality feedback.
status == "signed" is a converted customer.
"""

import uuid

from crm.extensions import db


class Agreement(db.Model):
    __tablename__ = "agreements"

    STATUSES = [
        "pending_feedback",
        "quality_failed",
        "agreement_sent",
        "signed",
        "revisit_needed",
        "lost",
    ]

    ESIGN_STATUSES = ["not_sent", "sent", "signed", "expired"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    sample_order_id = db.Column(
        db.String(36),
        db.ForeignKey("sample_orders.id"),
        nullable=False,
        index=True,
    )
    status = db.Column(db.String(50), default="pending_feedback", nullable=False)
    esign_status = db.Column(db.String(50), default="not_sent", nullable=True)
    quality_feedback = db.Column(db.Boolean, nullable=True)
    quality_remarks = db.Column(db.Text, nullable=True)
    pricing_type = db.Column(db.String(50), nullable=True)
    agreed_price_per_kg = db.Column(db.Float, nullable=True)
    payment_type = db.Column(db.String(50), nullable=True)  # advance | credit
    credit_days = db.Column(db.Integer, nullable=True)
    expected_weekly_volume_kg = db.Column(db.Float, nullable=True)
    expected_first_order_date = db.Column(db.Date, nullable=True)
    delivery_slot = db.Column(db.String(100), nullable=True)
    distribution_partner = db.Column(db.String(255), nullable=True)
    mail_id = db.Column(db.String(255), nullable=True)
    remarks = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    sample_order = db.relationship("SampleOrder", foreign_keys=[sample_order_id])

    def __repr__(self):
        return f"<Agreement {self.id[:8]} ({self.status})>"
