"""Activity log model.

One row per pipeline interaction or status change (calls, visits, drops,
re-visits, signatures). Typed facts that used to live only inside remark
text (re-visit date, drop reason, follow-up date) are kept in metadata.
"""

import uuid

from crm.extensions import db


class ActivityLog(db.Model):
    __tablename__ = "activity_logs"

    ENTITY_TYPES = ["prospect", "lead", "sample_order", "agreement"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    entity_type = db.Column(db.String(50), nullable=False)
    entity_id = db.Column(db.String(36), nullable=False, index=True)
    action = db.Column(db.String(255), nullable=False)  # e.g. "lead.call_logged"
    user_email = db.Column(db.String(255), nullable=True)
    user_role = db.Column(db.String(50), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    before_state = db.Column(db.String(50), nullable=True)
    after_state = db.Column(db.String(50), nullable=True)
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # named metadata_ to avoid the declarative attribute clash
    timestamp = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<ActivityLog {self.action} on {self.entity_type}:{self.entity_id}>"
