"""User model.

Stores authentication credentials, profile info and the pipeline role.
Flask-Login integration via UserMixin.
"""

import uuid

from flask_login import UserMixin

from crm.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    # -- Pipeline roles (app_role) --
    ROLES = ["calling_agent", "lead_taker", "kam", "admin"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(255))
    role = db.Column(db.String(50), default="calling_agent", nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_admin(self):
        return self.role == "admin"

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"
