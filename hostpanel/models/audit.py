"""Audit event model.

Logs every mutating dashboard action (deploy, upsize, backup changes,
restore, delete) with the backend user who triggered it.
"""

import uuid

from hostpanel.extensions import db


class AuditEvent(db.Model):
    __tablename__ = "audit_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    actor_user_id = db.Column(db.String(64), nullable=True)  # backend user id
    action = db.Column(db.String(255), nullable=False)  # e.g. "site.deployed"
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # extra context, named metadata_ to avoid Python builtin clash
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<AuditEvent {self.action}>"
