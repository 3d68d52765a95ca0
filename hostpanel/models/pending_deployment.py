"""Pending deployment model (checkout outbox).

Before the user is sent to the hosted Stripe checkout page, the deployment
they asked for is written here. When they come back with
?success=true&deploy=true the row is claimed (claimed_at set) for one
deploy attempt and deleted when that deploy succeeds. A second claim while
the first is in flight finds nothing and does nothing.

One row per user; writing again replaces the previous intent.
"""

import uuid

from hostpanel.extensions import db


class PendingDeployment(db.Model):
    __tablename__ = "pending_deployments"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(64), unique=True, nullable=False
    )  # backend user id
    server_type_id = db.Column(db.String(64), nullable=False)
    domain = db.Column(db.String(255), nullable=False)
    plan_type = db.Column(db.String(50), nullable=False)  # standard | performance | ...
    subscription_id = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    claimed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_params(self):
        return {
            "serverTypeId": self.server_type_id,
            "domain": self.domain,
            "planType": self.plan_type,
            "subscriptionId": self.subscription_id,
        }

    def __repr__(self):
        return f"<PendingDeployment {self.domain} ({self.plan_type})>"
