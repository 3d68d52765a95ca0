"""Site overlay model.

An optimistic guess about a site that the backend has not confirmed yet.
Written right after a mutating call succeeds, applied to the next site list
fetched from the backend, then reconciled against it (see
overlay_service.apply_overlays).

Kinds:
    upsizing   — resize in flight; shown as "Upsizing" until the backend
                 reports deploy_status == "active"
    restoring  — restore started; replaced by whatever the next fetch says
    backups    — backup add-on was paid for; value["backups_enabled"] holds
                 whether the toggle call also succeeded
"""

import uuid

from hostpanel.extensions import db


class SiteOverlay(db.Model):
    __tablename__ = "site_overlays"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(db.String(64), nullable=False, index=True)
    site_id = db.Column(db.String(64), nullable=False)
    kind = db.Column(db.String(20), nullable=False)  # upsizing | restoring | backups
    value = db.Column(db.JSON, default=dict)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    __table_args__ = (
        db.UniqueConstraint("user_id", "site_id", "kind", name="uq_site_overlay"),
    )

    def __repr__(self):
        return f"<SiteOverlay {self.kind} site={self.site_id}>"
