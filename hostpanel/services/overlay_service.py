"""Optimistic site overlays and their reconciliation.

After a mutating call succeeds the dashboard shows what it expects the
backend to report soon (a resize in flight, a restore started, backups
paid for). Those guesses are stored as SiteOverlay rows and applied to the
next site list fetched from the backend. Where the fetch disagrees with the
guess in a way that will not fix itself, a warning is returned for display.

Functions flush but do NOT commit — the caller commits.
"""

import logging

from hostpanel.extensions import db
from hostpanel.models.site_overlay import SiteOverlay

logger = logging.getLogger(__name__)


def _upsert(user_id, site_id, kind, value=None):
    overlay = SiteOverlay.query.filter_by(
        user_id=str(user_id), site_id=str(site_id), kind=kind
    ).first()
    if overlay is None:
        overlay = SiteOverlay(user_id=str(user_id), site_id=str(site_id), kind=kind)
        db.session.add(overlay)
    overlay.value = value or {}
    db.session.flush()
    return overlay


def mark_upsizing(user_id, site_id, target_type=None):
    return _upsert(user_id, site_id, "upsizing", {"target": target_type})


def mark_restoring(user_id, site_id, backup_id=None):
    return _upsert(user_id, site_id, "restoring", {"backup_id": backup_id})


def mark_backups(user_id, site_id, backups_enabled):
    return _upsert(
        user_id, site_id, "backups", {"backups_enabled": bool(backups_enabled)}
    )


def clear(user_id, site_id=None, kind=None):
    query = SiteOverlay.query.filter_by(user_id=str(user_id))
    if site_id is not None:
        query = query.filter_by(site_id=str(site_id))
    if kind is not None:
        query = query.filter_by(kind=kind)
    count = query.delete()
    db.session.flush()
    return count


def apply_overlays(user_id, sites):
    """Apply pending overlays to freshly fetched sites. Returns warnings.

    - upsizing: site shows "Upsizing" until the backend reports active
    - restoring: one-shot; warns if the server is neither restoring nor active
    - backups: kept, and warned about, until backups_enabled is true
    Overlays whose site no longer exists are dropped.
    """
    overlays = SiteOverlay.query.filter_by(user_id=str(user_id)).all()
    if not overlays:
        return []

    by_id = {s.id: s for s in sites}
    warnings = []

    for overlay in overlays:
        site = by_id.get(overlay.site_id)
        if site is None:
            db.session.delete(overlay)
            continue

        if overlay.kind == "upsizing":
            if site.deploy_status == "active":
                db.session.delete(overlay)
            else:
                site.upsizing = True

        elif overlay.kind == "restoring":
            if site.deploy_status not in ("restoring", "active"):
                warnings.append(
                    f"Restore of {site.name} may not have completed: "
                    f"the server now reports '{site.deploy_status}'."
                )
            db.session.delete(overlay)

        elif overlay.kind == "backups":
            if site.backups_enabled:
                db.session.delete(overlay)
            else:
                site.has_backups = True
                warnings.append(
                    f"The backup add-on for {site.name} is active but backups "
                    f"are not enabled on the server. Please contact support."
                )

        else:
            logger.warning(f"Unknown overlay kind {overlay.kind!r}, dropping")
            db.session.delete(overlay)

    db.session.flush()
    return warnings
