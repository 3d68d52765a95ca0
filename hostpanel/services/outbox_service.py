"""Pending-deployment outbox.

The deployment a user asked for is written here before they leave for the
hosted checkout page, and claimed when they come back. A claim is a
conditional update of `claimed_at` whose row count decides the winner: only
the request that actually claimed the row gets the parameters back, so a
reload or a second tab can never deploy twice. The row is deleted once the
deploy succeeds and released when it fails.

Unlike the other helpers, these functions commit.
"""

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app

from hostpanel.extensions import db
from hostpanel.models.pending_deployment import PendingDeployment
from hostpanel.services.resources import DeploymentParams

logger = logging.getLogger(__name__)


def _ttl_hours(ttl_hours):
    if ttl_hours is not None:
        return ttl_hours
    return current_app.config.get("PENDING_DEPLOYMENT_TTL_HOURS", 24)


def _is_expired(record, ttl_hours, now=None):
    if record.created_at is None:
        return False
    created = record.created_at
    if created.tzinfo is None:
        # SQLite hands back naive UTC timestamps
        created = created.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return now - created > timedelta(hours=ttl_hours)


def save_pending(user_id, params):
    """Write (or replace) the user's pending deployment. Commits."""
    PendingDeployment.query.filter_by(user_id=str(user_id)).delete()
    record = PendingDeployment(
        user_id=str(user_id),
        server_type_id=params.server_type_id,
        domain=params.domain,
        plan_type=params.plan_type,
        subscription_id=params.subscription_id,
    )
    db.session.add(record)
    db.session.commit()
    logger.info(f"Saved pending deployment {params.domain} for user {user_id}")
    return record


def get_pending(user_id):
    return PendingDeployment.query.filter_by(user_id=str(user_id)).first()


def claim(user_id, ttl_hours=None):
    """Take the user's pending deployment for one deploy attempt.

    Returns DeploymentParams, or None when there is nothing to resume
    (never written, claimed by another request, or older than the TTL).
    The row stays until discard() after a successful deploy, or goes back
    to unclaimed through release() when the attempt fails.
    """
    record = get_pending(user_id)
    if record is None:
        return None

    params = DeploymentParams.from_dict(record.to_params())
    if _is_expired(record, _ttl_hours(ttl_hours)):
        PendingDeployment.query.filter_by(id=record.id).delete()
        db.session.commit()
        logger.warning(
            f"Discarded expired pending deployment {params.domain} for user {user_id}"
        )
        return None

    claimed = PendingDeployment.query.filter_by(id=record.id, claimed_at=None).update(
        {"claimed_at": datetime.now(timezone.utc)}, synchronize_session=False
    )
    db.session.commit()

    if claimed != 1:
        logger.info(f"Pending deployment for user {user_id} already claimed")
        return None
    return params


def release(user_id):
    """Make a claimed pending deployment available again."""
    PendingDeployment.query.filter_by(user_id=str(user_id)).update(
        {"claimed_at": None}, synchronize_session=False
    )
    db.session.commit()
    logger.info(f"Released pending deployment for user {user_id}")


def discard(user_id):
    """Drop the user's pending deployment if any. Returns True if one existed."""
    deleted = PendingDeployment.query.filter_by(user_id=str(user_id)).delete()
    db.session.commit()
    return deleted > 0


def purge_stale(ttl_hours=None, dry_run=False):
    """Delete pending deployments older than the TTL. Returns how many."""
    ttl = _ttl_hours(ttl_hours)
    now = datetime.now(timezone.utc)
    stale = [r for r in PendingDeployment.query.all() if _is_expired(r, ttl, now)]

    if dry_run:
        return len(stale)

    for record in stale:
        db.session.delete(record)
    db.session.commit()
    return len(stale)
