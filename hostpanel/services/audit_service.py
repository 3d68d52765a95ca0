"""Audit log helper. Flushes but does NOT commit — the caller commits."""

import logging

from hostpanel.extensions import db
from hostpanel.models.audit import AuditEvent

logger = logging.getLogger(__name__)


def log_action(actor_user_id, action, **metadata):
    """Record one mutating dashboard action, e.g. "site.deployed"."""
    event = AuditEvent(
        actor_user_id=str(actor_user_id) if actor_user_id is not None else None,
        action=action,
        metadata_=metadata,
    )
    db.session.add(event)
    db.session.flush()
    logger.info(f"{action} by user {actor_user_id}: {metadata}")
    return event
