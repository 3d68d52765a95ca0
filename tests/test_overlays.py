"""Tests for optimistic overlays and the pending-deployment outbox.

Covers:
- Overlay reconciliation against the next fetched site list
- Outbox: single claimant, release, replacement, expiry, purge
"""

from datetime import datetime, timedelta, timezone

from hostpanel.extensions import db
from hostpanel.models.pending_deployment import PendingDeployment
from hostpanel.models.site_overlay import SiteOverlay
from hostpanel.services import outbox_service, overlay_service
from hostpanel.services.resources import DeploymentParams, Site

from conftest import make_server


def _sites(*servers):
    return [Site.from_server(s) for s in servers]


class TestOverlays:

    def test_upsizing_shown_until_active(self):
        overlay_service.mark_upsizing("42", "7", "Scale")

        sites = _sites(make_server(id="7", deploy_status="deploying"))
        assert overlay_service.apply_overlays("42", sites) == []
        assert sites[0].display_status == "Upsizing"
        assert SiteOverlay.query.count() == 1

        sites = _sites(make_server(id="7", deploy_status="active"))
        overlay_service.apply_overlays("42", sites)
        assert sites[0].display_status == "active"
        assert SiteOverlay.query.count() == 0

    def test_restoring_warns_on_unexpected_status(self):
        overlay_service.mark_restoring("42", "7", "b1")

        sites = _sites(make_server(id="7", deploy_status="failed"))
        warnings = overlay_service.apply_overlays("42", sites)

        assert len(warnings) == 1
        assert "'failed'" in warnings[0]
        assert SiteOverlay.query.count() == 0

    def test_restoring_quiet_when_restoring(self):
        overlay_service.mark_restoring("42", "7", "b1")
        sites = _sites(make_server(id="7", deploy_status="restoring"))
        assert overlay_service.apply_overlays("42", sites) == []

    def test_backups_drift_warned_until_enabled(self):
        overlay_service.mark_backups("42", "7", False)

        sites = _sites(make_server(id="7", backups_enabled=False))
        warnings = overlay_service.apply_overlays("42", sites)
        assert "contact support" in warnings[0]
        assert sites[0].has_backups is True
        assert overlay_service.apply_overlays("42", _sites(make_server(id="7"))) != []

        overlay_service.apply_overlays("42", _sites(make_server(id="7", backups_enabled=True)))
        assert SiteOverlay.query.count() == 0

    def test_overlay_for_deleted_site_dropped(self):
        overlay_service.mark_upsizing("42", "7")
        overlay_service.apply_overlays("42", [])
        assert SiteOverlay.query.count() == 0

    def test_other_users_untouched(self):
        overlay_service.mark_upsizing("99", "7")
        overlay_service.apply_overlays("42", [])
        assert SiteOverlay.query.filter_by(user_id="99").count() == 1

    def test_mark_twice_keeps_one_row(self):
        overlay_service.mark_upsizing("42", "7", "Performance")
        overlay_service.mark_upsizing("42", "7", "Scale")
        overlay = SiteOverlay.query.one()
        assert overlay.value == {"target": "Scale"}


PARAMS = DeploymentParams("st-1", "shop.com", "standard")


class TestOutbox:

    def test_claim_once(self):
        outbox_service.save_pending("42", PARAMS)

        assert outbox_service.claim("42") == PARAMS
        assert outbox_service.claim("42") is None
        assert outbox_service.get_pending("42").claimed_at is not None

    def test_release_allows_next_claim(self):
        outbox_service.save_pending("42", PARAMS)
        outbox_service.claim("42")

        outbox_service.release("42")

        assert outbox_service.get_pending("42").claimed_at is None
        assert outbox_service.claim("42") == PARAMS

    def test_save_clears_claim(self):
        outbox_service.save_pending("42", PARAMS)
        outbox_service.claim("42")

        outbox_service.save_pending("42", PARAMS)

        assert outbox_service.claim("42") == PARAMS

    def test_save_replaces(self):
        outbox_service.save_pending("42", PARAMS)
        outbox_service.save_pending("42", DeploymentParams("st-2", "b.com", "scale"))

        assert PendingDeployment.query.count() == 1
        assert outbox_service.claim("42").domain == "b.com"

    def test_expired_record_not_deployed(self):
        record = outbox_service.save_pending("42", PARAMS)
        record.created_at = datetime.now(timezone.utc) - timedelta(hours=48)
        db.session.commit()

        assert outbox_service.claim("42", ttl_hours=24) is None
        assert PendingDeployment.query.count() == 0

    def test_purge_stale(self):
        fresh = outbox_service.save_pending("1", PARAMS)
        stale = outbox_service.save_pending("2", PARAMS)
        stale.created_at = datetime.now(timezone.utc) - timedelta(hours=48)
        db.session.commit()

        assert outbox_service.purge_stale(ttl_hours=24, dry_run=True) == 1
        assert PendingDeployment.query.count() == 2

        assert outbox_service.purge_stale(ttl_hours=24) == 1
        assert [r.user_id for r in PendingDeployment.query.all()] == [fresh.user_id]

    def test_discard(self):
        outbox_service.save_pending("42", PARAMS)
        assert outbox_service.discard("42") is True
        assert outbox_service.discard("42") is False
