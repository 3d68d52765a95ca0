"""Upsize workflow — resize a site's server, upgrading its plan if needed.

States: IDLE -> MODAL_OPEN -> TYPE_SELECTED -> CONFIRMATION_PENDING
        -> UPSIZING -> IDLE

Server types are ranked Standard < Performance < Scale. Picking a lower
rank is rejected before anything is shown or sent; storage cannot shrink.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from hostpanel.services import audit_service, overlay_service
from hostpanel.services.api_client import AuthenticationError, BackendError
from hostpanel.services.errors import InvalidTransition, UpsizeRejected, WorkflowError
from hostpanel.services.payment_gate import format_amount

logger = logging.getLogger(__name__)

SESSION_KEY = "upsize_workflow"

SERVER_TYPE_RANKING = ("Standard", "Performance", "Scale")

DOWNTIME_WARNING = (
    "Upsizing restarts the server. Expect a few minutes of downtime "
    "while it is resized."
)
BACKUP_NOTICE = (
    "This site has the backup add-on; it will be upgraded to the new "
    "plan along with the server."
)


class UpsizeState(enum.Enum):
    IDLE = "idle"
    MODAL_OPEN = "modal_open"
    TYPE_SELECTED = "type_selected"
    CONFIRMATION_PENDING = "confirmation_pending"
    UPSIZING = "upsizing"


VALID_TRANSITIONS = {
    UpsizeState.IDLE: [UpsizeState.MODAL_OPEN],
    UpsizeState.MODAL_OPEN: [UpsizeState.TYPE_SELECTED, UpsizeState.IDLE],
    UpsizeState.TYPE_SELECTED: [UpsizeState.CONFIRMATION_PENDING, UpsizeState.IDLE],
    UpsizeState.CONFIRMATION_PENDING: [
        UpsizeState.UPSIZING, UpsizeState.TYPE_SELECTED, UpsizeState.IDLE,
    ],
    UpsizeState.UPSIZING: [UpsizeState.IDLE, UpsizeState.MODAL_OPEN],
}


def rank(server_type_name):
    """Position in SERVER_TYPE_RANKING, -1 for anything else."""
    try:
        return SERVER_TYPE_RANKING.index(server_type_name)
    except ValueError:
        return -1


def is_downgrade(current, target):
    return rank(target) < rank(current)


def current_plan(site):
    if site.is_local_business_site:
        return site.plan_type
    return (site.server_type or "").lower()


def charge_message(amount):
    try:
        charged = amount is not None and float(amount) > 0
    except (TypeError, ValueError):
        charged = False
    if charged:
        return f" You were charged ${format_amount(amount)} for the upgrade."
    return " The upgrade was processed at no additional cost."


@dataclass(frozen=True)
class UpsizeConfirmation:
    site_id: str
    current_type: Optional[str]
    target_type: str
    current_plan: Optional[str]
    new_plan: str
    downtime_warning: str = DOWNTIME_WARNING
    backup_notice: Optional[str] = None

    @property
    def plan_changes(self):
        return self.current_plan != self.new_plan

    @property
    def consent_text(self):
        if not self.plan_changes:
            return None
        return (
            f"This will upgrade your subscription from {self.current_plan} "
            f"to {self.new_plan}. Your billing will be prorated automatically. "
            f"Continue?"
        )

    def to_dict(self):
        return {
            "siteId": self.site_id,
            "currentType": self.current_type,
            "targetType": self.target_type,
            "currentPlan": self.current_plan,
            "newPlan": self.new_plan,
            "planChanges": self.plan_changes,
            "downtimeWarning": self.downtime_warning,
            "consentText": self.consent_text,
            "backupNotice": self.backup_notice,
        }


@dataclass
class UpsizeResult:
    status: str  # upsized | cancelled
    message: Optional[str] = None
    charged_amount: Optional[float] = None
    subscription_upgraded: bool = False

    def to_dict(self):
        return {
            "status": self.status,
            "message": self.message,
            "chargedAmount": self.charged_amount,
            "subscriptionUpgraded": self.subscription_upgraded,
            "refetch": self.status == "upsized",
        }


class UpsizeWorkflow:

    def __init__(self, client, token, user_id, store):
        self.client = client
        self.token = token
        self.user_id = str(user_id)
        self.store = store

    # ──────────────────────────────────────────────
    # State
    # ──────────────────────────────────────────────

    @property
    def data(self):
        return dict(self.store.get(SESSION_KEY) or {"state": UpsizeState.IDLE.value})

    @property
    def state(self):
        return UpsizeState(self.data["state"])

    def _move(self, new_state, **fields):
        old_state = self.state
        if new_state not in VALID_TRANSITIONS[old_state]:
            raise InvalidTransition(
                f"Cannot go from '{old_state.value}' to '{new_state.value}'."
            )
        if new_state is UpsizeState.IDLE:
            data = {"state": new_state.value}
        else:
            data = self.data
            data.update(fields, state=new_state.value)
        self.store[SESSION_KEY] = data
        return new_state

    def _require_site(self, site):
        if self.state is UpsizeState.IDLE:
            raise InvalidTransition("No upsize in progress.")
        if self.data.get("site_id") != site.id:
            raise InvalidTransition("Upsize was started for a different site.")

    # ──────────────────────────────────────────────
    # Steps
    # ──────────────────────────────────────────────

    def open(self, site):
        if self.state is not UpsizeState.IDLE:
            self.cancel()
        self._move(UpsizeState.MODAL_OPEN, site_id=site.id, target=None)
        return self.state

    def select_type(self, site, server_types, target_name):
        """Pick the target type. Returns an UpsizeConfirmation, or None when
        the current type was picked (the workflow just closes).

        Raises:
            UpsizeRejected: If the target ranks below the current type.
        """
        self._require_site(site)
        if is_downgrade(site.server_type, target_name):
            raise UpsizeRejected(
                f"Cannot downgrade from {site.server_type} to {target_name}."
            )
        if target_name == site.server_type:
            self.cancel()
            return None

        target = next((st for st in server_types if st.name == target_name), None)
        if target is None:
            raise WorkflowError(f"Unknown server type '{target_name}'.")

        self._move(UpsizeState.TYPE_SELECTED, target=target_name)
        self._move(UpsizeState.CONFIRMATION_PENDING)

        return UpsizeConfirmation(
            site_id=site.id,
            current_type=site.server_type,
            target_type=target_name,
            current_plan=current_plan(site),
            new_plan=target_name.lower(),
            backup_notice=BACKUP_NOTICE if site.backups_enabled else None,
        )

    def confirm(self, site, server_types, approve_plan_change=False):
        """Send the resize (or plan upgrade for local-business sites).

        When the plan changes and the user has not consented, the workflow
        is cancelled and nothing is sent.
        """
        self._require_site(site)
        if self.state is not UpsizeState.CONFIRMATION_PENDING:
            raise InvalidTransition("Nothing to confirm.")

        target_name = self.data["target"]
        target = next((st for st in server_types if st.name == target_name), None)
        if target is None:
            self.cancel()
            raise WorkflowError(f"Unknown server type '{target_name}'.")

        old_plan = current_plan(site)
        new_plan = target_name.lower()
        if old_plan != new_plan and not approve_plan_change:
            self.cancel()
            return UpsizeResult("cancelled")

        self._move(UpsizeState.UPSIZING)
        try:
            if site.is_local_business_site:
                result = self._upgrade_subscription(site, old_plan, new_plan)
            else:
                result = self._upsize_server(site, target, new_plan)
            audit_service.log_action(
                self.user_id, "site.upsized",
                site_id=site.id, from_type=site.server_type, to_type=target_name,
                charged_amount=result.charged_amount,
            )
            self._move(UpsizeState.IDLE)
        except BackendError as e:
            if isinstance(e, AuthenticationError):
                raise
            if "subscription" in e.message:
                message = (
                    f"Failed to upgrade: {e.message}. "
                    f"Please contact support if this issue persists."
                )
            else:
                message = f"Failed to upsize: {e.message}"
            logger.warning(f"Upsize of site {site.id} failed: {e.message}")
            status = e.status_code if e.status_code and e.status_code < 500 else 502
            raise WorkflowError(message, status) from e
        finally:
            # whatever failed, the modal must be usable again
            if self.state is UpsizeState.UPSIZING:
                self._move(UpsizeState.MODAL_OPEN, target=None)
        return result

    def cancel(self):
        if self.state is UpsizeState.IDLE:
            return self.state
        if self.state is UpsizeState.UPSIZING:
            raise InvalidTransition("An upsize is already in progress.")
        return self._move(UpsizeState.IDLE)

    # ──────────────────────────────────────────────
    # Backend calls
    # ──────────────────────────────────────────────

    def _upgrade_subscription(self, site, old_plan, new_plan):
        data = self.client.upgrade_subscription(
            self.token, site.stripe_subscription_id, new_plan
        )
        if not isinstance(data, dict):
            data = {}
        amount = data.get("chargedAmount")
        return UpsizeResult(
            "upsized",
            message=(
                f"Subscription successfully upgraded from {old_plan} to "
                f"{new_plan}!{charge_message(amount)}"
            ),
            charged_amount=amount,
            subscription_upgraded=True,
        )

    def _upsize_server(self, site, target, new_plan):
        data = self.client.upsize_server(
            self.token, site.server_id or site.id, target.id
        )
        if not isinstance(data, dict):
            data = {}
        # shown as "Upsizing" until a fetch reports the server active again
        overlay_service.mark_upsizing(self.user_id, site.id, target.name)
        site.upsizing = True

        amount = data.get("chargedAmount")
        if data.get("subscriptionUpgraded"):
            message = (
                f"Server successfully upgraded! Your subscription has been "
                f"updated to {new_plan}{charge_message(amount)}"
            )
        else:
            message = f"Server successfully upgraded to {target.name}!"
        return UpsizeResult(
            "upsized",
            message=message,
            charged_amount=amount,
            subscription_upgraded=bool(data.get("subscriptionUpgraded")),
        )
