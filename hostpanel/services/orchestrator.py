"""Deployment orchestrator — from "new site" click to deploy call.

Flow:
    IDLE -> AWAITING_DOMAIN_INPUT -> CHECKING_ELIGIBILITY
         -> DEPLOYING                           (capacity on hand)
         -> AWAITING_SUBSCRIPTION_CHOICE -> DEPLOYING
         -> AWAITING_PAYMENT_METHOD_CHOICE -> DEPLOYING   (saved card)
                                           -> IDLE        (hosted checkout)
    DEPLOYING -> IDLE on success

Any failure lands in AWAITING_DOMAIN_INPUT with the server type and domain
kept, so the user can retry without typing them again.

The workflow is an immutable DeployWorkflow kept in the Flask session and
only ever changed through transition(). The one piece of state that must
survive the trip to hosted checkout lives in the outbox table instead
(see outbox_service).
"""

import enum
import logging
import time
from dataclasses import dataclass, replace
from typing import Optional

from hostpanel.services import audit_service, outbox_service
from hostpanel.services.api_client import AuthenticationError, BackendError
from hostpanel.services.eligibility import Eligibility, classify
from hostpanel.services.errors import InvalidTransition, WorkflowError
from hostpanel.services.payment_gate import PaymentGate
from hostpanel.services.resources import DeploymentParams, fetch_license_counts

logger = logging.getLogger(__name__)

SESSION_KEY = "deploy_workflow"


class DeployState(enum.Enum):
    IDLE = "idle"
    AWAITING_DOMAIN_INPUT = "awaiting_domain_input"
    CHECKING_ELIGIBILITY = "checking_eligibility"
    AWAITING_SUBSCRIPTION_CHOICE = "awaiting_subscription_choice"
    AWAITING_PAYMENT_METHOD_CHOICE = "awaiting_payment_method_choice"
    DEPLOYING = "deploying"


_ALL = frozenset(DeployState)

# event -> (states it may fire from, resulting state)
VALID_TRANSITIONS = {
    "select_type": (
        {DeployState.IDLE, DeployState.AWAITING_DOMAIN_INPUT},
        DeployState.AWAITING_DOMAIN_INPUT,
    ),
    "submit": (
        {DeployState.AWAITING_DOMAIN_INPUT},
        DeployState.CHECKING_ELIGIBILITY,
    ),
    "deploy": (
        {DeployState.CHECKING_ELIGIBILITY},
        DeployState.DEPLOYING,
    ),
    "need_subscription_choice": (
        {DeployState.CHECKING_ELIGIBILITY},
        DeployState.AWAITING_SUBSCRIPTION_CHOICE,
    ),
    "need_payment": (
        {DeployState.CHECKING_ELIGIBILITY},
        DeployState.AWAITING_PAYMENT_METHOD_CHOICE,
    ),
    "choose_subscription": (
        {DeployState.AWAITING_SUBSCRIPTION_CHOICE},
        DeployState.DEPLOYING,
    ),
    "pay": (
        {DeployState.AWAITING_PAYMENT_METHOD_CHOICE},
        DeployState.DEPLOYING,
    ),
    "checkout": (
        {DeployState.AWAITING_PAYMENT_METHOD_CHOICE},
        DeployState.IDLE,
    ),
    "resume": (_ALL, DeployState.DEPLOYING),
    "deployed": ({DeployState.DEPLOYING}, DeployState.IDLE),
    "fail": (_ALL - {DeployState.IDLE}, DeployState.AWAITING_DOMAIN_INPUT),
    "cancel": (_ALL, DeployState.IDLE),
}


@dataclass(frozen=True)
class DeployWorkflow:
    state: DeployState = DeployState.IDLE
    server_type_id: Optional[str] = None
    domain: Optional[str] = None
    plan_type: Optional[str] = None
    candidates: tuple = ()
    subscription_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def candidate_ids(self):
        return [c["stripe_subscription_id"] for c in self.candidates]

    def params(self):
        return DeploymentParams(
            server_type_id=self.server_type_id,
            domain=self.domain,
            plan_type=self.plan_type,
            subscription_id=self.subscription_id,
        )

    def to_dict(self):
        return {
            "state": self.state.value,
            "server_type_id": self.server_type_id,
            "domain": self.domain,
            "plan_type": self.plan_type,
            "candidates": list(self.candidates),
            "subscription_id": self.subscription_id,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data):
        if not data:
            return cls()
        return cls(
            state=DeployState(data.get("state", DeployState.IDLE.value)),
            server_type_id=data.get("server_type_id"),
            domain=data.get("domain"),
            plan_type=data.get("plan_type"),
            candidates=tuple(data.get("candidates") or ()),
            subscription_id=data.get("subscription_id"),
            error=data.get("error"),
        )


def transition(workflow, event, **changes):
    """Return the workflow after `event`. The only way a workflow changes.

    Raises:
        InvalidTransition: If `event` cannot fire in the current state.
    """
    if event not in VALID_TRANSITIONS:
        raise InvalidTransition(f"Unknown event '{event}'.")

    allowed, target = VALID_TRANSITIONS[event]
    if workflow.state not in allowed:
        raise InvalidTransition(
            f"Cannot {event.replace('_', ' ')} while {workflow.state.value.replace('_', ' ')}."
        )

    if target is DeployState.IDLE:
        return DeployWorkflow()

    if event == "fail":
        return DeployWorkflow(
            state=target,
            server_type_id=workflow.server_type_id,
            domain=workflow.domain,
            error=changes.get("error"),
        )

    return replace(workflow, state=target, error=None, **changes)


def default_domain():
    return f"site-{int(time.time() * 1000)}.com"


@dataclass
class DeployOutcome:
    status: str  # deployed | choose_subscription | payment_required
    workflow: DeployWorkflow
    site: Optional[dict] = None
    queued: bool = False
    payment_options: Optional[object] = None
    license_counts: Optional[dict] = None

    def to_dict(self):
        data = {
            "status": self.status,
            "workflow": self.workflow.to_dict(),
        }
        if self.status == "deployed":
            data["site"] = self.site
            data["queued"] = self.queued
            data["refetch"] = True
        if self.status == "choose_subscription":
            data["candidates"] = list(self.workflow.candidates)
        if self.payment_options is not None:
            data["paymentOptions"] = self.payment_options.to_dict()
        if self.license_counts is not None:
            data["licenseCounts"] = dict(self.license_counts)
        return data


class DeploymentOrchestrator:
    """Drives one user's deploy workflow.

    Args:
        client: BackendClient.
        token: The user's bearer token, passed to every backend call.
        user_id: Backend user id (outbox and audit owner).
        store: Mutable mapping holding the workflow, normally flask.session.
    """

    def __init__(self, client, token, user_id, store):
        self.client = client
        self.token = token
        self.user_id = str(user_id)
        self.store = store
        self.gate = PaymentGate(client, token, self.user_id)

    @property
    def workflow(self):
        return DeployWorkflow.from_dict(self.store.get(SESSION_KEY))

    def _save(self, workflow):
        self.store[SESSION_KEY] = workflow.to_dict()
        return workflow

    def _fail(self, workflow, message, cause=None):
        self._save(transition(workflow, "fail", error=message))
        logger.warning(f"Deploy workflow failed for user {self.user_id}: {message}")
        if isinstance(cause, AuthenticationError):
            raise cause
        status = getattr(cause, "status_code", None)
        if status is None or not 400 <= status < 500:
            status = 502 if cause is not None else 400
        raise WorkflowError(message, status) from cause

    # ──────────────────────────────────────────────
    # Entry
    # ──────────────────────────────────────────────

    def select_server_type(self, server_type_id):
        wf = transition(self.workflow, "select_type", server_type_id=str(server_type_id))
        return self._save(wf)

    def submit(self, domain, snapshot):
        """Classify the request against the snapshot and dispatch.

        No network call is made for the decision itself.
        """
        wf = self.workflow
        domain = (domain or "").strip() or default_domain()
        wf = transition(wf, "submit", domain=domain)

        server_type = snapshot.server_type_by_id(wf.server_type_id)
        if server_type is None:
            self._fail(wf, "Failed to create site: Unknown server type")

        plan_type = server_type.plan_type
        result = classify(
            plan_type,
            snapshot.sites,
            snapshot.subscriptions,
            snapshot.license_counts,
            snapshot.server_types,
        )
        logger.info(f"Eligibility for {plan_type} (user {self.user_id}): {result.kind.value}")

        if result.kind is Eligibility.SINGLE_SUBSCRIPTION:
            wf = transition(
                wf, "deploy",
                plan_type=plan_type,
                subscription_id=result.subscription.stripe_subscription_id,
            )
            return self._deploy(wf, "Failed to create site")

        if result.kind is Eligibility.HAS_CAPACITY:
            wf = transition(wf, "deploy", plan_type=plan_type)
            return self._deploy(wf, "Failed to create site")

        if result.kind is Eligibility.MULTIPLE_SUBSCRIPTIONS:
            wf = transition(
                wf, "need_subscription_choice",
                plan_type=plan_type,
                candidates=tuple(s.to_dict() for s in result.subscriptions),
            )
            return DeployOutcome("choose_subscription", self._save(wf))

        wf = self._save(transition(wf, "need_payment", plan_type=plan_type))
        return DeployOutcome(
            "payment_required", wf, payment_options=self.gate.options()
        )

    # ──────────────────────────────────────────────
    # Modal decisions
    # ──────────────────────────────────────────────

    def choose_subscription(self, subscription_id):
        wf = self.workflow
        if (wf.state is DeployState.AWAITING_SUBSCRIPTION_CHOICE
                and subscription_id not in wf.candidate_ids):
            raise WorkflowError("Please select one of the listed subscriptions.")
        wf = transition(wf, "choose_subscription", subscription_id=subscription_id)
        return self._deploy(wf, "Failed to create site")

    def pay_with_card(self, payment_method_id):
        """Buy the license with a saved card, then deploy."""
        wf = transition(self.workflow, "pay")
        self._save(wf)
        try:
            self.gate.purchase_license(wf.plan_type, payment_method_id)
        except (BackendError, WorkflowError) as e:
            message = getattr(e, "message", str(e))
            self._fail(wf, f"Failed to create subscription: {message}", e)

        audit_service.log_action(
            self.user_id, "license.purchased",
            plan_type=wf.plan_type, payment_method_id=payment_method_id,
        )
        # returned with the outcome so the client shows the new license
        counts = fetch_license_counts(self.client, self.token)
        return self._deploy(wf, "Failed to create site", license_counts=counts)

    def start_checkout(self, success_url, cancel_url):
        """Save the outbox record, then ask the backend for a checkout URL.

        The record is written first so that a user returning from checkout
        always finds it. If no URL can be obtained the record is dropped.
        """
        wf = self.workflow
        if wf.state is not DeployState.AWAITING_PAYMENT_METHOD_CHOICE:
            raise InvalidTransition(
                f"Cannot start checkout while {wf.state.value.replace('_', ' ')}."
            )

        outbox_service.save_pending(self.user_id, wf.params())
        try:
            url = self.gate.start_license_checkout(wf.plan_type, success_url, cancel_url)
        except (BackendError, WorkflowError) as e:
            outbox_service.discard(self.user_id)
            message = getattr(e, "message", str(e))
            self._fail(wf, f"Failed to start checkout: {message}", e)

        self._save(transition(wf, "checkout"))
        return url

    def resume_after_checkout(self):
        """Deploy what was saved before checkout. None if nothing is pending.

        The outbox row is claimed, not deleted, until the deploy succeeds.
        Any failure releases the claim so the next return from checkout
        can try again.
        """
        params = outbox_service.claim(self.user_id)
        if params is None:
            return None

        try:
            counts = fetch_license_counts(self.client, self.token)
            wf = transition(
                self.workflow, "resume",
                server_type_id=params.server_type_id,
                domain=params.domain,
                plan_type=params.plan_type,
                candidates=(),
                subscription_id=params.subscription_id,
            )
            return self._deploy(
                wf, "Failed to deploy site after payment", license_counts=counts
            )
        except (BackendError, WorkflowError):
            outbox_service.release(self.user_id)
            raise

    def discard_checkout(self):
        outbox_service.discard(self.user_id)
        return self.cancel()

    def cancel(self):
        return self._save(transition(self.workflow, "cancel"))

    # ──────────────────────────────────────────────
    # Deploy
    # ──────────────────────────────────────────────

    def _deploy(self, wf, failure_prefix, license_counts=None):
        self._save(wf)
        try:
            data, status_code = self.client.deploy_with_agent(
                self.token,
                name=wf.domain,
                domain=wf.domain,
                server_type_id=wf.server_type_id,
                subscription_id=wf.subscription_id,
            )
        except BackendError as e:
            self._fail(wf, f"{failure_prefix}: {e.message}", e)

        audit_service.log_action(
            self.user_id, "site.deployed",
            domain=wf.domain, server_type_id=wf.server_type_id,
            subscription_id=wf.subscription_id, status_code=status_code,
        )
        # commits the audit row along with the outbox delete
        outbox_service.discard(self.user_id)

        done = self._save(transition(wf, "deployed"))
        logger.info(f"Deployed {wf.domain} for user {self.user_id} ({status_code})")
        return DeployOutcome(
            "deployed", done,
            site=data.get("site") if isinstance(data, dict) else None,
            queued=status_code == 202,
            license_counts=license_counts,
        )
