"""Eligibility evaluator — can this user deploy another site of a plan?

Pure function over data already fetched for the dashboard. No network
access. When more than one subscription has spare capacity the result is
always MULTIPLE_SUBSCRIPTIONS; the user must choose which one is billed.
"""

import enum
from dataclasses import dataclass


class Eligibility(enum.Enum):
    NO_LICENSE = "no_license"
    HAS_CAPACITY = "has_capacity"
    MULTIPLE_SUBSCRIPTIONS = "multiple_subscriptions"
    SINGLE_SUBSCRIPTION = "single_subscription"


@dataclass(frozen=True)
class EligibilityResult:
    kind: Eligibility
    count: int = 0
    subscriptions: tuple = ()

    @property
    def subscription(self):
        if self.kind is Eligibility.SINGLE_SUBSCRIPTION:
            return self.subscriptions[0]
        return None


def count_sites_for_plan(plan_type, sites):
    """Sites counted against a plan's licenses.

    Server sites count by server type name, local-business sites by their
    plan type. Compared case-insensitively.
    """
    plan = plan_type.lower()
    return sum(1 for s in sites if s.plan_key == plan)


def sites_on_subscription(subscription, sites):
    if not subscription.stripe_subscription_id:
        return 0
    return sum(
        1 for s in sites
        if s.stripe_subscription_id == subscription.stripe_subscription_id
    )


def max_sites_for_plan(plan_type, server_types):
    if server_types is None:
        return 1
    for st in server_types:
        if st.name.lower() == plan_type:
            return st.max_sites
    return 0


def classify(plan_type, sites, subscriptions, license_counts, server_types=None):
    """Classify a requested deployment of `plan_type`.

    `license_counts` maps lower-cased plan type to purchased licenses.
    `server_types` supplies per-subscription capacity (max_sites); when
    omitted every subscription holds one site.
    """
    plan = plan_type.lower()
    existing = count_sites_for_plan(plan, sites)
    licenses = license_counts.get(plan, 0)

    if licenses == 0 or existing >= licenses:
        return EligibilityResult(Eligibility.NO_LICENSE)

    matching = [
        sub for sub in subscriptions
        if sub.plan_type == plan and sub.is_active
    ]
    if not matching:
        # licenses left but no subscription to attach to: deploy directly
        return EligibilityResult(Eligibility.HAS_CAPACITY, count=licenses - existing)

    capacity = max_sites_for_plan(plan, server_types)
    available = tuple(
        sub for sub in matching
        if sites_on_subscription(sub, sites) < capacity
    )

    if not available:
        return EligibilityResult(Eligibility.NO_LICENSE)
    if len(available) == 1:
        return EligibilityResult(
            Eligibility.SINGLE_SUBSCRIPTION, count=1, subscriptions=available
        )
    return EligibilityResult(
        Eligibility.MULTIPLE_SUBSCRIPTIONS,
        count=len(available),
        subscriptions=available,
    )
