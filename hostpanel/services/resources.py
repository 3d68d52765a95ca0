"""Resource fetchers — read-side mapping of backend JSON to plain records.

Each fetcher is a stateless request/response mapper. Read failures are
logged and produce an empty value so the dashboard can still render;
authentication failures always propagate.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Optional

from hostpanel.services.api_client import AuthenticationError, BackendError

logger = logging.getLogger(__name__)

SIZE_DESCRIPTIONS = {
    "s-1vcpu-1gb": "1 CPU, 1GB RAM, 25GB SSD",
    "s-1vcpu-2gb": "1 CPU, 2GB RAM, 50GB SSD",
    "s-2vcpu-2gb": "2 CPU, 2GB RAM, 60GB SSD",
    "s-1vcpu-512mb-10gb": "1 CPU, 512MB RAM, 10GB SSD",
}

IDEAL_FOR = {
    "Standard": "Personal blogs, small websites",
    "Performance": "WordPress, small applications",
    "Scale": "E-commerce, busy websites",
    "Light": "Development, testing sites",
}


def describe_size(size):
    return SIZE_DESCRIPTIONS.get(size, f"{size} (Custom)")


def ideal_for(name):
    return IDEAL_FOR.get(name, "Custom applications")


def derive_deploy_status(server):
    """deploy_status as reported, else derived from the raw server status."""
    if server.get("deploy_status"):
        return server["deploy_status"]
    if server.get("is_local_business_site"):
        return "active"
    status = server.get("status")
    if status == "running":
        return "active"
    if status in ("provisioning", "creating"):
        return "deploying"
    if status in ("restoring", "failed"):
        return status
    return "unknown"


# ──────────────────────────────────────────────
# Records
# ──────────────────────────────────────────────

@dataclass
class Site:
    id: str
    name: str
    url: str
    deploy_status: str
    last_deploy_date: Optional[str] = None
    ip_address: Optional[str] = None
    server_id: Optional[str] = None
    server_type: Optional[str] = None
    server_type_id: Optional[str] = None
    agent_connected: Optional[bool] = None
    agent_status: Optional[str] = None
    has_backups: bool = False
    backups_enabled: bool = False
    status: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    plan_type: Optional[str] = None
    is_local_business_site: bool = False
    upsizing: bool = False

    @classmethod
    def from_server(cls, server):
        """Map one entry of GET /servers to a Site.

        Local-business sites have no server of their own, so server linkage,
        agent fields and backups are blanked for them.
        """
        local = bool(server.get("is_local_business_site"))
        backups = False if local else bool(server.get("backups_enabled"))
        server_type_id = server.get("server_type_id")
        return cls(
            id=str(server["id"]),
            name=server.get("name") or "",
            url=server.get("url") or server.get("name") or "",
            deploy_status=derive_deploy_status(server),
            last_deploy_date=server.get("created_at"),
            ip_address=None if local else server.get("ip_address"),
            server_id=None if local else str(server["id"]),
            server_type=server.get("server_type_name"),
            server_type_id=str(server_type_id) if server_type_id is not None else None,
            agent_connected=None if local else server.get("agent_status") == "online",
            agent_status=None if local else server.get("agent_status"),
            has_backups=backups,
            backups_enabled=backups,
            status=server.get("status"),
            stripe_subscription_id=server.get("stripe_subscription_id"),
            plan_type=server.get("plan_type"),
            is_local_business_site=local,
        )

    @property
    def display_status(self):
        return "Upsizing" if self.upsizing else self.deploy_status

    @property
    def plan_key(self):
        """Lower-cased plan this site counts against."""
        name = self.plan_type if self.is_local_business_site else self.server_type
        return (name or "").lower()

    def to_dict(self):
        data = asdict(self)
        data["display_status"] = self.display_status
        return data


@dataclass
class ServerType:
    id: str
    name: str
    size: str = ""
    max_sites: int = 1
    price: float = 0.0
    description: str = ""
    ideal_for: str = ""

    @classmethod
    def from_dict(cls, data):
        size = data.get("size") or ""
        name = data.get("name") or ""
        return cls(
            id=str(data["id"]),
            name=name,
            size=size,
            max_sites=int(data.get("max_sites") or 1),
            price=float(data.get("price") or 0),
            description=describe_size(size),
            ideal_for=ideal_for(name),
        )

    @property
    def plan_type(self):
        return self.name.lower()

    def to_dict(self):
        return asdict(self)


@dataclass
class Subscription:
    id: str
    stripe_subscription_id: Optional[str]
    plan_type: str
    status: str
    user_id: Optional[str] = None
    created_at: Optional[str] = None
    backup_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=str(data["id"]),
            stripe_subscription_id=data.get("stripe_subscription_id"),
            plan_type=(data.get("plan_type") or "").lower(),
            status=data.get("status") or "",
            user_id=data.get("user_id"),
            created_at=data.get("created_at"),
            backup_id=data.get("backup_id"),
        )

    @property
    def is_active(self):
        return self.status == "active"

    @property
    def is_backup_addon(self):
        return self.plan_type.endswith("_backup")

    def to_dict(self):
        return asdict(self)


@dataclass
class PaymentMethod:
    id: str
    brand: str
    last4: str
    exp_month: int
    exp_year: int
    billing_name: Optional[str] = None
    is_default: bool = False

    @classmethod
    def from_stripe(cls, data, default_id=None):
        card = data.get("card") or {}
        billing = data.get("billing_details") or {}
        return cls(
            id=data["id"],
            brand=card.get("brand") or "",
            last4=card.get("last4") or "",
            exp_month=card.get("exp_month") or 0,
            exp_year=card.get("exp_year") or 0,
            billing_name=billing.get("name"),
            is_default=data["id"] == default_id,
        )

    def to_dict(self):
        return asdict(self)


@dataclass
class BackupPoint:
    id: str
    date: str
    size: str = ""
    name: Optional[str] = None
    status: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=str(data["id"]),
            date=str(data.get("date") or ""),
            size=str(data.get("size") or ""),
            name=data.get("name"),
            status=data.get("status"),
        )

    def to_dict(self):
        return asdict(self)


@dataclass
class StripeItem:
    id: str
    product_name: str
    amount: float

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=str(data.get("id") or ""),
            product_name=data.get("productName") or "",
            amount=data.get("amount") or 0,
        )


@dataclass(frozen=True)
class DeploymentParams:
    server_type_id: str
    domain: str
    plan_type: str
    subscription_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        return cls(
            server_type_id=str(data["serverTypeId"]),
            domain=data["domain"],
            plan_type=data["planType"],
            subscription_id=data.get("subscriptionId"),
        )

    def to_dict(self):
        return {
            "serverTypeId": self.server_type_id,
            "domain": self.domain,
            "planType": self.plan_type,
            "subscriptionId": self.subscription_id,
        }


@dataclass
class DashboardSnapshot:
    """Everything the dashboard renders, fetched once per request."""

    sites: list = field(default_factory=list)
    server_types: list = field(default_factory=list)
    license_counts: dict = field(default_factory=dict)
    subscriptions: list = field(default_factory=list)
    warnings: list = field(default_factory=list)

    def server_type_by_id(self, server_type_id):
        for st in self.server_types:
            if st.id == str(server_type_id):
                return st
        return None

    def to_dict(self):
        return {
            "sites": [s.to_dict() for s in self.sites],
            "serverTypes": [st.to_dict() for st in self.server_types],
            "licenseCounts": dict(self.license_counts),
            "subscriptions": [s.to_dict() for s in self.subscriptions],
            "warnings": list(self.warnings),
        }


# ──────────────────────────────────────────────
# Fetchers
# ──────────────────────────────────────────────

def _read(what, default, call, *args):
    try:
        return call(*args)
    except AuthenticationError:
        raise
    except BackendError as e:
        logger.error(f"Error fetching {what}: {e.message}")
        return default


def fetch_sites(client, token):
    data = _read("sites", {}, client.list_servers, token)
    servers = data.get("servers")
    if not isinstance(servers, list):
        return []
    return [Site.from_server(s) for s in servers]


def fetch_server_types(client, token):
    data = _read("server types", {}, client.list_server_types, token)
    return [ServerType.from_dict(st) for st in data.get("serverTypes") or []]


def fetch_license_counts(client, token):
    data = _read("license counts", {}, client.license_counts, token)
    counts = data.get("licenseCounts") or {}
    return {str(plan).lower(): int(n or 0) for plan, n in counts.items()}


def fetch_subscriptions(client, token):
    data = _read("subscriptions", {}, client.list_subscriptions, token)
    return [Subscription.from_dict(s) for s in data.get("subscriptions") or []]


def fetch_payment_methods(client, token):
    """Saved cards, default card first. Returns (methods, default_id)."""
    data = _read("payment methods", {}, client.payment_methods, token)
    default_id = data.get("defaultPaymentMethodId")
    methods = [
        PaymentMethod.from_stripe(pm, default_id)
        for pm in data.get("paymentMethods") or []
    ]
    # stable sort keeps backend order among non-default cards
    methods.sort(key=lambda pm: not pm.is_default)
    return methods, default_id


def fetch_backups(client, token, server_id):
    data = _read("backups", {}, client.list_backups, token, server_id)
    backups = data.get("backups")
    if not isinstance(backups, list):
        return []
    return [BackupPoint.from_dict(b) for b in backups]


def fetch_stripe_items(client, token, subscription_id):
    data = client.stripe_items(token, subscription_id)
    return [StripeItem.from_dict(i) for i in data.get("items") or []]


def fetch_server_metrics(client, token, server_id):
    data = _read("server metrics", {}, client.server_metrics, token, server_id)
    return data.get("metrics") or {}


def load_dashboard(client, token, user_id):
    """Fetch the dashboard resources and reconcile pending overlays."""
    from hostpanel.services import overlay_service

    snapshot = DashboardSnapshot(
        sites=fetch_sites(client, token),
        server_types=fetch_server_types(client, token),
        license_counts=fetch_license_counts(client, token),
        subscriptions=fetch_subscriptions(client, token),
    )
    snapshot.warnings = overlay_service.apply_overlays(user_id, snapshot.sites)
    return snapshot


# ──────────────────────────────────────────────
# Lookups
# ──────────────────────────────────────────────

def filter_sites(sites, term):
    """Dashboard search over name, url, ip address and server type."""
    term = (term or "").strip().lower()
    if not term:
        return list(sites)
    return [
        s for s in sites
        if term in (s.name or "").lower()
        or term in (s.url or "").lower()
        or term in (s.ip_address or "").lower()
        or term in (s.server_type or "").lower()
    ]


def find_site(sites, site_id):
    for s in sites:
        if s.id == str(site_id):
            return s
    return None
