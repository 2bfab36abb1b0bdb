# spotmonitor/models.py
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @classmethod
    def ordered(cls):
        return [cls.INFO, cls.WARNING, cls.ERROR, cls.CRITICAL]

    @classmethod
    def at_least(cls, minimum):
        levels = cls.ordered()
        return levels[levels.index(cls(minimum)):]


class ResourceState(str, Enum):
    REQUESTED = "requested"
    EVALUATING = "evaluating"
    FULFILLED = "fulfilled"
    TERMINATED = "terminated"
    FAILED = "failed"

    @property
    def terminal(self):
        return self in (ResourceState.TERMINATED, ResourceState.FAILED)


# Forward transitions only; staying in the same state is always allowed.
TRANSITIONS = {
    ResourceState.REQUESTED: {
        ResourceState.EVALUATING,
        ResourceState.FULFILLED,
        ResourceState.TERMINATED,
        ResourceState.FAILED,
    },
    ResourceState.EVALUATING: {
        ResourceState.FULFILLED,
        ResourceState.TERMINATED,
        ResourceState.FAILED,
    },
    ResourceState.FULFILLED: {ResourceState.TERMINATED},
    ResourceState.TERMINATED: set(),
    ResourceState.FAILED: set(),
}


def can_transition(current: ResourceState, target: ResourceState) -> bool:
    return current == target or target in TRANSITIONS[current]


@dataclass(frozen=True)
class PricePoint:
    instance_family: str
    region: str
    zone: str
    price: Decimal
    observed_at: datetime


@dataclass(frozen=True)
class AnomalyEvent:
    instance_family: str
    region: str
    zone: str
    current_price: Decimal
    previous_price: Decimal
    percent_change: float
    anomaly_score: float

    def as_metadata(self):
        return {
            "instance_family": self.instance_family,
            "region": self.region,
            "zone": self.zone,
            "current_price": str(self.current_price),
            "previous_price": str(self.previous_price),
            "percent_change": round(self.percent_change, 2),
            "anomaly_score": self.anomaly_score,
        }


@dataclass
class SampleResult:
    points: list = field(default_factory=list)
    anomalies: list = field(default_factory=list)
    # region -> error message for regions that could not be sampled
    errors: dict = field(default_factory=dict)

    @property
    def partial(self):
        return bool(self.errors)


@dataclass
class LaunchOptions:
    image_id: str | None = None
    key_name: str | None = None
    security_group_id: str | None = None
    subnet_id: str | None = None
    user_data: str | None = None


@dataclass
class Resource:
    id: str
    owner_id: str
    provider_request_id: str | None
    region: str
    instance_family: str
    max_price: Decimal
    state: ResourceState
    created_at: datetime
    updated_at: datetime
    provider_resource_id: str | None = None
    public_address: str | None = None
    public_dns_name: str | None = None
    request_state: str | None = None
    status_code: str | None = None
    status_message: str | None = None
    workload_config: dict | None = None
    version: int = 0


# Notification channels: one variant per kind, each carrying its own address.

@dataclass(frozen=True)
class EmailChannel:
    address: str
    kind: str = field(default="email", init=False)


@dataclass(frozen=True)
class SmsChannel:
    address: str
    kind: str = field(default="sms", init=False)


@dataclass(frozen=True)
class ChatChannel:
    webhook_url: str
    kind: str = field(default="chat", init=False)


CHANNEL_TYPES = {
    "email": (EmailChannel, "address"),
    "sms": (SmsChannel, "address"),
    "chat": (ChatChannel, "webhook_url"),
}


@dataclass
class NotificationPreference:
    owner_id: str
    channels: list = field(default_factory=list)
    severities: list = field(default_factory=lambda: [s.value for s in Severity.ordered()])
    tags: list = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def allows(self, severity) -> bool:
        return Severity(severity).value in self.severities

    def matches_tags(self, tags) -> bool:
        """True when no tags are requested or any requested tag is on this preference."""
        return not tags or any(tag in self.tags for tag in tags)


@dataclass(frozen=True)
class ChannelResult:
    kind: str
    success: bool
    payload: dict | None = None
    error: str | None = None

    def as_dict(self):
        return {"kind": self.kind, "success": self.success, "payload": self.payload, "error": self.error}


@dataclass
class DispatchResult:
    accepted: bool
    results: list = field(default_factory=list)
    reason: str | None = None

    @property
    def partial(self):
        return any(r.success for r in self.results) and not all(r.success for r in self.results)


@dataclass
class NotificationLogEntry:
    id: str
    owner_id: str
    subject: str
    message: str
    severity: str
    metadata: dict
    results: list
    logged_at: datetime
