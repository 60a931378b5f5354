"""Records that make up the simulated infrastructure ("the universe").

Everything here is plain dataclasses so it serialises with ``asdict`` and can
be validated as a field type by the pydantic payload models in
``gsmock.mock.schemas``.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation as DecimalError
from enum import Enum


DEFAULT_INSTANCE_ID = "i-mock1234567890abcdef"
DEFAULT_VOLUME_ID = "vol-mock1234567890abcdef"
DEFAULT_PUBLIC_IP = "203.0.113.42"  # TEST-NET-3
DEFAULT_AVAILABILITY_ZONE = "us-east-1a"
DEFAULT_STACK_NAME = "MinecraftStack"
DEFAULT_STACK_ID = (
    "arn:aws:cloudformation:us-east-1:123456789012:stack/minecraft-stack/abc123"
)

EMAIL_ALLOWLIST_PARAM = "/minecraft/email-allowlist"
PLAYER_COUNT_PARAM = "/minecraft/player-count"
SERVER_ACTION_PARAM = "/minecraft/server-action"
GDRIVE_TOKEN_PARAM = "/minecraft/gdrive-token"
BACKUP_CACHE_PARAM = "/minecraft/backups-cache"

COST_PERIODS = ("current-month", "last-month", "last-30-days")
DEFAULT_SCENARIO = "default"
CUSTOM_SCENARIO = "custom"

FAIL_NEXT = "fail-next"
ALWAYS_FAIL = "always-fail"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    HIBERNATING = "hibernating"
    TERMINATED = "terminated"
    UNKNOWN = "unknown"


TRANSITIONAL_STATES = (LifecycleState.PENDING, LifecycleState.STOPPING)

# Where a transitional instance ends up when nothing recorded a target.
SETTLED_STATES = {
    LifecycleState.PENDING: LifecycleState.RUNNING,
    LifecycleState.STOPPING: LifecycleState.STOPPED,
}


@dataclass
class BlockDeviceMapping:
    device_name: str
    volume_id: str
    status: str = "attached"
    delete_on_termination: bool = True


@dataclass
class SimulatedInstance:
    instance_id: str = DEFAULT_INSTANCE_ID
    state: LifecycleState = LifecycleState.STOPPED
    public_ip: str | None = None
    has_volume: bool = True
    availability_zone: str = DEFAULT_AVAILABILITY_ZONE
    block_device_mappings: list[BlockDeviceMapping] = field(default_factory=list)
    transition_target: LifecycleState | None = None
    settle_polls: int = 0
    last_updated: str = ""

    def __post_init__(self):
        self.state = LifecycleState(self.state)
        if self.transition_target is not None:
            self.transition_target = LifecycleState(self.transition_target)
        if not self.last_updated:
            self.last_updated = utc_now().isoformat()
        self.enforce_invariants()

    def enforce_invariants(self) -> None:
        """Public IP iff running; hibernating means no volume; mappings follow has_volume."""
        if self.state == LifecycleState.RUNNING:
            if not self.public_ip:
                self.public_ip = DEFAULT_PUBLIC_IP
        else:
            self.public_ip = None
        if self.state == LifecycleState.HIBERNATING:
            self.has_volume = False
        if not self.has_volume:
            self.block_device_mappings = []
        elif not self.block_device_mappings:
            self.block_device_mappings = [
                BlockDeviceMapping(device_name="/dev/sda1", volume_id=DEFAULT_VOLUME_ID)
            ]
        if self.state not in TRANSITIONAL_STATES:
            self.transition_target = None
            self.settle_polls = 0

    @property
    def is_transitional(self) -> bool:
        return self.state in TRANSITIONAL_STATES


@dataclass
class BackupInfo:
    name: str
    date: str | None = None
    size: str | None = None


def _decimal_string(value, what: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{what} must be a decimal string, got {type(value).__name__}")
    try:
        parsed = Decimal(value)
    except DecimalError:
        raise ValueError(f"{what} is not a decimal string: {value!r}") from None
    if not parsed.is_finite():
        raise ValueError(f"{what} is not a finite decimal: {value!r}")
    return value


@dataclass
class CostLine:
    service: str
    cost: str

    def __post_init__(self):
        _decimal_string(self.cost, f"cost for {self.service}")


@dataclass
class BillingPeriod:
    start: str
    end: str


@dataclass
class CostSnapshot:
    period: BillingPeriod
    total_cost: str
    currency: str = "USD"
    breakdown: list[CostLine] = field(default_factory=list)
    fetched_at: str = ""

    def __post_init__(self):
        _decimal_string(self.total_cost, "total_cost")
        if not self.fetched_at:
            self.fetched_at = utc_now().isoformat()


@dataclass
class StackStatus:
    exists: bool = True
    status: str = "CREATE_COMPLETE"
    stack_id: str | None = DEFAULT_STACK_ID
    stack_name: str = DEFAULT_STACK_NAME


@dataclass
class FaultPolicy:
    mode: str | None = None  # FAIL_NEXT, ALWAYS_FAIL, or None for latency only
    latency_ms: int | None = None
    error_code: str | None = None
    error_message: str | None = None

    def __post_init__(self):
        if self.mode not in (None, FAIL_NEXT, ALWAYS_FAIL):
            raise ValueError(f"Unknown fault mode: {self.mode}")


@dataclass
class FaultConfig:
    global_latency_ms: int | None = None
    operation_failures: dict[str, FaultPolicy] = field(default_factory=dict)


@dataclass
class CommandRecord:
    command_id: str
    commands: list[str]
    status: str = "Pending"
    output: str | None = None
    created_at: str = ""
    completed_at: str | None = None


@dataclass
class MockUniverse:
    instance: SimulatedInstance | None
    parameters: dict[str, str]
    backups: list[BackupInfo]
    costs: dict[str, CostSnapshot]
    stack: StackStatus
    faults: FaultConfig = field(default_factory=FaultConfig)
    commands: list[CommandRecord] = field(default_factory=list)
    scenario: str = DEFAULT_SCENARIO

    def to_dict(self) -> dict:
        """JSON-safe form: enums as values, the fault table as a plain mapping."""
        data = asdict(self)
        if self.instance is not None:
            data["instance"]["state"] = self.instance.state.value
            if self.instance.transition_target is not None:
                data["instance"]["transition_target"] = self.instance.transition_target.value
        data["faults"] = serialize_faults(self.faults)
        return data


def serialize_faults(faults: FaultConfig) -> dict:
    return {
        "global_latency_ms": faults.global_latency_ms,
        "operation_failures": {
            operation: asdict(policy)
            for operation, policy in faults.operation_failures.items()
        },
    }


# ── Default snapshot ──


def _month_end(first_of_month: datetime) -> datetime:
    next_month = (first_of_month.replace(day=28) + timedelta(days=4)).replace(day=1)
    return next_month - timedelta(days=1)


def period_bounds(period: str, now: datetime) -> BillingPeriod:
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if period == "current-month":
        start, end = month_start, _month_end(month_start)
    elif period == "last-month":
        end = month_start - timedelta(days=1)
        start = end.replace(day=1)
    elif period == "last-30-days":
        start, end = now - timedelta(days=30), now
    else:
        raise ValueError(f"Unknown cost period: {period}")
    return BillingPeriod(start=start.date().isoformat(), end=end.date().isoformat())


_BASE_COSTS = {"current-month": "15.50", "last-month": "18.75", "last-30-days": "34.25"}
_BILLED_SERVICES = ("Amazon EC2", "Amazon EBS", "AWS Lambda", "Amazon SNS", "Amazon SES")


def default_cost_snapshot(period: str, now: datetime) -> CostSnapshot:
    total = _BASE_COSTS[period]
    breakdown = [CostLine(service=_BILLED_SERVICES[0], cost=total)]
    breakdown += [CostLine(service=s, cost="0.00") for s in _BILLED_SERVICES[1:]]
    return CostSnapshot(
        period=period_bounds(period, now), total_cost=total, currency="USD",
        breakdown=breakdown, fetched_at=now.isoformat(),
    )


def default_backups(now: datetime) -> list[BackupInfo]:
    """Three daily backups, newest first."""
    sizes = ("2.1 GB", "2.0 GB", "2.0 GB")
    backups = []
    for days_ago, size in enumerate(sizes, start=1):
        taken = now - timedelta(days=days_ago)
        backups.append(BackupInfo(
            name=f"minecraft-backup-{taken.date().isoformat()}",
            date=taken.isoformat(), size=size,
        ))
    return backups


def default_universe(now: datetime | None = None) -> MockUniverse:
    now = now or utc_now()
    return MockUniverse(
        instance=SimulatedInstance(last_updated=now.isoformat()),
        parameters={EMAIL_ALLOWLIST_PARAM: "[]", PLAYER_COUNT_PARAM: "0"},
        backups=default_backups(now),
        costs={period: default_cost_snapshot(period, now) for period in COST_PERIODS},
        stack=StackStatus(),
        faults=FaultConfig(),
        commands=[],
        scenario=DEFAULT_SCENARIO,
    )
