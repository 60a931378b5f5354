"""Named presets that put the universe into a known state in one call."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from gsmock.mock.errors import UnknownScenario
from gsmock.mock.faults import FACADE_OPERATIONS, default_error
from gsmock.mock.schemas import (
    FaultPolicyModel,
    FaultsPatch,
    InstancePatch,
    StackPatch,
    UniversePatch,
)
from gsmock.mock.store import MockStateStore, apply_patch
from gsmock.mock.universe import (
    ALWAYS_FAIL,
    DEFAULT_PUBLIC_IP,
    DEFAULT_SCENARIO,
    PLAYER_COUNT_PARAM,
    CostLine,
    CostSnapshot,
    LifecycleState,
    default_universe,
    period_bounds,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Scenario:
    name: str
    description: str
    build: Callable[[datetime], UniversePatch]


def _running(**extra) -> UniversePatch:
    return UniversePatch(
        instance=InstancePatch(
            state=LifecycleState.RUNNING, public_ip=DEFAULT_PUBLIC_IP, has_volume=True,
        ),
        **extra,
    )


def _high_cost(now: datetime) -> UniversePatch:
    breakdown = [
        CostLine(service="Amazon EC2", cost="110.00"),
        CostLine(service="Amazon EBS", cost="12.50"),
        CostLine(service="AWS Lambda", cost="2.00"),
        CostLine(service="Amazon SNS", cost="0.50"),
        CostLine(service="Amazon SES", cost="0.50"),
    ]
    totals = {"current-month": "125.50", "last-month": "118.75", "last-30-days": "244.25"}
    costs = {
        period: CostSnapshot(
            period=period_bounds(period, now), total_cost=total, currency="USD",
            breakdown=list(breakdown), fetched_at=now.isoformat(),
        )
        for period, total in totals.items()
    }
    return _running(costs=costs)


# Error codes mirror what the real services return for the same failure.
_ERRORS_SCENARIO_CODES = {
    "startInstance": ("InstanceLimitExceeded", "You have reached the maximum number of running instances"),
    "stopInstance": ("IncorrectState", "Instance is in an incorrect state for this operation"),
    "getCosts": ("AccessDenied", "User is not authorized to access Cost Explorer"),
    "executeCommand": ("InvalidInstanceId", "The specified instance ID is not valid"),
    "getStackStatus": ("ValidationError", "Stack does not exist"),
    "checkStackExists": ("ValidationError", "Stack does not exist"),
}


def _errors(now: datetime) -> UniversePatch:
    failures = {}
    for operation in FACADE_OPERATIONS:
        code, message = _ERRORS_SCENARIO_CODES.get(operation, default_error(operation))
        failures[operation] = FaultPolicyModel(
            mode=ALWAYS_FAIL, error_code=code, error_message=message,
        )
    return UniversePatch(faults=FaultsPatch(operation_failures=failures))


SCENARIOS = [
    Scenario(
        "default", "Normal operation, instance stopped with default settings",
        lambda now: UniversePatch(),
    ),
    Scenario(
        "running", "Instance is already running with public IP assigned",
        lambda now: _running(parameters={PLAYER_COUNT_PARAM: "5"}),
    ),
    Scenario(
        "starting", "Instance is in pending state, transitioning to running",
        lambda now: UniversePatch(
            instance=InstancePatch(state=LifecycleState.PENDING, has_volume=True),
        ),
    ),
    Scenario(
        "stopping", "Instance is in stopping state, transitioning to stopped",
        lambda now: UniversePatch(
            instance=InstancePatch(state=LifecycleState.STOPPING, has_volume=True),
        ),
    ),
    Scenario(
        "hibernated", "Instance is stopped without volumes (hibernated state)",
        lambda now: UniversePatch(
            instance=InstancePatch(
                state=LifecycleState.STOPPED, has_volume=False, block_device_mappings=[],
            ),
        ),
    ),
    Scenario(
        "high-cost", "Instance with high monthly costs for testing cost alerts",
        _high_cost,
    ),
    Scenario(
        "no-backups", "No backups available for testing backup error handling",
        lambda now: _running(backups=[]),
    ),
    Scenario(
        "many-players", "Instance running with high player count for testing scaling",
        lambda now: _running(parameters={PLAYER_COUNT_PARAM: "18"}),
    ),
    Scenario(
        "stack-creating", "CloudFormation stack is in CREATE_IN_PROGRESS state",
        lambda now: UniversePatch(
            stack=StackPatch(exists=True, status="CREATE_IN_PROGRESS"),
        ),
    ),
    Scenario(
        "errors", "All operations fail with errors for testing error handling",
        _errors,
    ),
]


class ScenarioLibrary:
    def __init__(self, store: MockStateStore, scenarios: list[Scenario] | None = None):
        self.store = store
        self._scenarios = {s.name: s for s in (scenarios or SCENARIOS)}

    def get_available_scenarios(self) -> list[dict[str, str]]:
        return [
            {"name": s.name, "description": s.description}
            for s in self._scenarios.values()
        ]

    def get_current_scenario(self) -> str:
        return self.store.get_scenario()

    def apply_scenario(self, name: str) -> None:
        """Replace the universe with the default snapshot overlaid by ``name``.

        The current fault configuration carries over unless the scenario is
        ``default`` (which clears it) or defines faults of its own.
        """
        scenario = self._scenarios.get(name)
        if scenario is None:
            raise UnknownScenario(name, list(self._scenarios))

        now = self.store.now()
        patch = scenario.build(now)
        with self.store.transaction(persist=False) as current:
            fresh = default_universe(now)
            apply_patch(fresh, patch, now)
            if name != DEFAULT_SCENARIO and "faults" not in patch.model_fields_set:
                fresh.faults = current.faults
            fresh.scenario = name
            self.store.replace(fresh)
        logger.info("Applied scenario: %s", name)

    def reset_to_default_scenario(self) -> None:
        self.apply_scenario(DEFAULT_SCENARIO)
