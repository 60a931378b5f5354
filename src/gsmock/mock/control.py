"""Operations test code and tooling use to inspect and steer the mock universe.

Holds no state of its own: it validates input, converts between the JSON
shapes that cross the HTTP boundary and the store's records, and delegates.
"""

from dataclasses import asdict

from gsmock.mock.errors import InvalidOperation
from gsmock.mock.faults import FaultInjector
from gsmock.mock.provider import MockProvider
from gsmock.mock.scenarios import ScenarioLibrary
from gsmock.mock.schemas import FaultRequest, UniversePatch
from gsmock.mock.store import MockStateStore
from gsmock.mock.universe import serialize_faults


class ControlSurface:
    def __init__(
        self, store: MockStateStore, scenarios: ScenarioLibrary,
        faults: FaultInjector, provider: MockProvider,
    ):
        self.store = store
        self.scenarios = scenarios
        self.faults = faults
        self.provider = provider

    def get_state(self) -> dict:
        return self.store.get_state().to_dict()

    def patch_state(self, body) -> list[str]:
        """Merge ``body`` into the universe and return the top-level keys applied."""
        if not isinstance(body, dict) or not body:
            raise ValueError("Patch data is required")
        patch = UniversePatch.model_validate(body)
        self.store.patch_state(patch)
        return list(body)

    def list_scenarios(self) -> list[dict[str, str]]:
        return self.scenarios.get_available_scenarios()

    def get_current_scenario(self) -> str:
        return self.scenarios.get_current_scenario()

    def apply_scenario(self, name: str) -> None:
        self.scenarios.apply_scenario(name)

    def get_fault_config(self) -> dict:
        return serialize_faults(self.faults.get_fault_config())

    def inject_fault(self, body) -> dict:
        if not isinstance(body, dict):
            raise InvalidOperation("Fault configuration must be an object")
        operation = body.get("operation")
        if not isinstance(operation, str) or not operation.strip():
            raise InvalidOperation("Operation name is required")
        request = FaultRequest.model_validate(body)
        policy = self.faults.inject_fault(
            request.operation, latency=request.latency,
            fail_next=request.fail_next, always_fail=request.always_fail,
            error_code=request.error_code, error_message=request.error_message,
        )
        return asdict(policy)

    def clear_fault(self, operation: str | None = None) -> None:
        """Clear one operation's fault, or every fault when ``operation`` is None."""
        if operation is None:
            self.faults.clear_all_faults()
            return
        if not isinstance(operation, str) or not operation.strip():
            raise InvalidOperation("Operation name is required")
        self.faults.clear_fault(operation)

    def set_global_latency(self, latency_ms: int | None) -> None:
        self.faults.set_global_latency(latency_ms)

    def settle_instance(self) -> str:
        return self.provider.settle_instance().value

    def reset(self) -> None:
        self.scenarios.reset_to_default_scenario()
