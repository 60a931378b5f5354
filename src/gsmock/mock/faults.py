import logging
import time

from gsmock.mock.errors import InjectedFailure, InvalidOperation
from gsmock.mock.store import MockStateStore
from gsmock.mock.universe import ALWAYS_FAIL, FAIL_NEXT, FaultConfig, FaultPolicy


logger = logging.getLogger(__name__)

# Identifiers of every operation the mock provider gates through consult().
FACADE_OPERATIONS = (
    "findInstanceId",
    "resolveInstanceId",
    "getInstanceState",
    "getInstanceDetails",
    "getPublicIp",
    "waitForInstanceRunning",
    "waitForInstanceStopped",
    "startInstance",
    "stopInstance",
    "hibernateInstance",
    "resumeInstance",
    "terminateInstance",
    "executeCommand",
    "listBackups",
    "getParameter",
    "putParameter",
    "deleteParameter",
    "getEmailAllowlist",
    "updateEmailAllowlist",
    "getPlayerCount",
    "getServerAction",
    "setServerAction",
    "getCosts",
    "getStackStatus",
    "checkStackExists",
)

_DEFAULT_ERRORS = {
    "getCosts": ("CostExplorerError", "Mock Cost Explorer error"),
    "getStackStatus": ("ValidationError", "Mock CloudFormation error"),
    "checkStackExists": ("ValidationError", "Mock CloudFormation error"),
}


def default_error(operation: str) -> tuple[str, str]:
    return _DEFAULT_ERRORS.get(operation, ("InternalFailure", f"Mock {operation} error"))


def _check_latency(latency_ms) -> None:
    if latency_ms is not None and (not isinstance(latency_ms, (int, float)) or latency_ms < 0):
        raise InvalidOperation(f"Latency must be a non-negative number of milliseconds, got {latency_ms!r}")


class FaultInjector:
    """Latency and failure policy consulted before every provider operation.

    Policies live in the store's universe so they show up in state snapshots
    and survive persistence. ``sleep`` is injectable for tests.
    """

    def __init__(self, store: MockStateStore, sleep=time.sleep):
        self.store = store
        self._sleep = sleep

    def inject_fault(
        self, operation: str, latency: int | None = None, fail_next: bool = False,
        always_fail: bool = False, error_code: str | None = None,
        error_message: str | None = None,
    ) -> FaultPolicy:
        if not isinstance(operation, str) or not operation.strip():
            raise InvalidOperation("Operation name is required")
        _check_latency(latency)
        if always_fail:
            mode = ALWAYS_FAIL
        elif fail_next:
            mode = FAIL_NEXT
        else:
            mode = None
        policy = FaultPolicy(
            mode=mode, latency_ms=latency,
            error_code=error_code, error_message=error_message,
        )
        with self.store.transaction() as universe:
            universe.faults.operation_failures[operation] = policy
        logger.info("Injected fault for %s: mode=%s latency=%s", operation, mode, latency)
        return policy

    def clear_fault(self, operation: str) -> None:
        with self.store.transaction() as universe:
            universe.faults.operation_failures.pop(operation, None)
        logger.info("Cleared fault for %s", operation)

    def clear_all_faults(self) -> None:
        with self.store.transaction() as universe:
            universe.faults = FaultConfig()
        logger.info("Cleared all faults")

    def set_global_latency(self, latency_ms: int | None) -> None:
        _check_latency(latency_ms)
        self.store.set_global_latency(latency_ms)
        logger.info("Set global latency: %sms", latency_ms)

    def get_fault_config(self) -> FaultConfig:
        return self.store.get_faults()

    def consult(self, operation: str) -> None:
        """Delay and/or fail ``operation`` according to the configured faults.

        A fail-next policy is read and removed in one critical section, so
        when callers race on it exactly one of them sees the failure.
        """
        global_latency = self.store.get_global_latency()
        if global_latency:
            self._sleep(global_latency / 1000)

        with self.store.transaction(persist=False) as universe:
            policy = universe.faults.operation_failures.get(operation)
            if policy is not None and policy.mode == FAIL_NEXT:
                del universe.faults.operation_failures[operation]
                self.store.persist()

        if policy is None:
            return
        if policy.mode in (ALWAYS_FAIL, FAIL_NEXT):
            code, message = default_error(operation)
            failure = InjectedFailure(
                operation, policy.error_code or code, policy.error_message or message,
            )
            logger.debug("Injected %s failure for %s: %s", policy.mode, operation, failure.code)
            raise failure
        if policy.latency_ms:
            self._sleep(policy.latency_ms / 1000)
