import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from gsmock.mock.control import ControlSurface
from gsmock.mock.faults import FaultInjector
from gsmock.mock.provider import MockProvider
from gsmock.mock.scenarios import ScenarioLibrary
from gsmock.mock.store import MockStateStore


STATE_FILE_ENV = "GSMOCK_STATE_FILE"


@dataclass
class MockBackend:
    store: MockStateStore
    faults: FaultInjector
    scenarios: ScenarioLibrary
    provider: MockProvider
    control: ControlSurface


def create_mock_backend(
    state_file: Path | None = None, settle_after_polls: int | None = 1,
    clock=None, sleep=time.sleep,
) -> MockBackend:
    """Wire one store to its fault injector, scenario library, provider and control surface."""
    store = MockStateStore(state_file=state_file, clock=clock)
    faults = FaultInjector(store, sleep=sleep)
    scenarios = ScenarioLibrary(store)
    provider = MockProvider(store, faults, settle_after_polls=settle_after_polls)
    control = ControlSurface(store, scenarios, faults, provider)
    return MockBackend(store, faults, scenarios, provider, control)


_backend: MockBackend | None = None
_backend_lock = threading.Lock()


def get_mock_backend() -> MockBackend:
    """Process-wide backend for entry points (HTTP app) that cannot take one injected."""
    global _backend
    with _backend_lock:
        if _backend is None:
            state_file = os.environ.get(STATE_FILE_ENV) or None
            _backend = create_mock_backend(state_file=state_file)
        return _backend


def reset_mock_backend() -> None:
    global _backend
    with _backend_lock:
        _backend = None
