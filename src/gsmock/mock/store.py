import copy
import dataclasses
import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from gsmock.mock.schemas import InstancePatch, UniversePatch
from gsmock.mock.universe import (
    CUSTOM_SCENARIO,
    FaultConfig,
    MockUniverse,
    SimulatedInstance,
    default_universe,
    utc_now,
)


logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = Path.home() / ".gsmock" / "state.json"

# Instance fields that may be explicitly cleared by a patch.
_NULLABLE_INSTANCE_FIELDS = {"public_ip", "transition_target"}


def _merge_instance(universe: MockUniverse, patch: InstancePatch | None, now: datetime) -> None:
    if patch is None:
        universe.instance = None
        return
    changes = {
        name: copy.deepcopy(getattr(patch, name))
        for name in patch.model_fields_set
        if getattr(patch, name) is not None or name in _NULLABLE_INSTANCE_FIELDS
    }
    current = universe.instance
    if current is None:
        changes.setdefault("last_updated", now.isoformat())
        universe.instance = SimulatedInstance(**changes)
        return
    # A new state abandons any transition in flight.
    if "state" in changes and "transition_target" not in changes:
        changes["transition_target"] = None
        changes.setdefault("settle_polls", 0)
    merged = dataclasses.replace(current, **changes)
    if "last_updated" not in changes and merged != current:
        merged.last_updated = now.isoformat()
    universe.instance = merged


def _merge_faults(universe: MockUniverse, patch) -> None:
    if patch is None:
        universe.faults = FaultConfig()
        return
    if "global_latency_ms" in patch.model_fields_set:
        universe.faults.global_latency_ms = patch.global_latency_ms or None
    if "operation_failures" in patch.model_fields_set:
        universe.faults.operation_failures = {
            operation: model.to_policy()
            for operation, model in (patch.operation_failures or {}).items()
        }


def apply_patch(universe: MockUniverse, patch: UniversePatch, now: datetime) -> None:
    """Merge a patch into ``universe`` in place.

    Records merge field by field and parameters key by key; lists and the
    per-operation fault table are replaced; costs are replaced per period.
    """
    fields = patch.model_fields_set
    if "instance" in fields:
        _merge_instance(universe, patch.instance, now)
    if "parameters" in fields and patch.parameters is not None:
        universe.parameters.update(patch.parameters)
    if "backups" in fields:
        universe.backups = copy.deepcopy(patch.backups or [])
    if "costs" in fields and patch.costs is not None:
        universe.costs.update(copy.deepcopy(patch.costs))
    if "stack" in fields and patch.stack is not None:
        changes = {name: getattr(patch.stack, name) for name in patch.stack.model_fields_set}
        universe.stack = dataclasses.replace(universe.stack, **changes)
    if "faults" in fields:
        _merge_faults(universe, patch.faults)
    if "commands" in fields:
        universe.commands = copy.deepcopy(patch.commands or [])
    if "scenario" in fields and patch.scenario:
        universe.scenario = patch.scenario


class MockStateStore:
    """Single source of truth for the simulated universe.

    Every read and write holds one re-entrant lock, so readers only ever see
    a fully applied state. With ``state_file`` set the universe is written to
    that JSON file after each change, and reloaded whenever the file's content
    differs from what this store last read or wrote. Several processes can
    share one file this way; their writes are last-writer-wins.
    """

    def __init__(self, state_file: Path | None = None, clock=None):
        self.state_file = Path(state_file) if state_file else None
        self._clock = clock or utc_now
        self._lock = threading.RLock()
        self._synced_text = self._read_file()
        self._universe = self._load(self._synced_text) or default_universe(self.now())

    def now(self) -> datetime:
        return self._clock()

    # ── Persistence ──

    def _read_file(self) -> str | None:
        if self.state_file is None or not self.state_file.exists():
            return None
        return self.state_file.read_text()

    def _load(self, text: str | None) -> MockUniverse | None:
        if text is None:
            return None
        try:
            patch = UniversePatch.model_validate(json.loads(text))
        except ValueError as e:
            logger.warning("Ignoring unreadable mock state file %s: %s", self.state_file, e)
            return None
        universe = default_universe(self.now())
        apply_patch(universe, patch, self.now())
        logger.info("Loaded mock state from %s", self.state_file)
        return universe

    def _sync(self) -> None:
        """Pick up changes another process wrote to the state file."""
        text = self._read_file()
        if text is None or text == self._synced_text:
            return
        self._synced_text = text
        universe = self._load(text)
        if universe is not None:
            self._universe = universe

    def persist(self) -> None:
        if self.state_file is None:
            return
        with self._lock:
            text = json.dumps(self._universe.to_dict(), indent=2)
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            self.state_file.write_text(text)
            self._synced_text = text

    @contextmanager
    def _synced(self):
        with self._lock:
            self._sync()
            yield self._universe

    @contextmanager
    def transaction(self, persist: bool = True):
        """Yield the live universe under the store lock.

        Callers doing a read-check-mutate sequence use this so the whole
        sequence is atomic. Changes are persisted on a clean exit.
        """
        with self._synced() as universe:
            yield universe
            if persist:
                self.persist()

    # ── Whole-state access ──

    def get_state(self) -> MockUniverse:
        with self._synced() as universe:
            return copy.deepcopy(universe)

    def patch_state(self, patch: UniversePatch | dict) -> None:
        if not isinstance(patch, UniversePatch):
            patch = UniversePatch.model_validate(patch)
        with self._synced() as universe:
            # Apply to a copy so a failing patch leaves no partial state behind.
            candidate = copy.deepcopy(universe)
            apply_patch(candidate, patch, self.now())
            candidate.scenario = CUSTOM_SCENARIO
            self.replace(candidate)
        logger.debug("Patched mock state: %s", sorted(patch.model_fields_set))

    def replace(self, universe: MockUniverse) -> None:
        with self._lock:
            self._universe = universe
            self.persist()

    def reset(self) -> None:
        logger.info("Resetting mock state to defaults")
        self.replace(default_universe(self.now()))

    def get_scenario(self) -> str:
        with self._synced() as universe:
            return universe.scenario

    # ── Parameters ──

    def get_parameter(self, name: str) -> str | None:
        with self._synced() as universe:
            return universe.parameters.get(name)

    def set_parameter(self, name: str, value: str) -> None:
        with self.transaction() as universe:
            universe.parameters[name] = value

    def delete_parameter(self, name: str) -> None:
        with self.transaction() as universe:
            universe.parameters.pop(name, None)

    # ── Faults ──

    def get_faults(self) -> FaultConfig:
        with self._synced() as universe:
            return copy.deepcopy(universe.faults)

    def get_global_latency(self) -> int | None:
        with self._synced() as universe:
            return universe.faults.global_latency_ms

    def set_global_latency(self, latency_ms: int | None) -> None:
        with self.transaction() as universe:
            universe.faults.global_latency_ms = latency_ms or None
