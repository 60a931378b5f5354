import copy
import json
import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import timedelta

from gsmock.mock.errors import InvalidState, NotFound
from gsmock.mock.faults import FaultInjector
from gsmock.mock.store import MockStateStore
from gsmock.mock.universe import (
    DEFAULT_STACK_NAME,
    EMAIL_ALLOWLIST_PARAM,
    PLAYER_COUNT_PARAM,
    SERVER_ACTION_PARAM,
    SETTLED_STATES,
    BackupInfo,
    BlockDeviceMapping,
    CommandRecord,
    CostSnapshot,
    LifecycleState,
    MockUniverse,
    SimulatedInstance,
    StackStatus,
)


logger = logging.getLogger(__name__)

SERVER_ACTION_EXPIRY = timedelta(minutes=30)
MAX_POLL_ATTEMPTS = 300

_STARTABLE = (LifecycleState.STOPPED, LifecycleState.HIBERNATING)
_SHUTTING_DOWN = (
    LifecycleState.STOPPING, LifecycleState.STOPPED,
    LifecycleState.HIBERNATING, LifecycleState.TERMINATED,
)
_HIBERNATABLE = (LifecycleState.RUNNING, LifecycleState.STOPPED)


@dataclass
class InstanceDetails:
    instance_id: str
    state: LifecycleState
    public_ip: str | None
    availability_zone: str
    block_device_mappings: list[BlockDeviceMapping] = field(default_factory=list)


@dataclass
class PlayerCount:
    count: int
    last_updated: str


@dataclass
class ServerAction:
    action: str
    timestamp: int  # epoch milliseconds


def _command_output(universe: MockUniverse, commands: list[str]) -> str:
    text = " ".join(commands)
    lowered = text.lower()
    if "ListBackups" in text or "rclone lsf" in text:
        return "\n".join(f"{b.name}|{b.size or ''}|{b.date or ''}" for b in universe.backups)
    if "GetPlayerCount" in text:
        return universe.parameters.get(PLAYER_COUNT_PARAM) or "0"
    if "UpdateEmailAllowlist" in text:
        return "Email allowlist updated successfully"
    if "systemctl is-active" in text:
        return "active"
    if "backup" in lowered:
        return "Backup completed successfully"
    if "start" in lowered:
        return "Server started successfully"
    if "stop" in lowered:
        return "Server stopped successfully"
    return f"Command executed: {text}"


class MockProvider:
    """Stand-in for the real infrastructure client.

    Each public method consults the fault injector under its operation name
    first, then does its legality checks and mutation inside one store
    transaction. Transitional states (pending, stopping) settle after
    ``settle_after_polls`` calls to ``get_instance_state`` or on an explicit
    ``settle_instance``; ``settle_after_polls=None`` leaves settling entirely
    to the caller.
    """

    def __init__(
        self, store: MockStateStore, faults: FaultInjector,
        settle_after_polls: int | None = 1,
    ):
        self.store = store
        self.faults = faults
        self.settle_after_polls = settle_after_polls

    # ── Helpers ──

    def _instance(self, universe: MockUniverse, instance_id: str | None = None) -> SimulatedInstance:
        instance = universe.instance
        if instance is None:
            raise NotFound("No simulated instance configured")
        if instance_id and instance_id != instance.instance_id:
            raise NotFound(f"Instance not found: {instance_id}")
        return instance

    def _touch(self, instance: SimulatedInstance) -> None:
        instance.last_updated = self.store.now().isoformat()
        instance.enforce_invariants()

    def _begin_transition(
        self, instance: SimulatedInstance, state: LifecycleState, target: LifecycleState,
    ) -> None:
        logger.debug("Instance %s: %s -> %s (settles to %s)",
                     instance.instance_id, instance.state.value, state.value, target.value)
        instance.state = state
        instance.transition_target = target
        instance.settle_polls = 0
        self._touch(instance)

    def _settle(self, instance: SimulatedInstance) -> None:
        target = instance.transition_target or SETTLED_STATES[instance.state]
        logger.debug("Instance %s settled: %s -> %s",
                     instance.instance_id, instance.state.value, target.value)
        instance.state = target
        self._touch(instance)

    def _require_running(self, instance: SimulatedInstance, what: str) -> None:
        if instance.state != LifecycleState.RUNNING:
            raise InvalidState(
                f"Cannot {what}: instance {instance.instance_id} is {instance.state.value}"
            )

    # ── EC2: instance lifecycle ──

    def find_instance_id(self) -> str:
        self.faults.consult("findInstanceId")
        with self.store.transaction(persist=False) as universe:
            return self._instance(universe).instance_id

    def resolve_instance_id(self, instance_id: str | None = None) -> str:
        """Return ``instance_id`` if given and known, else the configured instance's id."""
        self.faults.consult("resolveInstanceId")
        with self.store.transaction(persist=False) as universe:
            return self._instance(universe, instance_id).instance_id

    def _observe(self, instance_id: str | None) -> SimulatedInstance:
        """One state poll: count it and settle a transition that has waited long enough."""
        with self.store.transaction() as universe:
            instance = self._instance(universe, instance_id)
            if instance.is_transitional and self.settle_after_polls is not None:
                if instance.settle_polls >= self.settle_after_polls:
                    self._settle(instance)
                else:
                    instance.settle_polls += 1
            return copy.deepcopy(instance)

    def get_instance_state(self, instance_id: str | None = None) -> LifecycleState:
        self.faults.consult("getInstanceState")
        return self._observe(instance_id).state

    def _wait_for(self, instance_id, max_attempts, done, what):
        for _ in range(max_attempts):
            instance = self._observe(instance_id)
            if done(instance):
                return instance
            if instance.state == LifecycleState.TERMINATED:
                raise InvalidState(f"Instance {instance.instance_id} terminated while waiting for {what}")
        raise InvalidState(f"Instance did not reach {what} after {max_attempts} polls")

    def get_public_ip(self, instance_id: str | None = None, max_attempts: int = MAX_POLL_ATTEMPTS) -> str:
        """Poll until the instance has a public IP.

        Fails at once if the instance is heading away from running, and after
        ``max_attempts`` polls otherwise.
        """
        self.faults.consult("getPublicIp")

        def has_ip(instance):
            if instance.public_ip:
                return True
            if instance.state in _SHUTTING_DOWN or instance.transition_target in _SHUTTING_DOWN:
                raise InvalidState(
                    f"Instance {instance.instance_id} is {instance.state.value} and has no public IP"
                )
            return False

        return self._wait_for(instance_id, max_attempts, has_ip, "a public IP").public_ip

    def wait_for_instance_running(
        self, instance_id: str | None = None, max_attempts: int = MAX_POLL_ATTEMPTS,
    ) -> None:
        self.faults.consult("waitForInstanceRunning")
        self._wait_for(
            instance_id, max_attempts,
            lambda instance: instance.state == LifecycleState.RUNNING, "running",
        )

    def wait_for_instance_stopped(
        self, instance_id: str | None = None, max_attempts: int = MAX_POLL_ATTEMPTS,
    ) -> None:
        """Hibernating counts as stopped."""
        self.faults.consult("waitForInstanceStopped")
        self._wait_for(
            instance_id, max_attempts, lambda instance: instance.state in _STARTABLE, "stopped",
        )

    def get_instance_details(self, instance_id: str | None = None) -> InstanceDetails:
        self.faults.consult("getInstanceDetails")
        with self.store.transaction(persist=False) as universe:
            instance = self._instance(universe, instance_id)
            return InstanceDetails(
                instance_id=instance.instance_id,
                state=instance.state,
                public_ip=instance.public_ip,
                availability_zone=instance.availability_zone,
                block_device_mappings=copy.deepcopy(instance.block_device_mappings),
            )

    def start_instance(self, instance_id: str | None = None) -> None:
        self.faults.consult("startInstance")
        with self.store.transaction() as universe:
            instance = self._instance(universe, instance_id)
            if instance.state not in _STARTABLE:
                raise InvalidState(
                    f"Cannot start instance {instance.instance_id} in state: {instance.state.value}"
                )
            self._begin_transition(instance, LifecycleState.PENDING, LifecycleState.RUNNING)

    def stop_instance(self, instance_id: str | None = None) -> None:
        self.faults.consult("stopInstance")
        with self.store.transaction() as universe:
            instance = self._instance(universe, instance_id)
            if instance.state in _STARTABLE:
                raise InvalidState(f"Instance {instance.instance_id} is already stopped")
            if instance.state != LifecycleState.RUNNING:
                raise InvalidState(
                    f"Cannot stop instance {instance.instance_id} in state: {instance.state.value}"
                )
            self._begin_transition(instance, LifecycleState.STOPPING, LifecycleState.STOPPED)

    def hibernate_instance(self, instance_id: str | None = None) -> None:
        """Stop the instance and drop its volumes; it settles into hibernating."""
        self.faults.consult("hibernateInstance")
        with self.store.transaction() as universe:
            instance = self._instance(universe, instance_id)
            if instance.state not in _HIBERNATABLE:
                raise InvalidState(
                    f"Cannot hibernate instance {instance.instance_id} in state: {instance.state.value}"
                )
            instance.has_volume = False
            self._begin_transition(instance, LifecycleState.STOPPING, LifecycleState.HIBERNATING)

    def resume_instance(self, instance_id: str | None = None) -> None:
        """Restore a volume if the instance has none, then start it."""
        self.faults.consult("resumeInstance")
        with self.store.transaction() as universe:
            instance = self._instance(universe, instance_id)
            if instance.state not in _STARTABLE:
                raise InvalidState(
                    f"Cannot resume instance {instance.instance_id} in state: {instance.state.value}"
                )
            if not instance.has_volume:
                volume_id = f"vol-mock{uuid.uuid4().hex[:17]}"
                instance.has_volume = True
                instance.block_device_mappings = [
                    BlockDeviceMapping(device_name="/dev/xvda", volume_id=volume_id)
                ]
                logger.debug("Restored volume %s for %s", volume_id, instance.instance_id)
            self._begin_transition(instance, LifecycleState.PENDING, LifecycleState.RUNNING)

    def terminate_instance(self, instance_id: str | None = None) -> None:
        self.faults.consult("terminateInstance")
        with self.store.transaction() as universe:
            instance = self._instance(universe, instance_id)
            if instance.state == LifecycleState.TERMINATED:
                raise InvalidState(f"Instance {instance.instance_id} is terminated")
            instance.state = LifecycleState.TERMINATED
            self._touch(instance)

    def settle_instance(self, instance_id: str | None = None) -> LifecycleState:
        """Resolve a pending/stopping instance now. No-op for any other state."""
        with self.store.transaction() as universe:
            instance = self._instance(universe, instance_id)
            if instance.is_transitional:
                self._settle(instance)
            return instance.state

    # ── SSM: commands ──

    def execute_command(self, instance_id: str | None, commands: list[str]) -> str:
        self.faults.consult("executeCommand")
        if not commands:
            raise ValueError("At least one command line is required")
        with self.store.transaction() as universe:
            instance = self._instance(universe, instance_id)
            self._require_running(instance, "execute command")
            now = self.store.now().isoformat()
            output = _command_output(universe, list(commands))
            record = CommandRecord(
                command_id=f"cmd-{uuid.uuid4().hex[:12]}", commands=list(commands),
                status="Success", output=output, created_at=now, completed_at=now,
            )
            universe.commands.append(record)
        logger.debug("Command %s on %s: %s", record.command_id, instance_id, commands)
        return output

    def list_backups(self, instance_id: str | None = None) -> list[BackupInfo]:
        self.faults.consult("listBackups")
        with self.store.transaction(persist=False) as universe:
            instance = self._instance(universe, instance_id)
            self._require_running(instance, "list backups")
            return copy.deepcopy(universe.backups)

    # ── SSM: parameter store ──

    def get_parameter(self, name: str) -> str | None:
        self.faults.consult("getParameter")
        return self.store.get_parameter(name)

    def set_parameter(self, name: str, value: str) -> None:
        self.faults.consult("putParameter")
        self.store.set_parameter(name, value)

    def delete_parameter(self, name: str) -> None:
        self.faults.consult("deleteParameter")
        self.store.delete_parameter(name)

    def get_email_allowlist(self) -> list[str]:
        self.faults.consult("getEmailAllowlist")
        value = self.store.get_parameter(EMAIL_ALLOWLIST_PARAM)
        if not value:
            return []
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return [e.strip() for e in value.split(",") if e.strip()]
        if isinstance(parsed, list):
            return [str(e) for e in parsed]
        return []

    def update_email_allowlist(self, emails: list[str]) -> None:
        self.faults.consult("updateEmailAllowlist")
        self.store.set_parameter(EMAIL_ALLOWLIST_PARAM, json.dumps(list(emails)))

    def get_player_count(self) -> PlayerCount:
        self.faults.consult("getPlayerCount")
        value = self.store.get_parameter(PLAYER_COUNT_PARAM)
        try:
            count = int(value) if value else 0
        except ValueError:
            count = 0
        return PlayerCount(count=count, last_updated=self.store.now().isoformat())

    def _now_ms(self) -> int:
        return int(self.store.now().timestamp() * 1000)

    def _read_action(self, universe: MockUniverse) -> ServerAction | None:
        raw = universe.parameters.get(SERVER_ACTION_PARAM)
        if not raw:
            return None
        try:
            data = json.loads(raw)
            action = ServerAction(action=str(data["action"]), timestamp=int(data["timestamp"]))
        except (ValueError, KeyError, TypeError):
            return None
        if self._now_ms() - action.timestamp > SERVER_ACTION_EXPIRY.total_seconds() * 1000:
            logger.info("Clearing stale server action marker: %s", action.action)
            del universe.parameters[SERVER_ACTION_PARAM]
            return None
        return action

    def get_server_action(self) -> ServerAction | None:
        self.faults.consult("getServerAction")
        with self.store.transaction() as universe:
            return self._read_action(universe)

    def set_server_action(self, action: str) -> None:
        self.faults.consult("setServerAction")
        value = json.dumps({"action": action, "timestamp": self._now_ms()})
        self.store.set_parameter(SERVER_ACTION_PARAM, value)

    @contextmanager
    def server_action_lock(self, action: str):
        """Hold the server action marker for the duration of the block.

        Raises InvalidState when another action is already in progress. The
        marker is always cleared on exit.
        """
        self.faults.consult("setServerAction")
        with self.store.transaction() as universe:
            current = self._read_action(universe)
            if current is not None:
                raise InvalidState(
                    f"Cannot start {action}. Another operation is in progress: {current.action}"
                )
            universe.parameters[SERVER_ACTION_PARAM] = json.dumps(
                {"action": action, "timestamp": self._now_ms()}
            )
        logger.debug("Server action started: %s", action)
        try:
            yield
        finally:
            self.store.delete_parameter(SERVER_ACTION_PARAM)
            logger.debug("Server action cleared: %s", action)

    # ── Cost Explorer ──

    def get_costs(self, period: str = "current-month") -> CostSnapshot:
        self.faults.consult("getCosts")
        with self.store.transaction(persist=False) as universe:
            snapshot = universe.costs.get(period)
            if snapshot is None:
                raise NotFound(f"No cost data for period: {period}")
            return copy.deepcopy(snapshot)

    # ── CloudFormation ──

    def _stack(self, stack_name: str) -> StackStatus:
        with self.store.transaction(persist=False) as universe:
            stack = universe.stack
            if not stack.exists or stack.stack_name != stack_name:
                return StackStatus(
                    exists=False, status="DOES_NOT_EXIST", stack_id=None, stack_name=stack_name,
                )
            return replace(stack)

    def get_stack_status(self, stack_name: str = DEFAULT_STACK_NAME) -> StackStatus:
        self.faults.consult("getStackStatus")
        return self._stack(stack_name)

    def check_stack_exists(self, stack_name: str = DEFAULT_STACK_NAME) -> bool:
        self.faults.consult("checkStackExists")
        return self._stack(stack_name).exists
