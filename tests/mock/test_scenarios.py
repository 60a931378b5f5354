import pytest

from gsmock.mock.errors import InjectedFailure, UnknownScenario
from gsmock.mock.faults import FACADE_OPERATIONS
from gsmock.mock.scenarios import SCENARIOS
from gsmock.mock.universe import (
    ALWAYS_FAIL,
    CUSTOM_SCENARIO,
    DEFAULT_STACK_NAME,
    PLAYER_COUNT_PARAM,
    LifecycleState,
    default_universe,
)


SCENARIO_NAMES = [s.name for s in SCENARIOS]


def test_catalog_order_is_stable(scenarios):
    names = [s["name"] for s in scenarios.get_available_scenarios()]
    assert names == [
        "default", "running", "starting", "stopping", "hibernated", "high-cost",
        "no-backups", "many-players", "stack-creating", "errors",
    ]
    assert names == [s["name"] for s in scenarios.get_available_scenarios()]


def test_every_scenario_has_description(scenarios):
    assert all(s["description"] for s in scenarios.get_available_scenarios())


@pytest.mark.parametrize("name", SCENARIO_NAMES)
def test_apply_then_current(scenarios, name):
    scenarios.apply_scenario(name)
    assert scenarios.get_current_scenario() == name


def test_unknown_scenario(scenarios, store):
    before = store.get_state()
    with pytest.raises(UnknownScenario) as exc_info:
        scenarios.apply_scenario("apocalypse")
    assert "apocalypse" in str(exc_info.value)
    assert "running" in str(exc_info.value)
    assert store.get_state() == before


def test_unknown_scenario_is_value_error(scenarios):
    with pytest.raises(ValueError):
        scenarios.apply_scenario("")


@pytest.mark.parametrize("name, state, has_volume", [
    ("default", LifecycleState.STOPPED, True),
    ("running", LifecycleState.RUNNING, True),
    ("starting", LifecycleState.PENDING, True),
    ("stopping", LifecycleState.STOPPING, True),
    ("hibernated", LifecycleState.STOPPED, False),
    ("high-cost", LifecycleState.RUNNING, True),
    ("no-backups", LifecycleState.RUNNING, True),
    ("many-players", LifecycleState.RUNNING, True),
    ("errors", LifecycleState.STOPPED, True),
])
def test_scenario_instance(scenarios, store, name, state, has_volume):
    scenarios.apply_scenario(name)
    instance = store.get_state().instance
    assert instance.state == state
    assert instance.has_volume is has_volume
    assert (instance.public_ip is not None) == (state == LifecycleState.RUNNING)


def test_running_scenario_has_players_and_backups(scenarios, store):
    scenarios.apply_scenario("running")
    universe = store.get_state()
    assert universe.parameters[PLAYER_COUNT_PARAM] == "5"
    assert len(universe.backups) == 3
    assert universe.costs["current-month"].total_cost == "15.50"


def test_high_cost_scenario(scenarios, store):
    scenarios.apply_scenario("high-cost")
    costs = store.get_state().costs
    assert costs["current-month"].total_cost == "125.50"
    assert float(costs["last-month"].total_cost) > 100


def test_no_backups_scenario(scenarios, store):
    scenarios.apply_scenario("no-backups")
    assert store.get_state().backups == []


def test_many_players_scenario(scenarios, store):
    scenarios.apply_scenario("many-players")
    assert int(store.get_state().parameters[PLAYER_COUNT_PARAM]) > 5


def test_stack_creating_scenario(scenarios, store):
    scenarios.apply_scenario("stack-creating")
    stack = store.get_state().stack
    assert stack.exists is True
    assert stack.status == "CREATE_IN_PROGRESS"
    assert stack.stack_name == DEFAULT_STACK_NAME


def test_errors_scenario_sets_always_fail_everywhere(scenarios, faults):
    scenarios.apply_scenario("errors")
    failures = faults.get_fault_config().operation_failures
    assert set(failures) == set(FACADE_OPERATIONS)
    assert all(p.mode == ALWAYS_FAIL for p in failures.values())
    assert failures["startInstance"].error_code == "InstanceLimitExceeded"
    assert failures["getCosts"].error_code == "AccessDenied"


def _call_every_operation(provider):
    """One call per facade operation, keyed by its operation id."""
    return {
        "findInstanceId": lambda: provider.find_instance_id(),
        "resolveInstanceId": lambda: provider.resolve_instance_id(),
        "getInstanceState": lambda: provider.get_instance_state(),
        "getInstanceDetails": lambda: provider.get_instance_details(),
        "getPublicIp": lambda: provider.get_public_ip(),
        "waitForInstanceRunning": lambda: provider.wait_for_instance_running(),
        "waitForInstanceStopped": lambda: provider.wait_for_instance_stopped(),
        "startInstance": lambda: provider.start_instance(),
        "stopInstance": lambda: provider.stop_instance(),
        "hibernateInstance": lambda: provider.hibernate_instance(),
        "resumeInstance": lambda: provider.resume_instance(),
        "terminateInstance": lambda: provider.terminate_instance(),
        "executeCommand": lambda: provider.execute_command(None, ["echo hi"]),
        "listBackups": lambda: provider.list_backups(),
        "getParameter": lambda: provider.get_parameter(PLAYER_COUNT_PARAM),
        "putParameter": lambda: provider.set_parameter("/x", "y"),
        "deleteParameter": lambda: provider.delete_parameter("/x"),
        "getEmailAllowlist": lambda: provider.get_email_allowlist(),
        "updateEmailAllowlist": lambda: provider.update_email_allowlist(["a@example.com"]),
        "getPlayerCount": lambda: provider.get_player_count(),
        "getServerAction": lambda: provider.get_server_action(),
        "setServerAction": lambda: provider.set_server_action("start"),
        "getCosts": lambda: provider.get_costs(),
        "getStackStatus": lambda: provider.get_stack_status(),
        "checkStackExists": lambda: provider.check_stack_exists(),
    }


def test_call_table_covers_every_operation(provider):
    assert set(_call_every_operation(provider)) == set(FACADE_OPERATIONS)


def test_errors_scenario_fails_every_operation_repeatedly(scenarios, provider, store):
    scenarios.apply_scenario("errors")
    before = store.get_state()
    for operation, invoke in _call_every_operation(provider).items():
        for _ in range(2):
            with pytest.raises(InjectedFailure) as exc_info:
                invoke()
            assert exc_info.value.operation == operation
    assert store.get_state() == before


def test_errors_cleared_by_reset(scenarios, provider):
    scenarios.apply_scenario("errors")
    scenarios.reset_to_default_scenario()
    assert provider.find_instance_id()
    assert provider.get_costs().total_cost == "15.50"


def test_errors_cleared_by_clear_all_faults(scenarios, faults, provider):
    scenarios.apply_scenario("errors")
    faults.clear_all_faults()
    assert provider.get_instance_state() == LifecycleState.STOPPED
    assert provider.check_stack_exists() is True


def test_non_default_scenario_keeps_faults(scenarios, faults):
    faults.inject_fault("getCosts", always_fail=True)
    scenarios.apply_scenario("running")
    assert "getCosts" in faults.get_fault_config().operation_failures


def test_default_scenario_clears_faults(scenarios, faults):
    faults.inject_fault("getCosts", always_fail=True)
    faults.set_global_latency(10)
    scenarios.apply_scenario("default")
    config = faults.get_fault_config()
    assert config.operation_failures == {}
    assert config.global_latency_ms is None


def test_scenario_replaces_previous_sections(scenarios, store):
    scenarios.apply_scenario("no-backups")
    scenarios.apply_scenario("running")
    assert len(store.get_state().backups) == 3


def test_patch_after_scenario_reports_custom(scenarios, store):
    scenarios.apply_scenario("running")
    store.patch_state({"parameters": {PLAYER_COUNT_PARAM: "9"}})
    assert scenarios.get_current_scenario() == CUSTOM_SCENARIO


def test_reset_to_default_matches_fresh_universe(scenarios, store, faults, clock):
    scenarios.apply_scenario("high-cost")
    store.patch_state({"instance": {"has_volume": False}, "backups": []})
    faults.inject_fault("listBackups", fail_next=True)
    faults.set_global_latency(75)

    scenarios.reset_to_default_scenario()
    assert store.get_state() == default_universe(clock())
