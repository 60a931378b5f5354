import pytest
from fastapi.testclient import TestClient

from gsmock.api import create_app


@pytest.fixture
def client(backend, monkeypatch):
    monkeypatch.setenv("MC_BACKEND_MODE", "mock")
    return TestClient(create_app(backend))


def test_routes_hidden_outside_mock_mode(backend, monkeypatch):
    monkeypatch.setenv("MC_BACKEND_MODE", "aws")
    client = TestClient(create_app(backend))
    for method, path in [
        ("get", "/api/mock/state"), ("post", "/api/mock/reset"),
        ("get", "/api/mock/scenario"), ("delete", "/api/mock/fault"),
    ]:
        response = getattr(client, method)(path)
        assert response.status_code == 404


def test_routes_hidden_when_mode_unset(backend):
    client = TestClient(create_app(backend))
    assert client.get("/api/mock/state").status_code == 404


def test_get_state(client):
    response = client.get("/api/mock/state")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert "timestamp" in body
    assert body["data"]["instance"]["state"] == "stopped"
    assert body["data"]["faults"]["operation_failures"] == {}


def test_patch_state(client, store):
    response = client.post("/api/mock/patch", json={
        "instance": {"has_volume": False},
        "faults": {"operation_failures": {"getCosts": {"mode": "always-fail"}}},
    })
    assert response.status_code == 200
    assert response.json()["data"]["applied_updates"] == ["instance", "faults"]
    state = store.get_state()
    assert state.instance.has_volume is False
    assert state.faults.operation_failures["getCosts"].mode == "always-fail"


@pytest.mark.parametrize("payload", [{}, [], None])
def test_patch_rejects_empty_or_non_object(client, payload):
    response = client.post("/api/mock/patch", json=payload)
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert "Patch data is required" in body["error"]


def test_patch_rejects_invalid_fields(client):
    response = client.post("/api/mock/patch", json={"instance": {"state": "melting"}})
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_scenarios(client):
    response = client.get("/api/mock/scenario")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["current_scenario"] == "default"
    assert data["available_scenarios"][0] == {
        "name": "default", "description": "Normal operation, instance stopped with default settings",
    }

    response = client.post("/api/mock/scenario", json={"scenario": "running"})
    assert response.status_code == 200
    assert response.json()["data"]["scenario"] == "running"
    assert client.get("/api/mock/scenario").json()["data"]["current_scenario"] == "running"


def test_unknown_scenario(client):
    response = client.post("/api/mock/scenario", json={"scenario": "apocalypse"})
    assert response.status_code == 400
    assert "Scenario not found: apocalypse" in response.json()["error"]


def test_scenario_requires_name(client):
    response = client.post("/api/mock/scenario", json={})
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_inject_and_clear_fault(client, provider):
    response = client.post("/api/mock/fault", json={
        "operation": "getCosts", "fail_next": True, "error_code": "X", "error_message": "Y",
    })
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["operation"] == "getCosts"
    assert data["policy"]["mode"] == "fail-next"

    faults = client.get("/api/mock/fault").json()["data"]
    assert faults["operation_failures"]["getCosts"]["error_code"] == "X"

    response = client.delete("/api/mock/fault", params={"operation": "getCosts"})
    assert response.status_code == 200
    assert client.get("/api/mock/fault").json()["data"]["operation_failures"] == {}
    assert provider.get_costs().total_cost == "15.50"


def test_inject_fault_requires_operation(client):
    response = client.post("/api/mock/fault", json={"always_fail": True})
    assert response.status_code == 400
    assert "Operation name is required" in response.json()["error"]


def test_clear_all_faults(client, faults):
    faults.inject_fault("getCosts", always_fail=True)
    faults.inject_fault("listBackups", fail_next=True)
    response = client.delete("/api/mock/fault")
    assert response.status_code == 200
    assert response.json()["data"]["message"] == "All fault injections cleared"
    assert faults.get_fault_config().operation_failures == {}


def test_clear_fault_with_empty_operation_is_rejected(client, faults):
    faults.inject_fault("getCosts", always_fail=True)
    response = client.delete("/api/mock/fault", params={"operation": ""})
    assert response.status_code == 400
    assert "Operation name is required" in response.json()["error"]
    assert "getCosts" in faults.get_fault_config().operation_failures


def test_inject_fault_camel_case_body(client, provider):
    response = client.post("/api/mock/fault", json={
        "operation": "getCosts", "failNext": True, "errorCode": "Throttling",
    })
    assert response.status_code == 200
    assert response.json()["data"]["policy"]["mode"] == "fail-next"
    assert response.json()["data"]["policy"]["error_code"] == "Throttling"


def test_patch_camel_case_body(client, store):
    response = client.post("/api/mock/patch", json={
        "instance": {"hasVolume": False},
        "faults": {
            "globalLatencyMs": 50,
            "operationFailures": {"listBackups": {"failNext": True}},
        },
    })
    assert response.status_code == 200
    state = store.get_state()
    assert state.instance.has_volume is False
    assert state.faults.global_latency_ms == 50
    assert state.faults.operation_failures["listBackups"].mode == "fail-next"


def test_reset(client, store):
    pristine = client.get("/api/mock/state").json()["data"]
    client.post("/api/mock/scenario", json={"scenario": "errors"})
    client.post("/api/mock/patch", json={"parameters": {"/x": "y"}})

    response = client.post("/api/mock/reset")
    assert response.status_code == 200
    assert client.get("/api/mock/state").json()["data"] == pristine


def test_settle(client, provider):
    provider.start_instance()
    response = client.post("/api/mock/settle")
    assert response.status_code == 200
    assert response.json()["data"]["state"] == "running"


def test_settle_without_instance(client):
    client.post("/api/mock/patch", json={"instance": None})
    response = client.post("/api/mock/settle")
    assert response.status_code == 404
    assert response.json()["success"] is False


def test_default_backend_from_environment(tmp_path, monkeypatch):
    state_file = tmp_path / "shared.json"
    monkeypatch.setenv("MC_BACKEND_MODE", "mock")
    monkeypatch.setenv("GSMOCK_STATE_FILE", str(state_file))
    client = TestClient(create_app())
    client.post("/api/mock/scenario", json={"scenario": "running"})
    assert state_file.exists()
