from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from gsmock.mock.backend import create_mock_backend, reset_mock_backend
from gsmock.mock.universe import BackupInfo, CostLine, CostSnapshot, period_bounds


FIXED_NOW = datetime(2025, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock; call ``advance`` to move time forward."""

    def __init__(self, now=FIXED_NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _isolate_backend(monkeypatch):
    """Keep tests off the process-wide backend and the real state file."""
    monkeypatch.delenv("GSMOCK_STATE_FILE", raising=False)
    monkeypatch.delenv("MC_BACKEND_MODE", raising=False)
    reset_mock_backend()
    yield
    reset_mock_backend()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep():
    return MagicMock()


@pytest.fixture
def backend(clock, fake_sleep):
    """In-memory backend with a fixed clock and recorded (not real) sleeps."""
    return create_mock_backend(clock=clock, sleep=fake_sleep)


@pytest.fixture
def store(backend):
    return backend.store


@pytest.fixture
def faults(backend):
    return backend.faults


@pytest.fixture
def scenarios(backend):
    return backend.scenarios


@pytest.fixture
def provider(backend):
    return backend.provider


@pytest.fixture
def control(backend):
    return backend.control


@pytest.fixture
def running(scenarios):
    """Backend switched to the ``running`` scenario."""
    scenarios.apply_scenario("running")
    return scenarios


# ── Record factories ──


@pytest.fixture
def make_backup():
    """Factory for BackupInfo with sensible defaults. Override any field via kwargs."""
    def _make(**overrides):
        defaults = dict(
            name="minecraft-backup-2025-03-14", date="2025-03-14T12:00:00+00:00", size="1.5 GB",
        )
        defaults.update(overrides)
        return BackupInfo(**defaults)
    return _make


@pytest.fixture
def make_cost_snapshot():
    """Factory for CostSnapshot; ``total`` is also the single EC2 line item."""
    def _make(period="current-month", total="42.00", **overrides):
        defaults = dict(
            period=period_bounds(period, FIXED_NOW), total_cost=total, currency="USD",
            breakdown=[CostLine(service="Amazon EC2", cost=total)],
            fetched_at=FIXED_NOW.isoformat(),
        )
        defaults.update(overrides)
        return CostSnapshot(**defaults)
    return _make


@pytest.fixture
def make_client_error():
    """Factory for botocore ClientError."""
    def _make(code: str, message: str = "error"):
        return ClientError({"Error": {"Code": code, "Message": message}}, "TestOp")
    return _make
