"""Typed partial-universe payloads.

``UniversePatch`` is the one shape used for patch bodies arriving over HTTP,
for scenario definitions and for reloading a persisted state file. Fields left
unset are left alone when the patch is applied.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from gsmock.mock.universe import (
    ALWAYS_FAIL,
    FAIL_NEXT,
    BackupInfo,
    BlockDeviceMapping,
    CommandRecord,
    CostSnapshot,
    FaultPolicy,
    LifecycleState,
)


# Bodies are accepted in snake_case or camelCase.
_PAYLOAD_CONFIG = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)

CostPeriod = Literal["current-month", "last-month", "last-30-days"]


class InstancePatch(BaseModel):
    model_config = _PAYLOAD_CONFIG

    instance_id: str | None = None
    state: LifecycleState | None = None
    public_ip: str | None = None
    has_volume: bool | None = None
    availability_zone: str | None = None
    block_device_mappings: list[BlockDeviceMapping] | None = None
    transition_target: LifecycleState | None = None
    settle_polls: int | None = Field(default=None, ge=0)
    last_updated: str | None = None


class StackPatch(BaseModel):
    model_config = _PAYLOAD_CONFIG

    exists: bool | None = None
    status: str | None = None
    stack_id: str | None = None
    stack_name: str | None = None


class FaultPolicyModel(BaseModel):
    model_config = _PAYLOAD_CONFIG

    mode: Literal["fail-next", "always-fail"] | None = None
    latency_ms: int | None = Field(default=None, ge=0)
    error_code: str | None = None
    error_message: str | None = None
    fail_next: bool | None = None
    always_fail: bool | None = None

    def to_policy(self) -> FaultPolicy:
        mode = self.mode
        if mode is None and self.always_fail:
            mode = ALWAYS_FAIL
        elif mode is None and self.fail_next:
            mode = FAIL_NEXT
        return FaultPolicy(
            mode=mode, latency_ms=self.latency_ms,
            error_code=self.error_code, error_message=self.error_message,
        )


class FaultsPatch(BaseModel):
    model_config = _PAYLOAD_CONFIG

    global_latency_ms: int | None = Field(default=None, ge=0)
    operation_failures: dict[str, FaultPolicyModel] | None = None


class UniversePatch(BaseModel):
    model_config = _PAYLOAD_CONFIG

    instance: InstancePatch | None = None
    parameters: dict[str, str] | None = None
    backups: list[BackupInfo] | None = None
    costs: dict[CostPeriod, CostSnapshot] | None = None
    stack: StackPatch | None = None
    faults: FaultsPatch | None = None
    commands: list[CommandRecord] | None = None
    scenario: str | None = None


class FaultRequest(BaseModel):
    """Body of a fault injection call."""

    model_config = _PAYLOAD_CONFIG

    operation: str = Field(min_length=1)
    latency: int | None = Field(default=None, ge=0)
    fail_next: bool = False
    always_fail: bool = False
    error_code: str | None = None
    error_message: str | None = None

