import logging
import os
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from gsmock.mock.backend import MockBackend, get_mock_backend
from gsmock.mock.errors import InvalidState, NotFound


logger = logging.getLogger(__name__)

BACKEND_MODE_ENV = "MC_BACKEND_MODE"


class ScenarioRequest(BaseModel):
    scenario: str


def is_mock_mode() -> bool:
    return os.environ.get(BACKEND_MODE_ENV, "").lower() == "mock"


def _require_mock_mode():
    if not is_mock_mode():
        logger.info("Mock control endpoint accessed in non-mock mode")
        raise HTTPException(
            status_code=404, detail="Mock control endpoints are only available in mock mode",
        )


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ok(data) -> dict:
    return {"success": True, "data": data, "timestamp": _timestamp()}


def _error_response(status_code: int, error: Exception | str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": str(error), "timestamp": _timestamp()},
    )


def create_app(backend: MockBackend | None = None) -> FastAPI:
    app = FastAPI(title="Game Server Mock Backend", version="0.1.0")
    backend = backend or get_mock_backend()
    control = backend.control
    router = APIRouter(prefix="/api/mock", dependencies=[Depends(_require_mock_mode)])

    @app.exception_handler(NotFound)
    async def _not_found(request: Request, exc: NotFound):
        return _error_response(404, exc)

    @app.exception_handler(InvalidState)
    async def _invalid_state(request: Request, exc: InvalidState):
        return _error_response(409, exc)

    @app.exception_handler(ValueError)
    async def _bad_request(request: Request, exc: ValueError):
        return _error_response(400, exc)

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(request: Request, exc: RequestValidationError):
        return _error_response(400, f"Invalid request: {exc.errors()}")

    @router.get("/state")
    def get_state():
        return _ok(control.get_state())

    @router.post("/patch")
    def patch_state(body: Any = Body(None)):
        applied = control.patch_state(body)
        return _ok({"message": "State patched successfully", "applied_updates": applied})

    @router.get("/scenario")
    def list_scenarios():
        return _ok({
            "current_scenario": control.get_current_scenario(),
            "available_scenarios": control.list_scenarios(),
        })

    @router.post("/scenario")
    def apply_scenario(req: ScenarioRequest):
        control.apply_scenario(req.scenario)
        return _ok({
            "scenario": req.scenario,
            "message": f"Scenario \"{req.scenario}\" applied successfully",
        })

    @router.get("/fault")
    def get_faults():
        return _ok(control.get_fault_config())

    @router.post("/fault")
    def inject_fault(body: Any = Body(None)):
        policy = control.inject_fault(body)
        return _ok({"operation": body["operation"], "policy": policy})

    @router.delete("/fault")
    def clear_fault(operation: str | None = None):
        control.clear_fault(operation)
        if operation is not None:
            return _ok({"operation": operation, "message": f"Fault cleared for operation \"{operation}\""})
        return _ok({"message": "All fault injections cleared"})

    @router.post("/reset")
    def reset():
        control.reset()
        return _ok({"message": "Mock state reset to default scenario"})

    @router.post("/settle")
    def settle():
        return _ok({"state": control.settle_instance()})

    app.include_router(router)
    return app
