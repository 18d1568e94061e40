"""API route handlers for the flasher control surface."""

from pathlib import Path
from typing import Awaitable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from flasher.api.models import (
    BridgeUpdateRequest,
    ProgressResponse,
    RecoverRequest,
    SuccessResponse,
    UpdateRequest,
)
from flasher.models.results import FlasherError, OperationResult
from flasher.models.status import StageEnum
from flasher.services.engine import FlasherEngine

router = APIRouter(prefix="/api/v1.0")


def get_engine(request: Request) -> FlasherEngine:
    """Engine created by the application lifespan."""
    return request.app.state.engine


@router.get("/progress", response_model=ProgressResponse)
async def get_progress(engine: FlasherEngine = Depends(get_engine)):
    """GET /api/v1.0/progress - Query current operation status.

    Returns:
        ProgressResponse with current action, stage, progress, message and
        the terminal result once the action finished

    Response format (success):
        {
            "code": 200,
            "msg": "success",
            "data": {
                "action": "install",
                "stage": "flashing",
                "progress": 45,
                "message": "Installing ZWA-2_7.23.1.gbl",
                "error": null,
                "result": null
            }
        }

    Response format (failed stage):
        {
            "code": 500,
            "msg": "Operation failed: DIGEST_MISMATCH: Checksum verification failed...",
            "data": {...},
            "stage": "failed",
            "progress": 100
        }
    """
    status = engine.state.get_status()

    if status.stage == StageEnum.FAILED:
        msg = f"Operation failed: {status.error}" if status.error else "Operation failed"
        return ProgressResponse(
            code=500,
            msg=msg,
            data=status,
            stage=status.stage,
            progress=status.progress,
        )
    return ProgressResponse(code=200, msg="success", data=status)


@router.post("/diagnose", response_model=SuccessResponse)
async def post_diagnose(engine: FlasherEngine = Depends(get_engine)):
    """POST /api/v1.0/diagnose - Classify the adapter's health."""
    return _start(engine, engine.diagnose())


@router.post("/install", response_model=SuccessResponse)
async def post_install(engine: FlasherEngine = Depends(get_engine)):
    """POST /api/v1.0/install - Download and install the latest controller firmware."""
    return _start(engine, engine.install_latest())


@router.post("/update", response_model=SuccessResponse)
async def post_update(request: UpdateRequest, engine: FlasherEngine = Depends(get_engine)):
    """POST /api/v1.0/update - Install a controller firmware file.

    Returns code 404 if the file does not exist.
    """
    if not Path(request.path).is_file():
        return JSONResponse(
            status_code=200,
            content={"code": 404, "msg": f"Firmware file not found: {request.path}"},
        )
    return _start(engine, engine.update(request.path))


@router.post("/erase", response_model=SuccessResponse)
async def post_erase(engine: FlasherEngine = Depends(get_engine)):
    """POST /api/v1.0/erase - Erase the controller's NVM."""
    return _start(engine, engine.erase())


@router.post("/recover", response_model=SuccessResponse)
async def post_recover(request: RecoverRequest, engine: FlasherEngine = Depends(get_engine)):
    """POST /api/v1.0/recover - Diagnose and repair the adapter."""
    if request.path and not Path(request.path).is_file():
        return JSONResponse(
            status_code=200,
            content={"code": 404, "msg": f"Firmware file not found: {request.path}"},
        )
    return _start(engine, engine.recover(request.choice, request.path))


@router.post("/bridge/update", response_model=SuccessResponse)
async def post_bridge_update(
    request: BridgeUpdateRequest, engine: FlasherEngine = Depends(get_engine)
):
    """POST /api/v1.0/bridge/update - Install bridge-chip firmware.

    With skip_if_version set, the update is skipped (outcome
    noUpdateNeeded) when the bridge reports that version.
    """
    if request.path and not Path(request.path).is_file():
        return JSONResponse(
            status_code=200,
            content={"code": 404, "msg": f"Firmware file not found: {request.path}"},
        )

    version_check = None
    if request.skip_if_version:
        skip = request.skip_if_version

        def version_check(info: str) -> bool:
            return skip not in info

    return _start(
        engine,
        engine.update_bridge(
            source=request.source,
            path=request.path,
            load_offset=request.load_offset,
            manifest_url=request.manifest_url,
            chip_family=request.chip_family,
            bridge_port=request.bridge_port,
            version_check=version_check,
        ),
    )


@router.post("/cancel", response_model=SuccessResponse)
async def post_cancel(engine: FlasherEngine = Depends(get_engine)):
    """POST /api/v1.0/cancel - Cancel the running action and release the link."""
    cancelled = await engine.cancel()
    return JSONResponse(
        status_code=200,
        content={"code": 200, "msg": "success", "data": {"cancelled": cancelled}},
    )


def _start(engine: FlasherEngine, operation: Awaitable[OperationResult]) -> JSONResponse:
    """Launch an action in the background or answer 409 if one is running."""
    try:
        engine.launch(operation)
    except FlasherError:
        status = engine.state.get_status()
        return JSONResponse(
            status_code=200,
            content={
                "code": 409,
                "msg": f"Operation already in progress: {status.stage.value}",
                "stage": status.stage.value,
                "progress": status.progress,
            },
        )

    return JSONResponse(
        status_code=200,
        content={"code": 200, "msg": "success", "data": None},
    )
