"""
Pipeline endpoints – thin API layer over PipelineService
"""

import logging
from contextlib import contextmanager
from typing import Optional

from fastapi import APIRouter, HTTPException, Request

from chainreactor.dashboard.models import (
    OutputChunk,
    PipelineOutputResponse,
    PipelineStartRequest,
    PipelineStartResponse,
    PipelineStatusResponse,
    PipelineStopResponse,
    ProfileLayout,
    ProfileRenameRequest,
    ProfileSummary,
    StageInfo,
)
from chainreactor.exceptions import (
    EmptyRunListError,
    PipelineAlreadyRunningError,
    PipelineNotFoundError,
)
from chainreactor.models import PipelineLayout

router = APIRouter(prefix="/api/pipelines", tags=["pipelines"])
logger = logging.getLogger(__name__)


def get_service(request: Request):
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(503, "Pipeline service not available")
    return service


def _require_known(service, name: str) -> None:
    try:
        service.layout_for(name)
    except PipelineNotFoundError as e:
        raise HTTPException(404, str(e))


# ---------------------------------------------------------------------
# Discovery & profiles
# ---------------------------------------------------------------------

@router.get("/stages")
def list_stages(request: Request):
    """Discovered stages of the working list, in saved order"""
    service = get_service(request)
    layout = service.store.current_layout()
    return [
        StageInfo(
            id=stage.id,
            display_name=stage.display_name,
            working_directory=stage.working_directory,
            command=stage.command,
            enabled=layout.is_enabled(stage.id),
            command_override=layout.command_overrides.get(stage.id),
        )
        for stage in service.discover()
    ]


@router.get("/profiles")
def list_profiles(request: Request):
    service = get_service(request)
    return [ProfileSummary(**summary) for summary in service.profile_summaries()]


@router.get("/profiles/{name}")
def get_profile(name: str, request: Request):
    service = get_service(request)
    profile = service.store.get_profile(name)
    if profile is None:
        raise HTTPException(404, str(PipelineNotFoundError(name)))
    return _to_layout(profile)


@router.put("/profiles/{name}")
def update_profile(name: str, body: ProfileLayout, request: Request):
    """
    Replace a profile's stage order, disabled ids and command overrides.
    Disabled ids and overrides for stages not in `ordered_ids` are dropped.
    """
    service = get_service(request)
    layout = PipelineLayout(
        ordered_ids=body.ordered_ids,
        disabled_ids=set(body.disabled_ids),
        command_overrides=body.command_overrides,
    )
    with _profile_errors():
        return _to_layout(service.update_profile(name, layout))


@router.post("/profiles/{name}/rename")
def rename_profile(name: str, body: ProfileRenameRequest, request: Request):
    service = get_service(request)
    with _profile_errors():
        service.rename_profile(name, body.new_name)
    logger.info(f"[PROFILE] Renamed {name!r} -> {body.new_name!r}")
    return {"name": body.new_name.strip()}


@router.delete("/profiles/{name}")
def delete_profile(name: str, request: Request):
    service = get_service(request)
    with _profile_errors():
        service.delete_profile(name)
    return {"name": name, "deleted": True}


def _to_layout(profile: PipelineLayout) -> ProfileLayout:
    return ProfileLayout(
        ordered_ids=profile.ordered_ids,
        disabled_ids=sorted(profile.disabled_ids),
        command_overrides=profile.command_overrides,
    )


@contextmanager
def _profile_errors():
    try:
        yield
    except PipelineNotFoundError as e:
        raise HTTPException(404, str(e))
    except PipelineAlreadyRunningError as e:
        raise HTTPException(409, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))


# ---------------------------------------------------------------------
# Run lifecycle
# ---------------------------------------------------------------------

@router.post("/{name}/start")
def start_pipeline(name: str, request: Request, body: Optional[PipelineStartRequest] = None):
    """
    Start the named pipeline ("current" or a profile name).

    Request body (JSON, optional):
    {
        "continue_on_failure": true/false,  # defaults to the configured policy
        "timeout_seconds": 120              # per-stage timeout override
    }
    """
    service = get_service(request)
    body = body or PipelineStartRequest()
    logger.info(f"[START] Starting pipeline {name!r}: continue_on_failure={body.continue_on_failure}")

    try:
        run_id = service.start(
            name,
            continue_on_failure=body.continue_on_failure,
            timeout_seconds=body.timeout_seconds,
        )
    except PipelineNotFoundError as e:
        raise HTTPException(404, str(e))
    except EmptyRunListError as e:
        raise HTTPException(400, str(e))
    except PipelineAlreadyRunningError as e:
        raise HTTPException(409, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))

    return PipelineStartResponse(name=name, run_id=run_id, status="running")


@router.post("/{name}/stop")
def stop_pipeline(name: str, request: Request):
    service = get_service(request)
    stopped = service.stop(name)
    if not stopped:
        logger.info(f"[STOP] Pipeline {name!r} is not running")
    return PipelineStopResponse(name=name, stopped=stopped)


# ---------------------------------------------------------------------
# Status & output
# ---------------------------------------------------------------------

@router.get("/{name}/status")
def pipeline_status(name: str, request: Request):
    service = get_service(request)
    status = service.status(name)
    if status is None:
        _require_known(service, name)
        return PipelineStatusResponse(name=name, running=False)
    return PipelineStatusResponse(**status)


@router.get("/{name}/output")
def pipeline_output(name: str, request: Request, limit: Optional[int] = None):
    """Buffered output of the latest run, oldest first"""
    service = get_service(request)
    chunks = service.output(name, limit)
    if chunks is None:
        _require_known(service, name)
        chunks = []
    return PipelineOutputResponse(
        name=name,
        running=service.is_running(name),
        chunks=[OutputChunk(text=text, kind=kind.value) for text, kind in chunks],
    )
