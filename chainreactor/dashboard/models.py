"""
Request/response models for the dashboard API
"""
from pydantic import BaseModel
from typing import Optional, List, Dict, Any


class PipelineStartRequest(BaseModel):
    continue_on_failure: Optional[bool] = None  # None = use configured default
    timeout_seconds: Optional[float] = None  # per-stage timeout override


class PipelineStartResponse(BaseModel):
    name: str
    run_id: str
    status: str


class PipelineStopResponse(BaseModel):
    name: str
    stopped: bool


class StageInfo(BaseModel):
    id: str
    display_name: str
    working_directory: str
    command: str
    enabled: bool
    command_override: Optional[str] = None


class ProfileSummary(BaseModel):
    name: str
    enabled_count: int
    total_count: int
    running: bool


class StageStatusInfo(BaseModel):
    id: str
    status: str


class PipelineStatusResponse(BaseModel):
    name: str
    run_id: Optional[str] = None
    running: bool
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    stages: List[StageStatusInfo] = []
    outcome: Optional[Dict[str, Any]] = None


class OutputChunk(BaseModel):
    text: str
    kind: str


class PipelineOutputResponse(BaseModel):
    name: str
    running: bool
    chunks: List[OutputChunk] = []


class ProfileLayout(BaseModel):
    """A profile's stages in run order, disabled ids and command overrides"""
    ordered_ids: List[str] = []
    disabled_ids: List[str] = []
    command_overrides: Dict[str, str] = {}


class ProfileRenameRequest(BaseModel):
    new_name: str
