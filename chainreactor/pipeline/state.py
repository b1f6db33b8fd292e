"""
Pipeline data model - stage specs, run results and per-stage status

Single Responsibility: Shared value types for the runner, orchestrator and registry
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple


class StageStatus(Enum):
    """Status of a stage within one pipeline run"""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (StageStatus.SUCCESS, StageStatus.FAILED, StageStatus.SKIPPED)


class StreamKind(Enum):
    """Origin of a chunk of output"""
    STDOUT = "stdout"
    STDERR = "stderr"
    SYSTEM = "system"


class RunErrorKind(Enum):
    """
    Infra-level reasons a command did not run to a normal exit.

    A clean exit with a non-zero code is NOT an error kind - it is an
    ordinary RunResult with success=False and error_kind=None.
    """
    MISSING_WORKING_DIRECTORY = "missing_working_directory"
    MISSING_COMMAND = "missing_command"
    MISSING_SCRIPT_FILE = "missing_script_file"
    TIMEOUT = "timeout"
    SPAWN_FAILURE = "spawn_failure"
    STOPPED = "stopped"
    RUNNER_BUSY = "runner_busy"


@dataclass(frozen=True)
class StageSpec:
    """
    One build unit: a command executed in a working directory.

    working_directory is only checked when the stage executes.
    """
    id: str
    display_name: str
    working_directory: str
    command: str
    timeout_seconds: Optional[float] = 300

    def with_command(self, command: str) -> 'StageSpec':
        """Create a copy with a different command"""
        return StageSpec(
            id=self.id,
            display_name=self.display_name,
            working_directory=self.working_directory,
            command=command,
            timeout_seconds=self.timeout_seconds
        )

    def with_timeout(self, timeout_seconds: Optional[float]) -> 'StageSpec':
        """Create a copy with a different timeout"""
        return StageSpec(
            id=self.id,
            display_name=self.display_name,
            working_directory=self.working_directory,
            command=self.command,
            timeout_seconds=timeout_seconds
        )


@dataclass(frozen=True)
class PipelineSpec:
    """
    Ordered run-list for one pipeline.

    The order of `stages` is the execution order. Stage ids must be unique.
    """
    name: str
    stages: Tuple[StageSpec, ...] = ()
    continue_on_failure: bool = False

    def __post_init__(self):
        # Accept any iterable but store an immutable tuple
        object.__setattr__(self, "stages", tuple(self.stages))
        seen = set()
        for stage in self.stages:
            if stage.id in seen:
                raise ValueError(f"Duplicate stage id in pipeline {self.name!r}: {stage.id}")
            seen.add(stage.id)

    @property
    def stage_ids(self) -> Tuple[str, ...]:
        return tuple(stage.id for stage in self.stages)


@dataclass(frozen=True)
class RunResult:
    """
    Result of one command execution.
    Infra failures carry an error_kind; a normal non-zero exit does not.
    """
    exit_code: int
    success: bool
    stdout: str = ""
    stderr: str = ""
    error_kind: Optional[RunErrorKind] = None
    error_message: Optional[str] = None
    duration_seconds: float = 0.0

    @classmethod
    def infra_failure(
        cls,
        error_kind: RunErrorKind,
        error_message: str,
        stdout: str = "",
        stderr: str = "",
        duration_seconds: float = 0.0
    ) -> 'RunResult':
        """Build a failed result for a run that did not reach a normal exit"""
        return cls(
            exit_code=-1,
            success=False,
            stdout=stdout,
            stderr=stderr,
            error_kind=error_kind,
            error_message=error_message,
            duration_seconds=duration_seconds
        )


@dataclass(frozen=True)
class PipelineRunOutcome:
    """
    Immutable snapshot produced exactly once when a run completes.
    """
    pipeline_name: str
    success: bool
    first_failed_stage_id: Optional[str] = None
    statuses: Mapping[str, StageStatus] = field(default_factory=dict)
    stopped: bool = False

    def __post_init__(self):
        object.__setattr__(self, "statuses", MappingProxyType(dict(self.statuses)))

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization"""
        return {
            "pipeline_name": self.pipeline_name,
            "success": self.success,
            "first_failed_stage_id": self.first_failed_stage_id,
            "statuses": {stage_id: status.value for stage_id, status in self.statuses.items()},
            "stopped": self.stopped,
        }
