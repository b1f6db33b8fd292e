"""
ChainReactor - run build scripts across many modules, in order

Discovers build units, executes one shell command per unit sequentially and
reports per-stage progress. Several named pipelines may run concurrently.
"""

from chainreactor.pipeline.state import (
    PipelineRunOutcome,
    PipelineSpec,
    RunErrorKind,
    RunResult,
    StageSpec,
    StageStatus,
    StreamKind,
)
from chainreactor.pipeline.orchestrator import PipelineOrchestrator
from chainreactor.pipeline.registry import RunRegistry
from chainreactor.services.process_runner import ProcessRunner

__version__ = "0.3.0"

__all__ = [
    'PipelineOrchestrator',
    'PipelineRunOutcome',
    'PipelineSpec',
    'ProcessRunner',
    'RunErrorKind',
    'RunRegistry',
    'RunResult',
    'StageSpec',
    'StageStatus',
    'StreamKind',
]
