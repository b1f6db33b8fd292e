"""
Pipeline data model, sinks and run-list construction

Note: PipelineOrchestrator is in pipeline/orchestrator.py and RunRegistry in
pipeline/registry.py; import them from there.
"""

from .state import (
    PipelineRunOutcome,
    PipelineSpec,
    RunErrorKind,
    RunResult,
    StageSpec,
    StageStatus,
    StreamKind,
)
from .sinks import CompositeStatusSink, OutputBuffer, OutputSink, StatusSink, tee_output
from .run_list import RunList, apply_order, build_run_list

__all__ = [
    'CompositeStatusSink',
    'OutputBuffer',
    'OutputSink',
    'PipelineRunOutcome',
    'PipelineSpec',
    'RunErrorKind',
    'RunList',
    'RunResult',
    'StageSpec',
    'StageStatus',
    'StatusSink',
    'StreamKind',
    'apply_order',
    'build_run_list',
    'tee_output',
]
