"""
Run-list construction - merge discovered stages with a persisted layout

Applied once per run, before the orchestrator sees the stages: order,
disabled filter and command overrides. The orchestrator itself has no
notion of "disabled".
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple

from chainreactor.models import PipelineLayout
from .state import StageSpec


@dataclass(frozen=True)
class RunList:
    """Stages to execute plus what was left out and why"""
    stages: Tuple[StageSpec, ...] = ()
    total_count: int = 0
    missing_ids: Tuple[str, ...] = field(default_factory=tuple)
    disabled_ids: Tuple[str, ...] = field(default_factory=tuple)


def apply_order(stages: Iterable[StageSpec], ordered_ids: Sequence[str]) -> List[StageSpec]:
    """
    Stages listed in `ordered_ids` first, in that order; the rest keep their
    original relative order after them.
    """
    stages = list(stages)
    by_id = {stage.id: stage for stage in stages}
    ordered = []
    seen = set()
    for stage_id in ordered_ids:
        stage = by_id.get(stage_id)
        if stage is not None and stage_id not in seen:
            ordered.append(stage)
            seen.add(stage_id)
    ordered.extend(stage for stage in stages if stage.id not in seen)
    return ordered


def build_run_list(
    candidates: Iterable[StageSpec],
    layout: PipelineLayout,
    include_unlisted: bool = True
) -> RunList:
    """
    Merge discovered candidates with a layout.

    Args:
        candidates: Discovered stages (default commands)
        layout: Saved order, disabled ids and command overrides
        include_unlisted: True for the working list (every candidate, saved
            order applied); False for a profile (only its listed ids)

    Returns:
        RunList with enabled stages in execution order
    """
    candidates = list(candidates)
    if include_unlisted:
        ordered = apply_order(candidates, layout.ordered_ids)
        missing: List[str] = []
    else:
        by_id = {stage.id: stage for stage in candidates}
        ordered = []
        missing = []
        for stage_id in dict.fromkeys(layout.ordered_ids):
            stage = by_id.get(stage_id)
            if stage is None:
                missing.append(stage_id)
            else:
                ordered.append(stage)

    stages = []
    disabled = []
    for stage in ordered:
        if stage.id in layout.disabled_ids:
            disabled.append(stage.id)
            continue
        override = layout.command_overrides.get(stage.id)
        if override is not None and override.strip():
            stage = stage.with_command(override.strip())
        stages.append(stage)

    return RunList(
        stages=tuple(stages),
        total_count=len(ordered),
        missing_ids=tuple(missing),
        disabled_ids=tuple(disabled)
    )
