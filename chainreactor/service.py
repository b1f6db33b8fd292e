"""
Pipeline Service - Main facade

Wires discovery, persisted layout, run-list building, the run registry and
per-run event logs together. Used by both the CLI and the dashboard API.
"""

import logging
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from chainreactor.config import ChainReactorConfig
from chainreactor.exceptions import (
    EmptyRunListError,
    PipelineAlreadyRunningError,
    PipelineNotFoundError,
)
from chainreactor.models import PipelineLayout
from chainreactor.pipeline.orchestrator import PipelineOrchestrator
from chainreactor.pipeline.registry import RunRegistry
from chainreactor.pipeline.run_list import RunList, apply_order, build_run_list
from chainreactor.pipeline.sinks import CompositeStatusSink, OutputSink, StatusSink
from chainreactor.pipeline.state import PipelineSpec, StageSpec, StreamKind
from chainreactor.services.event_logger import EventLogger, EventLogStatusSink
from chainreactor.services.module_scanner import ModuleScanner
from chainreactor.services.process_runner import ProcessRunner
from chainreactor.services.profile_store import ProfileStore


# Name of the working list (everything discovered, saved order applied)
CURRENT_PIPELINE = "current"


class PipelineService:
    """
    Coordinates discovery, layouts and named runs.
    """

    def __init__(
        self,
        config: ChainReactorConfig,
        store: Optional[ProfileStore] = None,
        scanner: Optional[ModuleScanner] = None,
        registry: Optional[RunRegistry] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.store = store or ProfileStore(config.state_file, logger=self.logger)
        self.scanner = scanner or ModuleScanner(
            script_name=config.script_name,
            timeout_seconds=config.timeout_seconds,
            logger=self.logger
        )
        self.registry = registry or RunRegistry(
            orchestrator_factory=self._new_orchestrator,
            output_history=config.output_history_lines,
            logger=self.logger
        )
        self._run_ids: Dict[str, str] = {}

    def _new_orchestrator(self) -> PipelineOrchestrator:
        runner = ProcessRunner(logger=self.logger, shell=self.config.shell)
        return PipelineOrchestrator(runner=runner, logger=self.logger)

    # ------------------------------------------------------------------
    # Discovery & layout
    # ------------------------------------------------------------------

    def discover(self) -> List[StageSpec]:
        """Discovered stages in the saved order (default commands, nothing filtered)"""
        stages = self.scanner.scan(
            self.config.root,
            manual_projects=self.store.manual_projects(),
            removed_ids=self.store.removed_ids()
        )
        return apply_order(stages, self.store.get_order())

    def layout_for(self, name: str) -> PipelineLayout:
        """
        Layout of the working list or of a profile.

        Raises:
            PipelineNotFoundError: If `name` is neither CURRENT_PIPELINE nor a profile
        """
        if name == CURRENT_PIPELINE:
            return self.store.current_layout()
        profile = self.store.get_profile(name)
        if profile is None:
            raise PipelineNotFoundError(name)
        return profile

    def build_spec(
        self,
        name: str,
        continue_on_failure: Optional[bool] = None,
        timeout_seconds: Optional[float] = None
    ) -> Tuple[PipelineSpec, RunList]:
        """
        Build the run-list for a pipeline name.

        Raises:
            PipelineNotFoundError: Unknown profile
            EmptyRunListError: No enabled stage left to run
        """
        layout = self.layout_for(name)
        candidates = self.discover()
        run_list = build_run_list(candidates, layout, include_unlisted=(name == CURRENT_PIPELINE))

        if not run_list.total_count:
            raise EmptyRunListError(f"Pipeline '{name}' has no modules to run")
        if not run_list.stages:
            raise EmptyRunListError(f"All modules of pipeline '{name}' are disabled")

        stages = run_list.stages
        if timeout_seconds is not None:
            stages = tuple(stage.with_timeout(timeout_seconds) for stage in stages)

        if continue_on_failure is None:
            continue_on_failure = self.config.continue_on_failure
        spec = PipelineSpec(name=name, stages=stages, continue_on_failure=continue_on_failure)
        return spec, run_list

    # ------------------------------------------------------------------
    # Layout & profile editing
    # ------------------------------------------------------------------

    def save_profile(self, name: str) -> PipelineLayout:
        """Snapshot the working list (discovered order, disabled, overrides) as a profile"""
        name = _profile_name(name)
        self._ensure_editable(name)
        current = self.store.current_layout()
        layout = PipelineLayout(
            ordered_ids=[stage.id for stage in self.discover()],
            disabled_ids=set(current.disabled_ids),
            command_overrides=dict(current.command_overrides)
        )
        self.store.upsert_profile(name, layout, original_name=name)
        return layout

    def update_profile(self, name: str, layout: PipelineLayout) -> PipelineLayout:
        """
        Replace a profile's order, disabled set and overrides.

        Raises:
            PipelineNotFoundError, PipelineAlreadyRunningError
        """
        self._ensure_editable(name)

        def replace(profile: PipelineLayout) -> None:
            profile.ordered_ids = list(dict.fromkeys(layout.ordered_ids))
            profile.disabled_ids = set(layout.disabled_ids)
            profile.command_overrides = {k: v.strip() for k, v in layout.command_overrides.items() if v.strip()}
            _prune(profile)

        return self._edit_profile(name, replace)

    def rename_profile(self, name: str, new_name: str) -> None:
        """
        Raises:
            PipelineNotFoundError: No profile `name`
            PipelineAlreadyRunningError: `name` is running
            ValueError: `new_name` is blank, reserved or taken
        """
        new_name = _profile_name(new_name)
        self._ensure_editable(name)
        profile = self.store.get_profile(name)
        if profile is None:
            raise PipelineNotFoundError(name)
        self.store.upsert_profile(new_name, profile, original_name=name)
        self.logger.info(f"Renamed profile {name!r} -> {new_name!r}")

    def delete_profile(self, name: str) -> None:
        self._ensure_editable(name)
        if not self.store.delete_profile(name):
            raise PipelineNotFoundError(name)

    def set_order(self, name: str, ordered_ids: List[str]) -> None:
        """
        Save the run order of the working list or of a profile.

        For a profile the list is its complete stage list; dropped ids also
        lose their disabled flag and command override.
        """
        self._ensure_editable(name)
        if name == CURRENT_PIPELINE:
            self.store.set_order(ordered_ids)
            return

        def reorder(profile: PipelineLayout) -> None:
            profile.ordered_ids = list(dict.fromkeys(ordered_ids))
            _prune(profile)

        self._edit_profile(name, reorder)

    def set_enabled(self, name: str, stage_id: str, enabled: bool) -> None:
        self._ensure_editable(name)
        if name == CURRENT_PIPELINE:
            self.store.set_enabled(stage_id, enabled)
            return

        def toggle(profile: PipelineLayout) -> None:
            _require_member(name, profile, stage_id)
            if enabled:
                profile.disabled_ids.discard(stage_id)
            else:
                profile.disabled_ids.add(stage_id)

        self._edit_profile(name, toggle)

    def set_command(self, name: str, stage_id: str, command: Optional[str]) -> None:
        """Set a command override; a blank command resets to the default script"""
        self._ensure_editable(name)
        if name == CURRENT_PIPELINE:
            self.store.set_command(stage_id, command)
            return

        def override(profile: PipelineLayout) -> None:
            _require_member(name, profile, stage_id)
            if command is None or not command.strip():
                profile.command_overrides.pop(stage_id, None)
            else:
                profile.command_overrides[stage_id] = command.strip()

        self._edit_profile(name, override)

    def _edit_profile(self, name: str, edit) -> PipelineLayout:
        layout = self.store.edit_profile(name, edit)
        if layout is None:
            raise PipelineNotFoundError(name)
        return layout

    def _ensure_editable(self, name: str) -> None:
        """Profiles cannot be changed while they run; the working list can"""
        if name != CURRENT_PIPELINE and self.registry.is_running(name):
            raise PipelineAlreadyRunningError(name)

    def profile_summaries(self) -> List[Dict]:
        summaries = []
        for name in self.store.profile_names():
            profile = self.store.get_profile(name)
            if profile is None:
                continue
            summaries.append({
                "name": name,
                "enabled_count": profile.enabled_count(),
                "total_count": len(profile.ordered_ids),
                "running": self.registry.is_running(name),
            })
        return summaries

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def start(
        self,
        name: str,
        continue_on_failure: Optional[bool] = None,
        timeout_seconds: Optional[float] = None,
        output_sink: Optional[OutputSink] = None,
        status_sink: Optional[StatusSink] = None
    ) -> str:
        """
        Start a named pipeline in the background.

        Returns:
            run_id of the new run

        Raises:
            PipelineAlreadyRunningError, PipelineNotFoundError, EmptyRunListError
        """
        if self.registry.is_running(name):
            raise PipelineAlreadyRunningError(name)

        spec, run_list = self.build_spec(name, continue_on_failure, timeout_seconds)
        run_id = str(uuid.uuid4())

        banner = [
            f"🧩 [{name}] run {run_id[:8]} started at {datetime.now(self.config.tz).isoformat()} "
            f"({len(run_list.stages)}/{run_list.total_count} module(s))\n"
        ]
        if run_list.missing_ids:
            banner.append(f"⚠ [{name}] {len(run_list.missing_ids)} module(s) not found, skipped\n")

        def emit_banner(text: str, kind: StreamKind) -> None:
            buffer = self.registry.output(name)
            if buffer is not None:
                buffer(text, kind)
            if output_sink is not None:
                output_sink(text, kind)

        event_log = self.config.event_logs_dir / f"pipeline_{_safe_name(name)}_{run_id}.jsonl"
        event_logger = EventLogger(event_log, run_id, name, timezone=self.config.tz, logger=self.logger)
        sink = CompositeStatusSink(
            _RunBanner(banner, emit_banner),
            EventLogStatusSink(event_logger),
            status_sink
        )

        if not self.registry.start(name, spec, output_sink=output_sink, status_sink=sink):
            raise PipelineAlreadyRunningError(name)

        self._run_ids[name] = run_id
        self.logger.info(f"Pipeline {name!r} started (run_id: {run_id})")
        return run_id

    def stop(self, name: str) -> bool:
        return self.registry.stop(name)

    def is_running(self, name: str) -> bool:
        return self.registry.is_running(name)

    def wait(self, name: str, timeout: Optional[float] = None):
        return self.registry.wait(name, timeout)

    def status(self, name: str) -> Optional[Dict]:
        """Status snapshot for a named pipeline, None if it never ran"""
        entry = self.registry.entry(name)
        if entry is None:
            return None
        statuses = entry.orchestrator.statuses()
        outcome = entry.outcome
        return {
            "name": name,
            "run_id": self._run_ids.get(name),
            "running": self.registry.is_running(name),
            "started_at": entry.started_at.isoformat() if entry.started_at else None,
            "finished_at": entry.finished_at.isoformat() if entry.finished_at else None,
            "stages": [
                {"id": stage_id, "status": statuses[stage_id].value}
                for stage_id in entry.stage_ids if stage_id in statuses
            ],
            "outcome": outcome.to_dict() if outcome is not None else None,
        }

    def output(self, name: str, limit: Optional[int] = None) -> Optional[List[Tuple[str, StreamKind]]]:
        buffer = self.registry.output(name)
        if buffer is None:
            return None
        return buffer.chunks(limit)


class _RunBanner(StatusSink):
    """Writes the run header ahead of any stage output"""

    def __init__(self, lines: List[str], emit: OutputSink):
        self.lines = lines
        self.emit = emit

    def on_pipeline_started(self) -> None:
        for line in self.lines:
            self.emit(line, StreamKind.SYSTEM)


def _profile_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValueError("Profile name must not be blank")
    if name == CURRENT_PIPELINE:
        raise ValueError(f"'{CURRENT_PIPELINE}' is reserved for the working list")
    return name


def _require_member(name: str, profile: PipelineLayout, stage_id: str) -> None:
    if stage_id not in profile.ordered_ids:
        raise ValueError(f"Module {stage_id} is not part of profile '{name}'")


def _prune(profile: PipelineLayout) -> None:
    """Drop disabled flags and overrides of ids no longer in the profile"""
    members = set(profile.ordered_ids)
    profile.disabled_ids = {i for i in profile.disabled_ids if i in members}
    profile.command_overrides = {k: v for k, v in profile.command_overrides.items() if k in members}


def _safe_name(name: str) -> str:
    return "".join(c if c.isalnum() or c in "-_" else "_" for c in name)
