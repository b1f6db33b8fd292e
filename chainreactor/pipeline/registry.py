"""
Run Registry - Named, concurrently running pipelines

Maps pipeline name -> run entry (orchestrator, output history, running flag).
Prevents a second concurrent run under the same name and routes stop requests.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from .orchestrator import PipelineOrchestrator
from .sinks import CompositeStatusSink, OutputBuffer, OutputSink, StatusSink, tee_output
from .state import PipelineRunOutcome, PipelineSpec, StageStatus, StreamKind


@dataclass
class RunEntry:
    """Registry entry for one pipeline name; kept after the run finishes"""
    name: str
    orchestrator: PipelineOrchestrator
    output: OutputBuffer
    running: bool = False
    stop_requested: bool = False
    thread: Optional[threading.Thread] = None
    outcome: Optional[PipelineRunOutcome] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    stage_ids: Tuple[str, ...] = field(default_factory=tuple)


class _EntryTracker(StatusSink):
    """Keeps the registry entry in sync with its run's lifecycle"""

    def __init__(self, registry: 'RunRegistry', entry: RunEntry):
        self.registry = registry
        self.entry = entry

    def on_pipeline_started(self) -> None:
        # A stop that arrived before the thread reached run() is applied now
        with self.registry._lock:
            stop_requested = self.entry.stop_requested
        if stop_requested:
            self.entry.orchestrator.stop()

    def on_pipeline_finished(self, success: bool, failed_stage_id: Optional[str]) -> None:
        with self.registry._lock:
            self.entry.running = False
            self.entry.finished_at = datetime.now()


class RunRegistry:
    """
    Tracks zero or more independently named pipeline runs.

    Each run gets a fresh orchestrator on its own daemon thread. The
    name -> entry map is the only state shared between runs.
    """

    def __init__(
        self,
        orchestrator_factory: Optional[Callable[[], PipelineOrchestrator]] = None,
        output_history: int = 5000,
        logger: Optional[logging.Logger] = None
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.orchestrator_factory = orchestrator_factory or (lambda: PipelineOrchestrator(logger=self.logger))
        self.output_history = output_history

        self._lock = threading.Lock()
        self._entries: Dict[str, RunEntry] = {}

    def start(
        self,
        name: str,
        spec: PipelineSpec,
        output_sink: Optional[OutputSink] = None,
        status_sink: Optional[StatusSink] = None
    ) -> bool:
        """
        Launch `spec` in the background under `name`.

        Returns:
            True if started, False if a run with that name is still active
        """
        with self._lock:
            previous = self._entries.get(name)
            if previous is not None and previous.running:
                self.logger.warning(f"Pipeline {name!r} is already running")
                return False

            output = previous.output if previous is not None else OutputBuffer(self.output_history)
            output.clear()

            entry = RunEntry(
                name=name,
                orchestrator=self.orchestrator_factory(),
                output=output,
                running=True,
                started_at=datetime.now(),
                stage_ids=spec.stage_ids
            )
            entry.thread = threading.Thread(
                target=self._run_entry,
                args=(entry, spec, output_sink, status_sink),
                name=f"pipeline-{name}",
                daemon=True
            )
            self._entries[name] = entry
            entry.thread.start()

        self.logger.info(f"Started pipeline {name!r} ({len(spec.stages)} stage(s))")
        return True

    def stop(self, name: str) -> bool:
        """
        Stop the named pipeline if it is running.

        Returns:
            True if a stop was forwarded, False if nothing was running
        """
        with self._lock:
            entry = self._entries.get(name)
            if entry is None or not entry.running:
                return False
            entry.stop_requested = True
            orchestrator = entry.orchestrator

        self.logger.info(f"Stopping pipeline {name!r}")
        entry.output(f"⏹ Stop requested for pipeline: {name}\n", StreamKind.SYSTEM)
        orchestrator.stop()
        return True

    def is_running(self, name: str) -> bool:
        with self._lock:
            entry = self._entries.get(name)
            return entry is not None and entry.running

    def names(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def entry(self, name: str) -> Optional[RunEntry]:
        with self._lock:
            return self._entries.get(name)

    def output(self, name: str) -> Optional[OutputBuffer]:
        entry = self.entry(name)
        return entry.output if entry is not None else None

    def outcome(self, name: str) -> Optional[PipelineRunOutcome]:
        entry = self.entry(name)
        return entry.outcome if entry is not None else None

    def statuses(self, name: str) -> Dict[str, StageStatus]:
        """Live stage statuses of the named pipeline (empty if unknown)"""
        entry = self.entry(name)
        if entry is None:
            return {}
        return entry.orchestrator.statuses()

    def wait(self, name: str, timeout: Optional[float] = None) -> Optional[PipelineRunOutcome]:
        """Block until the named run's thread finishes; returns its outcome"""
        entry = self.entry(name)
        if entry is None or entry.thread is None:
            return None
        entry.thread.join(timeout)
        return entry.outcome

    def _run_entry(
        self,
        entry: RunEntry,
        spec: PipelineSpec,
        output_sink: Optional[OutputSink],
        status_sink: Optional[StatusSink]
    ) -> None:
        outcome = None
        try:
            outcome = entry.orchestrator.run(
                spec,
                output_sink=tee_output(entry.output, output_sink),
                status_sink=CompositeStatusSink(_EntryTracker(self, entry), status_sink)
            )
        except Exception as e:
            self.logger.error(f"Pipeline {entry.name!r} thread failed: {e}", exc_info=True)
        finally:
            with self._lock:
                entry.outcome = outcome
                entry.running = False
                if entry.finished_at is None:
                    entry.finished_at = datetime.now()
