"""
Pipeline Orchestrator - Runs a PipelineSpec's stages sequentially

Single Responsibility: Drive one ProcessRunner per stage, track stage status,
apply the stop-on-failure / continue-on-failure policy
"""

import logging
import threading
from typing import Callable, Dict, Iterable, Optional

from chainreactor.services.process_runner import ProcessRunner
from .sinks import OutputSink, StatusSink, discard_output
from .state import (
    PipelineRunOutcome,
    PipelineSpec,
    RunErrorKind,
    RunResult,
    StageSpec,
    StageStatus,
    StreamKind,
)


class PipelineOrchestrator:
    """
    Sequential stage runner with a per-stage FSM:

        PENDING -> RUNNING -> SUCCESS | FAILED
        PENDING -> SKIPPED              (stop requested / earlier failure)
        RUNNING -> SKIPPED              (process killed by stop)

    Each instance owns its own ProcessRunner and status map and shares no
    mutable state with other instances. run() never raises.
    """

    def __init__(self, runner: Optional[ProcessRunner] = None, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.runner = runner or ProcessRunner(logger=self.logger)

        self._lock = threading.Lock()
        self._running = False
        self._stop_event = threading.Event()
        self._statuses: Dict[str, StageStatus] = {}

    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def statuses(self) -> Dict[str, StageStatus]:
        """Snapshot of the current (or last) run's stage statuses"""
        with self._lock:
            return dict(self._statuses)

    def stop(self) -> None:
        """
        Request a stop.

        Remaining stages are skipped at the next stage boundary and a live
        process is killed right away. No-op when no run is active.
        """
        with self._lock:
            if not self._running:
                self.logger.debug("Stop ignored: pipeline is not running")
                return
            self.logger.info("Stop requested")
            self._stop_event.set()
        self.runner.stop()

    def run(
        self,
        spec: PipelineSpec,
        output_sink: Optional[OutputSink] = None,
        status_sink: Optional[StatusSink] = None
    ) -> Optional[PipelineRunOutcome]:
        """
        Run every stage of `spec` in order.

        Args:
            spec: Authoritative run-list (already filtered by the caller)
            output_sink: Receives runner and orchestrator output
            status_sink: Receives started / status changed / finished events

        Returns:
            PipelineRunOutcome, or None if this instance was already running
        """
        with self._lock:
            if self._running:
                self.logger.warning(f"Pipeline {spec.name!r} is already running - ignoring run request")
                return None
            self._running = True
            # Fresh flag per run: an earlier stop() never leaks into this run
            self._stop_event = threading.Event()
            self._statuses = {}
            stop_event = self._stop_event

        output = output_sink or discard_output
        status = status_sink or StatusSink()
        stages = list(spec.stages)
        total = len(stages)

        success = True
        first_failed: Optional[str] = None
        stopped = False

        self.logger.info(f"Starting pipeline {spec.name!r} with {total} stage(s)")
        try:
            self._notify(status.on_pipeline_started)
            for stage in stages:
                self._set_status(status, stage.id, StageStatus.PENDING)

            for index, stage in enumerate(stages):
                if stop_event.is_set():
                    self.logger.info("Stop requested - skipping remaining stages")
                    self._emit(output, f"⏹ Stop requested, skipping {total - index} remaining stage(s)\n")
                    self._skip(status, stages[index:])
                    success = False
                    stopped = True
                    break

                self.logger.info(f"Running stage {index + 1}/{total}: {stage.display_name}")
                self._emit(output, f"[{index + 1}/{total}] {stage.display_name}\n")
                self._set_status(status, stage.id, StageStatus.RUNNING)

                result = self._execute_stage(stage, output, stop_event)

                if result.error_kind is RunErrorKind.STOPPED or (stop_event.is_set() and not result.success):
                    self.logger.info(f"Stage {stage.display_name} interrupted by stop request")
                    self._skip(status, stages[index:])
                    success = False
                    stopped = True
                    break

                if result.success:
                    self.logger.info(f"✓ Stage {stage.display_name} succeeded")
                    self._set_status(status, stage.id, StageStatus.SUCCESS)
                    continue

                self.logger.warning(
                    f"✗ Stage {stage.display_name} failed "
                    f"(exit code: {result.exit_code}, error: {result.error_message or 'none'})"
                )
                self._set_status(status, stage.id, StageStatus.FAILED)
                success = False
                if first_failed is None:
                    first_failed = stage.id

                if not spec.continue_on_failure:
                    remaining = stages[index + 1:]
                    if remaining:
                        self._emit(output, f"Skipping {len(remaining)} remaining stage(s) after failure\n")
                    self._skip(status, remaining)
                    break

        except Exception as e:
            self.logger.error(f"Pipeline {spec.name!r} aborted by unexpected error: {e}", exc_info=True)
            success = False
            with self._lock:
                unfinished = [s for s in stages if not self._statuses.get(s.id, StageStatus.PENDING).is_terminal]
            self._skip(status, unfinished)

        finally:
            if stopped:
                first_failed = None
            with self._lock:
                outcome = PipelineRunOutcome(
                    pipeline_name=spec.name,
                    success=success,
                    first_failed_stage_id=first_failed,
                    statuses=self._statuses,
                    stopped=stopped
                )
                self._running = False

            summary = "succeeded" if success else ("stopped" if stopped else "failed")
            self.logger.info(f"Pipeline {spec.name!r} {summary}")
            self._emit(output, f"Pipeline {spec.name} {summary}\n")
            self._notify(status.on_pipeline_finished, success, first_failed)

        return outcome

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _execute_stage(self, stage: StageSpec, output: OutputSink, stop_event: threading.Event) -> RunResult:
        try:
            return self.runner.execute(
                stage.command,
                stage.working_directory,
                stage.timeout_seconds,
                output,
                cancel_event=stop_event
            )
        except Exception as e:
            # ProcessRunner normalizes its own failures; this guards substitutes
            self.logger.error(f"Runner raised for stage {stage.display_name}: {e}", exc_info=True)
            return RunResult.infra_failure(RunErrorKind.SPAWN_FAILURE, str(e))

    def _set_status(self, sink: StatusSink, stage_id: str, status: StageStatus) -> None:
        with self._lock:
            self._statuses[stage_id] = status
        self._notify(sink.on_status_changed, stage_id, status)

    def _skip(self, sink: StatusSink, stages: Iterable[StageSpec]) -> None:
        for stage in stages:
            self._set_status(sink, stage.id, StageStatus.SKIPPED)

    def _emit(self, output: OutputSink, text: str) -> None:
        self._notify(output, text, StreamKind.SYSTEM)

    def _notify(self, callback: Callable, *args) -> None:
        """Invoke a sink callback; a failing sink never breaks the run"""
        try:
            callback(*args)
        except Exception as e:
            self.logger.warning(f"Sink callback {getattr(callback, '__name__', callback)!r} failed: {e}")
