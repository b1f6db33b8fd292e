"""
Tests for PipelineOrchestrator: policies, status protocol, stop
"""

import threading
import time
from unittest.mock import Mock

from chainreactor.pipeline.orchestrator import PipelineOrchestrator
from chainreactor.pipeline.sinks import StatusSink
from chainreactor.pipeline.state import (
    PipelineSpec,
    RunErrorKind,
    RunResult,
    StageStatus,
    StreamKind,
)


def _abc(make_stage, tmp_path):
    return [
        make_stage("A", "touch a_ran; exit 0"),
        make_stage("B", "touch b_ran; exit 1"),
        make_stage("C", "touch c_ran; exit 0"),
    ]


class TestStopOnFailure:
    """Tests for the default policy"""

    def test_failure_skips_remaining(self, make_stage, tmp_path, output, status_sink):
        """Test: [A ok, B fail, C] -> C skipped and never run"""
        spec = PipelineSpec("p", _abc(make_stage, tmp_path))
        outcome = PipelineOrchestrator().run(spec, output, status_sink)

        assert outcome.success is False
        assert outcome.stopped is False
        assert outcome.first_failed_stage_id == "B"
        assert dict(outcome.statuses) == {
            "A": StageStatus.SUCCESS,
            "B": StageStatus.FAILED,
            "C": StageStatus.SKIPPED,
        }
        assert not (tmp_path / "c_ran").exists()
        assert status_sink.events[-1] == ("finished", False, "B")

    def test_callback_order(self, make_stage, tmp_path, output, status_sink):
        """Test: started, all PENDING, per-stage transitions, finished"""
        spec = PipelineSpec("p", _abc(make_stage, tmp_path))
        PipelineOrchestrator().run(spec, output, status_sink)

        assert status_sink.events == [
            ("started",),
            ("status", "A", StageStatus.PENDING),
            ("status", "B", StageStatus.PENDING),
            ("status", "C", StageStatus.PENDING),
            ("status", "A", StageStatus.RUNNING),
            ("status", "A", StageStatus.SUCCESS),
            ("status", "B", StageStatus.RUNNING),
            ("status", "B", StageStatus.FAILED),
            ("status", "C", StageStatus.SKIPPED),
            ("finished", False, "B"),
        ]

    def test_all_succeed(self, make_stage, output, status_sink):
        """Test: every stage succeeds -> success with no failed stage"""
        spec = PipelineSpec("p", [make_stage("A", "true"), make_stage("B", "true")])
        outcome = PipelineOrchestrator().run(spec, output, status_sink)
        assert outcome.success is True
        assert outcome.first_failed_stage_id is None
        assert status_sink.events[-1] == ("finished", True, None)
        assert "Pipeline p succeeded" in output.text(StreamKind.SYSTEM)


class TestContinueOnFailure:
    """Tests for continue_on_failure=True"""

    def test_failure_continues(self, make_stage, tmp_path, output, status_sink):
        """Test: [A ok, B fail, C ok] -> C still runs"""
        spec = PipelineSpec("p", _abc(make_stage, tmp_path), continue_on_failure=True)
        outcome = PipelineOrchestrator().run(spec, output, status_sink)

        assert outcome.success is False
        assert outcome.first_failed_stage_id == "B"
        assert outcome.statuses["C"] is StageStatus.SUCCESS
        assert (tmp_path / "c_ran").exists()
        assert status_sink.events[-1] == ("finished", False, "B")

    def test_first_failure_is_reported(self, make_stage, output, status_sink):
        """Test: with several failures the first one is reported"""
        spec = PipelineSpec(
            "p",
            [make_stage("A", "exit 2"), make_stage("B", "exit 3"), make_stage("C", "true")],
            continue_on_failure=True
        )
        outcome = PipelineOrchestrator().run(spec, output, status_sink)
        assert outcome.first_failed_stage_id == "A"
        assert outcome.statuses["B"] is StageStatus.FAILED


class TestEdgeCases:
    """Tests for empty run-lists, infra failures and misbehaving sinks"""

    def test_empty_run_list(self, output, status_sink):
        """Test: empty list -> started then finished(True, None), no status changes"""
        outcome = PipelineOrchestrator().run(PipelineSpec("empty", []), output, status_sink)
        assert outcome.success is True
        assert status_sink.events == [("started",), ("finished", True, None)]

    def test_missing_directory_fails_stage(self, make_stage, tmp_path, output, status_sink):
        """Test: an infra failure marks the stage FAILED"""
        spec = PipelineSpec("p", [make_stage("A", "true", workdir=tmp_path / "gone"), make_stage("B", "true")])
        outcome = PipelineOrchestrator().run(spec, output, status_sink)
        assert outcome.first_failed_stage_id == "A"
        assert outcome.statuses["B"] is StageStatus.SKIPPED

    def test_raising_sinks_do_not_break_run(self, make_stage, output):
        """Test: sinks that raise are logged and the run completes"""
        class BadSink(StatusSink):
            def on_status_changed(self, stage_id, status):
                raise RuntimeError("status sink broke")

        def bad_output(text, kind):
            raise RuntimeError("output sink broke")

        spec = PipelineSpec("p", [make_stage("A", "echo hi")])
        outcome = PipelineOrchestrator().run(spec, bad_output, BadSink())
        assert outcome.success is True
        assert outcome.statuses["A"] is StageStatus.SUCCESS

    def test_raising_runner_skips_rest(self, make_stage, status_sink):
        """Test: a runner that raises fails the stage instead of the run"""
        runner = Mock()
        runner.execute.side_effect = RuntimeError("boom")
        spec = PipelineSpec("p", [make_stage("A", "true"), make_stage("B", "true")])
        outcome = PipelineOrchestrator(runner=runner).run(spec, None, status_sink)
        assert outcome.success is False
        assert outcome.first_failed_stage_id == "A"
        assert outcome.statuses["B"] is StageStatus.SKIPPED

    def test_stages_receive_their_timeout(self, make_stage):
        """Test: each stage's timeout is handed to the runner"""
        runner = Mock()
        runner.execute.return_value = RunResult(exit_code=0, success=True)
        spec = PipelineSpec("p", [make_stage("A", "true", timeout_seconds=42)])
        PipelineOrchestrator(runner=runner).run(spec)
        args = runner.execute.call_args[0]
        assert args[0] == "true"
        assert args[2] == 42


class TestStop:
    """Tests for stop()"""

    def test_stop_before_run_is_noop(self, make_stage, output, status_sink):
        """Test: a stop with nothing running does not leak into the next run"""
        orchestrator = PipelineOrchestrator()
        orchestrator.stop()
        outcome = orchestrator.run(PipelineSpec("p", [make_stage("A", "true")]), output, status_sink)
        assert outcome.success is True
        assert outcome.stopped is False

    def test_stop_mid_run(self, make_stage, tmp_path, output, status_sink):
        """Test: stop kills the live stage and skips the rest"""
        orchestrator = PipelineOrchestrator()
        spec = PipelineSpec("p", [
            make_stage("A", "echo started; sleep 30", timeout_seconds=60),
            make_stage("B", "touch b_ran"),
        ])
        box = {}
        thread = threading.Thread(target=lambda: box.update(outcome=orchestrator.run(spec, output, status_sink)))
        start = time.monotonic()
        thread.start()

        assert output.wait_for("started")
        orchestrator.stop()
        thread.join(10)

        outcome = box["outcome"]
        assert time.monotonic() - start < 10
        assert outcome.success is False
        assert outcome.stopped is True
        assert outcome.first_failed_stage_id is None
        assert outcome.statuses["A"] is StageStatus.SKIPPED
        assert outcome.statuses["B"] is StageStatus.SKIPPED
        assert not (tmp_path / "b_ran").exists()
        assert status_sink.events[-1] == ("finished", False, None)
        assert not orchestrator.is_running()

    def test_stop_between_stages(self, make_stage, output, status_sink):
        """Test: a stop requested while a stage is finishing skips the next one"""
        orchestrator = PipelineOrchestrator()

        class StopAfterA(StatusSink):
            def on_status_changed(self, stage_id, status):
                status_sink.on_status_changed(stage_id, status)
                if stage_id == "A" and status is StageStatus.SUCCESS:
                    orchestrator.stop()

        spec = PipelineSpec("p", [make_stage("A", "true"), make_stage("B", "true")])
        outcome = orchestrator.run(spec, output, StopAfterA())
        assert outcome.stopped is True
        assert outcome.statuses["A"] is StageStatus.SUCCESS
        assert outcome.statuses["B"] is StageStatus.SKIPPED
        assert "⏹ Stop requested" in output.text(StreamKind.SYSTEM)

    def test_concurrent_run_refused(self, make_stage, output):
        """Test: run() on a busy orchestrator returns None"""
        orchestrator = PipelineOrchestrator()
        spec = PipelineSpec("p", [make_stage("A", "echo started; sleep 30", timeout_seconds=60)])
        thread = threading.Thread(target=orchestrator.run, args=(spec, output))
        thread.start()
        assert output.wait_for("started")

        assert orchestrator.is_running()
        assert orchestrator.run(PipelineSpec("q", [make_stage("B", "true")])) is None

        orchestrator.stop()
        thread.join(10)
        assert not orchestrator.is_running()

    def test_stopped_stage_result_kind(self, make_stage, output, status_sink):
        """Test: a STOPPED runner result ends the run as stopped"""
        runner = Mock()
        runner.execute.return_value = RunResult.infra_failure(RunErrorKind.STOPPED, "stopped")
        spec = PipelineSpec("p", [make_stage("A", "true"), make_stage("B", "true")])
        outcome = PipelineOrchestrator(runner=runner).run(spec, output, status_sink)
        assert outcome.stopped is True
        assert outcome.first_failed_stage_id is None
        assert runner.execute.call_count == 1
