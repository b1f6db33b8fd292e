"""
Tests for RunRegistry: isolation of named runs, output history, stop routing
"""

from chainreactor.pipeline.registry import RunRegistry
from chainreactor.pipeline.state import PipelineSpec, StageStatus, StreamKind


class TestNamedRuns:
    """Tests for independent named pipelines"""

    def test_two_pipelines_run_concurrently(self, make_stage):
        """Test: two names run at the same time with separate output"""
        registry = RunRegistry()
        assert registry.start("one", PipelineSpec("one", [make_stage("A", "sleep 0.3; echo from-one")]))
        assert registry.start("two", PipelineSpec("two", [make_stage("A", "sleep 0.3; echo from-two")]))
        assert registry.is_running("one") and registry.is_running("two")

        assert registry.wait("one", 10).success is True
        assert registry.wait("two", 10).success is True
        assert "from-one" in registry.output("one").text()
        assert "from-two" not in registry.output("one").text()
        assert "from-two" in registry.output("two").text()
        assert sorted(registry.names()) == ["one", "two"]

    def test_duplicate_start_refused(self, make_stage):
        """Test: a running name cannot be started again"""
        registry = RunRegistry()
        spec = PipelineSpec("p", [make_stage("A", "sleep 30", timeout_seconds=60)])
        assert registry.start("p", spec) is True
        assert registry.start("p", spec) is False
        registry.stop("p")
        registry.wait("p", 10)
        assert not registry.is_running("p")

    def test_stop_affects_only_named_run(self, make_stage):
        """Test: stopping one pipeline leaves the other running to completion"""
        registry = RunRegistry()
        registry.start("slow", PipelineSpec("slow", [make_stage("A", "echo started; sleep 30", timeout_seconds=60)]))
        registry.start("fast", PipelineSpec("fast", [make_stage("A", "sleep 0.5; echo done")]))

        assert registry.output("slow") is not None
        assert registry.stop("slow") is True

        slow = registry.wait("slow", 10)
        fast = registry.wait("fast", 10)
        assert slow.stopped is True
        assert slow.statuses["A"] is StageStatus.SKIPPED
        assert fast.success is True
        assert "⏹ Stop requested for pipeline: slow" in registry.output("slow").text()

    def test_stop_right_after_start(self, make_stage, tmp_path):
        """Test: a stop issued before the worker thread gets going still applies"""
        registry = RunRegistry()
        spec = PipelineSpec("p", [
            make_stage("A", "sleep 30", timeout_seconds=60),
            make_stage("B", "touch b_ran"),
        ])
        registry.start("p", spec)
        registry.stop("p")
        outcome = registry.wait("p", 10)
        assert outcome.stopped is True
        assert outcome.success is False
        assert not (tmp_path / "b_ran").exists()

    def test_stop_unknown_or_idle(self, make_stage):
        """Test: stop returns False when nothing runs under the name"""
        registry = RunRegistry()
        assert registry.stop("nothing") is False
        registry.start("p", PipelineSpec("p", [make_stage("A", "true")]))
        registry.wait("p", 10)
        assert registry.stop("p") is False


class TestOutputHistory:
    """Tests for per-name output buffers"""

    def test_output_survives_completion_and_clears_on_restart(self, make_stage):
        """Test: history is kept after the run and reset by the next one"""
        registry = RunRegistry()
        registry.start("p", PipelineSpec("p", [make_stage("A", "echo first-run")]))
        registry.wait("p", 10)
        assert not registry.is_running("p")
        assert "first-run" in registry.output("p").text()

        registry.start("p", PipelineSpec("p", [make_stage("A", "echo second-run")]))
        registry.wait("p", 10)
        text = registry.output("p").text()
        assert "second-run" in text
        assert "first-run" not in text

    def test_caller_sinks_receive_events(self, make_stage, output, status_sink):
        """Test: caller sinks see the same stream as the buffer"""
        registry = RunRegistry()
        registry.start("p", PipelineSpec("p", [make_stage("A", "echo hi")]), output, status_sink)
        registry.wait("p", 10)
        assert ("hi\n", StreamKind.STDOUT) in output.chunks
        assert status_sink.events[0] == ("started",)
        assert status_sink.events[-1] == ("finished", True, None)
        assert registry.statuses("p") == {"A": StageStatus.SUCCESS}

    def test_history_limit(self, make_stage):
        """Test: only the last N chunks are kept"""
        registry = RunRegistry(output_history=5)
        registry.start("p", PipelineSpec("p", [make_stage("A", "for i in $(seq 1 50); do echo n$i; done")]))
        registry.wait("p", 10)
        assert len(registry.output("p")) == 5

    def test_unknown_name(self):
        """Test: lookups on an unknown name return empty values"""
        registry = RunRegistry()
        assert registry.output("x") is None
        assert registry.outcome("x") is None
        assert registry.statuses("x") == {}
        assert registry.wait("x") is None
        assert registry.is_running("x") is False
