"""
Shared fixtures: recording sinks and stage builders
"""

import threading
import time
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

from chainreactor.pipeline.sinks import StatusSink
from chainreactor.pipeline.state import StageSpec, StageStatus, StreamKind


class RecordingOutput:
    """OutputSink that keeps every chunk"""

    def __init__(self):
        self._lock = threading.Lock()
        self.chunks: List[Tuple[str, StreamKind]] = []

    def __call__(self, text: str, kind: StreamKind) -> None:
        with self._lock:
            self.chunks.append((text, kind))

    def text(self, kind: Optional[StreamKind] = None) -> str:
        with self._lock:
            return "".join(t for t, k in self.chunks if kind is None or k == kind)

    def wait_for(self, needle: str, timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if needle in self.text():
                return True
            time.sleep(0.02)
        return False


class RecordingStatusSink(StatusSink):
    """StatusSink that records events as tuples"""

    def __init__(self):
        self._lock = threading.Lock()
        self.events: list = []

    def on_pipeline_started(self) -> None:
        with self._lock:
            self.events.append(("started",))

    def on_status_changed(self, stage_id: str, status: StageStatus) -> None:
        with self._lock:
            self.events.append(("status", stage_id, status))

    def on_pipeline_finished(self, success: bool, failed_stage_id: Optional[str]) -> None:
        with self._lock:
            self.events.append(("finished", success, failed_stage_id))

    def statuses_of(self, stage_id: str) -> List[StageStatus]:
        with self._lock:
            return [e[2] for e in self.events if e[0] == "status" and e[1] == stage_id]

    def wait_for_status(self, stage_id: str, status: StageStatus, timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if status in self.statuses_of(stage_id):
                return True
            time.sleep(0.02)
        return False


@pytest.fixture
def output():
    return RecordingOutput()


@pytest.fixture
def status_sink():
    return RecordingStatusSink()


@pytest.fixture
def make_stage(tmp_path):
    """Build a StageSpec that runs `command` inside tmp_path"""
    def _make(stage_id: str, command: str, timeout_seconds: Optional[float] = 10, workdir: Optional[Path] = None):
        return StageSpec(
            id=stage_id,
            display_name=stage_id,
            working_directory=str(workdir or tmp_path),
            command=command,
            timeout_seconds=timeout_seconds
        )
    return _make


@pytest.fixture
def make_module(tmp_path):
    """Create `<tmp_path>/<name>/all_build.sh` with the given body"""
    def _make(name: str, body: str = "echo built", script_name: str = "all_build.sh") -> Path:
        directory = tmp_path / name
        directory.mkdir(parents=True, exist_ok=True)
        script = directory / script_name
        script.write_text(f"#!/bin/bash\n{body}\n", encoding="utf-8")
        script.chmod(0o755)
        return directory
    return _make


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep CHAINREACTOR_* settings from the outer shell out of the tests"""
    for var in (
        "CHAINREACTOR_ROOT",
        "CHAINREACTOR_STATE_FILE",
        "CHAINREACTOR_TIMEOUT",
        "CHAINREACTOR_SCRIPT_NAME",
        "CHAINREACTOR_CONTINUE_ON_FAILURE",
        "CHAINREACTOR_SHELL",
        "CHAINREACTOR_TIMEZONE",
        "CHAINREACTOR_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)
