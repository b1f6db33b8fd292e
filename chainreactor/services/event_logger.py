"""
Run event log - JSONL record of one pipeline run

Single Responsibility: Persist a run's lifecycle (start, stage transitions,
result) as one JSON object per line. Never raises into the run.
"""

import json
import shutil
import threading
from pathlib import Path
from datetime import datetime
from typing import Dict, List, Optional
import pytz
import logging

from chainreactor.pipeline.sinks import StatusSink
from chainreactor.pipeline.state import StageStatus


# Stage value used for run-level events
PIPELINE_STAGE = "pipeline"


class EventLogger:
    """
    Event log bound to one run: every line carries the run id and pipeline name.

    The file is archived to `archive/` once it reaches MAX_FILE_SIZE_MB.
    """

    MAX_FILE_SIZE_MB = 50
    MAX_FILE_SIZE_BYTES = MAX_FILE_SIZE_MB * 1024 * 1024

    def __init__(
        self,
        log_file: Path,
        run_id: str,
        pipeline_name: str,
        timezone=pytz.UTC,
        logger: Optional[logging.Logger] = None
    ):
        self.log_file = Path(log_file)
        self.run_id = run_id
        self.pipeline_name = pipeline_name
        self.timezone = timezone
        self.logger = logger or logging.getLogger(__name__)
        self.events_written = 0
        self._lock = threading.Lock()
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        self.log_file.touch(exist_ok=True)

    def emit(self, stage: str, event: str, msg: Optional[str] = None, data: Optional[Dict] = None) -> None:
        """
        Append one event; failures are logged and dropped.

        Args:
            stage: Stage id, or PIPELINE_STAGE for run-level events
            event: start | state_change | success | failed
        """
        record = {
            "run_id": self.run_id,
            "pipeline": self.pipeline_name,
            "stage": stage,
            "event": event,
            "timestamp": self._now().isoformat(),
        }
        if msg is not None:
            record["msg"] = msg
        if data is not None:
            record["data"] = data

        line = json.dumps(record) + "\n"
        with self._lock:
            try:
                if self._size() >= self.MAX_FILE_SIZE_BYTES:
                    self._archive()
                with open(self.log_file, "a", encoding="utf-8") as f:
                    f.write(line)
                self.events_written += 1
            except OSError as e:
                self.logger.warning(f"Dropped event {event!r} for run {self.run_id[:8]}: {e}")

    def read_events(self) -> List[Dict]:
        """Events currently in the (unarchived) file; malformed lines are skipped"""
        if not self.log_file.exists():
            return []
        events = []
        with open(self.log_file, "r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    self.logger.debug(f"Skipping malformed event line in {self.log_file.name}")
        return events

    def _now(self) -> datetime:
        return datetime.now(self.timezone)

    def _size(self) -> int:
        try:
            return self.log_file.stat().st_size
        except FileNotFoundError:
            return 0

    def _archive(self) -> None:
        archive_dir = self.log_file.parent / "archive"
        archive_dir.mkdir(parents=True, exist_ok=True)
        target = archive_dir / f"{self.log_file.stem}_{self._now():%Y%m%d_%H%M%S}{self.log_file.suffix}"
        shutil.move(str(self.log_file), str(target))
        self.logger.info(f"Archived event log {self.log_file.name} -> archive/{target.name}")


class EventLogStatusSink(StatusSink):
    """StatusSink that records a run's lifecycle through its EventLogger"""

    def __init__(self, event_logger: EventLogger):
        self.event_logger = event_logger

    def on_pipeline_started(self) -> None:
        self.event_logger.emit(PIPELINE_STAGE, "start", f"Pipeline {self.event_logger.pipeline_name} started")

    def on_status_changed(self, stage_id: str, status: StageStatus) -> None:
        self.event_logger.emit(stage_id, "state_change", data={"status": status.value})

    def on_pipeline_finished(self, success: bool, failed_stage_id: Optional[str]) -> None:
        name = self.event_logger.pipeline_name
        self.event_logger.emit(
            PIPELINE_STAGE,
            "success" if success else "failed",
            f"Pipeline {name} {'succeeded' if success else 'failed'}",
            {"failed_stage_id": failed_stage_id}
        )
