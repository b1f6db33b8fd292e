"""
Output and status sinks - boundary collaborators for pipeline runs

OutputSink: callable receiving (text, StreamKind) in production order.
StatusSink: started -> status changes (in execution order) -> finished.

Sinks may be invoked from a background thread. Presentation layers that need
their own thread must redispatch themselves.
"""

import threading
from collections import deque
from typing import Callable, List, Optional, Tuple

from .state import StageStatus, StreamKind


OutputSink = Callable[[str, StreamKind], None]


def discard_output(text: str, kind: StreamKind) -> None:
    """OutputSink that drops everything"""


def tee_output(*sinks: Optional[OutputSink]) -> OutputSink:
    """Fan one output stream out to several sinks, in the given order"""
    targets = [sink for sink in sinks if sink is not None]

    def _tee(text: str, kind: StreamKind) -> None:
        for sink in targets:
            sink(text, kind)

    return _tee


class StatusSink:
    """
    Receives stage lifecycle events for one run.

    Call protocol per run: exactly one on_pipeline_started(), then zero or
    more on_status_changed() in execution order, then exactly one
    on_pipeline_finished(). Subclasses override what they need.
    """

    def on_pipeline_started(self) -> None:
        pass

    def on_status_changed(self, stage_id: str, status: StageStatus) -> None:
        pass

    def on_pipeline_finished(self, success: bool, failed_stage_id: Optional[str]) -> None:
        pass


class CompositeStatusSink(StatusSink):
    """Forward every event to each wrapped sink, in order"""

    def __init__(self, *sinks: Optional[StatusSink]):
        self.sinks = [sink for sink in sinks if sink is not None]

    def on_pipeline_started(self) -> None:
        for sink in self.sinks:
            sink.on_pipeline_started()

    def on_status_changed(self, stage_id: str, status: StageStatus) -> None:
        for sink in self.sinks:
            sink.on_status_changed(stage_id, status)

    def on_pipeline_finished(self, success: bool, failed_stage_id: Optional[str]) -> None:
        for sink in self.sinks:
            sink.on_pipeline_finished(success, failed_stage_id)


class OutputBuffer:
    """
    Thread-safe ring buffer of output chunks; usable directly as an OutputSink.

    Keeps the last `max_chunks` chunks so a named pipeline's output history
    outlives the run that produced it.
    """

    def __init__(self, max_chunks: int = 5000):
        self._chunks: deque = deque(maxlen=max_chunks)
        self._lock = threading.Lock()

    def __call__(self, text: str, kind: StreamKind) -> None:
        with self._lock:
            self._chunks.append((text, kind))

    def __len__(self) -> int:
        with self._lock:
            return len(self._chunks)

    def chunks(self, limit: Optional[int] = None) -> List[Tuple[str, StreamKind]]:
        """Snapshot of buffered chunks, oldest first (last `limit` if given)"""
        with self._lock:
            chunks = list(self._chunks)
        if limit is not None and limit >= 0:
            chunks = chunks[-limit:] if limit else []
        return chunks

    def text(self, kinds: Optional[Tuple[StreamKind, ...]] = None) -> str:
        """Concatenated text, optionally restricted to some stream kinds"""
        return "".join(
            text for text, kind in self.chunks()
            if kinds is None or kind in kinds
        )

    def clear(self) -> None:
        with self._lock:
            self._chunks.clear()
