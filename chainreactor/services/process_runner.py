"""
ProcessRunner - Executes one shell command with live output, timeout and stop

Single Responsibility: Run a command to a terminal state and report a RunResult
"""

import os
import queue
import shlex
import signal
import stat
import subprocess
import threading
import time
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from chainreactor.pipeline.sinks import OutputSink, discard_output
from chainreactor.pipeline.state import RunErrorKind, RunResult, StreamKind


SEPARATOR = "─" * 50

# Seconds to wait for process reaping after a kill
_REAP_TIMEOUT = 5.0
# Seconds to keep reading output once the process has exited
_DRAIN_TIMEOUT = 1.0
# Upper bound on one queue wait so stop/timeout checks stay responsive
_POLL_INTERVAL = 0.1


class ProcessRunner:
    """
    Runs commands through `<shell> -c` with:
    - Upfront validation (working directory, command, script file)
    - Live stdout/stderr streaming to an OutputSink
    - Per-call timeout
    - Out-of-band stop() from any thread

    One instance runs at most one process at a time. execute() never raises.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, shell: str = "/bin/bash"):
        self.logger = logger or logging.getLogger(__name__)
        self.shell = shell

        self._lock = threading.Lock()
        self._active = False
        self._process: Optional[subprocess.Popen] = None
        self._kill_reason: Optional[RunErrorKind] = None
        self._stop_pending = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def is_busy(self) -> bool:
        with self._lock:
            return self._active

    def stop(self) -> None:
        """
        Kill the live process, if any.

        Safe from any thread, any number of times. No-op when idle.
        """
        with self._lock:
            if not self._active:
                return
            if self._process is None:
                # Between validation and spawn: the spawn path picks this up
                self._stop_pending = True
                return
            self._kill_locked(RunErrorKind.STOPPED)

    def execute(
        self,
        command: Optional[str],
        working_directory: Optional[str],
        timeout_seconds: Optional[float] = None,
        output_sink: Optional[OutputSink] = None,
        *,
        script_path: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> RunResult:
        """
        Execute a command and block until it exits, times out or is stopped.

        Args:
            command: Shell command or script path; blank falls back to script_path
            working_directory: Directory the command runs in
            timeout_seconds: Kill the process after this many seconds (None = no limit)
            output_sink: Receives (text, StreamKind) chunks as they are produced
            script_path: Fallback script when command is blank
            cancel_event: Caller-owned stop flag, honoured before and at spawn time

        Returns:
            RunResult describing the terminal state
        """
        sink = self._guarded(output_sink or discard_output)

        with self._lock:
            if self._active:
                message = "Runner is already executing a command"
                self.logger.warning(message)
                return RunResult.infra_failure(RunErrorKind.RUNNER_BUSY, message)
            self._active = True
            self._process = None
            self._kill_reason = None
            self._stop_pending = False

        try:
            return self._execute(command, working_directory, timeout_seconds, sink, script_path, cancel_event)
        except Exception as e:
            self.logger.error(f"Unexpected error while running {command!r}: {e}", exc_info=True)
            return RunResult.infra_failure(RunErrorKind.SPAWN_FAILURE, f"Unexpected error: {e}")
        finally:
            with self._lock:
                self._active = False
                self._process = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _execute(
        self,
        command: Optional[str],
        working_directory: Optional[str],
        timeout_seconds: Optional[float],
        sink: OutputSink,
        script_path: Optional[str],
        cancel_event: Optional[threading.Event]
    ) -> RunResult:
        # Validate before anything is spawned
        workdir = Path(working_directory) if working_directory else None
        if workdir is None or not workdir.is_dir():
            return self._infra_failure(
                sink, RunErrorKind.MISSING_WORKING_DIRECTORY,
                f"Working directory does not exist: {working_directory}"
            )

        effective = (command or "").strip()
        from_script_path = False
        if not effective and script_path and script_path.strip():
            effective = script_path.strip()
            from_script_path = True
        if not effective:
            return self._infra_failure(sink, RunErrorKind.MISSING_COMMAND, "No command configured")

        script = self._resolve_script(effective, workdir, force=from_script_path)
        if script is not None:
            if not script.is_file():
                return self._infra_failure(
                    sink, RunErrorKind.MISSING_SCRIPT_FILE,
                    f"Script file does not exist: {script}"
                )
            self._ensure_executable(script)
            effective = shlex.quote(str(script))

        if self._cancelled(cancel_event):
            return self._infra_failure(sink, RunErrorKind.STOPPED, "Stop requested before start")

        self.logger.info(f"Running: {effective} (cwd: {workdir})")
        sink(f"▶ Running: {effective}\n", StreamKind.SYSTEM)
        sink(f"Working directory: {workdir}\n", StreamKind.SYSTEM)
        sink(SEPARATOR + "\n", StreamKind.SYSTEM)

        start_time = time.monotonic()
        try:
            process = subprocess.Popen(
                [self.shell, "-c", effective],
                cwd=str(workdir),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                start_new_session=True
            )
        except OSError as e:
            return self._infra_failure(sink, RunErrorKind.SPAWN_FAILURE, f"Failed to start process: {e}")

        with self._lock:
            self._process = process
            if self._stop_pending or (cancel_event is not None and cancel_event.is_set()):
                self._kill_locked(RunErrorKind.STOPPED)

        # Reader threads only enqueue; the calling thread is the single
        # writer to the sink so chunks arrive in queue order.
        output_queue: "queue.Queue[Tuple[StreamKind, Optional[str]]]" = queue.Queue()
        readers = [
            threading.Thread(
                target=_pump, args=(process.stdout, StreamKind.STDOUT, output_queue),
                name=f"runner-stdout-{process.pid}", daemon=True
            ),
            threading.Thread(
                target=_pump, args=(process.stderr, StreamKind.STDERR, output_queue),
                name=f"runner-stderr-{process.pid}", daemon=True
            ),
        ]
        for reader in readers:
            reader.start()

        stdout_chunks: List[str] = []
        stderr_chunks: List[str] = []
        deadline = start_time + timeout_seconds if timeout_seconds else None
        open_streams = len(readers)

        # Completion is process exit, not end of output: a command may close
        # its streams early, or leave a background child holding them.
        while process.poll() is None:
            if deadline is not None and time.monotonic() >= deadline:
                with self._lock:
                    self._kill_locked(RunErrorKind.TIMEOUT)
                break
            wait = _POLL_INTERVAL
            if deadline is not None:
                wait = max(0.0, min(wait, deadline - time.monotonic()))
            try:
                kind, text = output_queue.get(timeout=wait)
            except queue.Empty:
                continue
            if text is None:
                open_streams -= 1
                continue
            self._forward(sink, kind, text, stdout_chunks, stderr_chunks)

        try:
            process.wait(timeout=_REAP_TIMEOUT)
        except subprocess.TimeoutExpired:
            self.logger.error(f"Process {process.pid} did not exit after kill")

        # Bounded drain of what the readers produced up to EOF
        drain_deadline = time.monotonic() + _DRAIN_TIMEOUT
        while open_streams:
            remaining = drain_deadline - time.monotonic()
            if remaining <= 0:
                self.logger.info(
                    f"Output of {process.pid} still open after exit (background child?); not waiting for it"
                )
                break
            try:
                kind, text = output_queue.get(timeout=remaining)
            except queue.Empty:
                continue
            if text is None:
                open_streams -= 1
                continue
            self._forward(sink, kind, text, stdout_chunks, stderr_chunks)

        duration = time.monotonic() - start_time
        stdout = "".join(stdout_chunks)
        stderr = "".join(stderr_chunks)

        with self._lock:
            kill_reason = self._kill_reason

        sink(SEPARATOR + "\n", StreamKind.SYSTEM)

        if kill_reason is RunErrorKind.TIMEOUT:
            message = f"Timed out after {timeout_seconds}s: {effective}"
            self.logger.warning(message)
            sink(f"⏱ {message}\n\n", StreamKind.SYSTEM)
            return RunResult.infra_failure(RunErrorKind.TIMEOUT, message, stdout, stderr, duration)

        if kill_reason is RunErrorKind.STOPPED:
            message = f"Stopped by request: {effective}"
            self.logger.info(message)
            sink(f"⏹ {message}\n\n", StreamKind.SYSTEM)
            return RunResult.infra_failure(RunErrorKind.STOPPED, message, stdout, stderr, duration)

        exit_code = process.returncode if process.returncode is not None else -1
        if exit_code == 0:
            self.logger.info(f"✓ Completed (exit code 0) in {duration:.1f}s: {effective}")
            sink("✓ Finished successfully (exit code 0)\n\n", StreamKind.SYSTEM)
        else:
            self.logger.warning(f"✗ Failed (exit code {exit_code}) in {duration:.1f}s: {effective}")
            sink(f"✗ Failed (exit code {exit_code})\n\n", StreamKind.SYSTEM)

        return RunResult(
            exit_code=exit_code,
            success=exit_code == 0,
            stdout=stdout,
            stderr=stderr,
            duration_seconds=duration
        )

    def _forward(
        self,
        sink: OutputSink,
        kind: StreamKind,
        text: str,
        stdout_chunks: List[str],
        stderr_chunks: List[str]
    ) -> None:
        if kind is StreamKind.STDERR:
            stderr_chunks.append(text)
        else:
            stdout_chunks.append(text)
        sink(text, kind)

    def _guarded(self, sink: OutputSink) -> OutputSink:
        """Wrap a sink so its failures are logged and never reach the run"""
        def _safe(text: str, kind: StreamKind) -> None:
            try:
                sink(text, kind)
            except Exception as e:
                self.logger.warning(f"Output sink failed: {e}")
        return _safe

    def _kill_locked(self, reason: RunErrorKind) -> None:
        """Kill the live process group once. Caller holds self._lock."""
        process = self._process
        if process is None or self._kill_reason is not None or process.poll() is not None:
            return
        self._kill_reason = reason
        self.logger.info(f"Killing process group {process.pid} ({reason.value})")
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except OSError as e:
            self.logger.warning(f"killpg failed for {process.pid}: {e}; killing process only")
            try:
                process.kill()
            except OSError:
                pass

    def _cancelled(self, cancel_event: Optional[threading.Event]) -> bool:
        with self._lock:
            if self._stop_pending:
                return True
        return cancel_event is not None and cancel_event.is_set()

    def _resolve_script(self, command: str, workdir: Path, force: bool = False) -> Optional[Path]:
        """
        Return the script file a command refers to, or None for inline commands.

        A command refers to a script when it is a single path-like token
        (contains '/' or ends with '.sh'), or when it came from script_path.
        """
        try:
            tokens = shlex.split(command)
        except ValueError:
            return None
        if len(tokens) != 1:
            return None
        token = tokens[0]
        if not force and "/" not in token and not token.endswith(".sh"):
            return None
        path = Path(os.path.expanduser(token))
        if not path.is_absolute():
            path = workdir / path
        return path

    def _ensure_executable(self, script: Path) -> None:
        """Best-effort chmod +x; failure is not fatal"""
        if os.access(script, os.X_OK):
            return
        try:
            mode = script.stat().st_mode
            script.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            self.logger.info(f"Granted execute permission: {script}")
        except OSError as e:
            self.logger.warning(f"Could not make {script} executable: {e}")

    def _infra_failure(self, sink: OutputSink, kind: RunErrorKind, message: str) -> RunResult:
        self.logger.error(f"✗ {message}")
        sink(f"✗ {message}\n", StreamKind.SYSTEM)
        return RunResult.infra_failure(kind, message)


def _pump(stream, kind: StreamKind, output_queue: queue.Queue) -> None:
    """Reader thread: enqueue each line, then a None sentinel at EOF"""
    try:
        for line in iter(stream.readline, ''):
            output_queue.put((kind, line))
    except (OSError, ValueError):
        pass
    finally:
        try:
            stream.close()
        except OSError:
            pass
        output_queue.put((kind, None))
