"""External process execution for the compression backend.

Everything that spawns a process goes through a runner object so tests can
substitute a fake that records arguments and returns canned output.
"""

import logging
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import List, Optional

from pdf_size_chooser.core.exceptions import (
    BackendExecutionError,
    JobCancelledError,
    ProcessingTimeoutError,
)

logger = logging.getLogger(__name__)

POLL_INTERVAL_SEC = 0.25


@dataclass(frozen=True)
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str


class SubprocessRunner:
    """Run a command to completion, honouring a timeout and a cancel event.

    The child is killed when the timeout elapses or the event is set, so an
    abandoned job never leaves Ghostscript running.
    """

    def __init__(self, poll_interval: float = POLL_INTERVAL_SEC) -> None:
        self.poll_interval = poll_interval

    def run(
        self,
        args: List[str],
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        stage: str = "compression",
    ) -> ProcessResult:
        if cancel_event is not None and cancel_event.is_set():
            raise JobCancelledError("Cancelled before the process started")

        try:
            proc = subprocess.Popen(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as e:
            raise BackendExecutionError(f"Failed to start {args[0]}: {e}", original_error=e) from e

        deadline = time.monotonic() + timeout if timeout else None
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=self.poll_interval)
                return ProcessResult(proc.returncode, stdout or "", stderr or "")
            except subprocess.TimeoutExpired:
                pass

            if cancel_event is not None and cancel_event.is_set():
                self._kill(proc)
                logger.info("[PROCESS] Terminated %s (pid %s) after cancellation", args[0], proc.pid)
                raise JobCancelledError("Cancelled while the process was running")

            if deadline is not None and time.monotonic() >= deadline:
                self._kill(proc)
                logger.warning("[PROCESS] Killed %s (pid %s) after %.0fs", args[0], proc.pid, timeout)
                raise ProcessingTimeoutError.for_stage(stage, timeout or 0.0)

    @staticmethod
    def _kill(proc: subprocess.Popen) -> None:
        proc.kill()
        try:
            proc.communicate(timeout=5)
        except subprocess.TimeoutExpired:
            logger.error("[PROCESS] pid %s did not exit after kill", proc.pid)
