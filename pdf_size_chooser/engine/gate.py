"""Verification gate: compress, measure, tighten until the output fits.

States: Idle -> Compressing -> Verifying -> Done
                                        -> Retrying -> Compressing
                                        -> Exhausted

Each attempt compresses the FULL document and measures the real output.
An oversized result lowers quality by a fixed step and tries again, up to
``max_attempts`` backend runs. Running out of attempts is not an error:
the last output produced is returned with ``guarantee_satisfied=False``.
"""

import logging
import threading
import time
import uuid
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pdf_size_chooser.core.exceptions import BackendExecutionError, ProcessingTimeoutError
from pdf_size_chooser.core.settings import EngineSettings, get_engine_settings
from pdf_size_chooser.engine.ghostscript import validate_quality
from pdf_size_chooser.engine.models import AttemptRecord, CompressionOutput, VerifiedResult

logger = logging.getLogger(__name__)


class GateState(str, Enum):
    IDLE = "idle"
    COMPRESSING = "compressing"
    VERIFYING = "verifying"
    RETRYING = "retrying"
    DONE = "done"
    EXHAUSTED = "exhausted"


def next_quality(quality: int, settings: EngineSettings) -> int:
    return max(settings.quality_floor, quality - settings.quality_step)


def attempt_output_path(work_dir: Path, label: str, attempt: int, quality: int) -> Path:
    return work_dir / f"{label}_attempt{attempt}_q{quality}.pdf"


def compress_to_target(
    backend,
    pdf_path: Path,
    target_bytes: int,
    start_quality: int,
    work_dir: Optional[Path] = None,
    label: Optional[str] = None,
    settings: Optional[EngineSettings] = None,
    cancel_event: Optional[threading.Event] = None,
    on_state=None,
) -> VerifiedResult:
    """Compress ``pdf_path`` so the output is at most ``target_bytes``.

    Args:
        backend: Compression backend.
        pdf_path: Full document.
        target_bytes: Size ceiling in bytes.
        start_quality: Quality of the first attempt (usually from the resolver).
        work_dir: Where attempt outputs go (defaults to the document's folder).
        label: Prefix for attempt outputs.
        settings: Step, floor, attempt bound and overall timeout.
        cancel_event: Set when the owning job is abandoned.
        on_state: Optional callback ``(state, attempt, quality)`` for progress.

    Returns:
        VerifiedResult for the retained output. Outputs of earlier attempts
        are listed in ``discarded_paths`` for the caller to delete.

    Raises:
        BackendExecutionError: Every attempt failed in the backend.
        ProcessingTimeoutError: The overall ceiling was exceeded.
    """
    settings = settings or get_engine_settings()
    pdf_path = Path(pdf_path)
    work_dir = Path(work_dir) if work_dir else pdf_path.parent
    label = label or f"{pdf_path.stem}_{str(uuid.uuid4())[:8]}"
    if target_bytes <= 0:
        raise ValueError(f"Target size must be positive, got {target_bytes}")
    quality = max(settings.quality_floor, validate_quality(start_quality))

    deadline = time.monotonic() + settings.gate_timeout_sec

    def transition(state: GateState, attempt: int, q: int) -> None:
        logger.debug("[GATE] %s: %s (attempt %d, quality %d)", pdf_path.name, state.value, attempt, q)
        if on_state is not None:
            on_state(state, attempt, q)

    transition(GateState.IDLE, 0, quality)

    attempt = 0
    records: List[AttemptRecord] = []
    discarded: List[Path] = []
    last_output: Optional[CompressionOutput] = None
    last_error: Optional[BackendExecutionError] = None
    satisfied = False

    while True:
        attempt += 1
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ProcessingTimeoutError.for_stage("compression", settings.gate_timeout_sec)

        transition(GateState.COMPRESSING, attempt, quality)
        output_path = attempt_output_path(work_dir, label, attempt, quality)
        try:
            output = backend.compress(
                pdf_path, output_path, quality, timeout=remaining, cancel_event=cancel_event
            )
        except BackendExecutionError as e:
            logger.warning("[GATE] %s attempt %d at quality %d failed: %s", pdf_path.name, attempt, quality, e.message)
            output_path.unlink(missing_ok=True)
            records.append(AttemptRecord(attempt=attempt, quality=quality, error=e.message))
            last_error = e
            if attempt >= settings.max_attempts:
                break
            # retry at the same quality
            continue

        transition(GateState.VERIFYING, attempt, quality)
        records.append(AttemptRecord(attempt=attempt, quality=quality, output_bytes=output.output_bytes))
        if last_output is not None:
            discarded.append(last_output.output_path)
        last_output = output

        logger.info(
            "[GATE] %s attempt %d: quality %d -> %.1fMB (target %.1fMB)",
            pdf_path.name,
            attempt,
            quality,
            output.output_bytes / (1024 * 1024),
            target_bytes / (1024 * 1024),
        )

        if output.output_bytes <= target_bytes:
            satisfied = True
            transition(GateState.DONE, attempt, quality)
            break

        if attempt >= settings.max_attempts or (quality <= settings.quality_floor and attempt > 1):
            transition(GateState.EXHAUSTED, attempt, quality)
            break

        quality = next_quality(quality, settings)
        transition(GateState.RETRYING, attempt, quality)

    if last_output is None:
        raise last_error

    if not satisfied:
        logger.warning(
            "[GATE] %s: target %.1fMB not reached after %d attempts; last output %.1fMB at quality %d",
            pdf_path.name,
            target_bytes / (1024 * 1024),
            attempt,
            last_output.output_bytes / (1024 * 1024),
            last_output.quality,
        )

    return VerifiedResult(
        output_path=last_output.output_path,
        output_bytes=last_output.output_bytes,
        final_quality=last_output.quality,
        attempt_count=attempt,
        guarantee_satisfied=satisfied,
        target_bytes=target_bytes,
        attempts=tuple(records),
        discarded_paths=tuple(discarded),
    )


def compress_at_quality(
    backend,
    pdf_path: Path,
    quality: int,
    work_dir: Optional[Path] = None,
    label: Optional[str] = None,
    settings: Optional[EngineSettings] = None,
    cancel_event: Optional[threading.Event] = None,
) -> CompressionOutput:
    """Single compression at ``quality``, no verification."""
    settings = settings or get_engine_settings()
    pdf_path = Path(pdf_path)
    work_dir = Path(work_dir) if work_dir else pdf_path.parent
    label = label or f"{pdf_path.stem}_{str(uuid.uuid4())[:8]}"
    quality = validate_quality(quality)
    output_path = work_dir / f"{label}_q{quality}.pdf"
    return backend.compress(
        pdf_path, output_path, quality, timeout=settings.gate_timeout_sec, cancel_event=cancel_event
    )
