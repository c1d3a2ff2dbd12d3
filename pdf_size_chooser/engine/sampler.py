"""Size estimation from a page sample.

Flow:
1. Pick a random subset of pages (the whole file for tiny documents)
2. Extract them into a sample PDF with Ghostscript
3. Compress the sample at every quality on the ladder, in a small pool
4. Scale each sample ratio up to the full file size
5. Clamp the curve so size never decreases as quality rises
"""

import dataclasses
import logging
import random
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError, as_completed
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from pdf_size_chooser.core.exceptions import (
    BackendExecutionError,
    ProcessingTimeoutError,
    SamplingError,
)
from pdf_size_chooser.core.settings import EngineSettings, get_engine_settings
from pdf_size_chooser.core.utils import round_half_up
from pdf_size_chooser.engine.models import EstimationCurve, SizeEstimate

logger = logging.getLogger(__name__)


def sample_page_count(page_count: int, settings: EngineSettings) -> int:
    """Number of pages to sample: a share of the document, within bounds."""
    if page_count <= settings.whole_document_max_pages:
        return page_count
    count = round_half_up(page_count * settings.sample_percentage)
    count = max(settings.min_sample_pages, min(settings.max_sample_pages, count))
    return min(count, page_count)


def select_sample_pages(page_count: int, sample_count: int, rng: random.Random) -> List[int]:
    """Uniform random 0-indexed pages without replacement, sorted ascending."""
    sample_count = max(0, min(sample_count, page_count))
    return sorted(rng.sample(range(page_count), sample_count))


def clamp_monotonic(estimates: Sequence[SizeEstimate]) -> Tuple[SizeEstimate, ...]:
    """Sort by quality and clamp so estimated bytes never decrease with quality.

    A lower-quality estimate that came out larger than a higher-quality one
    is lowered to match it.
    """
    ordered = sorted(estimates, key=lambda e: e.quality)
    for i in range(len(ordered) - 2, -1, -1):
        ceiling = ordered[i + 1].estimated_bytes
        if ordered[i].estimated_bytes > ceiling:
            ordered[i] = dataclasses.replace(ordered[i], estimated_bytes=ceiling)
    return tuple(ordered)


def extrapolate_bytes(full_bytes: int, sample_original_bytes: int, sample_compressed_bytes: int) -> int:
    """Scale the sample's compression ratio to the full file, capped at the original."""
    ratio = sample_compressed_bytes / sample_original_bytes
    return round_half_up(min(full_bytes, full_bytes * ratio))


def _remaining(deadline: float) -> float:
    return deadline - time.monotonic()


def build_curve(
    backend,
    pdf_path: Path,
    page_count: int,
    work_dir: Optional[Path] = None,
    job_label: Optional[str] = None,
    settings: Optional[EngineSettings] = None,
    cancel_event: Optional[threading.Event] = None,
    rng: Optional[random.Random] = None,
) -> EstimationCurve:
    """Build the size-vs-quality curve for a document.

    Args:
        backend: Compression backend (extract_pages / compress).
        pdf_path: Full document.
        page_count: Page count from the structural analysis.
        work_dir: Where sample files go (defaults to the document's folder).
        job_label: Prefix for sample files.
        settings: Ladder, sampling bounds, workers, budget.
        cancel_event: Set when the owning job is abandoned.
        rng: Page-selection randomness; seeded from settings when omitted.

    Raises:
        SamplingError: Page extraction failed, or no quality level compressed.
        ProcessingTimeoutError: The estimation budget was exceeded.
    """
    start = time.time()
    settings = settings or get_engine_settings()
    pdf_path = Path(pdf_path)
    work_dir = Path(work_dir) if work_dir else pdf_path.parent
    work_dir.mkdir(parents=True, exist_ok=True)
    job_label = job_label or f"{pdf_path.stem}_{str(uuid.uuid4())[:8]}"
    rng = rng or random.Random(settings.sample_seed)

    if page_count <= 0:
        raise SamplingError.for_file(pdf_path.name, "document has no pages")

    timeout = settings.estimation_timeout_sec
    deadline = time.monotonic() + timeout
    original_bytes = pdf_path.stat().st_size

    sample_count = sample_page_count(page_count, settings)
    if sample_count >= page_count:
        sample_pages = list(range(page_count))
        sample_path = pdf_path
        extracted = False
    else:
        sample_pages = select_sample_pages(page_count, sample_count, rng)
        sample_path = work_dir / f"{job_label}_sample.pdf"
        extracted = True

    logger.info(
        "[SAMPLE] %s: sampling %d/%d pages at qualities %s",
        pdf_path.name,
        len(sample_pages),
        page_count,
        list(settings.quality_ladder),
    )

    executor = None
    try:
        if extracted:
            try:
                backend.extract_pages(
                    pdf_path,
                    sample_pages,
                    sample_path,
                    timeout=_remaining(deadline),
                    cancel_event=cancel_event,
                )
            except BackendExecutionError as e:
                raise SamplingError.for_file(pdf_path.name, f"page extraction failed: {e.message}") from e

        sample_original_bytes = sample_path.stat().st_size
        if sample_original_bytes <= 0:
            raise SamplingError.for_file(pdf_path.name, "sample is empty")

        def sample_level(quality: int) -> Optional[SizeEstimate]:
            output_path = work_dir / f"{job_label}_sample_q{quality}.pdf"
            for attempt in range(settings.sample_retries + 1):
                try:
                    result = backend.compress(
                        sample_path,
                        output_path,
                        quality,
                        timeout=_remaining(deadline),
                        cancel_event=cancel_event,
                    )
                except BackendExecutionError as e:
                    logger.warning(
                        "[SAMPLE] Quality %d attempt %d failed: %s", quality, attempt + 1, e.message
                    )
                    continue
                finally:
                    output_path.unlink(missing_ok=True)

                return SizeEstimate(
                    quality=quality,
                    estimated_bytes=extrapolate_bytes(original_bytes, sample_original_bytes, result.output_bytes),
                    sample_compressed_bytes=result.output_bytes,
                    sample_page_count=len(sample_pages),
                    total_page_count=page_count,
                )
            return None

        ladder = list(settings.quality_ladder)
        executor = ThreadPoolExecutor(
            max_workers=max(1, min(settings.sample_workers, len(ladder))),
            thread_name_prefix="pdf-sample",
        )
        futures = {executor.submit(sample_level, quality): quality for quality in ladder}

        estimates: List[SizeEstimate] = []
        failed: List[int] = []
        try:
            for future in as_completed(futures, timeout=max(0.0, _remaining(deadline))):
                estimate = future.result()
                if estimate is None:
                    failed.append(futures[future])
                else:
                    estimates.append(estimate)
        except FuturesTimeoutError as e:
            logger.warning("[SAMPLE] %s exceeded %.0fs estimation budget", pdf_path.name, timeout)
            raise ProcessingTimeoutError.for_stage("estimation", timeout) from e

        if not estimates:
            raise SamplingError.for_file(pdf_path.name, "no quality level could be compressed")
    finally:
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
        if extracted:
            sample_path.unlink(missing_ok=True)

    curve = EstimationCurve(
        original_bytes=original_bytes,
        page_count=page_count,
        estimates=clamp_monotonic(estimates),
        sample_pages=tuple(sample_pages),
        failed_qualities=tuple(sorted(failed)),
        sampling_time_ms=int((time.time() - start) * 1000),
    )

    logger.info(
        "[SAMPLE] %s curve: %s (failed: %s) in %dms",
        pdf_path.name,
        ", ".join(f"q{e.quality}={e.estimated_bytes / (1024 * 1024):.1f}MB" for e in curve.estimates),
        list(curve.failed_qualities) or "none",
        curve.sampling_time_ms,
    )
    return curve
