"""Job orchestration: upload -> analysis -> estimation -> compression.

Each job moves through
    pending -> estimating -> ready -> compressing -> done | failed

Engine work runs on the task runner; request handlers only read job state.
Before every expensive stage the job is re-checked so a DELETE arriving
between stages stops the pipeline without touching shared state.
"""

import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from pdf_size_chooser.core.exceptions import (
    BackendExecutionError,
    JobCancelledError,
    JobStateError,
    ProcessingTimeoutError,
    SamplingError,
    SizeChooserError,
)
from pdf_size_chooser.core.settings import EngineSettings, ServiceSettings, describe_effective_settings
from pdf_size_chooser.core.utils import bytes_to_mb
from pdf_size_chooser.engine.gate import GateState
from pdf_size_chooser.engine.models import QualityResolution
from pdf_size_chooser.engine.size_engine import SizeTargetEngine
from pdf_size_chooser.services.file_service import FileService
from pdf_size_chooser.workers import job_store
from pdf_size_chooser.workers.job_store import CompressionResult, Job, JobStore
from pdf_size_chooser.workers.task_runner import TaskRunner

# Config
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)

COMPRESSIBLE_STATES = (job_store.READY, job_store.FAILED)


def _error_fields(error: Exception) -> Dict[str, str]:
    if isinstance(error, SizeChooserError):
        return {"error": error.message, "error_type": error.error_type}
    return {"error": str(error) or "Processing failed", "error_type": "UnknownError"}


class JobService:
    def __init__(
        self,
        engine: SizeTargetEngine,
        store: JobStore,
        files: FileService,
        runner: TaskRunner,
        service_settings: ServiceSettings,
    ) -> None:
        self.engine = engine
        self.store = store
        self.files = files
        self.runner = runner
        self.service_settings = service_settings
        self.started_at = time.time()

    @property
    def engine_settings(self) -> EngineSettings:
        return self.engine.settings

    # ------------------------------------------------------------------ intake

    def create_job(self, original_filename: str, upload_path: Path, job_id: str) -> Job:
        """Register an uploaded file and start estimating in the background."""
        upload_path = Path(upload_path)
        job = self.store.create(
            original_filename=original_filename,
            original_size=upload_path.stat().st_size,
            upload_path=upload_path,
            job_id=job_id,
        )
        self.runner.submit(job.job_id, lambda: self.run_estimation(job.job_id))
        return job

    def _ensure_active(self, job_id: str) -> Job:
        job = self.store.get(job_id)
        if job is None or job.cancelled:
            raise JobCancelledError.for_job(job_id)
        return job

    # -------------------------------------------------------------- estimation

    def run_estimation(self, job_id: str) -> None:
        """Analyze the document and build its size curve."""
        job = self.store.transition(
            job_id, (job_store.PENDING,), job_store.ESTIMATING,
            progress=0, progress_message="Analyzing document",
        )
        if job is None:
            logger.info(f"[{job_id}] Estimation skipped (job missing or not pending)")
            return

        start = time.time()
        try:
            profile = self.engine.analyze(job.upload_path, cancel_event=job.cancel_event)
            self._ensure_active(job_id)
            self.store.update(job_id, profile=profile, progress=30, progress_message="Sampling pages")
        except JobCancelledError:
            logger.info(f"[{job_id}] Analysis cancelled")
            return
        except Exception as e:
            if not isinstance(e, SizeChooserError):
                logger.exception(f"[{job_id}] Analysis failed: {e}")
            else:
                logger.warning(f"[{job_id}] Analysis failed: {e.message}")
            self.store.update(job_id, status=job_store.FAILED, progress=100, progress_message=None, **_error_fields(e))
            return

        try:
            page_count = self._page_count(job, profile.page_count)
            self._ensure_active(job_id)
            curve = self.engine.estimate(
                job.upload_path,
                page_count,
                work_dir=self.files.temp_dir,
                label=self.files.job_label(job_id),
                cancel_event=job.cancel_event,
            )
            self._ensure_active(job_id)
        except JobCancelledError:
            logger.info(f"[{job_id}] Estimation cancelled")
            return
        except Exception as e:
            # Compression without a curve is still possible
            if isinstance(e, (SamplingError, ProcessingTimeoutError, BackendExecutionError)):
                logger.warning(f"[{job_id}] Estimation failed: {e.message}")
            else:
                logger.exception(f"[{job_id}] Estimation failed: {e}")
            self.store.transition(
                job_id, (job_store.ESTIMATING,), job_store.READY,
                progress=100,
                progress_message="Estimation failed, but you can still compress",
                **_error_fields(e),
            )
            return

        self.store.transition(
            job_id, (job_store.ESTIMATING,), job_store.READY,
            curve=curve, progress=100, progress_message="Analysis complete",
        )
        logger.info(f"[{job_id}] Estimation finished in {time.time() - start:.1f}s")

    def _page_count(self, job: Job, analyzed_pages: int) -> int:
        """Ghostscript's page count, which page extraction numbers against."""
        try:
            return self.engine.page_count(job.upload_path, cancel_event=job.cancel_event)
        except BackendExecutionError as e:
            logger.warning(f"[{job.job_id}] Ghostscript page count failed ({e.message}); using {analyzed_pages}")
            return analyzed_pages

    # ------------------------------------------------------------- compression

    def request_compression(
        self,
        job_id: str,
        quality: Optional[int] = None,
        target_bytes: Optional[int] = None,
    ) -> Tuple[Job, QualityResolution]:
        """Pick a starting quality and queue compression.

        Raises:
            JobStateError: The job is not ready for compression.
            ValueError: Neither quality nor target was given.
        """
        if quality is None and target_bytes is None:
            raise ValueError("Either quality or targetSizeMB must be provided")

        job = self.store.get(job_id)
        if job is None:
            raise JobCancelledError.for_job(job_id)
        if job.status == job_store.COMPRESSING:
            raise JobStateError("Compression already in progress")
        if job.status == job_store.DONE:
            raise JobStateError("Job already completed. Use download endpoint.")
        if job.status not in COMPRESSIBLE_STATES:
            raise JobStateError("Estimation in progress. Please wait until the job is ready.")
        if job.status == job_store.FAILED and job.profile is None:
            raise JobStateError(f"Job failed during analysis: {job.error}")

        resolution = self.engine.plan(job.original_size, job.curve, target_bytes, quality)
        if target_bytes is not None and not resolution.achievable:
            logger.info(
                f"[{job_id}] Target {bytes_to_mb(target_bytes)}MB may not be achievable; "
                f"starting at quality {resolution.quality}"
            )

        job = self.store.transition(
            job_id, COMPRESSIBLE_STATES, job_store.COMPRESSING,
            resolution=resolution, progress=0, progress_message="Starting compression",
            error=None, error_type=None,
        )
        if job is None:
            raise JobStateError("Job state changed; please retry")

        self.runner.submit(job_id, lambda: self.run_compression(job_id, resolution, target_bytes))
        return job, resolution

    def run_compression(self, job_id: str, resolution: QualityResolution, target_bytes: Optional[int]) -> None:
        try:
            job = self._ensure_active(job_id)
        except JobCancelledError:
            logger.info(f"[{job_id}] Compression skipped (job deleted)")
            return

        work_dir = self.files.ensure_temp_dir()
        label = self.files.job_label(job_id)
        max_attempts = self.engine_settings.max_attempts

        def on_state(state: GateState, attempt: int, quality: int) -> None:
            if state == GateState.COMPRESSING:
                self.store.update(
                    job_id,
                    progress=int((attempt - 1) * 90 / max_attempts),
                    progress_message=f"Compressing at quality {quality} (attempt {attempt}/{max_attempts})",
                )
            elif state == GateState.RETRYING:
                self.store.update(job_id, progress_message=f"Output too large, retrying at quality {quality}")

        try:
            if target_bytes is not None:
                verified = self.engine.compress_to_target(
                    job.upload_path,
                    target_bytes,
                    resolution.quality,
                    work_dir=work_dir,
                    label=label,
                    cancel_event=job.cancel_event,
                    on_state=on_state,
                )
                for path in verified.discarded_paths:
                    self.files.remove(path)
                result = CompressionResult(
                    output_path=verified.output_path,
                    compressed_bytes=verified.output_bytes,
                    quality=verified.final_quality,
                    target_bytes=target_bytes,
                    start_quality=resolution.quality,
                    attempt_count=verified.attempt_count,
                    guarantee_satisfied=verified.guarantee_satisfied,
                    verified=verified,
                )
            else:
                self.store.update(job_id, progress=10, progress_message=f"Compressing at quality {resolution.quality}")
                output = self.engine.compress_at_quality(
                    job.upload_path,
                    resolution.quality,
                    work_dir=work_dir,
                    label=label,
                    cancel_event=job.cancel_event,
                )
                result = CompressionResult(
                    output_path=output.output_path,
                    compressed_bytes=output.output_bytes,
                    quality=output.quality,
                    start_quality=resolution.quality,
                )
        except JobCancelledError:
            logger.info(f"[{job_id}] Compression cancelled")
            self.files.cleanup_job(job_id)
            return
        except Exception as e:
            if isinstance(e, SizeChooserError):
                logger.warning(f"[{job_id}] Compression failed: {e.message}")
            else:
                logger.exception(f"[{job_id}] Compression failed: {e}")
            self.store.update(job_id, status=job_store.FAILED, progress=100, progress_message=None, **_error_fields(e))
            return

        if self.store.get(job_id) is None:
            self.files.remove(result.output_path)
            logger.info(f"[{job_id}] Job deleted during compression; output discarded")
            return

        message = "Compression complete"
        if result.guarantee_satisfied is False:
            message = "Target size could not be reached; last result kept"
        self.store.update(
            job_id, status=job_store.DONE, compression=result, progress=100, progress_message=message,
        )
        logger.info(
            f"[{job_id}] Compressed {bytes_to_mb(job.original_size)}MB -> "
            f"{bytes_to_mb(result.compressed_bytes)}MB at quality {result.quality}"
        )

    # --------------------------------------------------------------- lifecycle

    def delete_job(self, job_id: str) -> bool:
        job = self.store.delete(job_id)
        if job is None:
            return False
        self.files.cleanup_job(job_id)
        return True

    def purge_expired(self) -> int:
        expired = self.store.purge_expired(self.service_settings.job_ttl_seconds)
        for job in expired:
            self.files.cleanup_job(job.job_id)
        self.files.cleanup_old_files()
        return len(expired)

    # ---------------------------------------------------------------- payloads

    def status_payload(self, job: Job) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": job.job_id,
            "status": job.status,
            "originalFilename": job.original_filename,
            "originalSize": job.original_size,
            "progress": job.progress,
            "progressMessage": job.progress_message,
            "error": job.error,
            "errorType": job.error_type,
            "createdAt": _iso(job.created_at),
            "updatedAt": _iso(job.updated_at),
        }
        if job.compression is not None:
            result = job.compression
            payload["compressionResult"] = {
                "compressedSize": result.compressed_bytes,
                "compressedSizeMB": bytes_to_mb(result.compressed_bytes),
                "quality": result.quality,
                "startQuality": result.start_quality,
                "compressionRatio": round(result.compressed_bytes / job.original_size, 4) if job.original_size else None,
                "attempts": result.attempt_count,
                "targetBytes": result.target_bytes,
                "guaranteeSatisfied": result.guarantee_satisfied,
            }
        return payload

    def estimate_payload(self, job: Job) -> Tuple[Dict[str, Any], int]:
        if job.status in (job_store.PENDING, job_store.ESTIMATING):
            return {
                "status": job.status,
                "message": "Estimation in progress. Please poll again.",
            }, 202

        payload: Dict[str, Any] = {
            "status": job.status,
            "originalSize": job.original_size,
            "originalSizeMB": bytes_to_mb(job.original_size),
        }
        if job.profile is not None:
            payload["analysis"] = job.profile.to_dict()
            payload["minimumAchievableBytes"] = job.profile.minimum_achievable_bytes
            payload["minimumAchievableMB"] = bytes_to_mb(job.profile.minimum_achievable_bytes)

        if job.curve is None:
            payload.update({
                "message": "No estimates available",
                "error": job.error,
                "errorType": job.error_type,
                "estimates": [],
            })
            return payload, 200

        payload.update({
            "pageCount": job.curve.page_count,
            "sampledPages": job.curve.sample_page_count,
            "samplingTimeMs": job.curve.sampling_time_ms,
            "failedQualities": list(job.curve.failed_qualities),
            "estimates": [
                {
                    "quality": estimate.quality,
                    "estimatedSizeBytes": estimate.estimated_bytes,
                    "estimatedSizeMB": bytes_to_mb(estimate.estimated_bytes),
                }
                for estimate in job.curve.estimates
            ],
        })
        return payload, 200

    def download_info(self, job: Job) -> Tuple[Path, str]:
        """Compressed file path and the name to serve it under."""
        if job.status != job_store.DONE or job.compression is None:
            raise JobStateError("Compression not complete")
        path = Path(job.compression.output_path)
        if not path.exists():
            raise FileNotFoundError("Compressed file not found")
        stem = job.original_filename
        if stem.lower().endswith(".pdf"):
            stem = stem[:-4]
        return path, f"{stem}_compressed.pdf"

    def queue_stats(self) -> Dict[str, Any]:
        stats = self.runner.stats()
        stats["jobs"] = self.store.counts()
        return stats

    def health_snapshot(self) -> Dict[str, Any]:
        version = self.engine.backend_version()
        return {
            "status": "ok" if version else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
            "ghostscript": version or "not installed",
            "uptime": round(time.time() - self.started_at, 1),
            "jobs": len(self.store),
            "queue": self.runner.stats(),
        }

    def log_effective_config(self) -> None:
        described = describe_effective_settings(self.engine_settings, self.service_settings)
        logger.info("[config] engine: %s", described["engine"])
        logger.info("[config] service: %s", described["service"])


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")
