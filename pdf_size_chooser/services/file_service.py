"""Job files on disk: naming, cleanup and the retention daemon.

Every file that belongs to a job lives in TEMP_DIR and starts with
``<job_id>_`` so one glob finds and removes all of it.
"""

import logging
import threading
import time
from pathlib import Path
from typing import List, Optional

from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)


class FileService:
    def __init__(self, temp_dir: Path, retention_seconds: int) -> None:
        self.temp_dir = Path(temp_dir)
        self.retention_seconds = retention_seconds

    def ensure_temp_dir(self) -> Path:
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        return self.temp_dir

    def job_path(self, job_id: str, filename: str) -> Path:
        safe_name = secure_filename(filename) or "file.pdf"
        return self.ensure_temp_dir() / f"{job_id}_{safe_name}"

    def job_label(self, job_id: str) -> str:
        """Prefix for engine artifacts (samples, attempts) of this job."""
        return job_id

    def job_files(self, job_id: str) -> List[Path]:
        if not self.temp_dir.exists():
            return []
        return sorted(self.temp_dir.glob(f"{job_id}_*"))

    def remove(self, path: Path) -> None:
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Cleanup error for {Path(path).name}: {e}")

    def cleanup_job(self, job_id: str) -> int:
        removed = 0
        for path in self.job_files(job_id):
            self.remove(path)
            removed += 1
        if removed:
            logger.info(f"[{job_id}] Removed {removed} file(s)")
        return removed

    def cleanup_old_files(self, now: Optional[float] = None) -> int:
        """Delete files in TEMP_DIR older than the retention window."""
        if not self.temp_dir.exists():
            return 0
        cutoff = (now if now is not None else time.time()) - self.retention_seconds
        removed = 0
        for path in self.temp_dir.iterdir():
            if not path.is_file():
                continue
            try:
                mtime = path.stat().st_mtime
            except OSError:
                continue
            if mtime < cutoff:
                self.remove(path)
                removed += 1
                logger.info(f"Cleaned up: {path.name}")
        return removed


def cleanup_daemon(job_service, interval_seconds: int, stop_event: Optional[threading.Event] = None) -> None:
    """Background cleanup - removes expired jobs and old files."""
    stop_event = stop_event or threading.Event()
    while not stop_event.wait(interval_seconds):
        try:
            job_service.purge_expired()
        except Exception as e:
            logger.error(f"Cleanup scan error: {e}")
