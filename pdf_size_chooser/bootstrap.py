"""Runtime bootstrap for background cleanup daemons."""

from __future__ import annotations

import threading

from pdf_size_chooser.services import file_service

_bootstrap_lock = threading.Lock()
_bootstrapped_services: set = set()


def bootstrap_runtime(job_service) -> None:
    """Start background services once per job service."""
    with _bootstrap_lock:
        if id(job_service) in _bootstrapped_services:
            return

        job_service.files.ensure_temp_dir()
        job_service.log_effective_config()
        threading.Thread(
            target=file_service.cleanup_daemon,
            args=(job_service, job_service.service_settings.cleanup_interval_seconds),
            daemon=True,
            name="job-cleanup-daemon",
        ).start()
        _bootstrapped_services.add(id(job_service))


def is_bootstrapped(job_service) -> bool:
    """Expose runtime bootstrap state for diagnostics/tests."""
    return id(job_service) in _bootstrapped_services
