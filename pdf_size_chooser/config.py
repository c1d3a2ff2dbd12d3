"""Application configuration loading."""

from __future__ import annotations

from dataclasses import dataclass

from pdf_size_chooser.core.settings import ServiceSettings, get_service_settings
from pdf_size_chooser.core.utils import mb_to_bytes

# Room for multipart boundaries and headers around the file itself
MULTIPART_OVERHEAD_BYTES = 64 * 1024


@dataclass(frozen=True)
class RuntimeConfig:
    """Runtime configuration values consumed by the Flask app."""

    max_content_length: int


def load_runtime_config(settings: ServiceSettings | None = None) -> RuntimeConfig:
    """Load runtime configuration from environment-backed settings."""
    settings = settings or get_service_settings()
    return RuntimeConfig(
        max_content_length=mb_to_bytes(settings.max_upload_mb) + MULTIPART_OVERHEAD_BYTES,
    )
