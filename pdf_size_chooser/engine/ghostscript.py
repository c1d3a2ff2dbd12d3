"""Ghostscript compression backend.

Three operations, all path in / path out:
- get_page_count: page count via the PostScript PDF interpreter
- extract_pages: write a subset of pages (0-indexed, ascending) to a new PDF
- compress: re-write the PDF at a quality level 1-100

Quality maps monotonically onto Ghostscript settings: a PDFSETTINGS tier,
an image downsampling resolution and a JPEG quality. Higher quality never
asks Ghostscript for more aggressive reduction than a lower one.
"""

import contextlib
import logging
import shutil
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

from pdf_size_chooser.core.exceptions import (
    BackendExecutionError,
    BackendUnavailableError,
)
from pdf_size_chooser.core.settings import EngineSettings, get_engine_settings
from pdf_size_chooser.engine.models import CompressionOutput
from pdf_size_chooser.engine.process import SubprocessRunner

logger = logging.getLogger(__name__)

# (upper quality bound, PDFSETTINGS preset)
PDF_SETTINGS_TIERS: Tuple[Tuple[int, str], ...] = (
    (25, "/screen"),
    (75, "/ebook"),
    (100, "/printer"),
)
# (quality, dpi) anchors; resolution is linear between them
DPI_ANCHORS: Tuple[Tuple[int, int], ...] = (
    (1, 50),
    (25, 72),
    (50, 100),
    (75, 150),
    (100, 200),
)
MIN_MONO_DPI = 150  # keeps scanned text readable
MIN_JPEG_QUALITY = 10
MAX_JPEG_QUALITY = 95


@dataclass(frozen=True)
class GhostscriptProfile:
    pdf_settings: str
    dpi: int
    mono_dpi: int
    jpeg_quality: int


def get_ghostscript_command() -> Optional[str]:
    """Get Ghostscript binary name for current platform."""
    for name in ["gs", "gswin64c", "gswin32c"]:
        if shutil.which(name):
            return name
    return None


def validate_quality(quality: int) -> int:
    if isinstance(quality, bool) or not isinstance(quality, int):
        raise ValueError(f"Quality must be an integer between 1 and 100, got {quality!r}")
    if quality < 1 or quality > 100:
        raise ValueError(f"Quality must be between 1 and 100, got {quality}")
    return quality


def quality_to_profile(quality: int) -> GhostscriptProfile:
    """Map a 1-100 quality level onto Ghostscript settings."""
    quality = validate_quality(quality)

    pdf_settings = PDF_SETTINGS_TIERS[-1][1]
    for upper, preset in PDF_SETTINGS_TIERS:
        if quality <= upper:
            pdf_settings = preset
            break

    dpi = DPI_ANCHORS[-1][1]
    for (q_lo, dpi_lo), (q_hi, dpi_hi) in zip(DPI_ANCHORS, DPI_ANCHORS[1:]):
        if q_lo <= quality <= q_hi:
            dpi = int(round(dpi_lo + (quality - q_lo) * (dpi_hi - dpi_lo) / (q_hi - q_lo)))
            break

    jpeg_quality = max(MIN_JPEG_QUALITY, min(MAX_JPEG_QUALITY, quality))
    return GhostscriptProfile(
        pdf_settings=pdf_settings,
        dpi=dpi,
        mono_dpi=max(MIN_MONO_DPI, dpi),
        jpeg_quality=jpeg_quality,
    )


def translate_ghostscript_error(stderr: str, return_code: int) -> str:
    """Translate Ghostscript stderr to a clear, user-friendly error message.

    Also logs the full stderr for debugging purposes.
    """
    # Log full stderr for debugging (don't truncate!)
    logger.error(f"Ghostscript failed (exit code {return_code}). Full error:\n{stderr}")

    stderr_lower = (stderr or "").lower()

    if 'invalidfileaccess' in stderr_lower or 'password' in stderr_lower:
        return "PDF is password-protected or locked. Please remove the password and try again."

    if 'typecheck' in stderr_lower or 'rangecheck' in stderr_lower:
        return "PDF has corrupted internal data. Try re-saving it from the original program."

    if any(x in stderr_lower for x in ['undefined', 'ioerror', 'syntaxerror', 'eofread']):
        return "PDF is damaged or corrupted. Please use a different copy of the file."

    return f"PDF processing failed (Ghostscript exit code {return_code}). The file may be corrupted."


def _escape_postscript_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


class GhostscriptBackend:
    """Typed adapter over the Ghostscript command line.

    One instance is shared by every job in the process; its semaphore caps
    how many Ghostscript processes run at once.
    """

    def __init__(
        self,
        runner=None,
        settings: Optional[EngineSettings] = None,
        command: Optional[str] = None,
    ) -> None:
        self.settings = settings or get_engine_settings()
        self.runner = runner or SubprocessRunner()
        self._command = command
        self._slots = threading.BoundedSemaphore(self.settings.max_backend_processes)

    @property
    def command(self) -> str:
        if self._command is None:
            self._command = get_ghostscript_command()
        if not self._command:
            raise BackendUnavailableError.not_installed()
        return self._command

    @contextlib.contextmanager
    def _slot(self, label: str) -> Iterator[None]:
        start = time.time()
        self._slots.acquire()
        waited = time.time() - start
        if waited >= 1:
            logger.info("[GS] Waited %.1fs for a Ghostscript slot (%s)", waited, label)
        try:
            yield
        finally:
            self._slots.release()

    def _run(self, args: List[str], label: str, timeout: Optional[float], cancel_event, stage: str):
        effective_timeout = self.settings.backend_timeout_sec
        if timeout is not None:
            effective_timeout = max(0.1, min(effective_timeout, timeout))
        with self._slot(label):
            return self.runner.run(args, timeout=effective_timeout, cancel_event=cancel_event, stage=stage)

    def get_page_count(
        self,
        pdf_path: Path,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        pdf_path = Path(pdf_path)
        ps_path = _escape_postscript_string(str(pdf_path))
        args = [
            self.command,
            "-q",
            "-dNODISPLAY",
            f"--permit-file-read={pdf_path}",
            "-c",
            f"({ps_path}) (r) file runpdfbegin pdfpagecount = quit",
        ]
        result = self._run(args, f"page count {pdf_path.name}", timeout, cancel_event, "page count")
        if result.returncode != 0:
            raise BackendExecutionError(
                translate_ghostscript_error(result.stderr, result.returncode),
                returncode=result.returncode,
                stderr=result.stderr,
            )

        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        try:
            return int(lines[-1])
        except (IndexError, ValueError) as e:
            raise BackendExecutionError(
                f"Could not read the page count of '{pdf_path.name}' (unexpected output: {result.stdout[:80]!r})",
                original_error=e,
            ) from e

    def extract_pages(
        self,
        pdf_path: Path,
        page_indices: Sequence[int],
        output_path: Path,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Path:
        """Write the given 0-indexed pages, in ascending order, to output_path."""
        pdf_path = Path(pdf_path)
        output_path = Path(output_path)
        if not page_indices:
            raise ValueError("No pages selected for extraction")
        if any(idx < 0 for idx in page_indices):
            raise ValueError(f"Page indices must be 0 or greater: {list(page_indices)}")

        # Ghostscript page lists are 1-based
        page_list = ",".join(str(idx + 1) for idx in sorted(set(page_indices)))
        output_path.parent.mkdir(parents=True, exist_ok=True)
        args = [
            self.command,
            "-sDEVICE=pdfwrite",
            "-dNOPAUSE",
            "-dBATCH",
            "-dQUIET",
            f"-sPageList={page_list}",
            f"-sOutputFile={output_path}",
            str(pdf_path),
        ]
        result = self._run(args, f"extract {pdf_path.name}", timeout, cancel_event, "page extraction")
        if result.returncode != 0:
            raise BackendExecutionError(
                translate_ghostscript_error(result.stderr, result.returncode),
                returncode=result.returncode,
                stderr=result.stderr,
            )
        if not output_path.exists() or output_path.stat().st_size == 0:
            raise BackendExecutionError("Page extraction did not create an output file")
        return output_path

    def build_compress_args(self, input_path: Path, output_path: Path, quality: int) -> List[str]:
        profile = quality_to_profile(quality)
        return [
            self.command,
            "-sDEVICE=pdfwrite",
            "-dCompatibilityLevel=1.4",
            f"-dPDFSETTINGS={profile.pdf_settings}",
            "-dNOPAUSE",
            "-dBATCH",
            "-dQUIET",
            f"-dJPEGQ={profile.jpeg_quality}",
            "-dDownsampleColorImages=true",
            "-dColorImageDownsampleType=/Bicubic",
            f"-dColorImageResolution={profile.dpi}",
            "-dColorImageDownsampleThreshold=1.0",
            "-dDownsampleGrayImages=true",
            "-dGrayImageDownsampleType=/Bicubic",
            f"-dGrayImageResolution={profile.dpi}",
            "-dGrayImageDownsampleThreshold=1.0",
            "-dDownsampleMonoImages=true",
            "-dMonoImageDownsampleType=/Subsample",
            f"-dMonoImageResolution={profile.mono_dpi}",
            "-dMonoImageDownsampleThreshold=1.0",
            "-dAutoRotatePages=/None",
            "-dDetectDuplicateImages=true",
            "-dEmbedAllFonts=true",
            "-dSubsetFonts=true",
            "-dCompressFonts=true",
            f"-sOutputFile={output_path}",
            str(input_path),
        ]

    def compress(
        self,
        input_path: Path,
        output_path: Path,
        quality: int,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> CompressionOutput:
        input_path = Path(input_path)
        output_path = Path(output_path)
        if not input_path.exists():
            raise FileNotFoundError(f"File not found: {input_path}")

        args = self.build_compress_args(input_path, output_path, quality)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        input_bytes = input_path.stat().st_size
        file_mb = input_bytes / (1024 * 1024)
        logger.info(f"Compressing {input_path.name} ({file_mb:.1f}MB) at quality {quality}")

        result = self._run(args, f"compress {input_path.name} q{quality}", timeout, cancel_event, "compression")
        if result.returncode != 0:
            raise BackendExecutionError(
                translate_ghostscript_error(result.stderr, result.returncode),
                returncode=result.returncode,
                stderr=result.stderr,
            )

        if not output_path.exists() or output_path.stat().st_size == 0:
            raise BackendExecutionError("Output file not created")

        output_bytes = output_path.stat().st_size
        out_mb = output_bytes / (1024 * 1024)
        reduction = ((input_bytes - output_bytes) / input_bytes) * 100 if input_bytes > 0 else 0.0
        logger.info(f"Result: {file_mb:.1f}MB -> {out_mb:.1f}MB ({reduction:.1f}% reduction) at quality {quality}")

        return CompressionOutput(
            output_path=output_path,
            output_bytes=output_bytes,
            quality=quality,
            input_bytes=input_bytes,
        )

    def version(self) -> Optional[str]:
        """Installed Ghostscript version, or None when unavailable."""
        try:
            result = self.runner.run([self.command, "--version"], timeout=10, stage="version check")
        except Exception as e:
            logger.warning("[GS] Version check failed: %s", e)
            return None
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None
