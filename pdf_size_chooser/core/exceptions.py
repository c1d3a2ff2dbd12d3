"""Custom exceptions for PDF size targeting.

All error messages are written in plain English so users know exactly
what went wrong and how to fix it.

"Target not achievable" is deliberately absent: it is reported through
result fields (``achievable`` / ``guarantee_satisfied``), not raised.
"""

from typing import Optional


class SizeChooserError(Exception):
    """Base exception for all size-targeting errors."""

    error_type: str = "SizeChooserError"
    status_code: int = 400

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class CorruptDocumentError(SizeChooserError):
    """PDF cannot be parsed. Not retryable.

    User-friendly message examples:
    - "'report.pdf' appears damaged and cannot be processed."
    """

    error_type: str = "CorruptDocumentError"
    status_code: int = 422

    @staticmethod
    def for_file(filename: str, detail: str = "") -> "CorruptDocumentError":
        """Create error with simple message for a specific file."""
        base_msg = f"'{filename}' appears damaged and cannot be processed."
        if detail:
            return CorruptDocumentError(f"{base_msg} Issue: {detail}")
        return CorruptDocumentError(
            f"{base_msg} Try opening it in a PDF viewer and re-saving it, "
            f"or use a different copy of the file."
        )


class EncryptionError(CorruptDocumentError):
    """PDF is password-protected in a way that blocks parsing."""

    error_type: str = "EncryptionError"

    @staticmethod
    def for_file(filename: str, detail: str = "") -> "EncryptionError":
        """Create error with simple message for a specific file."""
        return EncryptionError(
            f"'{filename}' is password-protected or locked. "
            f"Please remove the password and try again."
        )


class UnsupportedDocumentError(SizeChooserError):
    """File parses (or was readable) but is not a PDF we can work with."""

    error_type: str = "UnsupportedDocumentError"
    status_code: int = 415

    @staticmethod
    def not_a_pdf(filename: str) -> "UnsupportedDocumentError":
        return UnsupportedDocumentError(
            f"'{filename}' is not a PDF file. Only PDF documents can be compressed."
        )

    @staticmethod
    def no_pages(filename: str) -> "UnsupportedDocumentError":
        return UnsupportedDocumentError(f"'{filename}' contains no pages.")


class BackendExecutionError(SizeChooserError):
    """Ghostscript crashed, exited non-zero, or produced unreadable output."""

    error_type: str = "BackendExecutionError"
    status_code: int = 502

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message, original_error)
        self.returncode = returncode
        self.stderr = stderr


class BackendUnavailableError(BackendExecutionError):
    """Ghostscript binary could not be found on this machine."""

    error_type: str = "BackendUnavailableError"
    status_code: int = 503

    @staticmethod
    def not_installed() -> "BackendUnavailableError":
        return BackendUnavailableError(
            "Ghostscript is not installed on the server, so PDFs cannot be compressed right now."
        )


class SamplingError(SizeChooserError):
    """No quality level could be sampled, so no size estimates exist."""

    error_type: str = "SamplingError"
    status_code: int = 422

    @staticmethod
    def for_file(filename: str, detail: str = "") -> "SamplingError":
        msg = f"Could not estimate compressed sizes for '{filename}'."
        if detail:
            msg = f"{msg} Issue: {detail}"
        return SamplingError(f"{msg} You can still compress it at a chosen quality.")


class ProcessingTimeoutError(SizeChooserError):
    """A stage exceeded its wall-clock budget."""

    error_type: str = "ProcessingTimeoutError"
    status_code: int = 504

    def __init__(self, message: str, stage: str = "", seconds: float = 0.0) -> None:
        super().__init__(message)
        self.stage = stage
        self.seconds = seconds

    @staticmethod
    def for_stage(stage: str, seconds: float) -> "ProcessingTimeoutError":
        return ProcessingTimeoutError(
            f"The {stage} step took longer than {seconds:.0f} seconds and was stopped. "
            f"The file may be unusually complex; try a smaller or simpler copy.",
            stage=stage,
            seconds=seconds,
        )


class JobCancelledError(SizeChooserError):
    """The job was deleted while work for it was still running."""

    error_type: str = "JobCancelledError"
    status_code: int = 409

    @staticmethod
    def for_job(job_id: str) -> "JobCancelledError":
        return JobCancelledError(f"Job {job_id} was cancelled.")


class JobStateError(SizeChooserError):
    """The request does not fit the job's current state."""

    error_type: str = "JobStateError"
    status_code: int = 409
