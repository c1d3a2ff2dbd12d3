"""HTTP views for uploads, job polling, compression and downloads.

Views read the JobService from ``current_app.extensions`` and never run
engine work on the request thread.
"""

import logging
import math
from typing import Any, Optional, Tuple

from flask import current_app, jsonify, request, send_file
from werkzeug.exceptions import HTTPException, NotFound, RequestEntityTooLarge
from werkzeug.utils import secure_filename

from pdf_size_chooser.core.exceptions import JobStateError, SizeChooserError
from pdf_size_chooser.core.utils import MB, mb_to_bytes
from pdf_size_chooser.workers.job_store import new_job_id

logger = logging.getLogger(__name__)

EXTENSION_KEY = "job_service"
PDF_MIMETYPES = ("application/pdf", "application/x-pdf")


def get_job_service():
    return current_app.extensions[EXTENSION_KEY]


def create_error_response(error: Exception, status_code: int = 500):
    """Create standardized error response.

    Returns both 'error' (short form) and 'error_type'/'error_message'.
    """
    if isinstance(error, SizeChooserError):
        return jsonify({
            "success": False,
            "error": error.message,
            "error_type": error.error_type,
            "error_message": error.message,
        }), status_code

    if isinstance(error, HTTPException):
        message = error.description or error.name
        return jsonify({
            "success": False,
            "error": message,
            "error_type": error.name.replace(" ", ""),
            "error_message": message,
        }), status_code

    return jsonify({
        "success": False,
        "error": str(error),
        "error_type": "UnknownError",
        "error_message": str(error),
    }), status_code


def _request_error(message: str, status: int = 400, error_type: str = "InvalidRequest"):
    return jsonify({
        "success": False,
        "error": message,
        "error_type": error_type,
        "error_message": message,
    }), status


def _job_not_found():
    return _request_error("Job not found", 404, "JobNotFound")


def get_error_status_code(error: Exception) -> int:
    """Map exception type to appropriate HTTP status code."""
    if isinstance(error, SizeChooserError):
        return error.status_code
    if isinstance(error, FileNotFoundError):
        return 404
    if isinstance(error, ValueError):
        return 400
    return 500


# Error handlers
def handle_large_file(e):
    max_mb = current_app.config.get("MAX_CONTENT_LENGTH", 0) / MB
    message = f"File too large. Maximum size is {max_mb:.0f}MB."
    return _request_error(message, 413, "FileTooLarge")


def handle_http_exception(e):
    if isinstance(e, NotFound):
        logger.info("404 %s %s", request.method, request.path)
    else:
        logger.warning("HTTP %s on %s %s: %s", e.code, request.method, request.path, e.description)
    return create_error_response(e, e.code or 400)


def handle_size_chooser_error(e):
    logger.warning("%s on %s %s: %s", e.error_type, request.method, request.path, e.message)
    return create_error_response(e, e.status_code)


def handle_error(e):
    logger.exception("Unhandled error")
    return create_error_response(e, get_error_status_code(e))


def register_error_handlers(app) -> None:
    """Register HTTP and framework error handlers."""
    app.register_error_handler(RequestEntityTooLarge, handle_large_file)
    app.register_error_handler(HTTPException, handle_http_exception)
    app.register_error_handler(SizeChooserError, handle_size_chooser_error)
    app.register_error_handler(Exception, handle_error)


# Request parsing
def _parse_quality(raw: Any) -> Tuple[Optional[int], Optional[str]]:
    if raw is None:
        return None, None
    if isinstance(raw, bool):
        return None, "Quality must be a number between 1 and 100"
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None, "Quality must be a number between 1 and 100"
    if math.isnan(value) or value < 1 or value > 100 or value != int(value):
        return None, "Quality must be a whole number between 1 and 100"
    return int(value), None


def _parse_target(data: dict) -> Tuple[Optional[int], Optional[str]]:
    raw_bytes = data.get("targetBytes")
    raw_mb = data.get("targetSizeMB")
    if raw_bytes is None and raw_mb is None:
        return None, None

    raw, name = (raw_bytes, "targetBytes") if raw_bytes is not None else (raw_mb, "targetSizeMB")
    if isinstance(raw, bool):
        return None, f"{name} must be a positive number"
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None, f"{name} must be a positive number"
    if math.isnan(value) or math.isinf(value) or value <= 0:
        return None, f"{name} must be a positive number"

    target = int(value) if name == "targetBytes" else mb_to_bytes(value)
    if target <= 0:
        return None, f"{name} is too small"
    return target, None


def _looks_like_pdf(upload) -> bool:
    filename = (upload.filename or "").lower()
    mimetype = (upload.mimetype or "").lower()
    return mimetype in PDF_MIMETYPES or filename.endswith(".pdf")


# Routes
def upload():
    """
    Upload a PDF (multipart field 'file') and start estimating.

    Returns the job id; poll /api/job/<id>/estimate for the size curve.
    """
    service = get_job_service()
    upload_file = request.files.get("file")
    if upload_file is None or not upload_file.filename:
        return _request_error("No file uploaded")
    if not _looks_like_pdf(upload_file):
        return _request_error("Only PDF files are allowed", 400, "UnsupportedDocumentError")

    original_name = upload_file.filename
    safe_name = secure_filename(original_name) or "upload.pdf"
    job_id = new_job_id()
    upload_path = service.files.job_path(job_id, safe_name)
    upload_file.save(upload_path)

    size = upload_path.stat().st_size
    max_bytes = mb_to_bytes(service.service_settings.max_upload_mb)
    if size == 0:
        service.files.remove(upload_path)
        return _request_error("Uploaded file is empty")
    if size > max_bytes:
        service.files.remove(upload_path)
        return _request_error(
            f"File too large. Maximum size is {service.service_settings.max_upload_mb:.0f}MB.", 413, "FileTooLarge"
        )

    job = service.create_job(original_name, upload_path, job_id)
    return jsonify({
        "success": True,
        "jobId": job.job_id,
        "status": job.status,
        "originalFilename": job.original_filename,
        "originalSize": job.original_size,
        "message": "Upload successful. Estimating compression sizes...",
    }), 201


def job_status(job_id: str):
    service = get_job_service()
    job = service.store.get(job_id)
    if job is None:
        return _job_not_found()
    return jsonify(service.status_payload(job))


def job_estimate(job_id: str):
    service = get_job_service()
    job = service.store.get(job_id)
    if job is None:
        return _job_not_found()
    payload, status = service.estimate_payload(job)
    return jsonify(payload), status


def compress(job_id: str):
    """
    Start compression for a ready job.

    Accepts JSON with 'quality' (1-100), 'targetSizeMB' (decimal MB) or
    'targetBytes'. With a target, the size curve picks the starting quality
    and 'quality' caps it.
    """
    service = get_job_service()
    job = service.store.get(job_id)
    if job is None:
        return _job_not_found()

    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        return _request_error("Request body must be a JSON object")

    quality, error = _parse_quality(data.get("quality"))
    if error:
        return _request_error(error)
    target_bytes, error = _parse_target(data)
    if error:
        return _request_error(error)
    if quality is None and target_bytes is None:
        return _request_error("Either quality or targetSizeMB must be provided")

    try:
        job, resolution = service.request_compression(job_id, quality=quality, target_bytes=target_bytes)
    except JobStateError as e:
        return create_error_response(e, e.status_code)

    return jsonify({
        "success": True,
        "message": "Compression started",
        "jobId": job.job_id,
        "quality": resolution.quality,
        "estimatedSizeBytes": resolution.estimated_bytes or None,
        "achievable": resolution.achievable,
        "targetBytes": target_bytes,
    }), 202


def download(job_id: str):
    service = get_job_service()
    job = service.store.get(job_id)
    if job is None:
        return _job_not_found()
    try:
        path, display_name = service.download_info(job)
    except JobStateError as e:
        return jsonify({
            "success": False,
            "error": e.message,
            "error_type": e.error_type,
            "error_message": e.message,
            "status": job.status,
        }), 400
    except FileNotFoundError:
        logger.error(f"[{job_id}] Compressed file missing on disk")
        return _request_error("Compressed file not found", 404, "FileNotFound")

    logger.info(f"[{job_id}] Serving file: {display_name} ({path.stat().st_size / MB:.1f}MB)")
    return send_file(path, mimetype="application/pdf", as_attachment=True, download_name=display_name)


def delete_job(job_id: str):
    service = get_job_service()
    if not service.delete_job(job_id):
        return _job_not_found()
    return jsonify({"success": True, "message": "Job deleted successfully"})


def queue_stats():
    return jsonify(get_job_service().queue_stats())


def health():
    """Health check with Ghostscript version and uptime."""
    return jsonify(get_job_service().health_snapshot())
