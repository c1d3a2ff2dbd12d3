"""API routes."""

from flask import Blueprint

from pdf_size_chooser.services import api_service

api_bp = Blueprint("api", __name__, url_prefix="/api")

api_bp.add_url_rule(
    "/upload",
    endpoint="upload",
    view_func=api_service.upload,
    methods=["POST"],
)
api_bp.add_url_rule(
    "/job/queue/stats",
    endpoint="queue_stats",
    view_func=api_service.queue_stats,
    methods=["GET"],
)
api_bp.add_url_rule(
    "/job/<job_id>/status",
    endpoint="job_status",
    view_func=api_service.job_status,
    methods=["GET"],
)
api_bp.add_url_rule(
    "/job/<job_id>/estimate",
    endpoint="job_estimate",
    view_func=api_service.job_estimate,
    methods=["GET"],
)
api_bp.add_url_rule(
    "/job/<job_id>/compress",
    endpoint="compress",
    view_func=api_service.compress,
    methods=["POST"],
)
api_bp.add_url_rule(
    "/job/<job_id>/download",
    endpoint="download",
    view_func=api_service.download,
    methods=["GET"],
)
api_bp.add_url_rule(
    "/job/<job_id>",
    endpoint="delete_job",
    view_func=api_service.delete_job,
    methods=["DELETE"],
)
