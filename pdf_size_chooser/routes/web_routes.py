"""Health routes."""

from flask import Blueprint

from pdf_size_chooser.services import api_service

web_bp = Blueprint("web", __name__)


@web_bp.get("/health")
def health():
    return api_service.health()
