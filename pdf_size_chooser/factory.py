"""Flask app factory."""

from __future__ import annotations

from flask import Flask

from pdf_size_chooser import bootstrap
from pdf_size_chooser.config import load_runtime_config
from pdf_size_chooser.core.settings import (
    EngineSettings,
    ServiceSettings,
    get_engine_settings,
    get_service_settings,
)
from pdf_size_chooser.engine import SizeTargetEngine
from pdf_size_chooser.routes.api_routes import api_bp
from pdf_size_chooser.routes.web_routes import web_bp
from pdf_size_chooser.services import api_service
from pdf_size_chooser.services.file_service import FileService
from pdf_size_chooser.services.job_service import JobService
from pdf_size_chooser.workers.job_store import JobStore
from pdf_size_chooser.workers.task_runner import TaskRunner, build_task_runner


def build_job_service(
    engine: SizeTargetEngine | None = None,
    engine_settings: EngineSettings | None = None,
    service_settings: ServiceSettings | None = None,
    runner: TaskRunner | None = None,
) -> JobService:
    """Wire the engine, job store, files and task runner together."""
    service_settings = service_settings or get_service_settings()
    engine = engine or SizeTargetEngine(settings=engine_settings or get_engine_settings())
    return JobService(
        engine=engine,
        store=JobStore(),
        files=FileService(service_settings.temp_dir, service_settings.job_ttl_seconds),
        runner=runner or build_task_runner(service_settings),
        service_settings=service_settings,
    )


def create_app(
    job_service: JobService | None = None,
    start_background: bool = True,
) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    job_service = job_service or build_job_service()
    runtime_config = load_runtime_config(job_service.service_settings)
    app.config["MAX_CONTENT_LENGTH"] = runtime_config.max_content_length
    app.extensions[api_service.EXTENSION_KEY] = job_service

    app.register_blueprint(web_bp)
    app.register_blueprint(api_bp)
    api_service.register_error_handlers(app)

    if start_background:
        bootstrap.bootstrap_runtime(job_service)
    return app
