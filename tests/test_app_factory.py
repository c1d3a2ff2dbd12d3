import importlib

from flask import Flask

from fakes import FakeBackend, InlineRunner

from pdf_size_chooser import bootstrap
from pdf_size_chooser.core.settings import EngineSettings, ServiceSettings
from pdf_size_chooser.engine.size_engine import SizeTargetEngine
from pdf_size_chooser.factory import build_job_service, create_app


def _service(tmp_path):
    return build_job_service(
        engine=SizeTargetEngine(backend=FakeBackend(), settings=EngineSettings()),
        service_settings=ServiceSettings(temp_dir=tmp_path / "jobs", async_workers=1),
        runner=InlineRunner(),
    )


def test_create_app_registers_expected_routes(tmp_path):
    app = create_app(job_service=_service(tmp_path), start_background=False)

    rules = {rule.rule for rule in app.url_map.iter_rules()}
    expected = {
        "/health",
        "/api/upload",
        "/api/job/<job_id>/status",
        "/api/job/<job_id>/estimate",
        "/api/job/<job_id>/compress",
        "/api/job/<job_id>/download",
        "/api/job/<job_id>",
        "/api/job/queue/stats",
    }
    assert expected.issubset(rules)


def test_max_content_length_follows_upload_limit(tmp_path):
    service = build_job_service(
        engine=SizeTargetEngine(backend=FakeBackend(), settings=EngineSettings()),
        service_settings=ServiceSettings(temp_dir=tmp_path / "jobs", max_upload_mb=10.0, async_workers=1),
        runner=InlineRunner(),
    )
    app = create_app(job_service=service, start_background=False)
    assert app.config["MAX_CONTENT_LENGTH"] >= 10_000_000
    assert app.config["MAX_CONTENT_LENGTH"] < 11_000_000


def test_bootstrap_runtime_is_idempotent(monkeypatch, tmp_path):
    calls = {"thread_start": 0}

    class DummyThread:
        def __init__(self, *args, **kwargs):
            del args, kwargs

        def start(self):
            calls["thread_start"] += 1

    monkeypatch.setattr(bootstrap.threading, "Thread", DummyThread)
    service = _service(tmp_path)

    bootstrap.bootstrap_runtime(service)
    bootstrap.bootstrap_runtime(service)

    assert calls["thread_start"] == 1
    assert bootstrap.is_bootstrapped(service)
    assert (tmp_path / "jobs").is_dir()


def test_root_app_shim_exposes_gunicorn_app(monkeypatch, tmp_path):
    monkeypatch.setenv("TEMP_DIR", str(tmp_path / "jobs"))
    monkeypatch.setattr("pdf_size_chooser.factory.bootstrap.bootstrap_runtime", lambda service: None)
    app_module = importlib.import_module("app")
    assert hasattr(app_module, "app")
    assert isinstance(app_module.app, Flask)
