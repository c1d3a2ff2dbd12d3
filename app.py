"""Gunicorn entry point: ``gunicorn app:app``."""

from pdf_size_chooser import create_app

app = create_app()
