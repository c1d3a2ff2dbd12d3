"""PDF size chooser package."""

__all__ = ["create_app"]


def create_app(**kwargs):
    """Lazily import app factory to avoid import-time side effects."""
    from pdf_size_chooser.factory import create_app as _create_app

    return _create_app(**kwargs)
