"""PDF toolkit package."""

__all__ = ["create_app"]


def create_app(config=None):
    """Lazily import app factory to avoid import-time side effects."""
    from pdf_toolkit.factory import create_app as _create_app

    return _create_app(config)
