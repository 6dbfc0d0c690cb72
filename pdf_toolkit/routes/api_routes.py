"""API routes."""

from flask import Blueprint

from pdf_toolkit.services import pdf_service

api_bp = Blueprint("api", __name__, url_prefix="/api/pdf")

api_bp.add_url_rule(
    "/merge",
    endpoint="merge",
    view_func=pdf_service.merge,
    methods=["POST"],
)
api_bp.add_url_rule(
    "/split",
    endpoint="split",
    view_func=pdf_service.split,
    methods=["POST"],
)
api_bp.add_url_rule(
    "/compress",
    endpoint="compress",
    view_func=pdf_service.compress,
    methods=["POST"],
)
api_bp.add_url_rule(
    "/convert",
    endpoint="convert",
    view_func=pdf_service.convert,
    methods=["POST"],
)
api_bp.add_url_rule(
    "/info",
    endpoint="info",
    view_func=pdf_service.info,
    methods=["POST"],
)
api_bp.add_url_rule(
    "/download/<path:filename>",
    endpoint="download",
    view_func=pdf_service.download,
    methods=["GET"],
)
api_bp.add_url_rule(
    "/health",
    endpoint="health",
    view_func=pdf_service.health,
    methods=["GET"],
)
