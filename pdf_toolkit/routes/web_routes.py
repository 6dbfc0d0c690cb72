"""Health route outside the API prefix."""

from flask import Blueprint

from pdf_toolkit.services import pdf_service

web_bp = Blueprint("web", __name__)


@web_bp.get("/health")
def health():
    return pdf_service.health()
