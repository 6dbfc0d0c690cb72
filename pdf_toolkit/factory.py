"""Flask app factory."""

from __future__ import annotations

from typing import Optional

from flask import Flask

from pdf_toolkit import bootstrap
from pdf_toolkit.config import RuntimeConfig, load_runtime_config
from pdf_toolkit.routes.api_routes import api_bp
from pdf_toolkit.routes.web_routes import web_bp
from pdf_toolkit.services import pdf_service
from pdf_toolkit.services.pipeline import OperationPipeline


def create_app(config: Optional[RuntimeConfig] = None) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    runtime_config = config or load_runtime_config()
    runtime = pdf_service.ToolkitRuntime(
        config=runtime_config,
        pipeline=OperationPipeline.from_config(runtime_config),
    )
    pdf_service.configure_app(app, runtime)

    app.register_blueprint(web_bp)
    app.register_blueprint(api_bp)
    pdf_service.register_error_handlers(app)

    bootstrap.bootstrap_runtime(runtime)
    return app
