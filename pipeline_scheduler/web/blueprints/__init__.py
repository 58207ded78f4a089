"""Blueprint registration."""

from __future__ import annotations

from flask import Flask

from pipeline_scheduler.web.blueprints import pipelines


def register_blueprints(app: Flask) -> None:
    """Register all application blueprints."""
    app.register_blueprint(pipelines.bp)
