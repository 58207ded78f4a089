"""
JSON API for the pipeline scheduler.
"""

from flask import Flask, jsonify
from werkzeug.exceptions import BadRequest, MethodNotAllowed, NotFound, InternalServerError


def create_app() -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    from pipeline_scheduler.web.blueprints import register_blueprints
    register_blueprints(app)

    @app.after_request
    def add_security_headers(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        return response

    @app.errorhandler(BadRequest)
    def handle_400(exc):
        return jsonify({"error": "Bad request"}), 400

    @app.errorhandler(NotFound)
    def handle_404(exc):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(MethodNotAllowed)
    def handle_405(exc):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(InternalServerError)
    def handle_500(exc):
        return jsonify({"error": "Internal server error"}), 500

    return app
