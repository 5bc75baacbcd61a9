"""
Flask application factory.

Creates and configures the Flask app, registers all blueprints.
"""
from flask import Flask, jsonify

from prospector.errors import ProspectorError


def create_app():
    """Create and configure the Flask application."""
    from prospector.logging_config import configure_logging

    app = Flask(__name__)
    # Stage metadata and stats are returned in pipeline order
    app.json.sort_keys = False

    configure_logging(app)

    # Register blueprints
    from prospector.routes.pipeline import bp as pipeline_bp
    from prospector.routes.leads import bp as leads_bp
    from prospector.routes.health import bp as health_bp

    app.register_blueprint(pipeline_bp)
    app.register_blueprint(leads_bp)
    app.register_blueprint(health_bp)

    @app.errorhandler(ProspectorError)
    def handle_prospector_error(e):
        app.logger.error("Unhandled %s: %s", e.__class__.__name__, e)
        return jsonify({'success': False, 'error': str(e)}), 500

    # Initialize circuit breakers for the n8n webhooks
    from prospector.extensions import redis_client
    from prospector.services.circuit_breaker import init_breakers
    init_breakers(redis_client)

    # Import models so Base.metadata knows about them (required for SQLAlchemy).
    # Schema is managed by Alembic; no init_db() call.
    import importlib
    importlib.import_module('prospector.models.db_run')
    importlib.import_module('prospector.models.lead')

    return app
