import logging

from flask import Flask, jsonify

from .errors import GradingError
from .extensions import db, migrate, rq


def create_app(config_object="config.Config"):
    """App factory. Workers and the CLI scripts build the app the same way."""
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(getattr(logging, app.config.get("LOG_LEVEL", "INFO"), logging.INFO))

    db.init_app(app)
    migrate.init_app(app, db)
    rq.init_app(app)

    # register models on the metadata before anything asks for it
    from . import models  # noqa: F401

    from .api.calls import bp as calls_bp
    from .api.queue import bp as queue_bp
    from .api.sessions import bp as sessions_bp
    from .api.templates import bp as templates_bp
    app.register_blueprint(calls_bp, url_prefix="/api/calls")
    app.register_blueprint(queue_bp, url_prefix="/api/queue")
    app.register_blueprint(templates_bp, url_prefix="/api/templates")
    app.register_blueprint(sessions_bp, url_prefix="/api/sessions")

    @app.errorhandler(GradingError)
    def handle_grading_error(exc):
        if exc.status_code >= 500:
            app.logger.warning("request failed: %s", exc.message)
        return jsonify({"error": exc.message}), exc.status_code

    @app.get("/healthz")
    def healthz():
        return jsonify({"ok": True})

    return app
