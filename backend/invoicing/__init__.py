# backend/invoicing/__init__.py
import logging

from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def _blueprints():
    from .routes.system import system_bp
    from .routes.invoices import invoices_bp
    from .routes.inventory import inventory_bp
    from .routes.customers import customers_bp
    from .routes.ledger import ledger_bp

    return (system_bp, invoices_bp, inventory_bp, customers_bp, ledger_bp)


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    app.config.update(config_overrides or {})

    logging.getLogger("invoicing").setLevel(app.config["LOG_LEVEL"])

    db.init_app(app)
    migrate.init_app(app, db)

    # Alembic autogenerate needs every model registered on db.metadata
    from . import models  # noqa: F401

    for blueprint in _blueprints():
        app.register_blueprint(blueprint)

    cors_origins = frozenset(app.config["CORS_ALLOWED_ORIGINS"])

    @app.after_request
    def allow_frontend_origin(response):
        origin = request.headers.get("Origin")
        if origin not in cors_origins:
            return response
        response.headers.update({
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Headers": "X-Actor-Id, Content-Type",
            "Access-Control-Allow-Methods": "GET,POST,PUT,DELETE,PATCH,OPTIONS",
            "Vary": "Origin",
        })
        return response

    from .cli import register_commands
    register_commands(app)

    return app
