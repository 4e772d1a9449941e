# backend/invoicing/__init__.py
from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from .config import Config
from .extensions import db, migrate



def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.admin import admin_bp
    from .routes.clients import clients_bp
    from .routes.products import products_bp
    from .routes.product_groups import product_groups_bp
    from .routes.invoices import invoices_bp
    from .routes.deliveries import deliveries_bp
    from .routes.logs import logs_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(clients_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(product_groups_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(deliveries_bp)
    app.register_blueprint(logs_bp)

    allowed_origins = set(app.config["CORS_ALLOWED_ORIGINS"])

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # API clients always get JSON, including for routing errors
    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        messages = {
            400: "Invalid request",
            404: "Route not found",
            405: "Method not allowed",
        }
        return jsonify({"error": messages.get(e.code, e.name)}), e.code

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
