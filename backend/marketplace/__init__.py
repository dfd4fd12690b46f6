# backend/marketplace/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None, gateway=None) -> Flask:
    """
    Application factory.

    test_config overrides Config before extensions bind (the engine is built
    in db.init_app). gateway replaces the EpayGateway the settlement
    orchestrator would otherwise build from BANK_* config.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.orders import orders_bp
    from .routes.catalog import catalog_bp
    from .routes.promotions import promotions_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(promotions_bp)

    # READY -> recalculate + capture
    from .services import settlement_service
    settlement_service.init_app(app, gateway=gateway)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
