# backend/repairdesk/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def configure_logging(app: Flask) -> None:
    """Package loggers hang off the app logger's level."""
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    app.logger.setLevel(level)
    package_logger = logging.getLogger(__name__)
    package_logger.setLevel(level)
    if not logging.getLogger().handlers and not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
        package_logger.addHandler(handler)


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.payments import payments_bp
    from .routes.billing import billing_bp
    from .routes.inventory_transfers import inventory_transfers_bp
    from .routes.integrations import integrations_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(inventory_transfers_bp)
    app.register_blueprint(integrations_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    if app.config.get("BILLING_SCHEDULER_ENABLED") and not app.config.get("TESTING"):
        from .services.billing_scheduler import BillingScheduler
        scheduler = BillingScheduler(app)
        scheduler.start()
        app.extensions["billing_scheduler"] = scheduler

    return app
