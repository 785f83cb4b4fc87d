# backend/parktrack/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


__version__ = "1.0.0"


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Services log under parktrack.services.*
    logging.getLogger("parktrack").setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.scans import scans_bp, tokens_bp
    from .routes.sessions import sessions_bp
    from .routes.rates import rates_bp
    from .routes.charges import charges_bp
    from .routes.invoices import invoices_bp
    from .routes.tier_upgrades import tier_upgrades_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(scans_bp)
    app.register_blueprint(tokens_bp)
    app.register_blueprint(sessions_bp)
    app.register_blueprint(rates_bp)
    app.register_blueprint(charges_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(tier_upgrades_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
