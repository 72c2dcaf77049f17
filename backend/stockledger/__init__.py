# backend/stockledger/__init__.py
from __future__ import annotations

import logging

from flask import Flask

from .config import Config
from .errors import StockLedgerError
from .extensions import db, migrate


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger().setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.products import products_bp
    from .routes.inventory import inventory_bp
    from .routes.sales import sales_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(sales_bp)

    @app.errorhandler(StockLedgerError)
    def handle_stock_ledger_error(e: StockLedgerError):
        if e.status_code >= 500:
            app.logger.error("%s: %s", e.kind, e.message)
        return e.to_dict(), e.status_code

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
