# backend/stockledger/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate, configure_sqlite_locking


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

    with app.app_context():
        configure_sqlite_locking(db.engine, busy_timeout=app.config["SQLITE_BUSY_TIMEOUT"])

    # Register blueprints
    from .routes.system import system_bp
    from .routes.stock import stock_bp
    from .routes.transfers import transfers_bp
    from .routes.reconciliation import reconciliation_bp
    from .routes.sequences import sequences_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(transfers_bp)
    app.register_blueprint(reconciliation_bp)
    app.register_blueprint(sequences_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
