import os

from flask import Flask

from .config import Config
from .extensions import db, migrate

MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "migrations")


def create_app(config_overrides: dict | None = None, *, tax_policy=None, discount_policy=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db, directory=MIGRATIONS_DIR)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .core import PosCore
    app.extensions["poscore"] = PosCore.from_config(
        app.config,
        tax_policy=tax_policy,
        discount_policy=discount_policy,
    )

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
