# photoai/__init__.py
from __future__ import annotations

from typing import Any, Mapping, Optional

from flask import Flask
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import MetaData

# Convenciones de nombres (útil para migraciones y SQLite)
metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_name)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }
)

# Extensiones globales
db = SQLAlchemy(metadata=metadata)
migrate = Migrate()


def create_app(test_config: Optional[Mapping[str, Any]] = None) -> Flask:
    from photoai.config import Config, check_config, ensure_sqlite_dir

    app = Flask(__name__)

    # -----------------------------------------------------------
    # CONFIG GENERAL (entorno + overrides de tests)
    # -----------------------------------------------------------
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    check_config(app.config)

    ensure_sqlite_dir(app.config["SQLALCHEMY_DATABASE_URI"])

    # -----------------------------------------------------------
    # INICIALIZACIÓN DE EXTENSIONES
    # -----------------------------------------------------------
    db.init_app(app)
    migrate.init_app(app, db, directory="migrations")

    # Importar modelos para registrarlos en metadata
    from photoai import models  # noqa: F401

    # -----------------------------------------------------------
    # BLUEPRINTS
    # -----------------------------------------------------------
    from photoai.routes import register_routes
    register_routes(app)

    # -----------------------------------------------------------
    # HEALTHCHECK
    # -----------------------------------------------------------
    @app.get("/healthz")
    def healthz():
        return {"ok": True}

    # Crear tablas si no existen
    with app.app_context():
        db.create_all()

    return app
