import logging
import os
import sys
from logging.handlers import RotatingFileHandler

from flask import Flask, jsonify, session
from flask_migrate import Migrate

from extensions import db

# Models to ensure they are registered with SQLAlchemy
from models.asset import AssetRow  # noqa: F401

# Blueprints
from routes.asset_routes import assets_bp
from routes.auth_routes import auth_bp

from services.assets import AssetSnapshot, build_repository
from services.assets.config import load_storage_settings

# -----------------------------
# APP INITIALIZATION
# -----------------------------
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

migrate = Migrate()


def setup_logging(app):
    level = getattr(logging, str(app.config.get("LOG_LEVEL") or "INFO").upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger("assettrack")
    root.setLevel(level)
    if not any(isinstance(h, logging.StreamHandler) for h in root.handlers):
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        root.addHandler(stream)

    log_dir = app.config.get("LOG_DIR")
    if not log_dir:
        return
    os.makedirs(log_dir, exist_ok=True)
    if any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        return
    handler = RotatingFileHandler(
        os.path.join(log_dir, "assettrack.log"), maxBytes=5_000_000, backupCount=5
    )
    handler.setFormatter(formatter)
    handler.setLevel(level)
    root.addHandler(handler)
    app.logger.addHandler(handler)


def create_app(config=None, repository=None):
    app = Flask(__name__)
    app.secret_key = (
        os.environ.get("FLASK_SECRET_KEY")
        or os.environ.get("SECRET_KEY")
        or os.urandom(32)
    )

    db_uri = os.environ.get("SQLALCHEMY_DATABASE_URI") or os.environ.get("DATABASE_URL")
    if not db_uri:
        db_uri = f"sqlite:///{os.path.join(BASE_DIR, 'assettrack.db')}"

    app.config["SQLALCHEMY_DATABASE_URI"] = db_uri
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["LOG_DIR"] = os.environ.get("LOG_DIR", "")
    app.config["LOG_LEVEL"] = os.environ.get("LOG_LEVEL", "INFO")
    app.config["MAX_CONTENT_LENGTH"] = 16 * 1024 * 1024
    if config:
        app.config.update(config)

    setup_logging(app)

    # Init DB + Migration
    db.init_app(app)
    migrate.init_app(app, db)

    # Register Blueprints
    app.register_blueprint(auth_bp)
    app.register_blueprint(assets_bp)

    settings = load_storage_settings()
    if repository is None:
        repository = build_repository(settings)
    app.extensions["asset_repository"] = repository
    app.extensions["asset_snapshot"] = AssetSnapshot(repository)

    if repository.name == "sql":
        with app.app_context():
            db.create_all()

    logging.getLogger("assettrack").info("asset backend: %s", repository.name)

    @app.route("/")
    def index():
        return jsonify({"ok": True, "service": "assettrack", "user": session.get("user")})

    return app


app = create_app()


# Dev mode only
if __name__ == "__main__":
    app.run(host="127.0.0.1", port=5050, debug=True)
