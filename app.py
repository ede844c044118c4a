"""Application factory."""

import json
import logging
import os
import uuid

from flask import Flask, g, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from config import Config
from models import db
from routes.admin import admin_bp
from routes.auth import auth_bp
from routes.documents import documents_bp, uploads_bp
from routes.orders import orders_bp
from routes.payments import payments_bp
from services.mailer import Mailer
from services.payments import build_gateway
from services.previews import DocumentConverter, PreviewGenerator
from storage import LocalStorage

migrate = Migrate()
jwt = JWTManager()
limiter = Limiter(key_func=get_remote_address)


def create_app(config_class: type[Config] = Config) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    # Core subsystems
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)

    # CORS
    CORS(
        app,
        resources={r"/*": {"origins": app.config.get("CORS_ORIGINS", "*")}},
        supports_credentials=True,
    )

    # Rate limiting
    storage_uri = app.config.get("RATELIMIT_STORAGE_URI", "memory://")
    headers_enabled = app.config.get("RATELIMIT_HEADERS_ENABLED", True)
    key_prefix = app.config.get("RATELIMIT_KEY_PREFIX") or str(uuid.uuid4())

    global limiter
    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[lambda: app.config.get("RATE_LIMIT", "120 per minute")],
        storage_uri=storage_uri,
        headers_enabled=headers_enabled,
        key_prefix=key_prefix,
    )
    limiter.init_app(app)
    app.config["RATELIMIT_KEY_PREFIX"] = key_prefix

    # Storage and collaborators
    upload_dir = app.config["UPLOAD_DIR"]
    preview_dir = app.config.get("PREVIEW_DIR") or os.path.join(upload_dir, "previews")
    app.config["PREVIEW_DIR"] = preview_dir
    app.extensions["previews"] = PreviewGenerator(
        uploads=LocalStorage(upload_dir),
        previews=LocalStorage(preview_dir),
        converter=DocumentConverter(
            binary=app.config.get("SOFFICE_BINARY", "soffice"),
            timeout=app.config.get("PREVIEW_CONVERSION_TIMEOUT", 120),
        ),
        max_workers=app.config.get("PREVIEW_WORKERS", 2),
    )
    app.extensions["mailer"] = Mailer.from_config(app.config)
    app.extensions["payment_gateway"] = build_gateway(app)

    # Blueprints
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(orders_bp, url_prefix="/api/orders")
    app.register_blueprint(payments_bp, url_prefix="/api/payments")
    app.register_blueprint(documents_bp, url_prefix="/api")
    app.register_blueprint(uploads_bp)

    # Health
    @app.route("/health", methods=["GET"])
    def health_check():
        return jsonify({"status": "ok"})

    @app.route("/api/ping", methods=["GET"])
    def ping():
        return jsonify({"message": "pong"})

    # Errors
    _register_error_handlers(app)
    _register_jwt_handlers()

    return app


def _error_response(name: str, detail: str, status: int):
    request_id = g.get("request_id") or str(uuid.uuid4())
    response = jsonify({"error": name, "detail": detail, "request_id": request_id})
    response.status_code = status
    response.headers.setdefault("X-Request-ID", request_id)
    return response


def _register_jwt_handlers() -> None:
    """Render missing, invalid and expired credentials like every other error."""

    @jwt.unauthorized_loader
    def _missing_token(reason: str):
        return _error_response("Unauthorized", reason, 401)

    @jwt.invalid_token_loader
    def _invalid_token(reason: str):
        return _error_response("Unauthorized", reason, 401)

    @jwt.expired_token_loader
    def _expired_token(jwt_header, jwt_payload):
        return _error_response("Unauthorized", "Token has expired", 401)


def _register_error_handlers(app: Flask) -> None:
    """Register JSON error handlers with request IDs."""

    @app.before_request
    def _assign_request_id():  # pragma: no cover
        g.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

    @app.after_request
    def _add_request_id_header(response):  # pragma: no cover
        request_id = g.get("request_id")
        if request_id:
            response.headers.setdefault("X-Request-ID", request_id)
        return response

    @app.errorhandler(HTTPException)
    def _handle_http_exception(error: HTTPException):
        request_id = g.get("request_id") or str(uuid.uuid4())
        response = error.get_response()
        payload = {
            "error": getattr(error, "name", "Error"),
            "detail": error.description,
            "request_id": request_id,
        }
        response.data = json.dumps(payload)
        response.content_type = "application/json"
        response.headers.setdefault("X-Request-ID", request_id)
        return response

    @app.errorhandler(SQLAlchemyError)
    def _handle_store_failure(error: SQLAlchemyError):
        db.session.rollback()
        app.logger.exception("Store failure", exc_info=error)
        return _error_response("Internal Server Error", "Store unavailable", 500)

    @app.errorhandler(Exception)
    def _handle_unexpected(error: Exception):  # pragma: no cover
        app.logger.exception("Unhandled application error", exc_info=error)
        return _error_response("Internal Server Error", "An unexpected error occurred.", 500)


if __name__ == "__main__":
    application = create_app()
    application.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
