import os
from pathlib import Path
from typing import Any, Mapping, Optional

from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from .datastore import DataStore
from .search import PostSearchEngine


DEFAULT_MAX_IMAGE_BYTES = 100 * 1024 * 1024
# Room for multipart boundaries and headers on top of the image itself.
UPLOAD_OVERHEAD_BYTES = 1024 * 1024


def create_app(config: Optional[Mapping[str, Any]] = None) -> Flask:
    app = Flask(__name__)

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret-key")
    app.config["BLOG_DATA_DIR"] = os.getenv("BLOG_DATA_DIR") or str(Path(app.root_path).parent / "data")
    app.config["CORS_ORIGINS"] = os.getenv("CORS_ORIGINS", "http://localhost")
    app.config["MAX_IMAGE_BYTES"] = int(os.getenv("MAX_IMAGE_BYTES", DEFAULT_MAX_IMAGE_BYTES))
    app.config["LOG_LEVEL"] = os.getenv("LOG_LEVEL", "INFO")
    if config:
        app.config.update(config)
    app.config["MAX_CONTENT_LENGTH"] = app.config["MAX_IMAGE_BYTES"] + UPLOAD_OVERHEAD_BYTES

    app.logger.setLevel(app.config["LOG_LEVEL"])

    datastore = DataStore(Path(app.config["BLOG_DATA_DIR"]))
    app.extensions["datastore"] = datastore
    app.extensions["post_search"] = PostSearchEngine(datastore)

    origins = [origin.strip() for origin in str(app.config["CORS_ORIGINS"]).split(",") if origin.strip()]
    CORS(
        app,
        resources={r"/api/*": {"origins": origins}},
        allow_headers=["Content-Type", "Authorization", "X-Custom-Header"],
        expose_headers=["X-Custom-Header"],
        supports_credentials=True,
        max_age=3600,
    )

    from .posts import bp as posts_bp
    from .comments import bp as comments_bp
    from .images import bp as images_bp

    app.register_blueprint(posts_bp)
    app.register_blueprint(comments_bp)
    app.register_blueprint(images_bp)

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({"error": error.description}), error.code

    app.logger.info("Blog data stored in %s", datastore.db_path)
    return app
