"""Flask application factory for the ReelForge web API.

Uploads, render jobs and results live under ``WORK_DIR``; every job renders
with the app-wide ``RENDER_SETTINGS``.
"""

import logging
import tempfile
from pathlib import Path

from flask import Flask, jsonify

from reelforge.errors import RenderError
from reelforge.manifest import RenderSettings

logger = logging.getLogger(__name__)


def create_app(work_dir: Path | None = None, settings: RenderSettings | None = None) -> Flask:
    app = Flask(__name__)
    app.config["WORK_DIR"] = work_dir or Path(tempfile.mkdtemp(prefix="reelforge_web_"))
    app.config["RENDER_SETTINGS"] = settings or RenderSettings()
    app.config["MAX_CONTENT_LENGTH"] = 2 * 1024 * 1024 * 1024

    from reelforge.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(RenderError)
    def render_error(error: RenderError):
        status = 400 if error.category == "input" else 500
        if status == 500:
            logger.error("Request failed (%s): %s", error.category, error)
        return jsonify({"error": str(error), "category": error.category}), status

    @app.errorhandler(413)
    def upload_too_large(error):
        return jsonify({"error": "Upload too large"}), 413

    logger.debug("Web work dir: %s", app.config["WORK_DIR"])
    return app
