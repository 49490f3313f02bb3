"""Flask application factory for the RangeClip HTTP API."""

import threading

from flask import Flask, jsonify

from rangeclip.config import Settings
from rangeclip.session import Session


def create_app(settings: Settings | None = None, session: Session | None = None) -> Flask:
    app = Flask(__name__)
    app.config["SESSION"] = session or Session(settings or Settings())
    # Request handlers are the interactive context; one at a time touches the session.
    app.config["SESSION_LOCK"] = threading.Lock()
    app.config["EXPORT_EVENTS"] = []
    app.config["PROGRESS_POLL_INTERVAL"] = 0.2

    from rangeclip.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Not found"}), 404

    return app
