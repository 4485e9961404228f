"""PropertyPerfect API entrypoint.

Builds the Flask app and registers all blueprints.

    gunicorn "propertyperfect.app:create_app()"
"""

from __future__ import annotations

import re

from flask import Flask, g
from flask_cors import CORS

from propertyperfect.config import config, log_config


def create_app(init_database: bool = True) -> Flask:
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_IMAGE_BYTES * 2

    if config.ALLOW_ALL_ORIGINS:
        origins = [re.compile(r".*")]
    else:
        origins = config.ALLOWED_ORIGINS

    CORS(
        app,
        resources={r"/api/*": {"origins": origins}},
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization", "Stripe-Signature", "X-Admin-Token"],
        expose_headers=["Content-Type"],
        methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    )

    @app.before_request
    def _caller_default():
        g.user = None
        g.user_id = None
        g.is_test_user = False

    from propertyperfect.utils.error_handlers import register_error_handlers
    from propertyperfect.routes import register_blueprints

    register_error_handlers(app)
    register_blueprints(app, print_routes=config.IS_DEV)

    # ─────────────────────────────────────────────────────────────
    # Startup: database + kill-switch state
    # ─────────────────────────────────────────────────────────────
    if init_database:
        from propertyperfect.db import init_db, DatabaseError
        from propertyperfect.services.expense_guard import ExpenseGuard

        try:
            init_db()
        except DatabaseError as e:
            print(f"[APP] Warning: Database unavailable at startup: {e}")
        ExpenseGuard.load()

    return app


def main():
    log_config()
    app = create_app()
    app.run(host=config.HOST, port=config.PORT, debug=config.IS_DEV)


if __name__ == "__main__":
    main()
