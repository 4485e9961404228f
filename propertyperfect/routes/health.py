"""
Health check routes.
"""

from __future__ import annotations

from flask import Blueprint, jsonify

from propertyperfect.db import USE_DB, verify_connection
from propertyperfect.services.expense_guard import ExpenseGuard
from propertyperfect.services.image_router import ImageRouter

bp = Blueprint("health", __name__)


@bp.route("/health", methods=["GET"])
def health():
    return jsonify({
        "ok": True,
        "db": USE_DB,
        "enhancementsDisabled": ExpenseGuard.is_disabled(),
        **ImageRouter.describe(),
    })


@bp.route("/db-check", methods=["GET"])
def db_check():
    if not USE_DB:
        return jsonify({"ok": False, "error": "db_disabled"}), 503
    if not verify_connection():
        print("[DB] db_check failed")
        return jsonify({"ok": False, "error": "db_query_failed"}), 503
    return jsonify({"ok": True, "db": "connected"})
