"""
/api/enhance routes - Photo enhancement and job history.

Handles:
- POST /api/enhance          - Run one enhancement (costs CREDITS_PER_JOB)
- GET  /api/enhance/presets  - Preset catalogue for the editor
- GET  /api/jobs             - Caller's recent jobs
- GET  /api/jobs/<job_id>    - One of the caller's jobs

The kill-switch is checked before the caller is resolved, so a disabled
service answers 503 regardless of credential or balance.
"""

from flask import Blueprint, request, jsonify, g

from propertyperfect.middleware import require_bearer, no_cache
from propertyperfect.services.enhance_service import EnhanceService, EnhanceRequest
from propertyperfect.services.expense_guard import ExpenseGuard
from propertyperfect.services.identity_service import IdentityService
from propertyperfect.services.prompt_service import get_presets
from propertyperfect.utils.helpers import clamp_int

bp = Blueprint("enhance", __name__)


@bp.route("/enhance", methods=["POST"])
def enhance():
    ExpenseGuard.check_enabled()

    user = IdentityService.authenticate(request)
    g.user = user
    g.user_id = str(user["id"])
    g.is_test_user = bool(user.get("is_test"))

    req = EnhanceRequest.from_json(request.get_json(silent=True))
    result = EnhanceService.enhance(user, req)
    return jsonify(result)


@bp.route("/enhance/presets", methods=["GET"])
def presets():
    return jsonify({"presets": get_presets()})


@bp.route("/jobs", methods=["GET"])
@require_bearer
@no_cache
def list_jobs():
    limit = clamp_int(request.args.get("limit"), 1, 100, 20)
    days = request.args.get("days")
    days = clamp_int(days, 1, 365, 30) if days else None
    jobs = EnhanceService.list_jobs(g.user, limit=limit, days=days)
    return jsonify({"jobs": jobs, "count": len(jobs)})


@bp.route("/jobs/<job_id>", methods=["GET"])
@require_bearer
@no_cache
def get_job(job_id):
    return jsonify({"job": EnhanceService.get_job(g.user, job_id)})
