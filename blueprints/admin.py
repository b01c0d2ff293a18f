#======================================================================================
#
# ADMIN routes: utility approval and network overview
#
#=======================================================================================
from flask import jsonify, request, Blueprint, abort
from functools import wraps
import logging

from extensions import get_engine
from matrix.errors import ValidationError
from matrix.normalization import coerce_text

logger = logging.getLogger(__name__)


def admin_required(f):
    """
    Decorator to restrict access to admin-only routes.
    - Aborts with 401 when nobody is signed in.
    - Re-reads the member from the resolved set (to get the current role).
    - Aborts with 403 Forbidden if not an admin.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        engine = get_engine()
        current = engine.current_member()
        if current is None:
            abort(401)

        member = engine.find_member(current.id) or current
        if not member.is_admin:
            abort(403)

        return f(member, *args, **kwargs)

    return decorated_function


admin_bp = Blueprint('admin', __name__, url_prefix='')


@admin_bp.route("/admin/members", methods=["GET"])
@admin_required
def admin_members(admin):
    engine = get_engine()
    members = engine.fetch_members()
    pending = [
        {"memberId": m.id, "username": m.username, **u.to_dict(include_data=False)}
        for m in members for u in m.utilities if not u.status.is_terminal
    ]
    return jsonify({
        "sync": engine.status.value,
        "total_members": len(members),
        "members": [m.to_dict(include_password=False, include_attachments=False) for m in members],
        "pending_utilities": pending,
    }), 200


@admin_bp.route("/admin/utilities/<utility_id>/status", methods=["POST"])
@admin_required
def admin_update_utility_status(admin, utility_id):
    """
    Approve or reject a Pending utility.
    Expected JSON: {"memberId": "", "status": "Active" | "Rejected"}
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    member_id = coerce_text(data.get("memberId"))
    status = data.get("status")
    if not member_id or not status:
        return jsonify({"error": "memberId and status are required"}), 400

    try:
        updated = get_engine().update_utility_status(member_id, utility_id, status, actor=admin)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400

    if updated is None:
        return jsonify({"error": "Member or utility not found"}), 404

    logger.info(f"Admin {admin.id} set utility {utility_id} of {member_id} to {status}")
    return jsonify({"success": True, "user": updated.to_dict(include_password=False)}), 200


@admin_bp.route("/admin/outbox", methods=["GET"])
@admin_required
def admin_outbox(admin):
    """Recent background deliveries to the remote store"""
    outbox = get_engine().outbox
    limit = request.args.get("limit", 50, type=int)
    deliveries = outbox.deliveries[-limit:] if limit > 0 else []
    return jsonify({
        "in_flight": outbox.in_flight(),
        "failures": len(outbox.failures()),
        "deliveries": [
            {
                "label": d.label,
                "success": d.success,
                "message": d.message,
                "finished_at": d.finished_at.isoformat(),
            }
            for d in reversed(deliveries)
        ],
    }), 200
