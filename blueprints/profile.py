import base64
import binascii
import logging

from flask import Blueprint, jsonify, request, current_app

from extensions import get_assistant, get_engine
from matrix.errors import ValidationError
from matrix.normalization import coerce_text
from utils import build_referral_link

logger = logging.getLogger(__name__)

bp = Blueprint('profile', __name__, url_prefix="")


def _signed_in():
    return get_engine().current_member()


# ----------------------------------------------------------------------------------
# PROFILE
# ----------------------------------------------------------------------------------
@bp.route('/api/member/profile', methods=['PUT'])
def update_member_profile():
    """Update contact details / avatar of the signed-in member"""
    member = _signed_in()
    if member is None:
        return jsonify({"error": "Unauthorized"}), 401

    data = request.get_json(silent=True)
    if not data or not isinstance(data, dict):
        return jsonify({"error": "Invalid or missing JSON body"}), 400

    try:
        updated = get_engine().update_member_profile(member.id, data)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400

    if updated is None:
        return jsonify({"error": "Member not found"}), 404
    return jsonify({"success": True, "user": updated.to_dict(include_password=False)}), 200


#=======================================================================================
#      UTILITIES
#=======================================================================================
@bp.route('/api/member/utilities', methods=['POST'])
def add_utility():
    """
    Add a utility (Pending) to the signed-in member's portfolio.
    Expected JSON:
    {
        "type": "Electricity" | "Gas", "provider": "",
        "attachmentName": "", "attachmentType": "", "attachmentData": "<base64>"
    }
    """
    member = _signed_in()
    if member is None:
        return jsonify({"error": "Unauthorized"}), 401

    data = request.get_json(silent=True)
    if not data or not isinstance(data, dict):
        return jsonify({"error": "Invalid or missing JSON body"}), 400

    try:
        updated = get_engine().add_utility(
            member.id,
            data.get("type"),
            data.get("provider", ""),
            attachment_name=data.get("attachmentName"),
            attachment_type=data.get("attachmentType"),
            attachment_data=data.get("attachmentData"),
        )
    except ValidationError as e:
        return jsonify(e.to_dict()), 400

    if updated is None:
        return jsonify({"error": "Member not found"}), 404
    return jsonify({"success": True, "user": updated.to_dict(include_password=False)}), 201


@bp.route('/api/utilities/extract', methods=['POST'])
def extract_utility_data():
    """Pre-fill type/provider from a bill scan. An AI error never blocks manual entry."""
    if _signed_in() is None:
        return jsonify({"error": "Unauthorized"}), 401

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    mime_type = coerce_text(data.get("mimeType"))
    try:
        document = base64.b64decode(data.get("data") or "", validate=True)
    except (binascii.Error, TypeError, ValueError):
        return jsonify({"error": "Document must be base64 encoded"}), 400
    if not document or not mime_type:
        return jsonify({"error": "Document data and mimeType are required"}), 400

    logger.info(f"Bill extraction requested ({mime_type}, {len(document)} bytes)")

    return jsonify(get_assistant().extract_bill_data(document, mime_type)), 200


@bp.route('/api/utilities/<utility_id>/attachment', methods=['GET'])
def get_utility_attachment(utility_id):
    if _signed_in() is None:
        return jsonify({"error": "Unauthorized"}), 401

    data = get_engine().load_attachment(utility_id)
    if not data:
        return jsonify({"error": "Attachment not found"}), 404
    return jsonify({"success": True, "attachmentData": data}), 200


#=================================================================================
#      NETWORK
#=================================================================================
@bp.route("/api/network/tree", methods=["GET"])
def get_network_tree():
    """Matrix tree below ?root=<member id>, defaulting to the signed-in member"""
    member = _signed_in()
    if member is None:
        return jsonify({"error": "Unauthorized"}), 401

    root_id = request.args.get("root", member.id)
    node = get_engine().build_tree(root_id)
    if node is None:
        return jsonify({"error": "Member not found"}), 404
    return jsonify({"success": True, "tree": node.to_dict()}), 200


@bp.route("/api/network/stats", methods=["GET"])
def get_network_stats():
    if _signed_in() is None:
        return jsonify({"error": "Unauthorized"}), 401
    return jsonify({"success": True, "stats": get_engine().network_stats()}), 200


@bp.route("/api/network/analysis", methods=["GET"])
def get_network_analysis():
    member = _signed_in()
    if member is None:
        return jsonify({"error": "Unauthorized"}), 401

    node = get_engine().build_tree(member.id)
    if node is None:
        return jsonify({"error": "Member not found"}), 404
    return jsonify({"success": True, "analysis": get_assistant().analyze_network(node)}), 200


@bp.route("/api/referral-link", methods=["GET"])
def get_referral_link():
    member = _signed_in()
    if member is None:
        return jsonify({"error": "Unauthorized"}), 401
    link = build_referral_link(current_app.config.get("APP_BASE_URL"), member.username)
    return jsonify({"success": True, "referralLink": link}), 200
