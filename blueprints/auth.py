from flask import Blueprint, jsonify, request, current_app
import logging

from extensions import get_engine
from matrix.errors import ValidationError
from matrix.normalization import coerce_text


logger = logging.getLogger(__name__)
#==================================================================================================================

bp = Blueprint("auth", __name__, url_prefix="")


#===========================================================================
#      REGISTRATION ROUTE
#==============================================================================
@bp.route("/api/register", methods=["POST"])
def register():
    """
    Create a new member and place them in the sponsor's matrix.
    Expected JSON:
    {
        "username": "", "password": "", "email": "", "phone": "",
        "sponsor": "<sponsor username, optional>"
    }
    A cloud failure still registers the member locally (offline mode):
    the response is 201 with "synced": false and the remote error.
    """
    data = request.get_json(silent=True)
    if not data or not isinstance(data, dict):
        return jsonify({"error": "Invalid or missing JSON body"}), 400

    try:
        result = get_engine().register_member(
            username=data.get("username", ""),
            password=data.get("password", ""),
            email=data.get("email", ""),
            phone=data.get("phone", ""),
            sponsor_username=data.get("sponsor") or data.get("ref"),
            sign_in=bool(data.get("signIn", True)),
        )
    except ValidationError as e:
        return jsonify(e.to_dict()), 400

    if not result.synced:
        current_app.logger.warning(f"[REGISTER] {result.member.id} kept offline: {result.error}")
    return jsonify(result.to_dict()), 201


# --------------------------------------------------
#      Login Route
# --------------------------------------------------
@bp.route("/api/login", methods=["POST"])
def login():
    """
    Authenticate a member.
    Expected JSON: {"username": "", "password": ""}
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    username = coerce_text(data.get("username"))
    password = data.get("password")

    if not username or not password:
        return jsonify({"error": "Username and password are required"}), 400

    member = get_engine().login(username, password)
    if member is None:
        return jsonify({"error": "Invalid credentials"}), 401

    logger.info(f"Login successful for {member.id}")
    return jsonify({
        "message": "Login successful",
        "user": member.to_dict(include_password=False)
    }), 200

#-----------------------------------------------------------------------------------------------------
@bp.route("/api/logout", methods=["POST"])
def logout():
    """
    Destroy member session
    """
    get_engine().logout()
    return jsonify({"message": "Logged out successfully"}), 200

# --------------------------------------------------
# Check Session (for frontend auto-login)
# --------------------------------------------------
@bp.route("/session", methods=["GET"])
def check_session():
    """Returns current signed-in member data if authenticated"""
    engine = get_engine()
    member = engine.current_member()
    if member is None:
        return jsonify({"authenticated": False, "sync": engine.status.value}), 200

    return jsonify({
        "authenticated": True,
        "sync": engine.status.value,
        "user": member.to_dict(include_password=False)
    }), 200
