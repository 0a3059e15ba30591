from flask import Blueprint, jsonify
from flask_jwt_extended import jwt_required

from dashboard import dashboard_counts
from lifecycle import expire_overdue
from utils import current_actor

dashboard_bp = Blueprint('dashboard', __name__)


@dashboard_bp.route('/api/dashboard', methods=['GET'])
@jwt_required()
def get_dashboard():
    """
    Role-specific counts for the caller's dashboard.
    """
    actor = current_actor()

    # CLEANUP FIRST (Mark overdue items as expired)
    expire_overdue()

    return jsonify({
        'role': actor.role,
        'counts': dashboard_counts(actor)
    }), 200
