from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required

from errors import ValidationError
from models import User, AuditLog, ROLES
import store
from utils import current_actor, get_json_body, log_activity, parse_choice, require_role

admin_bp = Blueprint('admin', __name__)


@admin_bp.route('/api/admin/users', methods=['GET'])
@jwt_required()
def list_users():
    """
    Every account with its role and verification state.
    Optional filters: ?role=charity&q=bakery
    """
    require_role(current_actor(), 'admin')

    query = User.query
    role = request.args.get('role')
    if role:
        query = query.filter_by(role=parse_choice(role, ROLES, 'role'))
    search = request.args.get('q')
    if search:
        # Search Logic (Case Insensitive)
        query = query.filter(
            (User.email.ilike(f"%{search}%")) |
            (User.name.ilike(f"%{search}%")) |
            (User.organization_name.ilike(f"%{search}%"))
        )

    users = query.order_by(User.created_at.desc(), User.id.desc()).all()
    return jsonify([u.to_dict() for u in users]), 200


@admin_bp.route('/api/admin/users/<int:user_id>/verify', methods=['PATCH', 'POST'])
@jwt_required()
def verify_user(user_id):
    """
    Sets a user's verification status (Admin only).
    Works with both PATCH and POST to prevent frontend errors.
    """
    actor = current_actor()
    require_role(actor, 'admin')

    data = get_json_body(request)
    outcome = parse_choice(data.get('verification_status', 'verified'),
                           ('verified', 'rejected'), 'verification_status')

    user = store.get(User, user_id, 'User')
    if user.id == actor.user_id:
        raise ValidationError('You cannot change your own verification status.')

    user.verification_status = outcome
    log_activity(actor.user_id, "VERIFY_USER", f"User {user.id} ({user.email}) {outcome}")
    store.commit()

    return jsonify({
        'message': f'User {user.name} is now {outcome}.',
        'user': user.to_dict()
    }), 200


@admin_bp.route('/api/admin/audit-logs', methods=['GET'])
@jwt_required()
def list_audit_logs():
    """ Newest first. ?action=CLAIM_DONATION&limit=50 """
    require_role(current_actor(), 'admin')

    query = AuditLog.query
    action = request.args.get('action')
    if action:
        query = query.filter_by(action=action)
    limit = request.args.get('limit', 100, type=int)

    logs = query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()
    return jsonify([log.to_dict() for log in logs]), 200
