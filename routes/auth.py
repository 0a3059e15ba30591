from flask import Blueprint, request, jsonify
from flask_jwt_extended import create_access_token, jwt_required
import re

from errors import Unauthorized, ValidationError
from models import db, User, SELF_SERVICE_ROLES, ORGANIZATION_TYPES
import store
from utils import current_actor, get_json_body, log_activity, parse_choice, require_fields

auth_bp = Blueprint('auth', __name__)

EMAIL_PATTERN = re.compile(r'^\w+([.+-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,})+$')


def clean_email(value, field='email'):
    email = str(value).strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValidationError('Please enter a valid email address', field=field)
    return email


@auth_bp.route('/api/register', methods=['POST'])
def register():
    data = get_json_body(request)

    # 1. Validation
    require_fields(data, ['name', 'email', 'password', 'role'])
    role = parse_choice(str(data['role']).lower(), SELF_SERVICE_ROLES, 'role')
    email = clean_email(data['email'])
    if len(str(data['password'])) < 6:
        raise ValidationError('Password must be at least 6 characters', field='password')

    organization_type = data.get('organization_type', 'charity' if role == 'charity' else 'other')
    parse_choice(organization_type, ORGANIZATION_TYPES, 'organization_type')

    if User.query.filter_by(email=email).first():
        raise ValidationError('Email already exists', field='email')

    # 2. Create
    new_user = User(
        name=str(data['name']).strip(),
        email=email,
        role=role,
        phone=data.get('phone'),
        address=data.get('address'),
        organization_name=data.get('organization_name'),
        organization_type=organization_type,
        verification_status='pending',
    )
    new_user.set_password(str(data['password']))

    store.add(new_user)
    db.session.flush()
    log_activity(new_user.id, "REGISTER", f"Registered as {role}")
    store.commit()

    return jsonify({
        'message': 'Registration successful!',
        'user': new_user.to_dict()
    }), 201


@auth_bp.route('/api/login', methods=['POST'])
def login():
    data = get_json_body(request)

    # 1. Validate Input
    if not data.get('email') or not data.get('password'):
        raise ValidationError('Missing email or password')

    user = User.query.filter_by(email=str(data['email']).strip().lower()).first()

    # 2. Check Password
    if not user or not user.check_password(str(data['password'])):
        raise Unauthorized('Invalid email or password', status_code=401)
    if not user.is_active:
        raise Unauthorized('This account has been disabled.', status_code=401)

    # Add Role to Token Claims
    additional_claims = {"role": user.role}
    access_token = create_access_token(identity=str(user.id), additional_claims=additional_claims)

    return jsonify({
        'access_token': access_token,
        'user': user.to_dict()
    }), 200


@auth_bp.route('/api/profile', methods=['GET'])
@jwt_required()
def get_profile():
    """ Refreshes user data on page reload. """
    actor = current_actor()
    user = store.get(User, actor.user_id, 'User')
    return jsonify(user.to_dict()), 200
