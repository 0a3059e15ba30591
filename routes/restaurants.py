from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy import or_

from errors import ConflictError, InvalidTransition, NotFound, Unauthorized, ValidationError
from models import (
    db, Restaurant, BUSINESS_TYPES, PICKUP_WINDOWS, FREQUENCIES,
)
import store
from routes.auth import clean_email
from utils import current_actor, get_json_body, log_activity, parse_choice, require_fields, require_role

restaurants_bp = Blueprint('restaurants', __name__)

REQUIRED_FIELDS = ['business_type', 'business_name', 'contact_name', 'email',
                   'phone', 'address', 'pickup_time', 'frequency']
EDITABLE_FIELDS = REQUIRED_FIELDS


def _clean(data):
    cleaned = {}
    for field in EDITABLE_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field == 'business_type':
            value = parse_choice(value, BUSINESS_TYPES, field)
        elif field == 'pickup_time':
            value = parse_choice(value, PICKUP_WINDOWS, field)
        elif field == 'frequency':
            value = parse_choice(value, FREQUENCIES, field)
        elif field == 'email':
            value = clean_email(value)
        else:
            value = str(value).strip()
            if not value:
                raise ValidationError(f'Missing required field: {field}', field=field)
        cleaned[field] = value
    return cleaned


def _check_unique(cleaned, exclude_id=None):
    """Business name and email are unique across all profiles."""
    clauses = [getattr(Restaurant, field) == cleaned[field]
               for field in ('email', 'business_name') if field in cleaned]
    if not clauses:
        return
    query = Restaurant.query.filter(or_(*clauses))
    if exclude_id is not None:
        query = query.filter(Restaurant.id != exclude_id)
    if query.first():
        raise ValidationError('A business with this email or name already exists')


def _load_owned(actor, restaurant_id):
    restaurant = store.get(Restaurant, restaurant_id, 'Restaurant')
    if restaurant.user_id != actor.user_id:
        raise Unauthorized('Not authorized. You do not own this business profile.')
    return restaurant


# ==========================================
#  1. REGISTER A BUSINESS
# ==========================================
@restaurants_bp.route('/api/restaurants/register', methods=['POST'])
@jwt_required()
def register_business():
    actor = current_actor()
    require_role(actor, 'donor')
    data = get_json_body(request)

    # 1. Validation
    require_fields(data, REQUIRED_FIELDS)
    cleaned = _clean(data)

    if Restaurant.query.filter_by(user_id=actor.user_id).first():
        raise ConflictError('You already have a business profile.')
    _check_unique(cleaned)

    # 2. Create (always starts pending approval)
    restaurant = Restaurant(user_id=actor.user_id, status='pending', **cleaned)
    store.add(restaurant)
    log_activity(actor.user_id, "REGISTER_BUSINESS", f"Registered business {restaurant.business_name}")
    store.commit()

    return jsonify({
        'message': 'Business registration submitted successfully!',
        'restaurant': restaurant.to_dict()
    }), 201


# ==========================================
#  2. MY BUSINESS PROFILE
# ==========================================
@restaurants_bp.route('/api/restaurants/profile', methods=['GET'])
@jwt_required()
def get_business_profile():
    actor = current_actor()
    restaurant = Restaurant.query.filter_by(user_id=actor.user_id).first()
    if not restaurant:
        raise NotFound('Business profile not found')
    return jsonify({'restaurant': restaurant.to_dict()}), 200


# ==========================================
#  3. PUBLIC LISTING
# ==========================================
@restaurants_bp.route('/api/restaurants', methods=['GET'])
def list_restaurants():
    """ Optional filter: ?status=approved """
    query = Restaurant.query
    status = request.args.get('status')
    if status:
        query = query.filter_by(status=status)
    restaurants = query.order_by(Restaurant.business_name).all()
    return jsonify([r.to_dict() for r in restaurants]), 200


@restaurants_bp.route('/api/restaurants/<int:restaurant_id>', methods=['GET'])
def get_restaurant(restaurant_id):
    restaurant = store.get(Restaurant, restaurant_id, 'Restaurant')
    return jsonify(restaurant.to_dict()), 200


# ==========================================
#  4. OWNER: UPDATE / DELETE
# ==========================================
@restaurants_bp.route('/api/restaurants/<int:restaurant_id>', methods=['PUT'])
@jwt_required()
def update_restaurant(restaurant_id):
    actor = current_actor()
    restaurant = _load_owned(actor, restaurant_id)
    data = get_json_body(request)
    if 'status' in data:
        raise ValidationError('status is set by an admin', field='status')

    cleaned = _clean(data)
    _check_unique(cleaned, exclude_id=restaurant.id)
    for field, value in cleaned.items():
        setattr(restaurant, field, value)
    store.commit()
    return jsonify(restaurant.to_dict()), 200


@restaurants_bp.route('/api/restaurants/<int:restaurant_id>', methods=['DELETE'])
@jwt_required()
def delete_restaurant(restaurant_id):
    actor = current_actor()
    restaurant = _load_owned(actor, restaurant_id)
    db.session.delete(restaurant)
    log_activity(actor.user_id, "DELETE_BUSINESS", f"Removed business {restaurant.business_name}")
    store.commit()
    return jsonify({'message': 'Restaurant removed'}), 200


# ==========================================
#  5. ADMIN: APPROVE / REJECT
# ==========================================
@restaurants_bp.route('/api/restaurants/<int:restaurant_id>/status', methods=['PATCH'])
@jwt_required()
def set_restaurant_status(restaurant_id):
    actor = current_actor()
    require_role(actor, 'admin')
    data = get_json_body(request)
    target = parse_choice(data.get('status'), ('approved', 'rejected'), 'status')

    restaurant = store.get(Restaurant, restaurant_id, 'Restaurant')
    if restaurant.status != 'pending':
        raise InvalidTransition(restaurant.status, target, actor.role)
    if not store.conditional_update(Restaurant, restaurant.id, {'status': 'pending'}, {'status': target}):
        store.rollback()
        raise ConflictError('This business was reviewed by someone else.')
    log_activity(actor.user_id, f"BUSINESS_{target.upper()}", f"{restaurant.business_name} {target}")
    store.commit()
    return jsonify(restaurant.to_dict()), 200
