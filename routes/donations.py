from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required

from errors import ValidationError
from models import Donation, DONATION_STATUSES
import lifecycle
import store
from utils import current_actor, get_json_body, parse_choice

donations_bp = Blueprint('donations', __name__)


# ==========================================
#  1. CREATE DONATION
# ==========================================
@donations_bp.route('/api/donations', methods=['POST'])
@jwt_required()
def create_donation():
    actor = current_actor()
    donation = lifecycle.create_donation(actor, get_json_body(request))
    return jsonify({
        'message': 'Donation submitted for approval!',
        'donation': donation.to_dict()
    }), 201


# ==========================================
#  2. LIST DONATIONS (filtered)
# ==========================================
@donations_bp.route('/api/donations', methods=['GET'])
@jwt_required()
def list_donations():
    """
    Filtered list, newest first.
    Usage: /api/donations?donor=3&status=approved
    """
    current_actor()
    query = Donation.query

    for param, column in (('donor', Donation.donor_id),
                          ('charity', Donation.charity_id),
                          ('volunteer', Donation.volunteer_id)):
        value = request.args.get(param)
        if value is None:
            continue
        if value in ('none', 'null'):
            query = query.filter(column.is_(None))
            continue
        try:
            query = query.filter(column == int(value))
        except ValueError:
            raise ValidationError(f'{param} must be a user id', field=param)

    status = request.args.get('status')
    if status:
        query = query.filter(Donation.status == parse_choice(status, DONATION_STATUSES, 'status'))

    donations = query.order_by(Donation.created_at.desc(), Donation.id.desc()).all()
    return jsonify({'donations': [d.to_dict() for d in donations]}), 200


# ==========================================
#  3. GET SINGLE DONATION
# ==========================================
@donations_bp.route('/api/donations/<int:donation_id>', methods=['GET'])
@jwt_required()
def get_donation(donation_id):
    """ Full details, including the tracking history. """
    current_actor()
    donation = store.get(Donation, donation_id, 'Donation')
    return jsonify(donation.to_dict(include_history=True)), 200


# ==========================================
#  4. TRANSITION / UPDATE
# ==========================================
@donations_bp.route('/api/donations/<int:donation_id>', methods=['PATCH'])
@jwt_required()
def update_donation(donation_id):
    """
    Body carries the delta. A 'status' key asks for a lifecycle transition,
    which is re-validated server-side; anything else is a content edit.
    """
    actor = current_actor()
    donation = lifecycle.apply_patch(actor, donation_id, get_json_body(request))
    return jsonify(donation.to_dict(include_history=True)), 200


# ==========================================
#  5. CLAIM DONATION
# ==========================================
@donations_bp.route('/api/donations/<int:donation_id>/claim', methods=['POST'])
@jwt_required()
def claim_donation(donation_id):
    """ First claim wins; a lost race answers 409. """
    actor = current_actor()
    donation = lifecycle.claim(actor, donation_id)
    return jsonify({
        'message': 'Claim successful!',
        'donation': donation.to_dict()
    }), 200


# ==========================================
#  6. RATE DONATION
# ==========================================
@donations_bp.route('/api/donations/<int:donation_id>/rating', methods=['POST'])
@jwt_required()
def rate_donation(donation_id):
    actor = current_actor()
    data = get_json_body(request)
    if 'score' not in data:
        raise ValidationError('Missing required field: score', field='score')
    donation = lifecycle.rate(actor, donation_id, data['score'], data.get('feedback'))
    return jsonify({
        'message': 'Thank you for your feedback!',
        'rating': donation.rating_dict()
    }), 201
