"""
Per-role dashboard counts. Derived on every read from the donation table;
nothing here is stored.
"""
from sqlalchemy import func

from extensions import db
from models import ROLES, Donation, Restaurant, User

ACTIVE_STATUSES = ('approved', 'in_progress')


def _scope(actor):
    if actor.role == 'donor':
        return Donation.donor_id == actor.user_id
    if actor.role == 'charity':
        return Donation.charity_id == actor.user_id
    if actor.role == 'volunteer':
        return Donation.volunteer_id == actor.user_id
    return None  # admin sees everything


def _status_counts(scope):
    query = db.session.query(Donation.status, func.count(Donation.id))
    if scope is not None:
        query = query.filter(scope)
    return dict(query.group_by(Donation.status).all())


def dashboard_counts(actor):
    by_status = _status_counts(_scope(actor))
    counts = {
        'pending': by_status.get('pending', 0),
        'active': sum(by_status.get(s, 0) for s in ACTIVE_STATUSES),
        'completed': by_status.get('completed', 0),
        'cancelled': by_status.get('cancelled', 0),
        'expired': by_status.get('expired', 0),
    }

    if actor.role in ('charity', 'volunteer'):
        counts['available'] = Donation.query.filter(
            Donation.status == 'approved',
            Donation.charity_id.is_(None),
        ).count()

    if actor.role == 'admin':
        per_role = dict(
            db.session.query(User.role, func.count(User.id)).group_by(User.role).all()
        )
        counts['users'] = {role: per_role.get(role, 0) for role in ROLES}
        counts['pending_restaurants'] = Restaurant.query.filter_by(status='pending').count()

    return counts
