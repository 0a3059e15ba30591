"""
Donation Lifecycle Manager.

The only code path that changes a donation's status, its assignment fields,
its rating or its tracking history.

    pending -> approved -> in_progress -> completed
    pending | approved -> cancelled
    pending | approved -> expired   (time-triggered)

Every status change is one conditional UPDATE guarded on the status the
caller saw, plus exactly one tracking-history row, committed together.
"""
import logging

from sqlalchemy import select

from authorization import check_transition
from errors import ConflictError, InvalidTransition, Unauthorized, ValidationError
from extensions import db
from models import (
    DONATION_STATUSES, FOOD_TYPES, UNITS,
    Donation, Restaurant, User, utcnow,
)
import store
from utils import (
    SYSTEM, broadcast, log_activity, parse_choice, parse_datetime, parse_id,
    parse_positive_number, parse_text, require_fields, require_role,
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ['food_type', 'quantity', 'unit', 'description',
                   'pickup_address', 'pickup_time', 'expiry_time']
EDITABLE_FIELDS = REQUIRED_FIELDS + ['admin_notes']
PROTECTED_FIELDS = ('donor', 'charity', 'volunteer', 'admin_approval', 'rating',
                    'tracking_history', 'completed_at', 'created_at')
STATUS_PATCH_KEYS = ('status', 'notes', 'admin_notes')


# ==========================================
#  VALIDATION
# ==========================================
def _clean_content(data, partial=False):
    """Validate donation content. With partial=True only present keys are checked."""
    if not partial:
        require_fields(data, REQUIRED_FIELDS)

    cleaned = {}
    if 'food_type' in data:
        cleaned['food_type'] = parse_choice(data['food_type'], FOOD_TYPES, 'food_type')
    if 'unit' in data:
        cleaned['unit'] = parse_choice(data['unit'], UNITS, 'unit')
    if 'quantity' in data:
        cleaned['quantity'] = parse_positive_number(data['quantity'], 'quantity')
    for field in ('description', 'pickup_address'):
        if field in data:
            cleaned[field] = parse_text(data[field], field)
    for field in ('pickup_time', 'expiry_time'):
        if field in data:
            cleaned[field] = parse_datetime(data[field], field)
    if 'admin_notes' in data:
        cleaned['admin_notes'] = data['admin_notes']
    return cleaned


def _check_window(pickup_time, expiry_time):
    if expiry_time < pickup_time:
        raise ValidationError('expiry_time must not be before pickup_time', field='expiry_time')


# ==========================================
#  CREATE / EDIT
# ==========================================
def create_donation(actor, data):
    """A donor submits surplus food. Starts life as 'pending', unapproved."""
    require_role(actor, 'donor')
    cleaned = _clean_content(data)
    cleaned.pop('admin_notes', None)
    _check_window(cleaned['pickup_time'], cleaned['expiry_time'])

    donation = Donation(
        donor_id=actor.user_id,
        status='pending',
        admin_approval=False,
        created_at=utcnow(),
        **cleaned
    )
    store.add(donation)
    db.session.flush()
    log_activity(actor.user_id, "POST_DONATION",
                 f"Posted donation {donation.id}: {donation.quantity}{donation.unit} {donation.food_type}")
    store.commit()

    broadcast('new_donation', donation.to_dict())
    return donation


def edit_donation(actor, donation_id, data):
    """Content edits are only possible while the donation awaits approval."""
    donation = store.get(Donation, donation_id, 'Donation')
    if actor.role != 'admin' and donation.donor_id != actor.user_id:
        raise Unauthorized('Only the donor or an admin can edit this donation.')
    if donation.status != 'pending':
        raise InvalidTransition(donation.status, 'edited', actor.role)

    cleaned = _clean_content({k: v for k, v in data.items() if k in EDITABLE_FIELDS}, partial=True)
    if 'admin_notes' in cleaned and actor.role != 'admin':
        raise Unauthorized('Only admins can write admin notes.')
    if not cleaned:
        raise ValidationError('Nothing to update.')
    _check_window(cleaned.get('pickup_time', donation.pickup_time),
                  cleaned.get('expiry_time', donation.expiry_time))

    if not store.conditional_update(Donation, donation.id, {'status': 'pending'}, cleaned):
        store.rollback()
        raise ConflictError('Donation changed while you were editing it. Reload and try again.')
    log_activity(actor.user_id, "EDIT_DONATION", f"Edited donation {donation.id}: {', '.join(sorted(cleaned))}")
    store.commit()

    broadcast('donation_updated', donation.to_dict())
    return donation


# ==========================================
#  STATUS TRANSITIONS
# ==========================================
def _transition(actor, donation, target, notes=None, changes=None, expected=None, action=None):
    values = {'status': target}
    values.update(changes or {})
    guard = {'status': donation.status}
    guard.update(expected or {})

    if not store.conditional_update(Donation, donation.id, guard, values):
        store.rollback()
        raise ConflictError(
            f"Donation {donation.id} was changed by someone else. Reload and try again.",
            current=donation.status, requested=target,
        )
    store.append_history(donation.id, target, actor.user_id, notes)
    log_activity(actor.user_id, action or target.upper(), f"Donation {donation.id} -> {target}")
    return donation


def _finish(donation):
    store.commit()
    broadcast('donation_updated', donation.to_dict())
    return donation


def approve(actor, donation_id, notes=None):
    donation = store.get(Donation, donation_id, 'Donation')
    check_transition(actor, donation, 'approved')
    changes = {'admin_approval': True}
    if notes:
        changes['admin_notes'] = notes
    _transition(actor, donation, 'approved', notes or 'Approved by admin',
                changes=changes, action="APPROVE_DONATION")
    return _finish(donation)


def cancel(actor, donation_id, notes=None):
    """Donor withdrawal, or admin rejection, before anyone picks it up."""
    donation = store.get(Donation, donation_id, 'Donation')
    check_transition(actor, donation, 'cancelled')
    changes = {}
    if notes and actor.role == 'admin':
        changes['admin_notes'] = notes
    default_note = 'Rejected by admin' if actor.role == 'admin' else 'Cancelled by donor'
    _transition(actor, donation, 'cancelled', notes or default_note,
                changes=changes, action="CANCEL_DONATION")
    return _finish(donation)


def claim(actor, donation_id):
    """
    A charity (or volunteer) attaches itself to an approved donation.
    First claim wins: the UPDATE only matches while the slot is still empty.
    """
    fields = {'charity': 'charity_id', 'volunteer': 'volunteer_id'}
    if actor.role not in fields:
        raise Unauthorized('Only charities and volunteers can claim donations.')
    field = fields[actor.role]

    donation = store.get(Donation, donation_id, 'Donation')
    if donation.status != 'approved':
        raise InvalidTransition(donation.status, 'claimed', actor.role)
    if getattr(donation, field) is not None:
        raise ConflictError(f"Donation {donation.id} already has a {actor.role}.")

    won = store.conditional_update(
        Donation, donation.id,
        {'status': 'approved', field: None},
        {field: actor.user_id},
    )
    if not won:
        store.rollback()
        raise ConflictError(f"Donation {donation.id} was claimed by another {actor.role}.")
    log_activity(actor.user_id, "CLAIM_DONATION", f"{actor.role} {actor.user_id} claimed donation {donation.id}")
    return _finish(donation)


def start_pickup(actor, donation_id, volunteer_id=None, notes=None):
    donation = store.get(Donation, donation_id, 'Donation')
    check_transition(actor, donation, 'in_progress')

    if actor.role == 'volunteer':
        volunteer_id = actor.user_id
    else:
        if volunteer_id is None:
            volunteer_id = donation.volunteer_id
        if volunteer_id is None:
            raise ValidationError('volunteer is required to start a pickup', field='volunteer')
        volunteer_id = parse_id(volunteer_id, 'volunteer')
        volunteer = store.get(User, volunteer_id, 'User')
        if volunteer.role != 'volunteer':
            raise ValidationError(f'User {volunteer_id} is not a volunteer', field='volunteer')

    if donation.volunteer_id is not None and donation.volunteer_id != volunteer_id:
        raise ConflictError(f"Donation {donation.id} is assigned to another volunteer.")

    _transition(
        actor, donation, 'in_progress', notes or 'Volunteer started the pickup',
        changes={'volunteer_id': volunteer_id},
        expected={'volunteer_id': donation.volunteer_id},
        action="START_PICKUP",
    )
    return _finish(donation)


def complete(actor, donation_id, notes=None):
    donation = store.get(Donation, donation_id, 'Donation')
    check_transition(actor, donation, 'completed')
    now = utcnow()
    _transition(actor, donation, 'completed', notes or 'Pickup completed successfully',
                changes={'completed_at': now}, action="COMPLETE_DONATION")

    store.increment(User, donation.donor_id, 'total_donations')
    if donation.charity_id is not None:
        store.increment(User, donation.charity_id, 'total_received')
    profile = db.session.execute(
        select(Restaurant.id).where(Restaurant.user_id == donation.donor_id)
    ).scalar()
    if profile is not None:
        store.increment(Restaurant, profile, 'total_donations')
    return _finish(donation)


def rate(actor, donation_id, score, feedback=None):
    """
    The assigned charity rates a completed donation, once. A second attempt
    is a ConflictError; ratings are never overwritten.
    """
    donation = store.get(Donation, donation_id, 'Donation')
    check_transition(actor, donation, 'rated')

    if isinstance(score, bool):
        raise ValidationError('score must be a number between 0 and 5', field='score')
    try:
        score = float(score)
    except (TypeError, ValueError):
        raise ValidationError('score must be a number between 0 and 5', field='score')
    # NaN fails both comparisons
    if not 0 <= score <= 5:
        raise ValidationError('score must be a number between 0 and 5', field='score')
    if donation.rating_score is not None:
        raise ConflictError(f"Donation {donation.id} has already been rated.")

    won = store.conditional_update(
        Donation, donation.id,
        {'status': 'completed', 'rating_score': None},
        {
            'rating_score': score,
            'rating_feedback': feedback,
            'rating_given_by_id': actor.user_id,
            'rated_at': utcnow(),
        },
    )
    if not won:
        store.rollback()
        raise ConflictError(f"Donation {donation.id} has already been rated.")
    log_activity(actor.user_id, "RATE_DONATION", f"Rated donation {donation.id}: {score:g}/5")
    return _finish(donation)


def expire_overdue(now=None):
    """
    Move every pending/approved donation whose expiry_time has passed to
    'expired'. Returns the ids that were expired by this call.
    """
    now = now or utcnow()
    overdue = Donation.query.filter(
        Donation.status.in_(('pending', 'approved')),
        Donation.expiry_time <= now,
    ).all()

    expired = []
    for donation in overdue:
        check_transition(SYSTEM, donation, 'expired')
        if not store.conditional_update(Donation, donation.id, {'status': donation.status}, {'status': 'expired'}):
            # Someone else moved it first
            continue
        store.append_history(donation.id, 'expired', None, 'Expired automatically', timestamp=now)
        log_activity(None, "EXPIRED", f"Donation {donation.id} expired automatically.")
        expired.append(donation.id)

    if not expired:
        return expired
    store.commit()
    for donation_id in expired:
        broadcast('donation_updated', {'id': donation_id, 'status': 'expired'})
    logger.info("Expired %d donation(s)", len(expired))
    return expired


# ==========================================
#  PATCH DISPATCH
# ==========================================
def apply_patch(actor, donation_id, body):
    """
    Interpret a client PATCH. The requested status only names the edge; the
    edge itself is validated here, never trusted.
    """
    touched = [field for field in PROTECTED_FIELDS if field in body]
    if touched and 'status' not in body:
        raise ValidationError(
            f"{touched[0]} cannot be set directly; use claim, pickup or rating.", field=touched[0])

    if 'status' not in body:
        return edit_donation(actor, donation_id, body)

    target = body['status']
    if target not in DONATION_STATUSES:
        raise ValidationError(
            f"Invalid status. Must be one of: {', '.join(DONATION_STATUSES)}", field='status')

    allowed = STATUS_PATCH_KEYS + (('volunteer',) if target == 'in_progress' else ())
    extra = sorted(key for key in body if key not in allowed)
    if extra:
        raise ValidationError(
            f"{extra[0]} cannot be changed together with status; send it separately.", field=extra[0])
    notes = body.get('notes') or body.get('admin_notes')

    if target == 'approved':
        return approve(actor, donation_id, notes)
    if target == 'cancelled':
        return cancel(actor, donation_id, notes)
    if target == 'in_progress':
        return start_pickup(actor, donation_id, body.get('volunteer'), notes)
    if target == 'completed':
        return complete(actor, donation_id, notes)

    # 'pending' and 'expired' are never client-reachable; let the table say why
    donation = store.get(Donation, donation_id, 'Donation')
    check_transition(actor, donation, target)
    raise Unauthorized(f"'{target}' is set by the system only.")
