import pytest
from datetime import timedelta

import lifecycle
import store
from errors import ConflictError, InvalidTransition, Unauthorized, ValidationError
from extensions import db
from models import Donation, TrackingEntry, User, Restaurant, utcnow
from utils import Actor


def history(donation_id):
    return TrackingEntry.query.filter_by(donation_id=donation_id).order_by(TrackingEntry.id).all()


def fresh(donation_id):
    db.session.expire_all()
    return db.session.get(Donation, donation_id)


# ==========================================
#  1. THE HAPPY PATH
# ==========================================

def test_full_lifecycle_scenario(actors, donation_payload):
    """pending -> approved -> in_progress -> completed -> rated."""
    donation = lifecycle.create_donation(actors['donor'], donation_payload)
    assert donation.status == 'pending'
    assert donation.admin_approval is False
    assert donation.quantity == 10
    assert donation.unit == 'kg'
    assert history(donation.id) == []

    lifecycle.approve(actors['admin'], donation.id)
    d = fresh(donation.id)
    assert d.status == 'approved'
    assert d.admin_approval is True
    assert len(history(donation.id)) == 1

    lifecycle.claim(actors['charity'], donation.id)
    assert fresh(donation.id).charity_id == actors['charity'].user_id
    assert len(history(donation.id)) == 1  # claiming is not a status change

    lifecycle.start_pickup(actors['volunteer'], donation.id)
    d = fresh(donation.id)
    assert d.status == 'in_progress'
    assert d.volunteer_id == actors['volunteer'].user_id
    assert len(history(donation.id)) == 2

    lifecycle.complete(actors['volunteer'], donation.id)
    d = fresh(donation.id)
    assert d.status == 'completed'
    assert d.completed_at is not None
    assert len(history(donation.id)) == 3

    lifecycle.rate(actors['charity'], donation.id, 4, 'Still warm, thanks!')
    d = fresh(donation.id)
    assert d.rating_score == 4
    assert d.rating_given_by_id == actors['charity'].user_id
    assert d.rating_given_by_id != d.donor_id

    entries = history(donation.id)
    assert [e.status for e in entries] == ['approved', 'in_progress', 'completed']
    assert [e.updated_by for e in entries] == [
        actors['admin'].user_id, actors['volunteer'].user_id, actors['volunteer'].user_id,
    ]


def test_history_is_never_rewritten(actors, donation_factory):
    """Each step appends; earlier rows survive untouched."""
    donation = donation_factory()
    lifecycle.approve(actors['admin'], donation.id, 'Looks good')
    first = history(donation.id)[0]
    first_snapshot = (first.id, first.status, first.timestamp, first.notes)

    lifecycle.start_pickup(actors['volunteer'], donation.id)
    lifecycle.complete(actors['volunteer'], donation.id)

    entries = history(donation.id)
    assert len(entries) == 3
    assert (entries[0].id, entries[0].status, entries[0].timestamp, entries[0].notes) == first_snapshot


def test_completion_updates_counters(actors, users, donation_factory):
    db.session.add(Restaurant(
        user_id=users['donor'].id, business_type='restaurant', business_name='Tasty Bites',
        contact_name='Owner', email='tasty@test.com', phone='123', address='1 Road',
        pickup_time='evening', frequency='daily', status='approved',
    ))
    db.session.commit()
    donation = donation_factory(status='in_progress', charity_id=users['charity'].id,
                                volunteer_id=users['volunteer'].id)

    lifecycle.complete(actors['charity'], donation.id)

    db.session.expire_all()
    assert db.session.get(User, users['donor'].id).total_donations == 1
    assert db.session.get(User, users['charity'].id).total_received == 1
    assert Restaurant.query.filter_by(user_id=users['donor'].id).one().total_donations == 1


# ==========================================
#  2. CREATION VALIDATION
# ==========================================

def test_only_donors_create(actors, donation_payload):
    with pytest.raises(Unauthorized):
        lifecycle.create_donation(actors['charity'], donation_payload)


@pytest.mark.parametrize("field, value", [
    ("food_type", "frozen"),
    ("unit", "tons"),
    ("quantity", 0),
    ("quantity", "lots"),
    ("description", "   "),
    ("pickup_time", "tomorrow-ish"),
])
def test_create_rejects_bad_fields(actors, donation_payload, field, value):
    donation_payload[field] = value
    with pytest.raises(ValidationError) as exc:
        lifecycle.create_donation(actors['donor'], donation_payload)
    assert exc.value.details['field'] == field


def test_create_requires_every_field(actors, donation_payload):
    del donation_payload['pickup_address']
    with pytest.raises(ValidationError) as exc:
        lifecycle.create_donation(actors['donor'], donation_payload)
    assert exc.value.details['field'] == 'pickup_address'


def test_expiry_cannot_precede_pickup(actors, donation_payload):
    now = utcnow()
    donation_payload['pickup_time'] = (now + timedelta(hours=5)).isoformat()
    donation_payload['expiry_time'] = (now + timedelta(hours=1)).isoformat()
    with pytest.raises(ValidationError) as exc:
        lifecycle.create_donation(actors['donor'], donation_payload)
    assert exc.value.details['field'] == 'expiry_time'


# ==========================================
#  3. ILLEGAL EDGES
# ==========================================

def test_cannot_skip_approval(actors, donation_factory):
    donation = donation_factory()
    with pytest.raises(InvalidTransition) as exc:
        lifecycle.complete(actors['admin'], donation.id)
    assert exc.value.details == {'current': 'pending', 'requested': 'completed', 'role': 'admin'}
    assert fresh(donation.id).status == 'pending'


def test_terminal_states_stay_terminal(actors, donation_factory):
    donation = donation_factory(status='cancelled')
    for action in (lifecycle.approve, lifecycle.cancel, lifecycle.complete):
        with pytest.raises(InvalidTransition):
            action(actors['admin'], donation.id)
    assert history(donation.id) == []


def test_cancel_from_approved_by_donor(actors, donation_factory):
    donation = donation_factory(status='approved')
    lifecycle.cancel(actors['donor'], donation.id)
    assert fresh(donation.id).status == 'cancelled'
    assert history(donation.id)[-1].notes == 'Cancelled by donor'


def test_admin_rejection_keeps_notes(actors, donation_factory):
    donation = donation_factory()
    lifecycle.cancel(actors['admin'], donation.id, 'Not safe to redistribute')
    d = fresh(donation.id)
    assert d.status == 'cancelled'
    assert d.admin_notes == 'Not safe to redistribute'


def test_donor_cannot_cancel_in_progress(actors, donation_factory):
    donation = donation_factory(status='in_progress', volunteer_id=actors['volunteer'].user_id)
    with pytest.raises(InvalidTransition):
        lifecycle.cancel(actors['donor'], donation.id)


# ==========================================
#  4. AUTHORIZATION
# ==========================================

def test_outsiders_cannot_move_anything(actors, donation_factory):
    """Someone with no part in the donation is refused at every state."""
    outsider = actors['other_donor']
    pending = donation_factory()
    approved = donation_factory(status='approved', charity_id=actors['charity'].user_id)
    in_progress = donation_factory(status='in_progress', volunteer_id=actors['volunteer'].user_id)
    completed = donation_factory(status='completed', charity_id=actors['charity'].user_id)

    attempts = [
        (lifecycle.approve, pending), (lifecycle.cancel, pending),
        (lifecycle.cancel, approved), (lifecycle.start_pickup, approved),
        (lifecycle.complete, in_progress), (lifecycle.complete, completed),
        (lifecycle.approve, completed),
    ]
    for action, donation in attempts:
        with pytest.raises(Unauthorized):
            action(outsider, donation.id)
    with pytest.raises(Unauthorized):
        lifecycle.rate(outsider, completed.id, 5)


def test_donor_cannot_approve_own_donation(actors, donation_factory):
    donation = donation_factory()
    with pytest.raises(Unauthorized):
        lifecycle.approve(actors['donor'], donation.id)


def test_unassigned_volunteer_is_denied(actors, donation_factory):
    approved = donation_factory(status='approved', volunteer_id=actors['volunteer'].user_id)
    in_progress = donation_factory(status='in_progress', volunteer_id=actors['volunteer'].user_id)

    with pytest.raises(Unauthorized):
        lifecycle.start_pickup(actors['other_volunteer'], approved.id)
    with pytest.raises(Unauthorized):
        lifecycle.complete(actors['other_volunteer'], in_progress.id)


def test_other_charity_cannot_complete(actors, donation_factory):
    donation = donation_factory(status='in_progress', charity_id=actors['charity'].user_id,
                                volunteer_id=actors['volunteer'].user_id)
    with pytest.raises(Unauthorized):
        lifecycle.complete(actors['other_charity'], donation.id)
    lifecycle.complete(actors['charity'], donation.id)
    assert fresh(donation.id).status == 'completed'


def test_admin_starts_pickup_for_named_volunteer(actors, donation_factory):
    donation = donation_factory(status='approved')
    with pytest.raises(ValidationError):
        lifecycle.start_pickup(actors['admin'], donation.id)
    with pytest.raises(ValidationError):
        lifecycle.start_pickup(actors['admin'], donation.id, actors['charity'].user_id)

    lifecycle.start_pickup(actors['admin'], donation.id, actors['volunteer'].user_id)
    assert fresh(donation.id).volunteer_id == actors['volunteer'].user_id


def test_system_only_edges_refused_to_people(actors, donation_factory):
    donation = donation_factory()
    with pytest.raises(Unauthorized):
        lifecycle.apply_patch(actors['admin'], donation.id, {'status': 'expired'})
    with pytest.raises(InvalidTransition):
        lifecycle.apply_patch(actors['admin'], donation.id, {'status': 'pending'})


# ==========================================
#  5. CLAIMS
# ==========================================

def test_first_claim_wins(actors, donation_factory):
    donation = donation_factory(status='approved')
    lifecycle.claim(actors['charity'], donation.id)
    with pytest.raises(ConflictError):
        lifecycle.claim(actors['other_charity'], donation.id)
    with pytest.raises(ConflictError):
        lifecycle.claim(actors['charity'], donation.id)
    assert fresh(donation.id).charity_id == actors['charity'].user_id


def test_claim_decided_by_store_not_by_stale_read(actors, donation_factory):
    """Both charities saw 'unclaimed'; the conditional update still lets only one in."""
    donation = donation_factory(status='approved')

    assert store.conditional_update(Donation, donation.id, {'status': 'approved', 'charity_id': None},
                                    {'charity_id': actors['charity'].user_id}) is True
    assert store.conditional_update(Donation, donation.id, {'status': 'approved', 'charity_id': None},
                                    {'charity_id': actors['other_charity'].user_id}) is False
    store.commit()
    assert fresh(donation.id).charity_id == actors['charity'].user_id


def test_claim_requires_approval(actors, donation_factory):
    donation = donation_factory()
    with pytest.raises(InvalidTransition):
        lifecycle.claim(actors['charity'], donation.id)


def test_donors_cannot_claim(actors, donation_factory):
    donation = donation_factory(status='approved')
    with pytest.raises(Unauthorized):
        lifecycle.claim(actors['other_donor'], donation.id)


def test_volunteer_claim_then_pickup(actors, donation_factory):
    donation = donation_factory(status='approved')
    lifecycle.claim(actors['volunteer'], donation.id)
    with pytest.raises(Unauthorized):
        lifecycle.start_pickup(actors['other_volunteer'], donation.id)
    lifecycle.start_pickup(actors['volunteer'], donation.id)
    assert fresh(donation.id).status == 'in_progress'


# ==========================================
#  6. RATINGS
# ==========================================

@pytest.mark.parametrize("status", ["pending", "approved", "in_progress"])
def test_rating_needs_completion(actors, donation_factory, status):
    donation = donation_factory(status=status, charity_id=actors['charity'].user_id)
    with pytest.raises(InvalidTransition):
        lifecycle.rate(actors['charity'], donation.id, 4)
    assert fresh(donation.id).rating_score is None


def test_second_rating_is_rejected(actors, donation_factory):
    donation = donation_factory(status='completed', charity_id=actors['charity'].user_id)
    lifecycle.rate(actors['charity'], donation.id, 4)
    with pytest.raises(ConflictError):
        lifecycle.rate(actors['charity'], donation.id, 1)
    assert fresh(donation.id).rating_score == 4


def test_donor_and_admin_cannot_rate(actors, donation_factory):
    donation = donation_factory(status='completed', charity_id=actors['charity'].user_id)
    with pytest.raises(Unauthorized):
        lifecycle.rate(actors['donor'], donation.id, 5)
    with pytest.raises(Unauthorized):
        lifecycle.rate(actors['admin'], donation.id, 5)


@pytest.mark.parametrize("score", [-1, 6, 5.01, "great", "nan", None, True])
def test_rating_score_range(actors, donation_factory, score):
    donation = donation_factory(status='completed', charity_id=actors['charity'].user_id)
    with pytest.raises(ValidationError):
        lifecycle.rate(actors['charity'], donation.id, score)
    assert fresh(donation.id).rating_score is None


@pytest.mark.parametrize("score, stored", [(4.7, 4.7), ("4.5", 4.5), (0, 0), ("3", 3)])
def test_fractional_scores_kept_exactly(actors, donation_factory, score, stored):
    donation = donation_factory(status='completed', charity_id=actors['charity'].user_id)
    lifecycle.rate(actors['charity'], donation.id, score)
    assert fresh(donation.id).rating_score == pytest.approx(stored)


# ==========================================
#  7. EXPIRY
# ==========================================

def test_expire_overdue(actors, donation_factory):
    now = utcnow()
    stale_pending = donation_factory(pickup_time=now - timedelta(days=2), expiry_time=now - timedelta(hours=1))
    stale_approved = donation_factory(status='approved', pickup_time=now - timedelta(days=2),
                                      expiry_time=now - timedelta(minutes=5))
    fresh_one = donation_factory()
    underway = donation_factory(status='in_progress', volunteer_id=actors['volunteer'].user_id,
                                pickup_time=now - timedelta(days=2), expiry_time=now - timedelta(hours=1))

    expired = lifecycle.expire_overdue(now)

    assert sorted(expired) == sorted([stale_pending.id, stale_approved.id])
    assert fresh(stale_pending.id).status == 'expired'
    assert fresh(fresh_one.id).status == 'pending'
    assert fresh(underway.id).status == 'in_progress'

    entry = history(stale_approved.id)[-1]
    assert entry.status == 'expired'
    assert entry.updated_by is None

    # A second sweep finds nothing new
    assert lifecycle.expire_overdue(now) == []


# ==========================================
#  8. EDITS
# ==========================================

def test_donor_edits_pending_donation(actors, donation_factory):
    donation = donation_factory()
    lifecycle.edit_donation(actors['donor'], donation.id, {'quantity': 25, 'unit': 'servings'})
    d = fresh(donation.id)
    assert (d.quantity, d.unit) == (25, 'servings')


def test_no_edits_after_approval(actors, donation_factory):
    donation = donation_factory(status='approved')
    with pytest.raises(InvalidTransition):
        lifecycle.edit_donation(actors['donor'], donation.id, {'quantity': 25})


def test_assignment_fields_not_patchable(actors, donation_factory):
    donation = donation_factory(status='approved')
    with pytest.raises(ValidationError):
        lifecycle.apply_patch(actors['charity'], donation.id, {'charity': actors['charity'].user_id})


def test_actor_is_explicit(donation_factory):
    """Authorization only looks at the Actor it is handed."""
    donation = donation_factory()
    with pytest.raises(Unauthorized):
        lifecycle.approve(Actor(None, 'donor'), donation.id)
