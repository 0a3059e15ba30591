"""
Who may move a donation along which edge.

Each edge of the lifecycle lists the parties allowed to trigger it. A party
is a relationship to the donation, not just a role: 'donor' means the
donation's own donor, 'charity' its assigned charity, and so on. Admins may
take any edge except rating.
"""
from errors import InvalidTransition, Unauthorized

# (from_status, to_status) -> parties allowed to trigger it
TRANSITIONS = {
    ('pending', 'approved'): ('admin',),
    ('pending', 'cancelled'): ('donor', 'admin'),
    ('approved', 'cancelled'): ('donor', 'admin'),
    ('approved', 'in_progress'): ('volunteer', 'admin'),
    ('in_progress', 'completed'): ('volunteer', 'charity', 'admin'),
    ('completed', 'rated'): ('charity',),
    ('pending', 'expired'): ('system',),
    ('approved', 'expired'): ('system',),
}

TERMINAL = ('completed', 'cancelled', 'expired')


def parties(actor, donation):
    """The relationships `actor` holds to `donation`."""
    held = set()
    if actor.role == 'admin':
        held.add('admin')
    if actor.role == 'system':
        held.add('system')
    if actor.user_id is None:
        return held
    if donation.donor_id == actor.user_id:
        held.add('donor')
    if actor.role == 'charity' and donation.charity_id == actor.user_id:
        held.add('charity')
    if actor.role == 'volunteer':
        # An approved donation with no volunteer yet is open for a volunteer to take
        if donation.volunteer_id == actor.user_id or (
                donation.volunteer_id is None and donation.status == 'approved'):
            held.add('volunteer')
    return held


def check_transition(actor, donation, target):
    """
    Raise InvalidTransition if `target` is not reachable from the donation's
    current status, or Unauthorized if the actor is not allowed on that edge.
    """
    held = parties(actor, donation)
    if not held:
        raise Unauthorized(f"{actor.role} {actor.user_id} has no part in donation {donation.id}.")
    allowed = TRANSITIONS.get((donation.status, target))
    if allowed is None:
        raise InvalidTransition(donation.status, target, actor.role)
    if not held & set(allowed):
        raise Unauthorized(
            f"{actor.role} {actor.user_id} may not move donation {donation.id} "
            f"from '{donation.status}' to '{target}'."
        )


def is_allowed(actor, donation, target):
    try:
        check_transition(actor, donation, target)
    except (InvalidTransition, Unauthorized):
        return False
    return True
