"""
Volunteer work items (pickup, delivery, verification) attached to a donation.

Tasks run their own small state machine and are deliberately not kept in
step with the donation's status.

    open -> assigned -> in_progress -> completed
    open | assigned | in_progress -> cancelled
"""
from errors import ConflictError, InvalidTransition, Unauthorized, ValidationError
from extensions import db
from models import TASK_PRIORITIES, TASK_STATUSES, TASK_TYPES, Donation, Task, User
import store
from utils import (
    broadcast, log_activity, parse_choice, parse_datetime, parse_id,
    parse_positive_number, parse_text, require_fields,
)

TASK_TRANSITIONS = {
    ('open', 'assigned'): ('volunteer', 'admin'),
    ('assigned', 'in_progress'): ('assignee', 'admin'),
    ('in_progress', 'completed'): ('assignee', 'admin'),
    ('open', 'cancelled'): ('admin',),
    ('assigned', 'cancelled'): ('admin',),
    ('in_progress', 'cancelled'): ('admin',),
}


def _parties(actor, task):
    held = set()
    if actor.role == 'admin':
        held.add('admin')
    if actor.role == 'volunteer':
        held.add('volunteer')
        if task.volunteer_id == actor.user_id:
            held.add('assignee')
    return held


def _check(actor, task, target):
    allowed = TASK_TRANSITIONS.get((task.status, target))
    if allowed is None:
        raise InvalidTransition(task.status, target, actor.role)
    if not _parties(actor, task) & set(allowed):
        raise Unauthorized(f"{actor.role} {actor.user_id} may not move task {task.id} to '{target}'.")


def _move(actor, task, target, changes=None, expected=None):
    values = {'status': target}
    values.update(changes or {})
    guard = {'status': task.status}
    guard.update(expected or {})
    if not store.conditional_update(Task, task.id, guard, values):
        store.rollback()
        raise ConflictError(f"Task {task.id} was changed by someone else. Reload and try again.")
    log_activity(actor.user_id, f"TASK_{target.upper()}", f"Task {task.id} -> {target}")
    store.commit()
    broadcast('task_updated', task.to_dict())
    return task


def create_task(actor, data):
    require_fields(data, ['donation', 'type', 'description', 'location',
                          'scheduled_time', 'estimated_duration'])
    donation = store.get(Donation, parse_id(data['donation'], 'donation'), 'Donation')
    if actor.role != 'admin' and donation.donor_id != actor.user_id:
        raise Unauthorized('Only an admin or the donation\'s donor can create tasks for it.')

    requirements = data.get('requirements') or []
    if not isinstance(requirements, list) or not all(isinstance(r, str) for r in requirements):
        raise ValidationError('requirements must be a list of strings', field='requirements')

    task = Task(
        donation_id=donation.id,
        type=parse_choice(data['type'], TASK_TYPES, 'type'),
        priority=parse_choice(data.get('priority', 'medium'), TASK_PRIORITIES, 'priority'),
        description=parse_text(data['description'], 'description'),
        location=parse_text(data['location'], 'location'),
        scheduled_time=parse_datetime(data['scheduled_time'], 'scheduled_time'),
        estimated_duration=parse_positive_number(data['estimated_duration'], 'estimated_duration', integer=True),
        requirements=requirements,
        status='open',
    )
    store.add(task)
    db.session.flush()
    log_activity(actor.user_id, "CREATE_TASK", f"Task {task.id} ({task.type}) for donation {donation.id}")
    store.commit()
    broadcast('task_updated', task.to_dict())
    return task


def assign(actor, task_id, volunteer_id=None):
    task = store.get(Task, task_id, 'Task')
    _check(actor, task, 'assigned')
    if actor.role == 'volunteer':
        volunteer_id = actor.user_id
    else:
        if volunteer_id is None:
            raise ValidationError('volunteer is required', field='volunteer')
        volunteer_id = parse_id(volunteer_id, 'volunteer')
        volunteer = store.get(User, volunteer_id, 'User')
        if volunteer.role != 'volunteer':
            raise ValidationError(f'User {volunteer_id} is not a volunteer', field='volunteer')
    if task.volunteer_id is not None:
        raise ConflictError(f"Task {task.id} already has a volunteer.")
    return _move(actor, task, 'assigned', {'volunteer_id': volunteer_id}, {'volunteer_id': None})


def start(actor, task_id):
    task = store.get(Task, task_id, 'Task')
    _check(actor, task, 'in_progress')
    return _move(actor, task, 'in_progress')


def complete(actor, task_id, notes=None):
    task = store.get(Task, task_id, 'Task')
    _check(actor, task, 'completed')
    return _move(actor, task, 'completed', {'completion_notes': notes})


def cancel(actor, task_id):
    task = store.get(Task, task_id, 'Task')
    _check(actor, task, 'cancelled')
    return _move(actor, task, 'cancelled')


def verify(actor, task_id, outcome):
    """Admin sign-off on a completed task."""
    if actor.role != 'admin':
        raise Unauthorized('Admins only.')
    parse_choice(outcome, ('verified', 'rejected'), 'verification_status')
    task = store.get(Task, task_id, 'Task')
    if task.status != 'completed':
        raise InvalidTransition(task.status, outcome, actor.role)
    if task.verification_status != 'pending':
        raise ConflictError(f"Task {task.id} is already {task.verification_status}.")

    won = store.conditional_update(
        Task, task.id,
        {'status': 'completed', 'verification_status': 'pending'},
        {'verification_status': outcome, 'verified_by_id': actor.user_id},
    )
    if not won:
        store.rollback()
        raise ConflictError(f"Task {task.id} was verified by someone else.")
    log_activity(actor.user_id, "VERIFY_TASK", f"Task {task.id} {outcome}")
    store.commit()
    return task


def apply_task_patch(actor, task_id, body):
    target = body.get('status')
    if target not in TASK_STATUSES or target == 'open':
        raise ValidationError(
            "status must be one of: assigned, in_progress, completed, cancelled", field='status')
    if target == 'assigned':
        return assign(actor, task_id, body.get('volunteer'))
    if target == 'in_progress':
        return start(actor, task_id)
    if target == 'completed':
        return complete(actor, task_id, body.get('completion_notes'))
    return cancel(actor, task_id)
