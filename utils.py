import logging
from collections import namedtuple
from datetime import datetime, timezone

from flask_jwt_extended import get_jwt_identity

from errors import Unauthorized, ValidationError
from extensions import db, socketio
from models import AuditLog, User

logger = logging.getLogger(__name__)

# Who is calling. Passed explicitly into every lifecycle call.
Actor = namedtuple('Actor', ['user_id', 'role'])

SYSTEM = Actor(None, 'system')


def actor_for(user):
    return Actor(user.id, user.role)


def current_actor():
    """Resolve the bearer token of the current request into an Actor."""
    identity = get_jwt_identity()
    try:
        user_id = int(identity)
    except (TypeError, ValueError):
        raise Unauthorized('Invalid token identity.', status_code=401)

    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        raise Unauthorized('Account not found or disabled.', status_code=401)
    return actor_for(user)


def require_role(actor, *roles):
    if actor.role not in roles:
        raise Unauthorized(f"This action requires one of: {', '.join(roles)}.")


def log_activity(user_id, action, details):
    """Stage an audit row in the current transaction; the caller commits."""
    db.session.add(AuditLog(user_id=user_id, action=action, details=details[:255]))
    logger.info("%s by %s: %s", action, user_id if user_id is not None else 'system', details)


# ==========================================
#  INPUT HELPERS
# ==========================================
def get_json_body(request):
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object.')
    return data


def require_fields(data, fields):
    for field in fields:
        value = data.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(f'Missing required field: {field}', field=field)


def parse_datetime(value, field):
    """ISO-8601 string -> naive UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError(f'Invalid date for {field}. Use ISO-8601 (YYYY-MM-DDTHH:MM).', field=field)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_choice(value, choices, field):
    if value not in choices:
        raise ValidationError(f"Invalid {field}. Must be one of: {', '.join(choices)}", field=field)
    return value


def parse_text(value, field):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'{field} must be non-empty text', field=field)
    return value.strip()


def parse_id(value, field):
    """Row ids arrive as JSON numbers or as digit strings."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    raise ValidationError(f'{field} must be an id', field=field)


def parse_positive_number(value, field, integer=False):
    try:
        number = int(value) if integer else float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be a number', field=field)
    if number <= 0:
        raise ValidationError(f'{field} must be positive', field=field)
    return number


# ==========================================
#  REAL-TIME FEED
# ==========================================
def broadcast(event, payload):
    """Best-effort notification to dashboards; delivery is eventual."""
    try:
        socketio.emit(event, payload)
    except Exception as e:
        logger.warning("Socket emit '%s' failed: %s", event, e)
