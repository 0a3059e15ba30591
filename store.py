"""
Entity Store: the narrow read / write / conditional-update contract the
lifecycle code persists through.

Status changes never read-modify-write an entity. They issue one
`UPDATE ... WHERE <expected state>` and look at how many rows matched, so two
actors racing on the same donation are serialized by the database.
"""
import logging

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError

from errors import ConflictError, NotFound, StoreUnavailable
from extensions import db
from models import TrackingEntry, utcnow

logger = logging.getLogger(__name__)


def get(model, entity_id, label=None):
    """Load one entity by primary key or raise NotFound."""
    try:
        entity = db.session.get(model, entity_id)
    except OperationalError as e:
        db.session.rollback()
        raise StoreUnavailable('The data store is unreachable. Try again later.') from e
    if entity is None:
        raise NotFound(f"{label or model.__name__} {entity_id} not found")
    return entity


def conditional_update(model, entity_id, expected, changes):
    """
    Apply `changes` to the row only if every column in `expected` still holds
    the expected value (None means IS NULL, a tuple means IN).
    Returns True when the row matched.
    """
    stmt = update(model).where(model.id == entity_id)
    for column, value in expected.items():
        attr = getattr(model, column)
        if value is None:
            stmt = stmt.where(attr.is_(None))
        elif isinstance(value, (tuple, list, set)):
            stmt = stmt.where(attr.in_(value))
        else:
            stmt = stmt.where(attr == value)
    values = dict(changes)
    if hasattr(model, 'updated_at'):
        values.setdefault('updated_at', utcnow())
    stmt = stmt.values(**values).execution_options(synchronize_session=False)
    try:
        result = db.session.execute(stmt)
    except OperationalError as e:
        db.session.rollback()
        raise StoreUnavailable('The data store is unreachable. Try again later.') from e
    return result.rowcount == 1


def increment(model, entity_id, column, amount=1):
    """Atomic counter bump, computed by the database."""
    attr = getattr(model, column)
    stmt = (
        update(model)
        .where(model.id == entity_id)
        .values({column: func.coalesce(attr, 0) + amount})
        .execution_options(synchronize_session=False)
    )
    db.session.execute(stmt)


def append_history(donation_id, status, updated_by, notes=None, timestamp=None):
    """Insert one tracking-history row. History is never rewritten."""
    entry = TrackingEntry(
        donation_id=donation_id,
        status=status,
        updated_by=updated_by,
        notes=notes,
        timestamp=timestamp or utcnow(),
    )
    db.session.add(entry)
    return entry


def add(entity):
    db.session.add(entity)
    return entity


def commit():
    """Commit the unit of work; roll back and translate store failures."""
    try:
        db.session.commit()
    except (OperationalError, InterfaceError) as e:
        db.session.rollback()
        logger.error("Store commit failed: %s", e)
        raise StoreUnavailable('The data store is unreachable. Try again later.') from e
    except IntegrityError as e:
        db.session.rollback()
        logger.info("Commit rejected by a constraint: %s", e.orig)
        raise ConflictError('The change clashes with an existing record. Reload and try again.') from e
    except SQLAlchemyError:
        db.session.rollback()
        raise


def rollback():
    db.session.rollback()
