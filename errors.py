"""
Error taxonomy shared by the lifecycle code and the HTTP layer.

Every failure a caller can see has a stable `kind` and a readable message.
Route handlers raise these; `register_error_handlers` turns them into JSON.
"""
import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    kind = 'AppError'
    status_code = 500

    def __init__(self, message, status_code=None, **details):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self):
        payload = {'error': self.message, 'kind': self.kind}
        payload.update(self.details)
        return payload


class ValidationError(AppError):
    """Missing or malformed input. `field` names the offending field."""
    kind = 'ValidationError'
    status_code = 400

    def __init__(self, message, field=None, **details):
        if field is not None:
            details['field'] = field
        super().__init__(message, **details)


class Unauthorized(AppError):
    kind = 'Unauthorized'
    status_code = 403


class InvalidTransition(AppError):
    kind = 'InvalidTransition'
    status_code = 400

    def __init__(self, current, requested, role):
        super().__init__(
            f"Cannot move from '{current}' to '{requested}' as {role}.",
            current=current,
            requested=requested,
            role=role,
        )


class NotFound(AppError):
    kind = 'NotFound'
    status_code = 404


class ConflictError(AppError):
    kind = 'ConflictError'
    status_code = 409


class StoreUnavailable(AppError):
    kind = 'StoreUnavailable'
    status_code = 503


def register_error_handlers(app):
    """Attach JSON handlers for the taxonomy, HTTP errors and the catch-all."""

    @app.errorhandler(AppError)
    def handle_app_error(exc):
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.kind, exc.message)
        else:
            logger.info("%s: %s", exc.kind, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify({'error': exc.description, 'kind': exc.name}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        # Never leak internals to the caller
        logger.exception("Unhandled error: %s", exc)
        return jsonify({'error': 'Internal server error', 'kind': 'InternalError'}), 500
