# Overview: Request decorators for API routes: JSON error mapping and idempotent mutations.

from functools import wraps
from flask import request, jsonify, current_app

from .errors import StockLedgerError, ValidationError
from .extensions import db
from .services.concurrency import run_idempotent


IDEMPOTENCY_HEADER = "Idempotency-Key"
MAX_IDEMPOTENCY_KEY_LENGTH = 128


def error_response(exc: StockLedgerError):
    return jsonify(exc.to_dict()), exc.http_status


def json_errors(f):
    """
    Translate stock ledger errors into JSON bodies with the error's status.

    Any other exception rolls the session back and answers 500 after
    logging the traceback.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except StockLedgerError as e:
            db.session.rollback()
            return error_response(e)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Failed to handle %s %s", request.method, request.path)
            return jsonify({"error": "Internal server error"}), 500
    return decorated_function


def mutation(scope: str, *, status: int = 200):
    """
    Run a mutating route as one committed unit of work.

    The wrapped view returns a JSON-serializable dict. When the request
    carries an Idempotency-Key header the result is stored with the key and
    replayed (with an Idempotent-Replayed header) on repeats.
    """
    def decorator(f):
        @wraps(f)
        @json_errors
        def decorated_function(*args, **kwargs):
            key = request.headers.get(IDEMPOTENCY_HEADER)
            if key is not None:
                key = key.strip()
                if not key or len(key) > MAX_IDEMPOTENCY_KEY_LENGTH:
                    raise ValidationError(
                        f"{IDEMPOTENCY_HEADER} must be 1-{MAX_IDEMPOTENCY_KEY_LENGTH} characters"
                    )

            payload, replayed = run_idempotent(
                f"{scope}:{request.path}",
                key,
                lambda: f(*args, **kwargs),
            )

            response = jsonify(payload)
            response.status_code = status
            if replayed:
                response.headers["Idempotent-Replayed"] = "true"
            return response
        return decorated_function
    return decorator
