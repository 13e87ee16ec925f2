# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .errors import StockLedgerError


USER_HEADER = "X-User-Id"


def with_acting_user(f):
    """
    Resolve the acting user for the request.

    Identity is issued upstream; this service only receives the user id in
    the X-User-Id header. Sets g.user_id (None when the header is absent).
    Returns 400 for a header that is not a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get(USER_HEADER)
        if raw is None or not raw.strip():
            g.user_id = None
        else:
            raw = raw.strip()
            if not raw.isdigit() or int(raw) <= 0:
                return jsonify({"error": f"{USER_HEADER} must be a positive integer"}), 400
            g.user_id = int(raw)
        return f(*args, **kwargs)

    return decorated_function


def json_errors(action: str):
    """
    Translate domain errors into JSON responses.

    StockLedgerError subclasses carry their own HTTP status; anything else is
    logged with a traceback and reported as a 500.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except StockLedgerError as e:
                current_app.logger.info("%s rejected: %s", action, e.message)
                return jsonify(e.to_dict()), e.http_status
            except Exception:
                current_app.logger.exception("Failed to %s", action)
                return jsonify({"error": "Internal server error"}), 500

        return decorated_function

    return decorator
