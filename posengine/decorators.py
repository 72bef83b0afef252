# Overview: Request decorators establishing caller and outlet context for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request

from .access import get_access_resolver
from .errors import Forbidden, Unauthorized
from .extensions import db
from .services import build_engine

OUTLET_HEADER = "X-Outlet-Id"


def _request_outlet_id():
    """
    Outlet id from the X-Outlet-Id header, then the query string, then the
    JSON body. Returns None when absent; raises Unauthorized when malformed.
    """
    raw = request.headers.get(OUTLET_HEADER)
    if raw is None:
        raw = request.args.get("outlet_id")
    if raw is None and request.is_json:
        body = request.get_json(silent=True)
        if isinstance(body, dict):
            raw = body.get("outlet_id")
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise Unauthorized("Invalid outlet id", details={"outlet_id": raw})


def require_outlet(f):
    """
    Require an authenticated caller acting on a granted outlet.

    Sets the following Flask g attributes:
    - g.caller: CallerContext from the access resolver
    - g.caller_id: caller id (recorded as actor on writes)
    - g.outlet_id: the outlet the request acts on

    Returns 401 when the token is missing or unknown, or when the request
    carries no outlet id. Returns 403 when the outlet is not granted.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            err = Unauthorized("Authentication required")
            return jsonify(err.to_dict()), err.http_status

        token = auth_header.split(" ", 1)[1]
        caller = get_access_resolver().resolve(token)
        if caller is None:
            err = Unauthorized("Invalid or expired token")
            return jsonify(err.to_dict()), err.http_status

        try:
            outlet_id = _request_outlet_id()
        except Unauthorized as err:
            return jsonify(err.to_dict()), err.http_status
        if outlet_id is None:
            err = Unauthorized("Outlet context required", details={"header": OUTLET_HEADER})
            return jsonify(err.to_dict()), err.http_status

        if not caller.may_access(outlet_id):
            current_app.logger.warning(
                "Caller %s denied access to outlet %s (%s %s)",
                caller.caller_id, outlet_id, request.method, request.path,
            )
            err = Forbidden("Outlet access denied", details={"outlet_id": outlet_id})
            return jsonify(err.to_dict()), err.http_status

        g.caller = caller
        g.caller_id = caller.caller_id
        g.outlet_id = outlet_id
        return f(*args, **kwargs)

    return decorated_function


def get_engine():
    """Engine for the current request, built once around db.session."""
    if "engine" not in g:
        g.engine = build_engine(db.session, current_app.config)
    return g.engine
