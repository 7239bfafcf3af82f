# Overview: Request decorators for tenant-scoped API routes.

from functools import wraps
from flask import request, jsonify, g

COMPANY_HEADER = "X-Company-Id"
USER_HEADER = "X-User-Id"


def _header_id(name: str) -> int | None:
    value = request.headers.get(name, "").strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def require_tenant(f):
    """
    Establish tenant context from the upstream auth layer.

    Authentication happens in front of this service; the gateway forwards the
    resolved company and user as X-Company-Id / X-User-Id. Sets:
    - g.company_id: tenant for every lookup in the request (REQUIRED)
    - g.user_id: acting user (may be None for service calls)

    Returns 401 if the company header is missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        company_id = _header_id(COMPANY_HEADER)
        if company_id is None:
            return jsonify({"error": "Tenant context required"}), 401

        g.company_id = company_id
        g.user_id = _header_id(USER_HEADER)
        return f(*args, **kwargs)

    return decorated_function
