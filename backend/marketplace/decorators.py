# Overview: Request decorators for business API routes.

from functools import wraps

from flask import g, jsonify, request

from .services import business_auth_service


def require_business_auth(f):
    """
    Require a business bearer token and establish the business context.

    Sets g.business and g.business_id. Returns 401 when the header is missing,
    the token is unknown or revoked, or the business is deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()
        business = business_auth_service.validate_business_token(token)

        if not business:
            return jsonify({"error": "Invalid or revoked token"}), 401

        g.business = business
        g.business_id = business.id

        return f(*args, **kwargs)

    return decorated_function
