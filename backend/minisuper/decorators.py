# Overview: Request and role decorators for API routes.

from functools import wraps

from flask import request, g

from .responses import failure
from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, "current_user")


def require_auth(f):
    """
    Require a valid bearer token.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.session_context: The full SessionContext object
    - g.auth_token: The plaintext token (logout revokes it)

    Returns 401 if the Authorization header is missing, or the token is
    invalid, expired, revoked, or belongs to a deactivated account.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return failure("Authentication required", 401)

        token = auth_header.split(" ", 1)[1].strip()

        context = session_service.validate_session(token)

        if not context:
            return failure("Invalid or expired token", 401)

        g.current_user = context.user
        g.session_context = context
        g.auth_token = token

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require the authenticated user to hold one of the given roles.

    Must be stacked below @require_auth.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return failure("Authentication required", 401)

            if g.current_user.role not in roles:
                return failure(
                    "Permission denied",
                    403,
                    errors=[f"Requires role: {', '.join(roles)}"],
                )

            return f(*args, **kwargs)

        return decorated_function
    return decorator
