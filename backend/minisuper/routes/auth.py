# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/minisuper/routes/auth.py
"""
Authentication API routes

- POST /api/auth/login   username + password -> bearer token
- POST /api/auth/logout  revokes the presented token
- GET  /api/auth/me      current user

Accounts are created by administrators through the CLI (flask users create).
"""

from flask import Blueprint, request, current_app, g

from ..decorators import require_auth
from ..responses import failure, internal_error, success
from ..services import auth_service
from ..services import session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included as "Authorization: Bearer <token>" on protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        username = (data.get("username") or "").strip()
        password = data.get("password") or ""

        errors = []
        if len(username) < 3:
            errors.append("username is required (at least 3 characters)")
        if len(password) < 4:
            errors.append("password is required (at least 4 characters)")
        if errors:
            return failure("Invalid login data", 400, errors=errors)

        user = auth_service.authenticate(username, password)
        if not user:
            return failure("Invalid credentials", 401)

        _, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        current_app.logger.info("User %s logged in", user.username)
        return success({"user": user.to_dict(), "token": token}, message="Login successful")

    except Exception:
        current_app.logger.exception("Login failed")
        return internal_error()


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.auth_token)
    return success(message="Logged out")


@auth_bp.get("/me")
@require_auth
def me_route():
    return success({"user": g.current_user.to_dict()})
