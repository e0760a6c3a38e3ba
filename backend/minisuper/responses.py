# Overview: JSON envelope helpers shared by every route.

"""
Every endpoint answers with the same envelope:

    {"success": bool, "message"?: str, "data"?: object, "errors"?: [str]}

POSError subclasses carry their own status code and details, so routes only
have to hand the exception over.
"""

from __future__ import annotations

from flask import jsonify

from .errors import POSError, ValidationError


def success(data=None, message: str | None = None, status: int = 200):
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return jsonify(body), status


def failure(message: str, status: int = 400, errors: list[str] | None = None, details: dict | None = None):
    body = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    if details:
        body["details"] = details
    return jsonify(body), status


def error_response(exc: POSError):
    errors = exc.errors if isinstance(exc, ValidationError) else [exc.message]
    details = dict(exc.details)
    details["kind"] = exc.kind
    return failure(exc.message, exc.status_code, errors=errors, details=details)


def internal_error():
    return failure("Internal server error", 500)
