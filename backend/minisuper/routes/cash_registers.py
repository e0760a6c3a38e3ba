# Overview: Flask API routes for cash registers and cash sessions; parses input and returns JSON responses.

# backend/minisuper/routes/cash_registers.py
"""
Cash Register API Routes

- GET  /api/cash-registers           registers with their open session
- POST /api/cash-registers           create register (admin)
- POST /api/cash-registers/open      open a session for the caller
- POST /api/cash-registers/close     close the caller's session
- GET  /api/cash-registers/status    caller's open session (or a register's, with ?register_id=)
- GET  /api/cash-registers/history   session history (cashiers see their own)
"""

from flask import Blueprint, request, current_app, g

from ..decorators import require_auth, require_role
from ..errors import POSError, ValidationError
from ..extensions import db
from ..models.auth import ROLE_ADMIN
from ..responses import error_response, internal_error, success
from ..services.container import get_services
from ..validation import parse_amount, parse_int
from minisuper.money import money_json
from minisuper.time_utils import local_day_bounds, parse_iso_date


cash_registers_bp = Blueprint("cash_registers", __name__, url_prefix="/api/cash-registers")


@cash_registers_bp.get("")
@cash_registers_bp.get("/")
@require_auth
def list_registers_route():
    tracker = get_services().cash_sessions
    result = []
    for register in tracker.list_registers():
        data = register.to_dict()
        open_session = tracker.get_register_open_session(register.id)
        data["current_session"] = open_session.to_dict() if open_session else None
        result.append(data)
    return success({"registers": result})


@cash_registers_bp.post("")
@cash_registers_bp.post("/")
@require_auth
@require_role(ROLE_ADMIN)
def create_register_route():
    """Request body: {"register_number": 2, "name": "Caja 2"}"""
    try:
        data = request.get_json(silent=True) or {}
        register = get_services().cash_sessions.create_register(
            parse_int(data.get("register_number"), "register_number"),
            data.get("name") or "",
        )
        return success({"register": register.to_dict()}, message="Cash register created", status=201)
    except POSError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create cash register")
        return internal_error()


@cash_registers_bp.post("/open")
@require_auth
def open_session_route():
    """
    Request body:
    {
        "register_id": 1,
        "opening_usd": 20,
        "opening_ves": 500,
        "notes": "..."   (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        cash_session = get_services().cash_sessions.open(
            user_id=g.current_user.id,
            register_id=parse_int(data.get("register_id"), "register_id"),
            opening_usd=parse_amount(data, "opening_usd"),
            opening_ves=parse_amount(data, "opening_ves"),
            notes=data.get("notes"),
        )
        return success({"session": cash_session.to_dict()}, message="Cash register opened", status=201)
    except POSError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to open cash register")
        return internal_error()


@cash_registers_bp.post("/close")
@require_auth
def close_session_route():
    """
    Request body:
    {
        "closing_usd": 86.96,
        "closing_ves": 500,
        "notes": "...",      (optional)
        "session_id": 12     (optional, must be the caller's open session)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        session_id = data.get("session_id")
        result = get_services().cash_sessions.close(
            user_id=g.current_user.id,
            closing_usd=parse_amount(data, "closing_usd", required=True),
            closing_ves=parse_amount(data, "closing_ves"),
            notes=data.get("notes"),
            session_id=parse_int(session_id, "session_id") if session_id is not None else None,
        )
        return success(
            {
                "session": result.session.to_dict(),
                "cash_difference_usd": money_json(result.cash_difference_usd),
            },
            message="Cash register closed",
        )
    except POSError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to close cash register")
        return internal_error()


@cash_registers_bp.get("/status")
@require_auth
def status_route():
    tracker = get_services().cash_sessions
    register_id = request.args.get("register_id", type=int)
    if register_id is not None:
        open_session = tracker.get_register_open_session(register_id)
    else:
        open_session = tracker.get_open_session_for_user(g.current_user.id)

    return success({
        "is_open": open_session is not None,
        "session": open_session.to_dict() if open_session else None,
    })


@cash_registers_bp.get("/history")
@require_auth
def history_route():
    """
    Query params: register_id, start_date, end_date (YYYY-MM-DD, inclusive), page, per_page
    """
    try:
        start_date = parse_iso_date(request.args.get("start_date"))
        end_date = parse_iso_date(request.args.get("end_date"))
    except ValueError:
        return error_response(ValidationError("start_date/end_date must be YYYY-MM-DD"))

    user_id = None if g.current_user.is_admin else g.current_user.id
    result = get_services().cash_sessions.history(
        register_id=request.args.get("register_id", type=int),
        start=local_day_bounds(start_date)[0] if start_date else None,
        end=local_day_bounds(end_date)[1] if end_date else None,
        page=request.args.get("page", 1, type=int),
        per_page=request.args.get("per_page", 20, type=int),
        user_id=user_id,
    )
    return success({
        "sessions": [s.to_dict() for s in result["items"]],
        "pagination": {
            "page": result["page"],
            "per_page": result["per_page"],
            "total": result["total"],
            "total_pages": result["pages"],
        },
    })
