# Overview: Service-layer operations for cash registers and cash sessions; encapsulates business logic and database work.

"""
Cash Session Tracker

LIFECYCLE: OPEN -> CLOSED (terminal). A new occupancy is a new row.

RULES:
- A user holds at most one OPEN session, anywhere.
- A register has at most one OPEN session, by anyone.
  (Both are also enforced by partial unique indexes on cash_sessions.)
- Opening and closing capture a rate snapshot.
- total_sales_usd / transaction_count change only through relative SQL
  updates (record_sale / reverse_sale), never read-modify-write.
- Closing reports cash_difference_usd = closing_usd - (opening_usd + total_sales_usd);
  over/under is allowed and only reported.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import (
    DuplicateEntry,
    NoOpenSession,
    RegisterAlreadyOpen,
    RegisterNotFound,
    SessionAlreadyOpenForUser,
    ValidationError,
)
from ..models import CashRegister, CashSession
from ..models.registers import SESSION_CLOSED, SESSION_OPEN, cash_difference_usd
from minisuper.money import round_money
from minisuper.time_utils import utcnow
from .concurrency import lock_for_update


@dataclass(frozen=True)
class CloseResult:
    session: CashSession
    cash_difference_usd: Decimal


class CashSessionTracker:
    def __init__(self, session, currency, *, logger: logging.Logger | None = None):
        self.session = session
        self.currency = currency
        self.logger = logger or logging.getLogger(__name__)

    # =========================================================================
    # REGISTERS
    # =========================================================================

    def create_register(self, register_number: int, name: str) -> CashRegister:
        if register_number is None or register_number <= 0:
            raise ValidationError("register_number must be > 0")
        if not name or not name.strip():
            raise ValidationError("name is required")

        existing = self.session.query(CashRegister).filter_by(register_number=register_number).first()
        if existing:
            raise DuplicateEntry("register_number", register_number)

        register = CashRegister(register_number=register_number, name=name.strip(), is_active=True)
        self.session.add(register)
        self.session.commit()
        return register

    def list_registers(self, include_inactive: bool = False) -> list[CashRegister]:
        query = self.session.query(CashRegister)
        if not include_inactive:
            query = query.filter_by(is_active=True)
        return query.order_by(CashRegister.register_number).all()

    # =========================================================================
    # SESSION LIFECYCLE
    # =========================================================================

    def get_open_session_for_user(self, user_id: int) -> CashSession | None:
        return self.session.query(CashSession).filter_by(
            user_id=user_id,
            status=SESSION_OPEN,
        ).first()

    def get_open_session_for_register(self, user_id: int, register_id: int) -> CashSession | None:
        """The caller's OPEN session on this register, if any."""
        return self.session.query(CashSession).filter_by(
            user_id=user_id,
            register_id=register_id,
            status=SESSION_OPEN,
        ).first()

    def get_register_open_session(self, register_id: int) -> CashSession | None:
        """OPEN session on a register, whoever holds it."""
        return self.session.query(CashSession).filter_by(
            register_id=register_id,
            status=SESSION_OPEN,
        ).first()

    def _check_can_open(self, user_id: int, register_id: int) -> None:
        mine = self.get_open_session_for_user(user_id)
        if mine is not None:
            raise SessionAlreadyOpenForUser(mine.id)

        theirs = self.get_register_open_session(register_id)
        if theirs is not None:
            raise RegisterAlreadyOpen(register_id, theirs.id)

    def open(
        self,
        user_id: int,
        register_id: int,
        opening_usd: Decimal = Decimal("0"),
        opening_ves: Decimal = Decimal("0"),
        notes: str | None = None,
    ) -> CashSession:
        """
        Open a session for user on register.

        Raises:
            RegisterNotFound: register missing or inactive
            SessionAlreadyOpenForUser: user already has an OPEN session
            RegisterAlreadyOpen: someone else holds this register
        """
        if opening_usd < 0 or opening_ves < 0:
            raise ValidationError("Opening amounts cannot be negative")

        register = self.session.get(CashRegister, register_id)
        if register is None or not register.is_active:
            raise RegisterNotFound(register_id)

        self._check_can_open(user_id, register_id)

        rate = self.currency.get_current_rate()

        cash_session = CashSession(
            register_id=register_id,
            user_id=user_id,
            status=SESSION_OPEN,
            opened_at=utcnow(),
            opening_usd=round_money(opening_usd),
            opening_ves=round_money(opening_ves),
            total_sales_usd=Decimal("0"),
            transaction_count=0,
            opening_rate=rate,
            notes=notes,
        )
        self.session.add(cash_session)
        try:
            self.session.commit()
        except IntegrityError:
            # Lost the race on one of the partial unique indexes
            self.session.rollback()
            self._check_can_open(user_id, register_id)
            raise

        self.logger.info("Cash session %s opened on register %s by user %s", cash_session.id, register_id, user_id)
        return cash_session

    def close(
        self,
        user_id: int,
        closing_usd: Decimal,
        closing_ves: Decimal,
        notes: str | None = None,
        session_id: int | None = None,
    ) -> CloseResult:
        """
        Close the caller's OPEN session.

        If session_id is given it must be the caller's open session.
        Raises NoOpenSession otherwise.
        """
        if closing_usd < 0 or closing_ves < 0:
            raise ValidationError("Closing amounts cannot be negative")

        query = self.session.query(CashSession).filter_by(user_id=user_id, status=SESSION_OPEN)
        if session_id is not None:
            query = query.filter_by(id=session_id)
        cash_session = lock_for_update(query).first()

        if cash_session is None:
            raise NoOpenSession("No open cash session found for this user")

        rate = self.currency.get_current_rate()

        cash_session.status = SESSION_CLOSED
        cash_session.closed_at = utcnow()
        cash_session.closing_usd = round_money(closing_usd)
        cash_session.closing_ves = round_money(closing_ves)
        cash_session.closing_rate = rate
        if notes:
            cash_session.notes = notes

        self.session.commit()

        difference = cash_difference_usd(cash_session)
        self.logger.info("Cash session %s closed. Difference: %s USD", cash_session.id, difference)
        return CloseResult(session=cash_session, cash_difference_usd=difference)

    # =========================================================================
    # RUNNING AGGREGATES
    # =========================================================================

    def record_sale(self, session_id: int, total_usd: Decimal) -> None:
        """total_sales_usd += total_usd, transaction_count += 1. Caller commits."""
        self.session.execute(
            update(CashSession)
            .where(CashSession.id == session_id)
            .values(
                total_sales_usd=CashSession.total_sales_usd + total_usd,
                transaction_count=CashSession.transaction_count + 1,
            )
            .execution_options(synchronize_session="fetch")
        )

    def reverse_sale(self, session_id: int, total_usd: Decimal) -> None:
        """Inverse of record_sale. Applies whether or not the session is still open."""
        self.session.execute(
            update(CashSession)
            .where(CashSession.id == session_id)
            .values(
                total_sales_usd=CashSession.total_sales_usd - total_usd,
                transaction_count=CashSession.transaction_count - 1,
            )
            .execution_options(synchronize_session="fetch")
        )

    # =========================================================================
    # HISTORY
    # =========================================================================

    def history(
        self,
        register_id: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        page: int = 1,
        per_page: int = 20,
        user_id: int | None = None,
    ) -> dict:
        page = max(page, 1)
        per_page = min(max(per_page, 1), 100)

        query = self.session.query(CashSession)
        if register_id is not None:
            query = query.filter(CashSession.register_id == register_id)
        if user_id is not None:
            query = query.filter(CashSession.user_id == user_id)
        if start is not None:
            query = query.filter(CashSession.opened_at >= start)
        if end is not None:
            query = query.filter(CashSession.opened_at < end)

        total = query.count()
        rows = (
            query.order_by(CashSession.opened_at.desc(), CashSession.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        return {
            "items": rows,
            "page": page,
            "per_page": per_page,
            "total": total,
            "pages": math.ceil(total / per_page) if total else 0,
        }
