# fest/services/eligibility.py
"""Answers about a user's standing that other services gate on.

Payment status and profile completeness are owned by external systems; this
backend reads the copies they keep on the ``users`` row.
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fest.models.enums import SETTLED_PAYMENTS, PaymentStatus
from fest.models.user import User


def payment_status(user: User) -> PaymentStatus:
    return PaymentStatus(user.payment_status)


def payment_settled(user: User) -> bool:
    """Paid or exempted; required to lead or join a team."""
    return payment_status(user) in SETTLED_PAYMENTS


def payment_cleared_for_round(user: User) -> bool:
    # Solo round entry only turns away users who never started paying.
    return payment_status(user) != PaymentStatus.UNPAID


def profile_complete(user: User) -> bool:
    return bool(user.profile_completed)


def same_institution(user: User, institution_id: Optional[int]) -> bool:
    return institution_id is not None and user.institution_id == institution_id


async def users_by_email(db: AsyncSession, emails: Iterable[str]) -> Dict[str, User]:
    """Map lowercased email to user for every address that has an account."""

    wanted = sorted({e.strip().lower() for e in emails if e})
    if not wanted:
        return {}
    rows = (await db.execute(select(User).where(func.lower(User.email).in_(wanted)))).scalars().all()
    return {row.email.lower(): row for row in rows}


async def user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    found = await users_by_email(db, [email])
    return found.get(email.strip().lower())
