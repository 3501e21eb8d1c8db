# fest/services/checkin.py
"""Per-round admission: a read-only scan followed by a committing check-in."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fest.constraints import constraint_name, translate_integrity_error
from fest.errors import Conflict, InternalFailure, NotFound, PaymentRequired, ValidationFailed
from fest.models.checkin import GateCheckIn, RoundCheckIn
from fest.models.enums import ResultStatus, Role
from fest.models.event import Event, Registration, Round
from fest.models.result import RoundResult
from fest.models.team import Team, TeamMember
from fest.models.user import User
from fest.services import eligibility
from fest.utils import isoformat, utcnow

logger = logging.getLogger("checkin")


@dataclass
class Entrant:
    """Who a user competes as in one event: alone, or as a member of ``team``."""

    user: User
    team: Optional[Team] = None

    @property
    def kind(self) -> str:
        return "TEAM" if self.team is not None else "SOLO"


async def resolve_round(db: AsyncSession, event_id: int, round_no: int) -> Tuple[Event, Round]:
    event = await db.get(Event, event_id)
    if event is None:
        raise NotFound(f"Event {event_id} not found", code="event_not_found")
    round_ = await db.scalar(
        select(Round).where(Round.event_id == event.id, Round.round_no == round_no)
    )
    if round_ is None:
        raise NotFound(f"Round {round_no} not found for event {event_id}", code="round_not_found")
    return event, round_


class CheckInService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # eligibility
    # ------------------------------------------------------------------

    async def _get_user(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found", code="user_not_found")
        return user

    async def _registered_team(self, event: Event, user_id: int) -> Optional[Team]:
        return await self.db.scalar(
            select(Team)
            .join(TeamMember, TeamMember.team_id == Team.id)
            .join(Registration, Registration.team_id == Team.id)
            .where(
                Team.event_id == event.id,
                Registration.event_id == event.id,
                TeamMember.user_id == user_id,
            )
        )

    async def _resolve_entrant(self, event: Event, user: User) -> Entrant:
        solo = await self.db.scalar(
            select(Registration.id).where(
                Registration.event_id == event.id, Registration.user_id == user.id
            )
        )
        if solo is not None:
            return Entrant(user=user)

        team = await self._registered_team(event, user.id)
        if team is not None:
            return Entrant(user=user, team=team)

        raise NotFound(
            f"User {user.id} is not registered for event {event.id}", code="not_registered"
        )

    async def _ensure_qualified(self, event: Event, round_: Round, entrant: Entrant) -> None:
        """Round N>1 needs a QUALIFIED result in round N-1 (team result or own)."""

        if round_.round_no <= 1:
            return

        previous = await self.db.scalar(
            select(Round.id).where(Round.event_id == event.id, Round.round_no == round_.round_no - 1)
        )
        qualified = None
        if previous is not None:
            target = RoundResult.user_id == entrant.user.id
            if entrant.team is not None:
                target = or_(target, RoundResult.team_id == entrant.team.id)
            qualified = await self.db.scalar(
                select(RoundResult.id).where(
                    RoundResult.round_id == previous,
                    RoundResult.status == ResultStatus.QUALIFIED,
                    target,
                )
            )
        if qualified is None:
            raise ValidationFailed(
                f"User {entrant.user.id} did not qualify from round {round_.round_no - 1}",
                code="not_qualified",
            )

    async def _check_eligible(self, event: Event, round_: Round, user: User) -> Entrant:
        entrant = await self._resolve_entrant(event, user)
        if entrant.team is None and not eligibility.payment_cleared_for_round(user):
            raise PaymentRequired(
                f"Payment pending for user {user.id}", code="payment_pending"
            )
        await self._ensure_qualified(event, round_, entrant)
        return entrant

    async def _checked_in_ids(self, round_id: int, user_ids: Sequence[int]) -> Dict[int, Any]:
        if not user_ids:
            return {}
        rows = (
            await self.db.execute(
                select(RoundCheckIn.user_id, RoundCheckIn.checked_in_at).where(
                    RoundCheckIn.round_id == round_id, RoundCheckIn.user_id.in_(list(user_ids))
                )
            )
        ).all()
        return {user_id: at for user_id, at in rows}

    @staticmethod
    def _member_view(user: User, checked_in: Dict[int, Any]) -> Dict[str, Any]:
        return {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "payment_status": user.payment_status.value,
            "checked_in": user.id in checked_in,
            "checked_in_at": isoformat(checked_in.get(user.id)),
        }

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------

    async def check_in_participant(self, user_id: int, checked_in_by: int) -> Dict[str, Any]:
        """Record a participant's arrival at the fest gate, once."""

        user = await self.db.get(User, user_id)
        if user is None or user.role != Role.PARTICIPANT:
            raise NotFound(f"Participant {user_id} not found", code="user_not_found")
        if not eligibility.payment_cleared_for_round(user):
            raise PaymentRequired(f"Payment pending for user {user_id}", code="payment_pending")

        existing = await self.db.scalar(select(GateCheckIn.id).where(GateCheckIn.user_id == user_id))
        if existing is not None:
            raise Conflict(f"User {user_id} ({user.email}) is already checked in", code="already_checked_in")

        row = GateCheckIn(user_id=user_id, checked_in_by=checked_in_by, checked_in_at=utcnow())
        self.db.add(row)
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise translate_integrity_error(exc) from exc

        logger.info("User %s checked in at the gate by %s", user_id, checked_in_by)
        return {
            "id": row.id,
            "user_id": row.user_id,
            "checked_in_by": row.checked_in_by,
            "checked_in_at": isoformat(row.checked_in_at),
        }

    async def scan_for_round(self, user_id: int, event_id: int, round_no: int) -> Dict[str, Any]:
        """Preview the entrant behind a scanned user without writing anything."""

        user = await self._get_user(user_id)
        event, round_ = await resolve_round(self.db, event_id, round_no)
        entrant = await self._check_eligible(event, round_, user)

        preview: Dict[str, Any] = {
            "type": entrant.kind,
            "event_id": event.id,
            "event_name": event.name,
            "round_no": round_.round_no,
        }
        if entrant.team is None:
            checked_in = await self._checked_in_ids(round_.id, [user.id])
            preview["user"] = self._member_view(user, checked_in)
            return preview

        members = (
            await self.db.execute(
                select(User)
                .join(TeamMember, TeamMember.user_id == User.id)
                .where(TeamMember.team_id == entrant.team.id)
                .order_by(User.id)
            )
        ).scalars().all()
        checked_in = await self._checked_in_ids(round_.id, [m.id for m in members])
        preview["team"] = {
            "id": entrant.team.id,
            "name": entrant.team.name,
            "leader_id": entrant.team.leader_id,
        }
        preview["scanned_user_id"] = user.id
        preview["members"] = [self._member_view(m, checked_in) for m in members]
        return preview

    async def check_in_round_participants(
        self,
        event_id: int,
        round_no: int,
        user_ids: Sequence[int],
        team_id: Optional[int],
        checked_in_by: int,
    ) -> Dict[str, Any]:
        """Check in every id or none of them."""

        event, round_ = await resolve_round(self.db, event_id, round_no)
        if not user_ids:
            raise ValidationFailed("No participants supplied", code="validation_failed")

        if event.is_team_event and team_id is None:
            raise ValidationFailed("Team events require a team_id", code="team_mismatch")
        if not event.is_team_event and team_id is not None:
            raise ValidationFailed("Solo events do not accept a team_id", code="team_mismatch")

        users: List[User] = []
        for user_id in user_ids:
            user = await self._get_user(user_id)
            entrant = await self._check_eligible(event, round_, user)
            if team_id is not None and (entrant.team is None or entrant.team.id != team_id):
                raise ValidationFailed(
                    f"User {user_id} is not a registered member of team {team_id}",
                    code="team_mismatch",
                )
            users.append(user)

        round_id = round_.id
        identities = [(u.id, u.email) for u in users]
        already = await self._checked_in_ids(round_id, [uid for uid, _ in identities])
        if already:
            first_id, first_email = next(i for i in identities if i[0] in already)
            raise self._already_checked_in(first_id, first_email, round_no, sorted(already))

        rows: List[RoundCheckIn] = []
        current: Optional[Tuple[int, str]] = None
        try:
            for user_id, email in identities:
                current = (user_id, email)
                row = RoundCheckIn(
                    round_id=round_id,
                    user_id=user_id,
                    team_id=team_id,
                    checked_in_by=checked_in_by,
                    checked_in_at=utcnow(),
                )
                self.db.add(row)
                await self.db.flush()
                rows.append(row)
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            if constraint_name(exc) == "uq_round_checkins_user_round" and current is not None:
                logger.info("Concurrent duplicate check-in for user %s round %s", current[0], round_id)
                raise self._already_checked_in(current[0], current[1], round_no, [current[0]]) from exc
            logger.exception("Round check-in failed for event %s round %s", event_id, round_no)
            raise InternalFailure("Failed to check in to round") from exc

        logger.info(
            "Checked in %s participant(s) to event %s round %s (team=%s) by %s",
            len(rows), event_id, round_no, team_id, checked_in_by,
        )
        return {
            "event_id": event.id,
            "round_no": round_.round_no,
            "team_id": team_id,
            "checked_in_count": len(rows),
            "checked_in": [
                {"user_id": row.user_id, "checked_in_at": isoformat(row.checked_in_at)}
                for row in rows
            ],
        }

    @staticmethod
    def _already_checked_in(user_id: int, email: str, round_no: int, user_ids: List[int]) -> Conflict:
        return Conflict(
            f"User {user_id} ({email}) is already checked in to round {round_no}",
            code="already_checked_in",
            details={"user_id": user_id, "user_ids": user_ids},
        )

    async def list_round_checkins(
        self, event_id: int, round_no: int, offset: int = 0, limit: int = 50
    ) -> Dict[str, Any]:
        _, round_ = await resolve_round(self.db, event_id, round_no)

        total = await self.db.scalar(
            select(func.count(RoundCheckIn.id)).where(RoundCheckIn.round_id == round_.id)
        )
        rows = (
            await self.db.execute(
                select(RoundCheckIn, User, Team.name)
                .join(User, User.id == RoundCheckIn.user_id)
                .outerjoin(Team, Team.id == RoundCheckIn.team_id)
                .where(RoundCheckIn.round_id == round_.id)
                .order_by(RoundCheckIn.checked_in_at, RoundCheckIn.id)
                .offset(offset)
                .limit(limit)
            )
        ).all()
        return {
            "data": [
                {
                    "user_id": user.id,
                    "name": user.name,
                    "email": user.email,
                    "team_id": checkin.team_id,
                    "team_name": team_name,
                    "checked_in_by": checkin.checked_in_by,
                    "checked_in_at": isoformat(checkin.checked_in_at),
                }
                for checkin, user, team_name in rows
            ],
            "total": total or 0,
            "from": offset,
            "limit": limit,
        }
