# fest/services/registration.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from fest.constraints import translate_integrity_error
from fest.errors import Conflict, Forbidden, NotFound, PaymentRequired, ValidationFailed
from fest.models.event import Event, Registration
from fest.models.team import Team, TeamMember
from fest.models.user import User
from fest.services import eligibility
from fest.utils import utcnow

logger = logging.getLogger("events")


class RegistrationService:
    """Binds a participant (solo) or a team to an event."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _ensure_capacity(self, event: Event) -> None:
        taken = await self.db.scalar(
            select(func.count(Registration.id)).where(Registration.event_id == event.id)
        )
        if (taken or 0) >= event.max_allowed:
            raise Conflict("Event is full", code="event_full")

    async def _registered_members(self, event: Event, member_ids: List[int]) -> List[int]:
        """Members that already compete in ``event``, solo or through another team."""

        through_team = select(TeamMember.user_id).join(
            Registration, Registration.team_id == TeamMember.team_id
        ).where(Registration.event_id == event.id, TeamMember.user_id.in_(member_ids))
        solo = select(Registration.user_id).where(
            Registration.event_id == event.id, Registration.user_id.in_(member_ids)
        )
        rows = (await self.db.execute(through_team.union(solo))).scalars().all()
        return sorted(set(rows))

    async def register_for_event(
        self, event_id: int, user_id: int, team_id: Optional[int] = None
    ) -> Dict[str, Any]:
        event = await self.db.get(Event, event_id)
        if event is None:
            raise NotFound("Event not found", code="event_not_found")
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFound("User not found", code="user_not_found")

        now = utcnow()
        if not (event.registration_start <= now <= event.registration_end):
            raise ValidationFailed("Registration is not open for this event", code="registration_not_open")

        try:
            if event.is_team_event:
                registration = await self._register_team(event, user, team_id)
            else:
                registration = await self._register_solo(event, user, team_id)
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise translate_integrity_error(exc) from exc

        logger.info(
            "Registered %s for event %s",
            f"team {registration.team_id}" if registration.team_id else f"user {registration.user_id}",
            event.id,
        )
        return {
            "registration_id": registration.id,
            "event_id": event.id,
            "user_id": registration.user_id,
            "team_id": registration.team_id,
        }

    async def _register_solo(self, event: Event, user: User, team_id: Optional[int]) -> Registration:
        if team_id is not None:
            raise ValidationFailed("This is a solo event; register without a team", code="team_not_allowed")
        if not eligibility.payment_cleared_for_round(user):
            raise PaymentRequired("Payment must be completed before registering", code="payment_pending")

        existing = await self._registered_members(event, [user.id])
        if existing:
            raise Conflict("You are already registered for this event", code="already_registered")
        await self._ensure_capacity(event)

        registration = Registration(event_id=event.id, user_id=user.id, registered_by=user.id)
        self.db.add(registration)
        await self.db.flush()
        return registration

    async def _register_team(self, event: Event, user: User, team_id: Optional[int]) -> Registration:
        if team_id is None:
            raise ValidationFailed("This is a team event; a team_id is required", code="team_required")
        team = await self.db.get(Team, team_id)
        if team is None:
            raise NotFound("Team not found", code="team_not_found")
        if team.leader_id != user.id:
            raise Forbidden("Only the team leader can register the team", code="not_team_leader")
        if team.event_id == event.id:
            raise Conflict("Team is already registered for this event", code="already_registered")
        if team.is_locked:
            raise Conflict("Team is already registered for another event", code="team_locked")

        member_ids = list(
            (await self.db.execute(select(TeamMember.user_id).where(TeamMember.team_id == team.id))).scalars()
        )
        size = len(member_ids)
        max_size = event.max_team_size
        if size < event.min_team_size or (max_size is not None and size > max_size):
            bounds = f"{event.min_team_size}-{max_size}" if max_size else f"at least {event.min_team_size}"
            raise ValidationFailed(
                f"Team size {size} is outside the allowed range ({bounds})",
                code="invalid_team_size",
                details={"team_size": size},
            )

        clashing = await self._registered_members(event, member_ids)
        if clashing:
            raise Conflict(
                "Some team members are already registered for this event",
                code="members_already_registered",
                details={"user_ids": clashing},
            )
        await self._ensure_capacity(event)

        registration = Registration(event_id=event.id, team_id=team.id, registered_by=user.id)
        self.db.add(registration)
        # Registration locks the team.
        team.event_id = event.id
        await self.db.flush()
        return registration


    async def registration_status(self, event_id: int, user_id: int) -> Dict[str, Any]:
        """Whether ``user_id`` competes in the event, solo or through one of their teams."""

        event = await self.db.get(Event, event_id)
        if event is None:
            raise NotFound("Event not found", code="event_not_found")

        # Team events that admit a single member also accept solo entries.
        if not event.is_team_event or event.min_team_size == 1:
            solo = await self.db.scalar(
                select(Registration.id).where(
                    Registration.event_id == event.id, Registration.user_id == user_id
                )
            )
            if solo is not None:
                return {"registration_status": "registered", "mode": "solo"}

        if event.is_team_event:
            member_count = (
                select(func.count(TeamMember.id))
                .where(TeamMember.team_id == Team.id)
                .correlate(Team)
                .scalar_subquery()
            )
            row = (
                await self.db.execute(
                    select(Team.id, Team.name, member_count.label("member_count"))
                    .join(TeamMember, TeamMember.team_id == Team.id)
                    .join(Registration, Registration.team_id == Team.id)
                    .where(TeamMember.user_id == user_id, Registration.event_id == event.id)
                    .limit(1)
                )
            ).first()
            if row is not None:
                team_id, team_name, count = row
                return {
                    "registration_status": "registered",
                    "mode": "team",
                    "team_id": team_id,
                    "team_name": team_name,
                    "member_count": count,
                }

        return {"registration_status": "not_registered"}
