# fest/services/events.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fest.constraints import translate_integrity_error
from fest.errors import NotFound, ValidationFailed
from fest.grouping import attach_children, group_by
from fest.models.enums import CrewRole, Role
from fest.models.event import Event, EventCrew, Prize, Round, RoundRule
from fest.models.user import User
from fest.schemas import EventCreate
from fest.utils import as_naive_utc, isoformat

logger = logging.getLogger("events")

# Which account roles may fill each crew slot.
CREW_ROLE_REQUIREMENTS = {
    CrewRole.ORGANIZER: frozenset({Role.ORGANIZER, Role.ADMIN}),
    CrewRole.VOLUNTEER: frozenset({Role.VOLUNTEER, Role.ORGANIZER, Role.ADMIN}),
}


class EventService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _validate_crew(self, payload: EventCreate) -> None:
        wanted = set(payload.organizer_ids) | set(payload.volunteer_ids)
        if not wanted:
            return
        roles = dict(
            (await self.db.execute(select(User.id, User.role).where(User.id.in_(wanted)))).all()
        )
        invalid: List[int] = []
        for crew_role, ids in (
            (CrewRole.ORGANIZER, payload.organizer_ids),
            (CrewRole.VOLUNTEER, payload.volunteer_ids),
        ):
            allowed = CREW_ROLE_REQUIREMENTS[crew_role]
            invalid.extend(uid for uid in ids if roles.get(uid) not in allowed)
        if invalid:
            raise ValidationFailed(
                "Some crew users do not exist or lack the required role",
                code="invalid_crew",
                details={"invalid_user_ids": sorted(set(invalid))},
            )
        if set(payload.organizer_ids) & set(payload.volunteer_ids):
            raise ValidationFailed(
                "A user cannot be both organizer and volunteer for one event",
                code="invalid_crew",
                details={"invalid_user_ids": sorted(set(payload.organizer_ids) & set(payload.volunteer_ids))},
            )

    async def create_event(self, payload: EventCreate, created_by: int) -> Dict[str, Any]:
        """Insert the event with its rounds, rules, prizes and crew in one transaction."""

        await self._validate_crew(payload)

        event = Event(
            name=payload.name,
            description=payload.description,
            participation_mode=payload.participation_mode,
            max_allowed=payload.max_allowed,
            min_team_size=payload.min_team_size,
            max_team_size=payload.max_team_size,
            venue=payload.venue,
            registration_start=as_naive_utc(payload.registration_start),
            registration_end=as_naive_utc(payload.registration_end),
            start_time=as_naive_utc(payload.start_time),
            end_time=as_naive_utc(payload.end_time),
            created_by=created_by,
        )
        try:
            self.db.add(event)
            await self.db.flush()

            for planned in payload.rounds:
                round_ = Round(
                    event_id=event.id,
                    round_no=planned.round_no,
                    description=planned.description,
                    start_time=as_naive_utc(planned.start_time),
                    end_time=as_naive_utc(planned.end_time),
                )
                self.db.add(round_)
                await self.db.flush()
                self.db.add_all(
                    RoundRule(round_id=round_.id, rule_no=rule.rule_no, description=rule.description)
                    for rule in planned.rules
                )

            self.db.add_all(
                Prize(event_id=event.id, position=p.position, reward_value=p.reward_value)
                for p in payload.prizes
            )
            self.db.add_all(
                EventCrew(event_id=event.id, user_id=uid, role=CrewRole.ORGANIZER, assigned_by=created_by)
                for uid in payload.organizer_ids
            )
            self.db.add_all(
                EventCrew(event_id=event.id, user_id=uid, role=CrewRole.VOLUNTEER, assigned_by=created_by)
                for uid in payload.volunteer_ids
            )
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise translate_integrity_error(exc) from exc

        event_id = event.id
        logger.info("Event %s (%r) created by %s", event_id, payload.name, created_by)
        return await self.get_event_verbose(event_id)

    @staticmethod
    def _summary(event: Event) -> Dict[str, Any]:
        return {
            "id": event.id,
            "name": event.name,
            "description": event.description,
            "participation_mode": event.participation_mode.value,
            "max_allowed": event.max_allowed,
            "min_team_size": event.min_team_size,
            "max_team_size": event.max_team_size,
            "venue": event.venue,
            "registration_start": isoformat(event.registration_start),
            "registration_end": isoformat(event.registration_end),
            "start_time": isoformat(event.start_time),
            "end_time": isoformat(event.end_time),
        }

    async def _expand(self, events: Sequence[Event]) -> List[Dict[str, Any]]:
        """Attach rounds (each with rules), prizes and crew to every event.

        Each child type is fetched once for all ``events`` and grouped here.
        """

        ids = [event.id for event in events]
        if not ids:
            return []

        rounds = (
            await self.db.execute(
                select(Round).where(Round.event_id.in_(ids)).order_by(Round.event_id, Round.round_no)
            )
        ).scalars().all()
        rules = (
            await self.db.execute(
                select(RoundRule)
                .join(Round, Round.id == RoundRule.round_id)
                .where(Round.event_id.in_(ids))
                .order_by(RoundRule.round_id, RoundRule.rule_no)
            )
        ).scalars().all()
        prizes = (
            await self.db.execute(
                select(Prize).where(Prize.event_id.in_(ids)).order_by(Prize.event_id, Prize.position)
            )
        ).scalars().all()
        crew = (
            await self.db.execute(
                select(EventCrew, User.name, User.email)
                .join(User, User.id == EventCrew.user_id)
                .where(EventCrew.event_id.in_(ids))
                .order_by(EventCrew.event_id, EventCrew.role, User.id)
            )
        ).all()

        rules_by_round = group_by(
            ({"rule_no": r.rule_no, "description": r.description, "round_id": r.round_id} for r in rules),
            lambda r: r.pop("round_id"),
        )
        round_views = attach_children(
            (
                {
                    "id": r.id,
                    "event_id": r.event_id,
                    "round_no": r.round_no,
                    "description": r.description,
                    "start_time": isoformat(r.start_time),
                    "end_time": isoformat(r.end_time),
                }
                for r in rounds
            ),
            rules_by_round,
            field="rules",
        )
        rounds_by_event = group_by(round_views, lambda r: r.pop("event_id"))
        prizes_by_event = group_by(prizes, lambda p: p.event_id)
        crew_by_event = group_by(
            (
                {
                    "event_id": member.event_id,
                    "user_id": member.user_id,
                    "name": name,
                    "email": email,
                    "role": CrewRole(member.role).value,
                }
                for member, name, email in crew
            ),
            lambda c: c.pop("event_id"),
        )

        expanded = []
        for event in events:
            view = self._summary(event)
            crew_by_role = group_by(crew_by_event.get(event.id, []), lambda c: c["role"])
            view.update(
                rounds=rounds_by_event.get(event.id, []),
                prizes=[
                    {"position": p.position, "reward_value": p.reward_value}
                    for p in prizes_by_event.get(event.id, [])
                ],
                organizers=crew_by_role.get(CrewRole.ORGANIZER.value, []),
                volunteers=crew_by_role.get(CrewRole.VOLUNTEER.value, []),
            )
            expanded.append(view)
        return expanded

    async def get_event_verbose(self, event_id: int) -> Dict[str, Any]:
        """Event plus rounds (each with rules), prizes and crew."""

        event = await self.db.get(Event, event_id)
        if event is None:
            raise NotFound("Event not found", code="event_not_found")
        (view,) = await self._expand([event])
        return view

    async def list_events(self, expand: bool = False) -> List[Dict[str, Any]]:
        """All events by start time; ``expand`` nests the same details as a single-event read."""

        events = (
            await self.db.execute(select(Event).order_by(Event.start_time, Event.id))
        ).scalars().all()
        if not expand:
            return [self._summary(event) for event in events]
        return await self._expand(events)
