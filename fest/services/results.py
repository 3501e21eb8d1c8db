# fest/services/results.py
"""Round results and prize awards.

Both operations take a list of entries and treat each one independently: an
entry is validated, upserted and committed on its own, and a failing entry is
rolled back and reported without touching the others.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import asc, desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fest.batch import BatchOutcome
from fest.errors import NotFound, ValidationFailed
from fest.grouping import group_by
from fest.models.checkin import RoundCheckIn
from fest.models.enums import ResultStatus
from fest.models.event import Event, Prize, Round
from fest.models.result import PrizeAward, RoundResult
from fest.models.team import Team, TeamMember
from fest.models.user import User
from fest.services.checkin import resolve_round
from fest.utils import isoformat, utcnow

logger = logging.getLogger("results")

DEFAULT_POINTS = {
    ResultStatus.QUALIFIED: 20,
    ResultStatus.ELIMINATED: 10,
    ResultStatus.DISQUALIFIED: 0,
}

WINNER_POINTS = {1: 100, 2: 75, 3: 50}

SORTS = {
    "points_desc": (desc(RoundResult.points), asc(RoundResult.id)),
    "points_asc": (asc(RoundResult.points), asc(RoundResult.id)),
    "name_asc": (asc(func.coalesce(User.name, Team.name)), asc(RoundResult.id)),
}


class EntryRejected(Exception):
    """A single batch entry failed validation; carries the per-item message."""


def winner_points(position: int) -> int:
    return WINNER_POINTS.get(position, 0)


def _target(entry) -> Dict[str, int]:
    if entry.user_id is not None:
        return {"user_id": entry.user_id}
    return {"team_id": entry.team_id}


def _result_view(row: RoundResult) -> Dict[str, Any]:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "team_id": row.team_id,
        "points": row.points,
        "status": ResultStatus(row.status).value,
        "eval_by": row.eval_by,
        "eval_at": isoformat(row.eval_at),
    }


def _award_view(row: PrizeAward, position: int) -> Dict[str, Any]:
    return {
        "id": row.id,
        "prize_id": row.prize_id,
        "position": position,
        "user_id": row.user_id,
        "team_id": row.team_id,
        "points": row.points,
        "awarded_by": row.awarded_by,
        "awarded_at": isoformat(row.awarded_at),
    }


class ResultService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _ensure_checked_in(self, round_id: int, user_id: Optional[int], team_id: Optional[int]) -> None:
        """The target must exist and hold a check-in for ``round_id``.

        A team counts as checked in when any of its members was checked in
        under that team.
        """

        if user_id is not None:
            if await self.db.get(User, user_id) is None:
                raise EntryRejected(f"User {user_id} not found")
            clause = RoundCheckIn.user_id == user_id
            who = "Participant"
        else:
            if await self.db.get(Team, team_id) is None:
                raise EntryRejected(f"Team {team_id} not found")
            clause = RoundCheckIn.team_id == team_id
            who = "Team"

        found = await self.db.scalar(
            select(RoundCheckIn.id).where(RoundCheckIn.round_id == round_id, clause).limit(1)
        )
        if found is None:
            raise EntryRejected(f"{who} has not checked in to this round")

    async def _run_entry(self, outcome: BatchOutcome, bucket: str, target: Dict[str, int], work) -> None:
        try:
            view = await work()
            await self.db.commit()
        except EntryRejected as exc:
            await self.db.rollback()
            logger.warning("Batch entry %s rejected: %s", target, exc)
            outcome.fail(bucket, {**target, "error": str(exc)})
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.warning("Batch entry %s failed in the store: %s", target, exc)
            outcome.fail(bucket, {**target, "error": "Failed to save entry"})
        else:
            outcome.record(view)

    # ------------------------------------------------------------------
    # round results
    # ------------------------------------------------------------------

    async def _upsert_result(self, round_id: int, entry, eval_by: int) -> Dict[str, Any]:
        await self._ensure_checked_in(round_id, entry.user_id, entry.team_id)

        status = ResultStatus(entry.status)
        points = entry.points if entry.points is not None else DEFAULT_POINTS[status]

        if entry.user_id is not None:
            key = RoundResult.user_id == entry.user_id
        else:
            key = RoundResult.team_id == entry.team_id
        row = await self.db.scalar(
            select(RoundResult).where(RoundResult.round_id == round_id, key)
        )
        if row is None:
            row = RoundResult(round_id=round_id, user_id=entry.user_id, team_id=entry.team_id)
            self.db.add(row)
        row.points = points
        row.status = status
        row.eval_by = eval_by
        row.eval_at = utcnow()
        await self.db.flush()
        return _result_view(row)

    async def assign_round_results(
        self, event_id: int, round_no: int, results: Sequence, eval_by: int
    ) -> BatchOutcome:
        """Record each entry independently; an unknown round fails the whole call."""

        _, round_ = await resolve_round(self.db, event_id, round_no)
        round_id = round_.id
        outcome = BatchOutcome(total=len(results), buckets=("user_errors", "team_errors"))

        for entry in results:
            bucket = "user_errors" if entry.user_id is not None else "team_errors"

            async def work(entry=entry):
                return await self._upsert_result(round_id, entry, eval_by)

            await self._run_entry(outcome, bucket, _target(entry), work)

        logger.info(
            "Round results for event %s round %s: %s/%s recorded",
            event_id, round_no, outcome.recorded_count, outcome.total,
        )
        return outcome

    async def get_round_results(
        self,
        event_id: int,
        round_no: int,
        status: Optional[str] = None,
        sort: str = "points_desc",
        page: int = 1,
        limit: int = 50,
    ) -> Dict[str, Any]:
        _, round_ = await resolve_round(self.db, event_id, round_no)
        if sort not in SORTS:
            raise ValidationFailed(f"Unknown sort {sort!r}", code="invalid_sort")
        page = max(page, 1)
        limit = max(limit, 1)

        filters = [RoundResult.round_id == round_.id]
        if status and status != "all":
            try:
                wanted = ResultStatus(status)
            except ValueError:
                raise ValidationFailed(f"Unknown status {status!r}", code="invalid_status") from None
            filters.append(RoundResult.status == wanted)

        total = await self.db.scalar(select(func.count(RoundResult.id)).where(*filters)) or 0
        rows = (
            await self.db.execute(
                select(RoundResult, User.name, User.email, Team.name)
                .outerjoin(User, User.id == RoundResult.user_id)
                .outerjoin(Team, Team.id == RoundResult.team_id)
                .where(*filters)
                .order_by(*SORTS[sort])
                .offset((page - 1) * limit)
                .limit(limit)
            )
        ).all()

        team_ids = [r.team_id for r, *_ in rows if r.team_id is not None]
        members_by_team: Dict[Any, List[Dict[str, Any]]] = {}
        if team_ids:
            member_rows = (
                await self.db.execute(
                    select(TeamMember.team_id, User.id, User.name, User.email)
                    .join(User, User.id == TeamMember.user_id)
                    .where(TeamMember.team_id.in_(team_ids))
                    .order_by(User.id)
                )
            ).all()
            members_by_team = {
                team_id: [{"id": m.id, "name": m.name, "email": m.email} for m in grouped]
                for team_id, grouped in group_by(member_rows, lambda m: m.team_id).items()
            }

        data = []
        for result, user_name, user_email, team_name in rows:
            item = _result_view(result)
            if result.team_id is not None:
                item.update(
                    {
                        "type": "TEAM",
                        "name": team_name,
                        "team_name": team_name,
                        "members": members_by_team.get(result.team_id, []),
                    }
                )
            else:
                item.update({"type": "SOLO", "name": user_name, "email": user_email})
            data.append(item)

        return {
            "data": data,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    # ------------------------------------------------------------------
    # prizes
    # ------------------------------------------------------------------

    async def _upsert_award(
        self, event_id: int, final_round_id: int, prize_ids: Dict[int, int], entry, awarded_by: int
    ) -> Dict[str, Any]:
        prize_id = prize_ids.get(entry.position)
        if prize_id is None:
            raise EntryRejected(f"No prize configured for position {entry.position}")
        await self._ensure_checked_in(final_round_id, entry.user_id, entry.team_id)

        if entry.user_id is not None:
            key = PrizeAward.user_id == entry.user_id
        else:
            key = PrizeAward.team_id == entry.team_id
        row = await self.db.scalar(
            select(PrizeAward).where(PrizeAward.event_id == event_id, key)
        )
        if row is None:
            row = PrizeAward(event_id=event_id, user_id=entry.user_id, team_id=entry.team_id)
            self.db.add(row)
        row.prize_id = prize_id
        row.points = winner_points(entry.position)
        row.awarded_by = awarded_by
        row.awarded_at = utcnow()
        await self.db.flush()
        return _award_view(row, entry.position)

    async def assign_event_prizes(
        self, event_id: int, results: Sequence, awarded_by: int
    ) -> BatchOutcome:
        event = await self.db.get(Event, event_id)
        if event is None:
            raise NotFound(f"Event {event_id} not found", code="event_not_found")

        prize_ids = {
            p.position: p.id
            for p in (await self.db.execute(select(Prize).where(Prize.event_id == event.id))).scalars()
        }
        if not prize_ids:
            raise NotFound(f"No prizes configured for event {event_id}", code="prizes_not_found")

        final_round = await self.db.scalar(
            select(Round).where(Round.event_id == event.id).order_by(desc(Round.round_no)).limit(1)
        )
        if final_round is None:
            raise NotFound(f"Event {event_id} has no rounds", code="round_not_found")
        final_round_id = final_round.id

        outcome = BatchOutcome(total=len(results), buckets=("errors",))
        for entry in results:

            async def work(entry=entry):
                return await self._upsert_award(event_id, final_round_id, prize_ids, entry, awarded_by)

            await self._run_entry(outcome, "errors", _target(entry), work)

        logger.info(
            "Prizes for event %s: %s/%s assigned", event_id, outcome.recorded_count, outcome.total
        )
        return outcome
