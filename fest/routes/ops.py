# fest/routes/ops.py
"""Front-desk operations: scan, check-in, results and prizes."""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fest.auth_token import require_ops
from fest.database import get_db
from fest.models.user import User
from fest.rate_limiter import get_scan_rate_limiter
from fest.responses import batch, ok
from fest.schemas import (
    CheckInRequest,
    GateCheckInRequest,
    PrizeAssignRequest,
    ResultSort,
    RoundResultsRequest,
    ScanRequest,
)
from fest.services.checkin import CheckInService
from fest.services.results import ResultService
from fest.services.teams import TeamService

logger = logging.getLogger("ops")

router = APIRouter(prefix="/ops", tags=["Operations"])


# --------- scan / check-in ---------

@router.post("/check-in")
async def gate_check_in(
    payload: GateCheckInRequest,
    db: AsyncSession = Depends(get_db),
    operator: User = Depends(require_ops),
):
    data = await CheckInService(db).check_in_participant(payload.user_id, operator.id)
    return ok(data, "Checked in successfully")


@router.get("/teams")
async def teams_for_operations(
    user_id: int = Query(..., gt=0),
    db: AsyncSession = Depends(get_db),
    operator: User = Depends(require_ops),  # noqa: ARG001
):
    data = await TeamService(db).teams_for_operations(user_id)
    return ok(data, "Teams retrieved successfully")


@router.post("/events/{event_id}/rounds/{round_no}/scan")
async def scan_for_round(
    event_id: int,
    round_no: int,
    payload: ScanRequest,
    db: AsyncSession = Depends(get_db),
    operator: User = Depends(require_ops),
):
    limiter = get_scan_rate_limiter()
    if limiter is not None and not await limiter.try_acquire(f"scan:{operator.id}"):
        logger.warning("Scan rate limit hit by operator %s", operator.id)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many scans. Slow down and try again shortly.",
        )

    preview = await CheckInService(db).scan_for_round(payload.user_id, event_id, round_no)
    return ok(preview, "Participant eligible for this round")


@router.post("/events/{event_id}/rounds/{round_no}/check-in")
async def check_in(
    event_id: int,
    round_no: int,
    payload: CheckInRequest,
    db: AsyncSession = Depends(get_db),
    operator: User = Depends(require_ops),
):
    data = await CheckInService(db).check_in_round_participants(
        event_id, round_no, payload.user_ids, payload.team_id, operator.id
    )
    return ok(data, "Checked in successfully")


@router.get("/events/{event_id}/rounds/{round_no}/check-ins")
async def list_check_ins(
    event_id: int,
    round_no: int,
    from_: int = Query(0, ge=0, alias="from"),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    operator: User = Depends(require_ops),  # noqa: ARG001
):
    data = await CheckInService(db).list_round_checkins(event_id, round_no, from_, limit)
    return ok(data, "Check-ins fetched")


# --------- results ---------

@router.post("/events/{event_id}/rounds/{round_no}/results")
async def assign_round_results(
    event_id: int,
    round_no: int,
    payload: RoundResultsRequest,
    db: AsyncSession = Depends(get_db),
    operator: User = Depends(require_ops),
):
    outcome = await ResultService(db).assign_round_results(
        event_id, round_no, payload.results, operator.id
    )
    return batch(outcome, verb="record", noun="round results")


@router.get("/events/{event_id}/rounds/{round_no}/results")
async def get_round_results(
    event_id: int,
    round_no: int,
    status_filter: Optional[Literal["QUALIFIED", "ELIMINATED", "DISQUALIFIED", "all"]] = Query(
        None, alias="status"
    ),
    sort: ResultSort = Query("points_desc"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    operator: User = Depends(require_ops),  # noqa: ARG001
):
    data = await ResultService(db).get_round_results(
        event_id, round_no, status=status_filter, sort=sort, page=page, limit=limit
    )
    return ok(data, "Round results fetched")


# --------- prizes ---------

@router.post("/events/{event_id}/prizes")
async def assign_prizes(
    event_id: int,
    payload: PrizeAssignRequest,
    db: AsyncSession = Depends(get_db),
    operator: User = Depends(require_ops),
):
    outcome = await ResultService(db).assign_event_prizes(event_id, payload.results, operator.id)
    return batch(outcome, verb="assign", noun="prizes")
