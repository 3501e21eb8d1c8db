import asyncio

import pytest
from sqlalchemy import func, select

from fest.errors import Conflict, FestError, NotFound, PaymentRequired, ValidationFailed
from fest.models.checkin import RoundCheckIn
from fest.models.enums import ParticipationMode, PaymentStatus, ResultStatus
from fest.services.checkin import CheckInService


async def _checked_in(session_factory, event_id, round_no, factory):
    round_id = await factory.round_id(event_id, round_no)
    async with session_factory() as session:
        return sorted(
            (
                await session.execute(select(RoundCheckIn.user_id).where(RoundCheckIn.round_id == round_id))
            ).scalars()
        )


@pytest.fixture
async def team_event(factory, staff):
    inst = await factory.institution("Institute Two")
    a = await factory.user("a@inst2.edu", institution_id=inst)
    b = await factory.user("b@inst2.edu", institution_id=inst)
    event = await factory.event(mode=ParticipationMode.TEAM)
    team = await factory.team("Alpha", a, member_ids=[b], event_id=event)
    return {"a": a, "b": b, "event": event, "team": team, "staff": staff}


@pytest.fixture
async def solo_event(factory, staff):
    event = await factory.event(mode=ParticipationMode.SOLO)
    user = await factory.user("solo@inst2.edu", payment=PaymentStatus.CREATED)
    await factory.register_solo(event, user)
    return {"event": event, "user": user, "staff": staff}


@pytest.mark.anyio
async def test_scan_previews_team_without_writing(session_factory, factory, team_event):
    await factory.check_in(team_event["event"], 1, team_event["b"], by=team_event["staff"], team_id=team_event["team"])

    async with session_factory() as session:
        preview = await CheckInService(session).scan_for_round(team_event["a"], team_event["event"], 1)

    assert preview["type"] == "TEAM"
    assert preview["team"]["id"] == team_event["team"]
    flags = {m["id"]: m["checked_in"] for m in preview["members"]}
    assert flags == {team_event["a"]: False, team_event["b"]: True}
    assert all(m["payment_status"] == "PAID" for m in preview["members"])
    assert await _checked_in(session_factory, team_event["event"], 1, factory) == [team_event["b"]]


@pytest.mark.anyio
async def test_scan_solo_and_failure_codes(session_factory, factory, solo_event):
    stranger = await factory.user("stranger@inst2.edu")
    unpaid = await factory.user("unpaid@inst2.edu", payment=PaymentStatus.UNPAID)
    await factory.register_solo(solo_event["event"], unpaid)

    async with session_factory() as session:
        service = CheckInService(session)
        preview = await service.scan_for_round(solo_event["user"], solo_event["event"], 1)

        failures = {}
        for args in (
            (9999, solo_event["event"], 1),
            (solo_event["user"], 9999, 1),
            (solo_event["user"], solo_event["event"], 9),
            (stranger, solo_event["event"], 1),
            (unpaid, solo_event["event"], 1),
            (solo_event["user"], solo_event["event"], 2),
        ):
            with pytest.raises(FestError) as excinfo:
                await service.scan_for_round(*args)
            failures[excinfo.value.code] = excinfo.value.status_code

    assert preview["type"] == "SOLO"
    assert preview["user"]["checked_in"] is False
    assert failures == {
        "user_not_found": 404,
        "event_not_found": 404,
        "round_not_found": 404,
        "not_registered": 404,
        "payment_pending": 402,
        "not_qualified": 400,
    }


@pytest.mark.anyio
async def test_solo_check_in_then_duplicate(session_factory, factory, solo_event):
    async with session_factory() as session:
        data = await CheckInService(session).check_in_round_participants(
            solo_event["event"], 1, [solo_event["user"]], None, solo_event["staff"]
        )
    assert data["checked_in_count"] == 1

    async with session_factory() as session:
        with pytest.raises(Conflict) as excinfo:
            await CheckInService(session).check_in_round_participants(
                solo_event["event"], 1, [solo_event["user"]], None, solo_event["staff"]
            )
    assert excinfo.value.code == "already_checked_in"
    assert excinfo.value.status_code == 409


@pytest.mark.anyio
async def test_unpaid_solo_cannot_check_in(session_factory, factory, solo_event):
    unpaid = await factory.user("unpaid@inst2.edu", payment=PaymentStatus.UNPAID)
    await factory.register_solo(solo_event["event"], unpaid)

    async with session_factory() as session:
        with pytest.raises(PaymentRequired):
            await CheckInService(session).check_in_round_participants(
                solo_event["event"], 1, [solo_event["user"], unpaid], None, solo_event["staff"]
            )
    assert await _checked_in(session_factory, solo_event["event"], 1, factory) == []


@pytest.mark.anyio
async def test_round_two_team_check_in_rejected_when_member_already_in(session_factory, factory, team_event):
    ev, staff = team_event["event"], team_event["staff"]
    await factory.result(ev, 1, ResultStatus.QUALIFIED, by=staff, team_id=team_event["team"])
    await factory.check_in(ev, 2, team_event["b"], by=staff, team_id=team_event["team"])

    async with session_factory() as session:
        with pytest.raises(Conflict) as excinfo:
            await CheckInService(session).check_in_round_participants(
                ev, 2, [team_event["a"], team_event["b"]], team_event["team"], staff
            )

    assert excinfo.value.code == "already_checked_in"
    assert excinfo.value.details["user_id"] == team_event["b"]
    assert await _checked_in(session_factory, ev, 2, factory) == [team_event["b"]]


@pytest.mark.anyio
async def test_round_two_requires_qualification(session_factory, factory, team_event):
    ev, staff = team_event["event"], team_event["staff"]
    await factory.result(ev, 1, ResultStatus.ELIMINATED, by=staff, team_id=team_event["team"], points=10)

    async with session_factory() as session:
        with pytest.raises(ValidationFailed) as excinfo:
            await CheckInService(session).check_in_round_participants(
                ev, 2, [team_event["a"]], team_event["team"], staff
            )
    assert excinfo.value.code == "not_qualified"

    # a member's own qualifying result also counts
    await factory.result(ev, 1, ResultStatus.QUALIFIED, by=staff, user_id=team_event["a"])
    async with session_factory() as session:
        data = await CheckInService(session).check_in_round_participants(
            ev, 2, [team_event["a"]], team_event["team"], staff
        )
    assert data["checked_in_count"] == 1


@pytest.mark.anyio
async def test_team_mode_mismatches(session_factory, factory, team_event):
    inst = await factory.institution("Elsewhere")
    loner = await factory.user("loner@inst3.edu", institution_id=inst)
    other_team = await factory.team("Beta", loner, event_id=team_event["event"])
    ev, staff = team_event["event"], team_event["staff"]

    async with session_factory() as session:
        service = CheckInService(session)
        with pytest.raises(ValidationFailed) as missing:
            await service.check_in_round_participants(ev, 1, [team_event["a"]], None, staff)
        with pytest.raises(ValidationFailed) as foreign:
            await service.check_in_round_participants(
                ev, 1, [team_event["a"], loner], team_event["team"], staff
            )
        with pytest.raises(NotFound):
            await service.check_in_round_participants(ev, 1, [424242], other_team, staff)

    assert missing.value.code == "team_mismatch"
    assert foreign.value.code == "team_mismatch"
    assert await _checked_in(session_factory, ev, 1, factory) == []


@pytest.mark.anyio
async def test_concurrent_duplicate_check_in_yields_one_conflict(session_factory, factory, solo_event):
    async def attempt():
        async with session_factory() as session:
            try:
                return await CheckInService(session).check_in_round_participants(
                    solo_event["event"], 1, [solo_event["user"]], None, solo_event["staff"]
                )
            except Conflict as exc:
                return exc

    outcomes = await asyncio.gather(attempt(), attempt())

    conflicts = [o for o in outcomes if isinstance(o, Conflict)]
    successes = [o for o in outcomes if isinstance(o, dict)]
    assert len(successes) == 1
    assert len(conflicts) == 1
    assert conflicts[0].code == "already_checked_in"

    round_id = await factory.round_id(solo_event["event"], 1)
    async with session_factory() as session:
        count = await session.scalar(
            select(func.count(RoundCheckIn.id)).where(RoundCheckIn.round_id == round_id)
        )
    assert count == 1


@pytest.mark.anyio
async def test_list_round_checkins_is_paginated(session_factory, factory, team_event):
    ev, staff = team_event["event"], team_event["staff"]
    async with session_factory() as session:
        await CheckInService(session).check_in_round_participants(
            ev, 1, [team_event["a"], team_event["b"]], team_event["team"], staff
        )
        page = await CheckInService(session).list_round_checkins(ev, 1, offset=1, limit=1)

    assert page["total"] == 2
    assert len(page["data"]) == 1
    assert page["data"][0]["team_name"] == "Alpha"
