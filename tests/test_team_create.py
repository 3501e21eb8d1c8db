import json

import pytest
from sqlalchemy import func, select

from fest.errors import Conflict, PaymentRequired, ValidationFailed
from fest.models.enums import InvitationStatus, PaymentStatus
from fest.models.team import Invitation, Team, TeamMember
from fest.models.user import User
from fest.routes.teams import create_team as create_team_route
from fest.schemas import TeamCreate
from fest.services.teams import TeamService


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count(model.id)))


@pytest.fixture
async def campus(factory):
    inst1 = await factory.institution("Institute One")
    inst2 = await factory.institution("Institute Two")
    leader = await factory.user("lead@inst2.edu", institution_id=inst2)
    return {"inst1": inst1, "inst2": inst2, "leader": leader}


@pytest.mark.anyio
async def test_create_team_writes_team_membership_and_invitations(factory, session_factory, campus):
    b = await factory.user("b@inst2.edu", institution_id=campus["inst2"])
    c = await factory.user("c@inst2.edu", institution_id=campus["inst2"], payment=PaymentStatus.EXEMPTED)

    async with session_factory() as session:
        data = await TeamService(session).create_team(
            campus["leader"], "Alpha", ["b@inst2.edu", "c@inst2.edu"]
        )

    assert data["team_name"] == "Alpha"
    assert data["leader_id"] == campus["leader"]
    assert data["invitations_sent"] == 2

    async with session_factory() as session:
        members = (await session.execute(select(TeamMember.user_id))).scalars().all()
        invites = (await session.execute(select(Invitation))).scalars().all()
    assert members == [campus["leader"]]
    assert sorted(inv.invitee_id for inv in invites) == sorted([b, c])
    assert {inv.status for inv in invites} == {InvitationStatus.PENDING}


@pytest.mark.anyio
async def test_alpha_with_cross_institution_invitee_writes_nothing(factory, session_factory, campus):
    await factory.user("a@inst1.edu", institution_id=campus["inst1"])
    await factory.user("b@inst2.edu", institution_id=campus["inst2"])

    async with session_factory() as session:
        with pytest.raises(ValidationFailed) as excinfo:
            await TeamService(session).create_team(
                campus["leader"], "Alpha", ["a@inst1.edu", "b@inst2.edu"]
            )

    assert excinfo.value.status_code == 400
    assert excinfo.value.details == {"different_institution_emails": ["a@inst1.edu"]}
    assert await _count(session_factory, Team) == 0
    assert await _count(session_factory, Invitation) == 0
    assert await _count(session_factory, TeamMember) == 0


@pytest.mark.anyio
async def test_first_failing_bucket_wins(factory, session_factory, campus):
    # unpaid lands in the payment bucket, but the unknown address outranks it
    await factory.user("unpaid@inst2.edu", institution_id=campus["inst2"], payment=PaymentStatus.UNPAID)

    async with session_factory() as session:
        with pytest.raises(ValidationFailed) as excinfo:
            await TeamService(session).create_team(
                campus["leader"], "Alpha", ["ghost@inst2.edu", "unpaid@inst2.edu"]
            )

    assert excinfo.value.code == "invalid"
    assert excinfo.value.details == {"invalid_emails": ["ghost@inst2.edu"]}


@pytest.mark.anyio
async def test_each_email_counts_only_in_its_first_bucket(factory, session_factory, campus):
    # incomplete profile AND unpaid AND other institution: reported only as incomplete
    await factory.user(
        "messy@inst1.edu",
        institution_id=campus["inst1"],
        payment=PaymentStatus.UNPAID,
        profile=False,
    )

    async with session_factory() as session:
        with pytest.raises(ValidationFailed) as excinfo:
            await TeamService(session).create_team(campus["leader"], "Alpha", ["messy@inst1.edu"])

    assert excinfo.value.details == {"incomplete_profile_emails": ["messy@inst1.edu"]}


@pytest.mark.anyio
async def test_payment_bucket_is_payment_required(factory, session_factory, campus):
    await factory.user("late@inst2.edu", institution_id=campus["inst2"], payment=PaymentStatus.FAILED)

    async with session_factory() as session:
        with pytest.raises(PaymentRequired) as excinfo:
            await TeamService(session).create_team(campus["leader"], "Alpha", ["late@inst2.edu"])

    assert excinfo.value.status_code == 402
    assert excinfo.value.details == {"payment_pending_emails": ["late@inst2.edu"]}


@pytest.mark.anyio
async def test_leader_preconditions(factory, session_factory, campus):
    unpaid = await factory.user("poor@inst2.edu", institution_id=campus["inst2"], payment=PaymentStatus.UNPAID)
    no_profile = await factory.user("blank@inst2.edu", institution_id=campus["inst2"], profile=False)
    homeless = await factory.user("nowhere@x.edu")

    async with session_factory() as session:
        service = TeamService(session)
        with pytest.raises(PaymentRequired):
            await service.create_team(unpaid, "One", [])
        with pytest.raises(ValidationFailed) as profile_err:
            await service.create_team(no_profile, "Two", [])
        with pytest.raises(ValidationFailed) as institution_err:
            await service.create_team(homeless, "Three", [])

    assert profile_err.value.code == "profile_incomplete"
    assert institution_err.value.code == "institution_not_assigned"


@pytest.mark.anyio
async def test_leader_cannot_invite_self(session_factory, campus):
    async with session_factory() as session:
        with pytest.raises(ValidationFailed) as excinfo:
            await TeamService(session).create_team(campus["leader"], "Alpha", ["lead@inst2.edu"])
    assert excinfo.value.code == "cannot_invite_self"


@pytest.mark.anyio
async def test_team_name_is_unique(factory, session_factory, campus):
    other = await factory.user("other@inst2.edu", institution_id=campus["inst2"])
    await factory.team("Alpha", other)

    async with session_factory() as session:
        with pytest.raises(Conflict) as excinfo:
            await TeamService(session).create_team(campus["leader"], "Alpha", [])
    assert excinfo.value.code == "team_name_taken"


@pytest.mark.anyio
async def test_create_route_returns_201_envelope(factory, session_factory, campus):
    await factory.user("b@inst2.edu", institution_id=campus["inst2"])
    payload = TeamCreate(name="  Alpha ", member_emails=["B@Inst2.edu", "b@inst2.edu"])

    async with session_factory() as session:
        leader = await session.get(User, campus["leader"])
        response = await create_team_route(payload=payload, db=session, user=leader)

    body = json.loads(response.body)
    assert response.status_code == 201
    assert body["status"] is True
    assert body["data"]["team_name"] == "Alpha"
    assert body["data"]["invitations_sent"] == 1
