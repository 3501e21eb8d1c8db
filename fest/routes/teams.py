# fest/routes/teams.py

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fest.auth_token import get_current_user
from fest.database import get_db
from fest.models.user import User
from fest.responses import ok
from fest.schemas import InvitationAction, TeamCreate, TeamFilter, TeamInvite, TeamUpdate
from fest.services.teams import TeamService

logger = logging.getLogger("teams")

router = APIRouter(prefix="/teams", tags=["Teams"])

# Create team --------------------------------------------------------

@router.post("/", status_code=201)
async def create_team(
    payload: TeamCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    data = await TeamService(db).create_team(user.id, payload.name, payload.member_emails)
    return ok(data, "Team created successfully", status_code=201)

# Listings -----------------------------------------------------------

@router.get("/mine")
async def list_my_teams(
    filter: TeamFilter = Query("all"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    teams = await TeamService(db).list_user_teams(user.id, filter)
    return ok(teams, "Teams fetched")


@router.get("/invitations/pending")
async def my_pending_invitations(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    invitations = await TeamService(db).pending_invitations_for_user(user.id)
    return ok(invitations, "Pending invitations fetched")

# Respond to invitation ----------------------------------------------

@router.post("/invitations/{invitation_id}/respond")
async def respond_to_invitation(
    invitation_id: int,
    action: InvitationAction = Query(...),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    data = await TeamService(db).respond_to_invitation(invitation_id, user.id, action)
    verb = "accepted" if action == "accept" else "declined"
    return ok(data, f"Invitation {verb}")

# Single team --------------------------------------------------------

@router.get("/{team_id}")
async def get_team(
    team_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),  # noqa: ARG001 - authenticated read
):
    details = await TeamService(db).get_team_details(team_id)
    return ok(details, "Team details fetched")


@router.get("/{team_id}/invitations")
async def team_pending_invitations(
    team_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    invitations = await TeamService(db).pending_invitations_for_team(team_id, user.id)
    return ok(invitations, "Pending invitations fetched")


@router.post("/{team_id}/invite", status_code=201)
async def invite_member(
    team_id: int,
    payload: TeamInvite,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    data = await TeamService(db).invite_member(team_id, user.id, payload.email)
    return ok(data, "Invitation sent", status_code=201)


@router.patch("/{team_id}")
async def update_team(
    team_id: int,
    payload: TeamUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    data = await TeamService(db).update_team(
        team_id, user.id, name=payload.name, event_id=payload.event_id
    )
    return ok(data, "Team updated")


@router.delete("/{team_id}")
async def delete_team(
    team_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    data = await TeamService(db).delete_team(team_id, user.id)
    return ok(data, "Team deleted")


@router.delete("/{team_id}/members/{member_id}")
async def remove_member(
    team_id: int,
    member_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    data = await TeamService(db).remove_member(team_id, user.id, member_id)
    return ok(data, "Member removed")


@router.delete("/{team_id}/invitations/{invitation_id}")
async def delete_invitation(
    team_id: int,
    invitation_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    data = await TeamService(db).delete_invitation(team_id, invitation_id, user.id)
    return ok(data, "Invitation deleted")
