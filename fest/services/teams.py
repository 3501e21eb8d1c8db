# fest/services/teams.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fest.constraints import translate_integrity_error
from fest.errors import Conflict, Forbidden, NotFound, PaymentRequired, ValidationFailed
from fest.grouping import group_by
from fest.models.checkin import GateCheckIn
from fest.models.enums import InvitationStatus
from fest.models.event import Event, Registration
from fest.models.team import Invitation, Team, TeamMember
from fest.models.user import User
from fest.services import eligibility
from fest.utils import isoformat, utcnow

logger = logging.getLogger("teams")

# Candidate emails fall into the first bucket they fail, checked in this order.
_EMAIL_BUCKETS = (
    ("invalid_emails", "Invalid email(s): {emails} do not exist in the system"),
    (
        "incomplete_profile_emails",
        "Profile not completed for these user(s): {emails}. They must complete their profile before joining a team.",
    ),
    (
        "payment_pending_emails",
        "Payment not completed for these user(s): {emails}. They must complete payment before joining a team.",
    ),
    (
        "different_institution_emails",
        "Cannot create inter-institution teams. These user(s) belong to a different institution: {emails}",
    ),
)


def _user_brief(user: User) -> Dict[str, Any]:
    return {"id": user.id, "name": user.name, "email": user.email}


class TeamService:
    """Team formation and the leader-driven invitation workflow."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------

    async def _get_user(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFound("User not found", code="user_not_found")
        return user

    async def _get_team(self, team_id: int) -> Team:
        team = await self.db.get(Team, team_id)
        if team is None:
            raise NotFound("Team not found", code="team_not_found")
        return team

    async def _get_led_team(self, team_id: int, requester_id: int) -> Team:
        team = await self._get_team(team_id)
        if team.leader_id != requester_id:
            raise Forbidden("Only the team leader can perform this action", code="not_team_leader")
        return team

    @staticmethod
    def _ensure_unlocked(team: Team) -> None:
        if team.is_locked:
            raise Conflict(
                "Team is registered for an event and can no longer be changed",
                code="team_locked",
            )

    async def _name_taken(self, name: str) -> bool:
        existing = await self.db.scalar(select(Team.id).where(Team.name == name))
        return existing is not None

    async def _is_member(self, team_id: int, user_id: int) -> bool:
        row = await self.db.scalar(
            select(TeamMember.id).where(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
        )
        return row is not None

    async def _has_pending_invitation(self, team_id: int, user_id: int) -> bool:
        row = await self.db.scalar(
            select(Invitation.id).where(
                Invitation.team_id == team_id,
                Invitation.invitee_id == user_id,
                Invitation.status == InvitationStatus.PENDING,
            )
        )
        return row is not None

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise translate_integrity_error(exc) from exc

    # ------------------------------------------------------------------
    # creation
    # ------------------------------------------------------------------

    @staticmethod
    def _ensure_leader_eligible(leader: User) -> None:
        if not eligibility.payment_settled(leader):
            raise PaymentRequired(
                "Payment must be completed before creating a team", code="payment_pending"
            )
        if not eligibility.profile_complete(leader):
            raise ValidationFailed(
                "Complete your profile before creating a team", code="profile_incomplete"
            )
        if leader.institution_id is None:
            raise ValidationFailed(
                "Leader profile has no institution assigned", code="institution_not_assigned"
            )

    def _bucket_candidates(
        self, emails: Sequence[str], found: Dict[str, User], institution_id: int
    ) -> Dict[str, List[str]]:
        buckets: Dict[str, List[str]] = {name: [] for name, _ in _EMAIL_BUCKETS}
        for email in emails:
            user = found.get(email)
            if user is None:
                buckets["invalid_emails"].append(email)
            elif not eligibility.profile_complete(user):
                buckets["incomplete_profile_emails"].append(email)
            elif not eligibility.payment_settled(user):
                buckets["payment_pending_emails"].append(email)
            elif not eligibility.same_institution(user, institution_id):
                buckets["different_institution_emails"].append(email)
        return buckets

    async def create_team(
        self, leader_id: int, name: str, member_emails: Sequence[str] = ()
    ) -> Dict[str, Any]:
        """Create a team led by ``leader_id`` and invite every candidate, or nothing.

        All candidates must exist, have complete profiles, have settled
        payment and share the leader's institution. The first non-empty
        failure bucket becomes the rejection; nothing is written in that case.
        """

        leader = await self._get_user(leader_id)
        self._ensure_leader_eligible(leader)

        emails = [e.strip().lower() for e in member_emails]
        if leader.email.lower() in emails:
            raise ValidationFailed("You cannot invite yourself", code="cannot_invite_self")

        if await self._name_taken(name):
            raise Conflict("Team name already taken", code="team_name_taken")

        found = await eligibility.users_by_email(self.db, emails)
        buckets = self._bucket_candidates(emails, found, leader.institution_id)
        for bucket, template in _EMAIL_BUCKETS:
            rejected = buckets[bucket]
            if not rejected:
                continue
            logger.info("Team %r rejected: %s=%s", name, bucket, rejected)
            message = template.format(emails=", ".join(rejected))
            error_cls = PaymentRequired if bucket == "payment_pending_emails" else ValidationFailed
            raise error_cls(message, code=bucket.removesuffix("_emails"), details={bucket: rejected})

        team = Team(name=name, leader_id=leader.id)
        self.db.add(team)
        try:
            await self.db.flush()
            self.db.add(TeamMember(team_id=team.id, user_id=leader.id))
            invitations = [
                Invitation(team_id=team.id, invitee_id=found[email].id, inviter_id=leader.id)
                for email in emails
            ]
            self.db.add_all(invitations)
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise translate_integrity_error(exc) from exc

        logger.info("Team %s (%r) created by user %s with %s invitation(s)", team.id, name, leader.id, len(invitations))
        return {
            "team_id": team.id,
            "team_name": team.name,
            "leader_id": leader.id,
            "invitations_sent": len(invitations),
        }

    # ------------------------------------------------------------------
    # invitations
    # ------------------------------------------------------------------

    async def invite_member(self, team_id: int, requester_id: int, email: str) -> Dict[str, Any]:
        team = await self._get_led_team(team_id, requester_id)
        self._ensure_unlocked(team)
        leader = await self._get_user(requester_id)

        invitee = await eligibility.user_by_email(self.db, email)
        if invitee is None:
            raise NotFound(f"No user found with email {email}", code="user_not_found")
        if invitee.id == leader.id:
            raise ValidationFailed("You cannot invite yourself", code="cannot_invite_self")
        if not eligibility.same_institution(invitee, leader.institution_id):
            raise ValidationFailed(
                "Cannot invite members from a different institution", code="different_institution"
            )
        if not eligibility.payment_settled(invitee):
            raise PaymentRequired(
                "User must complete payment before joining a team", code="payment_pending"
            )
        if not eligibility.profile_complete(invitee):
            raise ValidationFailed(
                "User must complete their profile before joining a team", code="profile_incomplete"
            )
        if await self._is_member(team.id, invitee.id):
            raise Conflict("User is already a member of this team", code="already_member")
        if await self._has_pending_invitation(team.id, invitee.id):
            raise Conflict(
                "User already has a pending invitation to this team", code="invitation_pending"
            )

        invitation = Invitation(team_id=team.id, invitee_id=invitee.id, inviter_id=leader.id)
        self.db.add(invitation)
        await self._commit()

        logger.info("User %s invited to team %s", invitee.id, team.id)
        return {
            "invitation_id": invitation.id,
            "team_id": team.id,
            "invitee_id": invitee.id,
            "status": InvitationStatus.PENDING.value,
        }

    async def respond_to_invitation(
        self, invitation_id: int, user_id: int, action: str
    ) -> Dict[str, Any]:
        """Accept or decline; accepting also creates the membership atomically."""

        if action not in ("accept", "decline"):
            raise ValidationFailed("Action must be 'accept' or 'decline'", code="invalid_action")

        invitation = await self.db.get(Invitation, invitation_id)
        if invitation is None:
            raise NotFound("Invitation not found", code="invitation_not_found")
        if invitation.invitee_id != user_id:
            raise Forbidden("This invitation is not addressed to you", code="not_invitee")

        team = await self._get_team(invitation.team_id)
        self._ensure_unlocked(team)
        if invitation.status != InvitationStatus.PENDING:
            raise Conflict(
                "Invitation has already been responded to", code="invitation_already_resolved"
            )

        new_status = InvitationStatus.ACCEPTED if action == "accept" else InvitationStatus.DECLINED
        try:
            # Conditional on still being pending so two racing responses cannot both win.
            outcome = await self.db.execute(
                update(Invitation)
                .where(Invitation.id == invitation.id, Invitation.status == InvitationStatus.PENDING)
                .values(status=new_status, responded_at=utcnow())
            )
            if outcome.rowcount != 1:
                await self.db.rollback()
                raise Conflict(
                    "Invitation has already been responded to", code="invitation_already_resolved"
                )
            if new_status == InvitationStatus.ACCEPTED:
                self.db.add(TeamMember(team_id=team.id, user_id=user_id))
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise translate_integrity_error(exc) from exc

        logger.info("Invitation %s %s by user %s", invitation_id, new_status.value, user_id)
        return {
            "invitation_id": invitation_id,
            "team_id": team.id,
            "status": new_status.value,
        }

    async def delete_invitation(
        self, team_id: int, invitation_id: int, requester_id: int
    ) -> Dict[str, Any]:
        team = await self._get_led_team(team_id, requester_id)
        invitation = await self.db.scalar(
            select(Invitation).where(Invitation.id == invitation_id, Invitation.team_id == team.id)
        )
        if invitation is None:
            raise NotFound("Invitation not found for this team", code="invitation_not_found")

        await self.db.delete(invitation)
        await self.db.commit()
        return {"invitation_id": invitation_id, "team_id": team.id}

    # ------------------------------------------------------------------
    # membership and team mutations
    # ------------------------------------------------------------------

    async def remove_member(self, team_id: int, requester_id: int, member_id: int) -> Dict[str, Any]:
        team = await self._get_team(team_id)
        # Holds for every caller, leader included.
        if member_id == team.leader_id:
            raise ValidationFailed("The team leader cannot be removed", code="cannot_remove_leader")
        if team.leader_id != requester_id:
            raise Forbidden("Only the team leader can remove members", code="not_team_leader")
        self._ensure_unlocked(team)

        membership = await self.db.scalar(
            select(TeamMember).where(TeamMember.team_id == team.id, TeamMember.user_id == member_id)
        )
        if membership is None:
            raise NotFound("User is not a member of this team", code="member_not_found")

        await self.db.delete(membership)
        await self.db.commit()
        logger.info("User %s removed from team %s", member_id, team.id)
        return {"team_id": team.id, "removed_user_id": member_id}

    async def update_team(
        self,
        team_id: int,
        requester_id: int,
        name: Optional[str] = None,
        event_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        team = await self._get_led_team(team_id, requester_id)
        self._ensure_unlocked(team)
        if name is None and event_id is None:
            raise ValidationFailed("Provide a name or an event to update", code="no_fields_to_update")

        if name is not None and name != team.name:
            if await self._name_taken(name):
                raise Conflict("Team name already taken", code="team_name_taken")
            team.name = name
        if event_id is not None:
            if await self.db.get(Event, event_id) is None:
                raise NotFound("Event not found", code="event_not_found")
            # Binding an event locks the team.
            team.event_id = event_id

        await self._commit()
        return {
            "team_id": team.id,
            "team_name": team.name,
            "leader_id": team.leader_id,
            "event_id": team.event_id,
        }

    async def delete_team(self, team_id: int, requester_id: int) -> Dict[str, Any]:
        team = await self._get_led_team(team_id, requester_id)
        self._ensure_unlocked(team)

        await self.db.execute(delete(Invitation).where(Invitation.team_id == team.id))
        await self.db.execute(delete(TeamMember).where(TeamMember.team_id == team.id))
        await self.db.delete(team)
        await self.db.commit()
        logger.info("Team %s deleted by user %s", team_id, requester_id)
        return {"team_id": team_id}

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    async def _members(self, team_id: int) -> List[Dict[str, Any]]:
        rows = (
            await self.db.execute(
                select(User, TeamMember.joined_at)
                .join(TeamMember, TeamMember.user_id == User.id)
                .where(TeamMember.team_id == team_id)
                .order_by(TeamMember.joined_at, User.id)
            )
        ).all()
        return [
            {**_user_brief(user), "payment_status": user.payment_status.value, "joined_at": isoformat(joined)}
            for user, joined in rows
        ]

    async def _pending_for_team(self, team_id: int) -> List[Dict[str, Any]]:
        rows = (
            await self.db.execute(
                select(Invitation)
                .where(Invitation.team_id == team_id, Invitation.status == InvitationStatus.PENDING)
                .order_by(Invitation.created_at, Invitation.id)
            )
        ).scalars().all()
        return [
            {
                "invitation_id": inv.id,
                "invitee": _user_brief(inv.invitee),
                "created_at": isoformat(inv.created_at),
            }
            for inv in rows
        ]

    async def get_team_details(self, team_id: int) -> Dict[str, Any]:
        team = await self._get_team(team_id)
        members = await self._members(team.id)
        event = await self.db.get(Event, team.event_id) if team.event_id else None
        return {
            "team_id": team.id,
            "team_name": team.name,
            "leader": _user_brief(team.leader),
            "members": members,
            "pending_invitations": await self._pending_for_team(team.id),
            "event": {"id": event.id, "name": event.name} if event else None,
            "is_locked": team.is_locked,
            "team_size": len(members),
            "created_at": isoformat(team.created_at),
        }

    async def list_user_teams(self, user_id: int, filter: str = "all") -> List[Dict[str, Any]]:
        member_count = (
            select(func.count(TeamMember.id))
            .where(TeamMember.team_id == Team.id)
            .correlate(Team)
            .scalar_subquery()
        )
        stmt = (
            select(Team, member_count.label("member_count"))
            .join(TeamMember, TeamMember.team_id == Team.id)
            .where(TeamMember.user_id == user_id)
        )
        if filter == "led":
            stmt = stmt.where(Team.leader_id == user_id)
        elif filter == "member":
            stmt = stmt.where(Team.leader_id != user_id)
        elif filter != "all":
            raise ValidationFailed("Filter must be one of led, member, all", code="invalid_filter")

        rows = (await self.db.execute(stmt.order_by(Team.created_at.desc(), Team.id.desc()))).all()
        return [
            {
                "team_id": team.id,
                "team_name": team.name,
                "leader_id": team.leader_id,
                "is_leader": team.leader_id == user_id,
                "event_id": team.event_id,
                "member_count": count,
            }
            for team, count in rows
        ]

    async def pending_invitations_for_user(self, user_id: int) -> List[Dict[str, Any]]:
        rows = (
            await self.db.execute(
                select(Invitation)
                .where(Invitation.invitee_id == user_id, Invitation.status == InvitationStatus.PENDING)
                .order_by(Invitation.created_at.desc(), Invitation.id.desc())
            )
        ).scalars().all()
        return [
            {
                "invitation_id": inv.id,
                "team_id": inv.team_id,
                "team_name": inv.team.name,
                "leader": _user_brief(inv.team.leader),
                "created_at": isoformat(inv.created_at),
            }
            for inv in rows
        ]

    async def pending_invitations_for_team(self, team_id: int, requester_id: int) -> List[Dict[str, Any]]:
        team = await self._get_led_team(team_id, requester_id)
        return await self._pending_for_team(team.id)

    async def teams_for_operations(self, user_id: int) -> Dict[str, Any]:
        """Every team ``user_id`` leads or belongs to, with members' gate status and events.

        One query per child type across all the teams, grouped in memory.
        """

        await self._get_user(user_id)
        member_of = select(TeamMember.team_id).where(TeamMember.user_id == user_id)
        teams = (
            await self.db.execute(
                select(Team)
                .where(or_(Team.leader_id == user_id, Team.id.in_(member_of)))
                .order_by(Team.name)
            )
        ).scalars().all()
        team_ids = [team.id for team in teams]
        if not team_ids:
            return {"teams_led": [], "teams_as_member": [], "total_teams": 0}

        member_rows = (
            await self.db.execute(
                select(TeamMember.team_id, User, GateCheckIn.checked_in_at)
                .join(User, User.id == TeamMember.user_id)
                .outerjoin(GateCheckIn, GateCheckIn.user_id == User.id)
                .where(TeamMember.team_id.in_(team_ids))
                .order_by(User.name, User.id)
            )
        ).all()
        event_rows = (
            await self.db.execute(
                select(Registration.team_id, Event)
                .join(Event, Event.id == Registration.event_id)
                .where(Registration.team_id.in_(team_ids))
                .order_by(Event.start_time, Event.id)
            )
        ).all()

        members_by_team = group_by(
            (
                (
                    team_id,
                    {
                        **_user_brief(user),
                        "payment_status": user.payment_status.value,
                        "checked_in": checked_at is not None,
                        "checked_in_at": isoformat(checked_at),
                    },
                )
                for team_id, user, checked_at in member_rows
            ),
            lambda pair: pair[0],
        )
        events_by_team = group_by(
            (
                (
                    team_id,
                    {
                        "event_id": event.id,
                        "event_name": event.name,
                        "start_time": isoformat(event.start_time),
                        "venue": event.venue,
                    },
                )
                for team_id, event in event_rows
            ),
            lambda pair: pair[0],
        )

        led: List[Dict[str, Any]] = []
        joined: List[Dict[str, Any]] = []
        for team in teams:
            members = [m for _, m in members_by_team.get(team.id, [])]
            view = {
                "team_id": team.id,
                "team_name": team.name,
                "leader": _user_brief(team.leader),
                "user_role": "leader" if team.leader_id == user_id else "member",
                "member_count": len(members),
                "members": members,
                "events_registered": [e for _, e in events_by_team.get(team.id, [])],
            }
            (led if team.leader_id == user_id else joined).append(view)

        return {"teams_led": led, "teams_as_member": joined, "total_teams": len(teams)}
