# fest/models/team.py
from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import relationship

from fest.database import Base
from fest.models.enums import InvitationStatus, enum_column_type


class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    leader_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # Non-null once the team is registered for an event; a bound team is locked.
    event_id = Column(Integer, ForeignKey("events.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=func.now())

    leader = relationship("User", foreign_keys=[leader_id], lazy="joined")

    __table_args__ = (UniqueConstraint("name", name="uq_teams_name"),)

    @property
    def is_locked(self) -> bool:
        return self.event_id is not None


class TeamMember(Base):
    __tablename__ = "team_members"

    id = Column(Integer, primary_key=True, index=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    joined_at = Column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint("team_id", "user_id", name="uq_team_members_team_user"),
    )


class Invitation(Base):
    __tablename__ = "invitations"

    id = Column(Integer, primary_key=True, index=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    invitee_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    inviter_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(
        enum_column_type(InvitationStatus),
        nullable=False,
        default=InvitationStatus.PENDING,
    )
    created_at = Column(DateTime, default=func.now())
    responded_at = Column(DateTime, nullable=True)

    team = relationship("Team", lazy="joined")
    invitee = relationship("User", foreign_keys=[invitee_id], lazy="joined")

    __table_args__ = (
        # One open invitation per (team, invitee); resolved ones may pile up.
        Index(
            "uq_invitations_pending",
            "team_id",
            "invitee_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )
