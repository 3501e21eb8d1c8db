"""ORM models; importing this package registers every table with ``Base``."""

from fest.models.checkin import GateCheckIn, RoundCheckIn
from fest.models.enums import (
    CrewRole,
    InvitationStatus,
    ParticipationMode,
    PaymentStatus,
    ResultStatus,
    Role,
)
from fest.models.event import Event, EventCrew, Prize, Registration, Round, RoundRule
from fest.models.result import PrizeAward, RoundResult
from fest.models.team import Invitation, Team, TeamMember
from fest.models.user import Institution, User

__all__ = [
    "CrewRole",
    "Event",
    "EventCrew",
    "GateCheckIn",
    "Institution",
    "Invitation",
    "InvitationStatus",
    "ParticipationMode",
    "PaymentStatus",
    "Prize",
    "PrizeAward",
    "Registration",
    "ResultStatus",
    "Role",
    "Round",
    "RoundCheckIn",
    "RoundResult",
    "RoundRule",
    "Team",
    "TeamMember",
    "User",
]
