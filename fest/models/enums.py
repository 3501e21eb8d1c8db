# fest/models/enums.py
import enum

from sqlalchemy import Enum as SAEnum


class Role(str, enum.Enum):
    PARTICIPANT = "PARTICIPANT"
    VOLUNTEER = "VOLUNTEER"
    ORGANIZER = "ORGANIZER"
    ADMIN = "ADMIN"


class PaymentStatus(str, enum.Enum):
    CREATED = "CREATED"
    UNPAID = "UNPAID"
    PAID = "PAID"
    EXEMPTED = "EXEMPTED"
    FAILED = "FAILED"


class ParticipationMode(str, enum.Enum):
    SOLO = "solo"
    TEAM = "team"


class InvitationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class ResultStatus(str, enum.Enum):
    QUALIFIED = "QUALIFIED"
    ELIMINATED = "ELIMINATED"
    DISQUALIFIED = "DISQUALIFIED"


class CrewRole(str, enum.Enum):
    ORGANIZER = "ORGANIZER"
    VOLUNTEER = "VOLUNTEER"


# Roles allowed to run front-desk operations (scan, check-in, results, prizes).
OPS_ROLES = frozenset({Role.VOLUNTEER, Role.ORGANIZER, Role.ADMIN})

# Payment states that clear a user to lead or join a team.
SETTLED_PAYMENTS = frozenset({PaymentStatus.PAID, PaymentStatus.EXEMPTED})


def enum_column_type(enum_cls: type[enum.Enum]) -> SAEnum:
    """Store enums by value in a VARCHAR so SQLite and Postgres behave the same."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )
