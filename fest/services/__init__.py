"""Service layer: the domain operations behind the HTTP routes."""

from .checkin import CheckInService
from .events import EventService
from .registration import RegistrationService
from .results import ResultService
from .teams import TeamService

__all__ = [
    "CheckInService",
    "EventService",
    "RegistrationService",
    "ResultService",
    "TeamService",
]
