# fest/schemas.py
# ------------------------------------------------------------
# Pydantic v2 schemas, organized by domain
# ------------------------------------------------------------
from datetime import datetime
import re
from typing import List, Literal, Optional

from pydantic import (
    BaseModel,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)

from fest.models.enums import ParticipationMode, ResultStatus


_CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_SCRIPT_TAG_RE = re.compile(r"<\s*/?\s*script", re.IGNORECASE)


def _sanitize_single_line_text(value: str | None, *, allow_empty: bool = False) -> str | None:
    if value is None:
        return value
    if not isinstance(value, str):
        raise TypeError("Expected string input")
    cleaned = _CONTROL_CHAR_RE.sub("", value).strip()
    if not allow_empty and not cleaned:
        raise ValueError("Value cannot be empty")
    if any(ch in {"\n", "\r"} for ch in cleaned):
        raise ValueError("Value must be a single line of text")
    if "<" in cleaned or ">" in cleaned:
        raise ValueError("HTML tags are not allowed in this field")
    if _SCRIPT_TAG_RE.search(cleaned):
        raise ValueError("Script tags are not allowed")
    return cleaned


def _sanitize_multiline_text(value: str | None, *, allow_empty: bool = False) -> str | None:
    if value is None:
        return value
    if not isinstance(value, str):
        raise TypeError("Expected string input")
    cleaned = _CONTROL_CHAR_RE.sub("", value).strip()
    if not allow_empty and not cleaned:
        raise ValueError("Value cannot be empty")
    if _SCRIPT_TAG_RE.search(cleaned):
        raise ValueError("Script tags are not allowed")
    return cleaned


def _normalize_emails(value):
    """Lowercase, strip and de-duplicate while keeping the caller's order."""
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    seen: list[str] = []
    for raw in value:
        if not isinstance(raw, str):
            raise TypeError("Expected string input")
        email = raw.strip().lower()
        if email and email not in seen:
            seen.append(email)
    return seen


# ============================================================
# Teams
# ============================================================

class TeamCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    member_emails: List[EmailStr] = Field(default_factory=list, max_length=20)

    @field_validator("name", mode="before")
    @classmethod
    def _clean_name(cls, value: str) -> str:
        return _sanitize_single_line_text(value)

    @field_validator("member_emails", mode="before")
    @classmethod
    def _clean_emails(cls, value):
        return _normalize_emails(value)


class TeamInvite(BaseModel):
    email: EmailStr

    @field_validator("email", mode="before")
    @classmethod
    def _clean_email(cls, value: str) -> str:
        if not isinstance(value, str):
            raise TypeError("Expected string input")
        return value.strip().lower()


class TeamUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    event_id: Optional[int] = Field(default=None, gt=0)

    @field_validator("name", mode="before")
    @classmethod
    def _clean_optional_name(cls, value: Optional[str]) -> Optional[str]:
        return _sanitize_single_line_text(value) if value is not None else value


# ============================================================
# Events
# ============================================================

class RoundRuleCreate(BaseModel):
    rule_no: int = Field(gt=0)
    description: str = Field(min_length=1, max_length=2000)

    @field_validator("description", mode="before")
    @classmethod
    def _clean_description(cls, value: str) -> str:
        return _sanitize_multiline_text(value)


class RoundCreate(BaseModel):
    round_no: int = Field(gt=0)
    description: Optional[str] = Field(default=None, max_length=2000)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    rules: List[RoundRuleCreate] = Field(default_factory=list)

    @field_validator("description", mode="before")
    @classmethod
    def _clean_description(cls, value: Optional[str]) -> Optional[str]:
        return _sanitize_multiline_text(value, allow_empty=True) if value is not None else value

    @model_validator(mode="after")
    def _check_window(self):
        if self.start_time and self.end_time and self.end_time <= self.start_time:
            raise ValueError("Round end_time must be after start_time")
        rule_numbers = [rule.rule_no for rule in self.rules]
        if len(rule_numbers) != len(set(rule_numbers)):
            raise ValueError("Rule numbers must be unique within a round")
        return self


class PrizeCreate(BaseModel):
    position: int = Field(gt=0)
    reward_value: int = Field(gt=0)


class EventCreate(BaseModel):
    name: str = Field(min_length=1, max_length=150)
    description: Optional[str] = Field(default=None, max_length=5000)
    participation_mode: ParticipationMode = ParticipationMode.SOLO
    max_allowed: int = Field(gt=0)
    min_team_size: int = Field(default=1, gt=0)
    max_team_size: Optional[int] = Field(default=None, gt=0)
    venue: Optional[str] = Field(default=None, max_length=150)
    registration_start: datetime
    registration_end: datetime
    start_time: datetime
    end_time: datetime
    rounds: List[RoundCreate] = Field(default_factory=list)
    prizes: List[PrizeCreate] = Field(default_factory=list)
    organizer_ids: List[int] = Field(default_factory=list)
    volunteer_ids: List[int] = Field(default_factory=list)

    @field_validator("name", "venue", mode="before")
    @classmethod
    def _clean_single_line(cls, value: Optional[str]) -> Optional[str]:
        return _sanitize_single_line_text(value) if value is not None else value

    @field_validator("description", mode="before")
    @classmethod
    def _clean_description(cls, value: Optional[str]) -> Optional[str]:
        return _sanitize_multiline_text(value, allow_empty=True) if value is not None else value

    @model_validator(mode="after")
    def _check_consistency(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        if self.registration_end <= self.registration_start:
            raise ValueError("registration_end must be after registration_start")
        if self.max_team_size is not None and self.max_team_size < self.min_team_size:
            raise ValueError("max_team_size must be at least min_team_size")
        if self.participation_mode == ParticipationMode.SOLO and (
            self.min_team_size != 1 or (self.max_team_size not in (None, 1))
        ):
            raise ValueError("Solo events cannot define team sizes")
        round_numbers = [r.round_no for r in self.rounds]
        if len(round_numbers) != len(set(round_numbers)):
            raise ValueError("Round numbers must be unique")
        positions = [p.position for p in self.prizes]
        if len(positions) != len(set(positions)):
            raise ValueError("Prize positions must be unique")
        return self


class EventRegister(BaseModel):
    team_id: Optional[int] = Field(default=None, gt=0)


# ============================================================
# Operations (scan, check-in, results, prizes)
# ============================================================

class ScanRequest(BaseModel):
    user_id: int = Field(gt=0)


class GateCheckInRequest(BaseModel):
    user_id: int = Field(gt=0)


class CheckInRequest(BaseModel):
    user_ids: List[int] = Field(min_length=1, max_length=50)
    team_id: Optional[int] = Field(default=None, gt=0)

    @field_validator("user_ids")
    @classmethod
    def _unique_ids(cls, value: List[int]) -> List[int]:
        if any(v <= 0 for v in value):
            raise ValueError("User ids must be positive")
        if len(value) != len(set(value)):
            raise ValueError("User ids must be unique")
        return value


class _TargetEntry(BaseModel):
    user_id: Optional[int] = Field(default=None, gt=0)
    team_id: Optional[int] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _exactly_one_target(self):
        if (self.user_id is None) == (self.team_id is None):
            raise ValueError("Provide exactly one of user_id or team_id")
        return self


class RoundResultEntry(_TargetEntry):
    points: Optional[int] = Field(default=None, ge=0, le=100)
    status: ResultStatus


class RoundResultsRequest(BaseModel):
    results: List[RoundResultEntry] = Field(min_length=1, max_length=500)


class PrizeEntry(_TargetEntry):
    position: int = Field(gt=0)


class PrizeAssignRequest(BaseModel):
    results: List[PrizeEntry] = Field(min_length=1, max_length=100)


ResultSort = Literal["points_desc", "points_asc", "name_asc"]
TeamFilter = Literal["led", "member", "all"]
InvitationAction = Literal["accept", "decline"]
