# fest/models/event.py
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)

from fest.database import Base
from fest.models.enums import CrewRole, ParticipationMode, enum_column_type


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    participation_mode = Column(
        enum_column_type(ParticipationMode), nullable=False, default=ParticipationMode.SOLO
    )
    max_allowed = Column(Integer, nullable=False)
    min_team_size = Column(Integer, nullable=False, default=1)
    max_team_size = Column(Integer, nullable=True)
    venue = Column(String(150), nullable=True)
    registration_start = Column(DateTime, nullable=False)
    registration_end = Column(DateTime, nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        CheckConstraint("max_allowed > 0", name="ck_events_max_allowed"),
        CheckConstraint("min_team_size > 0", name="ck_events_min_team_size"),
        CheckConstraint("end_time > start_time", name="ck_events_time_window"),
        CheckConstraint(
            "registration_start < registration_end", name="ck_events_registration_window"
        ),
    )

    @property
    def is_team_event(self) -> bool:
        return self.participation_mode == ParticipationMode.TEAM


class Round(Base):
    __tablename__ = "event_rounds"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    round_no = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    start_time = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("event_id", "round_no", name="uq_event_rounds_event_round_no"),
        CheckConstraint("round_no > 0", name="ck_event_rounds_round_no"),
    )


class RoundRule(Base):
    __tablename__ = "round_rules"

    id = Column(Integer, primary_key=True, index=True)
    round_id = Column(Integer, ForeignKey("event_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    rule_no = Column(Integer, nullable=False)
    description = Column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("round_id", "rule_no", name="uq_round_rules_round_rule_no"),
    )


class Prize(Base):
    __tablename__ = "event_prizes"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    reward_value = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("event_id", "position", name="uq_event_prizes_event_position"),
        CheckConstraint("position > 0", name="ck_event_prizes_position"),
        CheckConstraint("reward_value > 0", name="ck_event_prizes_reward_value"),
    )


class EventCrew(Base):
    __tablename__ = "event_crew"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role = Column(enum_column_type(CrewRole), nullable=False)
    assigned_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at = Column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_crew_event_user"),
    )


class Registration(Base):
    __tablename__ = "event_registrations"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    # Exactly one of user_id (solo) / team_id (team) is set.
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=True, index=True)
    registered_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    registered_at = Column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_registrations_event_user"),
        UniqueConstraint("event_id", "team_id", name="uq_event_registrations_event_team"),
        CheckConstraint(
            "(user_id IS NULL) <> (team_id IS NULL)", name="ck_event_registrations_entrant"
        ),
    )
