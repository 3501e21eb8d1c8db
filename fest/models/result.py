# fest/models/result.py
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    UniqueConstraint,
    func,
)

from fest.database import Base
from fest.models.enums import ResultStatus, enum_column_type


class RoundResult(Base):
    __tablename__ = "round_results"

    id = Column(Integer, primary_key=True, index=True)
    round_id = Column(Integer, ForeignKey("event_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    # A result targets either one participant or one team, never both.
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=True, index=True)
    points = Column(Integer, nullable=False, default=0)
    status = Column(enum_column_type(ResultStatus), nullable=False)
    eval_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    eval_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("round_id", "user_id", name="uq_round_results_round_user"),
        UniqueConstraint("round_id", "team_id", name="uq_round_results_round_team"),
        CheckConstraint(
            "(user_id IS NULL) <> (team_id IS NULL)", name="ck_round_results_target"
        ),
    )


class PrizeAward(Base):
    __tablename__ = "prize_awards"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    prize_id = Column(Integer, ForeignKey("event_prizes.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=True)
    points = Column(Integer, nullable=False, default=0)
    awarded_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    awarded_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_prize_awards_event_user"),
        UniqueConstraint("event_id", "team_id", name="uq_prize_awards_event_team"),
        CheckConstraint(
            "(user_id IS NULL) <> (team_id IS NULL)", name="ck_prize_awards_target"
        ),
    )
