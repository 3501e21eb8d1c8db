# fest/models/checkin.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, UniqueConstraint, func

from fest.database import Base


class RoundCheckIn(Base):
    __tablename__ = "round_checkins"

    id = Column(Integer, primary_key=True, index=True)
    round_id = Column(Integer, ForeignKey("event_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="SET NULL"), nullable=True, index=True)
    checked_in_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    checked_in_at = Column(DateTime, default=func.now(), nullable=False)

    __table_args__ = (
        # Attendance is recorded at most once per (participant, round).
        UniqueConstraint("user_id", "round_id", name="uq_round_checkins_user_round"),
    )

    def __repr__(self) -> str:
        return f"<RoundCheckIn round={self.round_id} user={self.user_id} team={self.team_id}>"


class GateCheckIn(Base):
    """Arrival at the fest itself, recorded once per participant."""

    __tablename__ = "gate_checkins"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    checked_in_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    checked_in_at = Column(DateTime, default=func.now(), nullable=False)

    __table_args__ = (UniqueConstraint("user_id", name="uq_gate_checkins_user"),)
