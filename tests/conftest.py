import sys
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from fest.database import Base, build_engine
import fest.models  # noqa: F401  (registers every table)
from fest.models.checkin import RoundCheckIn
from fest.models.enums import ParticipationMode, PaymentStatus, ResultStatus, Role
from fest.models.event import Event, Prize, Registration, Round
from fest.models.result import RoundResult
from fest.models.team import Team, TeamMember
from fest.models.user import Institution, User
from fest.utils import utcnow


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def engine(tmp_path):
    db_file = tmp_path / "fest.db"
    engine = build_engine(f"sqlite+aiosqlite:///{db_file}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


class Factory:
    """Inserts fixture rows through short-lived sessions and returns plain ids."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _add(self, obj):
        async with self.session_factory() as session:
            session.add(obj)
            await session.commit()
            return obj.id

    async def institution(self, name: str) -> int:
        return await self._add(Institution(name=name))

    async def user(
        self,
        email: str,
        *,
        institution_id=None,
        payment=PaymentStatus.PAID,
        profile=True,
        role=Role.PARTICIPANT,
        name=None,
    ) -> int:
        return await self._add(
            User(
                email=email,
                name=name or email.split("@", 1)[0].title(),
                institution_id=institution_id,
                payment_status=payment,
                profile_completed=profile,
                role=role,
            )
        )

    async def event(
        self,
        *,
        mode=ParticipationMode.TEAM,
        rounds=3,
        prizes=((1, 1000), (2, 500), (3, 250)),
        max_allowed=100,
        min_team_size=1,
        max_team_size=4,
        registration_open=True,
    ) -> int:
        now = utcnow()
        if registration_open:
            reg_start, reg_end = now - timedelta(days=1), now + timedelta(days=1)
        else:
            reg_start, reg_end = now - timedelta(days=3), now - timedelta(days=2)
        async with self.session_factory() as session:
            event = Event(
                name="Code Sprint",
                participation_mode=mode,
                max_allowed=max_allowed,
                min_team_size=min_team_size if mode == ParticipationMode.TEAM else 1,
                max_team_size=max_team_size if mode == ParticipationMode.TEAM else 1,
                registration_start=reg_start,
                registration_end=reg_end,
                start_time=now + timedelta(days=2),
                end_time=now + timedelta(days=3),
            )
            session.add(event)
            await session.flush()
            session.add_all(Round(event_id=event.id, round_no=n) for n in range(1, rounds + 1))
            session.add_all(
                Prize(event_id=event.id, position=pos, reward_value=value) for pos, value in prizes
            )
            await session.commit()
            return event.id

    async def team(self, name: str, leader_id: int, member_ids=(), event_id=None) -> int:
        """A team with ``leader_id`` plus ``member_ids``; registered to ``event_id`` if given."""

        async with self.session_factory() as session:
            team = Team(name=name, leader_id=leader_id, event_id=event_id)
            session.add(team)
            await session.flush()
            session.add_all(
                TeamMember(team_id=team.id, user_id=uid) for uid in (leader_id, *member_ids)
            )
            if event_id is not None:
                session.add(Registration(event_id=event_id, team_id=team.id, registered_by=leader_id))
            await session.commit()
            return team.id

    async def register_solo(self, event_id: int, user_id: int) -> int:
        return await self._add(Registration(event_id=event_id, user_id=user_id, registered_by=user_id))

    async def round_id(self, event_id: int, round_no: int) -> int:
        async with self.session_factory() as session:
            return await session.scalar(
                select(Round.id).where(Round.event_id == event_id, Round.round_no == round_no)
            )

    async def check_in(self, event_id, round_no, user_id, *, by, team_id=None) -> int:
        round_id = await self.round_id(event_id, round_no)
        return await self._add(
            RoundCheckIn(
                round_id=round_id, user_id=user_id, team_id=team_id, checked_in_by=by, checked_in_at=utcnow()
            )
        )

    async def result(self, event_id, round_no, status=ResultStatus.QUALIFIED, *, by, user_id=None, team_id=None, points=20) -> int:
        round_id = await self.round_id(event_id, round_no)
        return await self._add(
            RoundResult(
                round_id=round_id,
                user_id=user_id,
                team_id=team_id,
                status=status,
                points=points,
                eval_by=by,
                eval_at=utcnow(),
            )
        )


@pytest.fixture
def factory(session_factory):
    return Factory(session_factory)


@pytest.fixture
async def staff(factory):
    """An organizer account used as the operator on ops calls."""
    return await factory.user("ops@fest.edu", role=Role.ORGANIZER, payment=PaymentStatus.EXEMPTED)
