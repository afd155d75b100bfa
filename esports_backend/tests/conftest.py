"""
Shared fixtures: in-memory SQLite database, sessions, actors and a small
factory for tournaments, wallets and registrations.
"""
import os

# Configure before any esports_backend import reads the environment
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("FEATURE_AUTO_CANCEL_SWEEP", "false")
os.environ.setdefault("JOIN_RATE_LIMIT", "1000/minute")

import itertools
from datetime import datetime, timedelta
from decimal import Decimal
from typing import AsyncGenerator, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from esports_backend.database import build_sessionmaker
from esports_backend.orm import Base, Room, Team, Tournament
from esports_backend.rbac import ActorContext, ActorRole
from esports_backend.services import registration_service, round_progression, wallet_service
from esports_backend.services.lifecycle_service import LifecycleService
from esports_backend.services.room_allocator import get_round_rooms


# Test database URL
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed clock; tournaments start two hours after it
BASE_TIME = datetime(2026, 3, 14, 10, 0, 0)


@pytest_asyncio.fixture
async def engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def now() -> datetime:
    return BASE_TIME


@pytest.fixture
def organizer() -> ActorContext:
    return ActorContext(user_id=1, role=ActorRole.ORGANIZER)


@pytest.fixture
def admin() -> ActorContext:
    return ActorContext(user_id=2, role=ActorRole.ADMIN)


class TournamentFactory:
    """Builds tournaments and drives them through registration and rounds."""

    def __init__(self, db: AsyncSession, organizer: ActorContext, now: datetime):
        self.db = db
        self.organizer = organizer
        self.now = now
        self._user_ids = itertools.count(1000)

    def next_user_id(self) -> int:
        return next(self._user_ids)

    @property
    def start_time(self) -> datetime:
        return self.now + timedelta(hours=2)

    async def tournament(self, **overrides) -> Tournament:
        fields = dict(
            name="Campus Cup",
            game="BGMI",
            mode="squad",
            max_participants=100,
            entry_fee=Decimal("50"),
            registration_deadline=self.now + timedelta(hours=1),
            scheduled_start=self.start_time,
            institution_name="Test Institute",
        )
        fields.update(overrides)
        tournament = await LifecycleService.create_tournament(self.db, self.organizer, now=self.now, **fields)
        await self.db.commit()
        return tournament

    async def fund(self, user_id: int, amount) -> None:
        await wallet_service.deposit(self.db, user_id, Decimal(str(amount)))
        await self.db.commit()

    async def join(
        self,
        tournament: Tournament,
        leader_id: Optional[int] = None,
        member_ids: Optional[List[int]] = None,
        fund: bool = True,
        team_name: Optional[str] = None
    ) -> Team:
        """Register a full team; the leader is funded for every member's fee."""
        leader_id = leader_id or self.next_user_id()
        if member_ids is None:
            member_ids = [self.next_user_id() for _ in range(tournament.team_size - 1)]
        fee = Decimal(tournament.entry_fee) * (len(member_ids) + 1)
        if fund and fee > 0:
            await self.fund(leader_id, fee)
        team = await registration_service.join_tournament(
            self.db, tournament.id, ActorContext(leader_id), team_name=team_name,
            member_ids=member_ids, now=self.now
        )
        await self.db.commit()
        return team

    async def start(self, tournament: Tournament) -> Tournament:
        await LifecycleService.set_room_details(self.db, tournament.id, "LOBBY1", "secret", self.organizer)
        tournament = await LifecycleService.start_tournament(
            self.db, tournament.id, self.organizer, now=self.start_time
        )
        await self.db.commit()
        return tournament

    async def open_rooms(self, tournament_id: int, round_number: int) -> List[Room]:
        rooms = await get_round_rooms(self.db, tournament_id, round_number)
        for room in rooms:
            await round_progression.set_room_credentials(self.db, room.id, f"R{room.id}", "pw")
            await round_progression.activate_room(self.db, room.id, now=self.start_time)
        await self.db.commit()
        return rooms

    async def play_round(self, tournament_id: int, round_number: int, winners_per_room: int = 1) -> List[Room]:
        """First `winners_per_room` slots of every room win; the rest rank by slot."""
        rooms = await self.open_rooms(tournament_id, round_number)
        for room in rooms:
            for assignment in room.assignments:
                won = assignment.slot_number <= winners_per_room
                await round_progression.record_round_outcome(
                    self.db, assignment.id, won, match_rank=assignment.slot_number
                )
            await round_progression.complete_room(self.db, room.id, now=self.start_time)
        await self.db.commit()
        return rooms

    async def reload(self, tournament_id: int) -> Tournament:
        result = await self.db.execute(
            select(Tournament)
            .where(Tournament.id == tournament_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()


@pytest.fixture
def factory(db_session, organizer, now) -> TournamentFactory:
    return TournamentFactory(db_session, organizer, now)
