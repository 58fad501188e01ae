from datetime import datetime, timedelta
from uuid import uuid4

import numpy as np
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from src.change_feed import LocalChangeFeed
from src.models.dc_models import DecisionTypeModel, RoomCreateModel
from src.models.schemas import Base
from src.services.engine import DecisionRoomEngine

START = datetime(2026, 3, 1, 12, 0, 0)


class FakeClock:
    """Stands in for datetime.now; only moves when told to"""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'rooms.sqlite3'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def Session(db_engine):
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def feed():
    return LocalChangeFeed()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    return np.random.default_rng(20260301)


@pytest.fixture
def room_engine(Session, feed, rng, clock):
    return DecisionRoomEngine(Session, feed, scheduler=None, rng=rng, clock=clock)


@pytest.fixture
def new_room(room_engine):
    """Create a room in the submission phase; keyword arguments override RoomCreateModel fields"""

    async def _new_room(creator=None, **overrides):
        creator = creator or uuid4()
        data = {
            "name": "Dinner",
            "decision_type": DecisionTypeModel.coin,
            "start_in_submission": True,
        }
        data.update(overrides)
        return await room_engine.create_room(creator, RoomCreateModel(**data))

    return _new_room


@pytest.fixture
def voting_room(room_engine, new_room):
    """Room in the voting phase with one option per text and ``extra_users`` joined participants

    Returns (room, creator, users, options); every joined user is ready.
    """

    async def _voting_room(texts=("Pizza", "Sushi"), extra_users=1, **overrides):
        creator = uuid4()
        room = await new_room(creator, **overrides)
        users = [uuid4() for _ in range(extra_users)]
        for user_id in users:
            await room_engine.join_room(room.id, user_id)
        options = [await room_engine.submit_option(room.id, creator, text) for text in texts]
        for user_id in users:
            await room_engine.set_ready(room.id, user_id)
        room = await room_engine.request_voting(room.id, creator)
        return room, creator, users, options

    return _voting_room
