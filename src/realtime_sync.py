import asyncio
import contextlib
import json
import logging
from datetime import datetime
from typing import AsyncGenerator, AsyncIterator, Callable
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

from src.converter import DataConverter
from src.crud import ReadData
from src.exceptions import RoomNotFound
from src.models.dc_models import PhaseModel, RelationModel
from src.models.schema_models import RoomProjectionModel, RoomSchema

data_converter = DataConverter()


def votes_visible(room: RoomSchema) -> bool:
    """Votes stay hidden until the end when the room asks for it"""
    return not room.hide_results_until_end or room.phase is PhaseModel.results


async def load_projection(room_id: UUID, session: AsyncSession) -> RoomProjectionModel:
    """Read the full aggregate state of a room

    Raises:
        RoomNotFound: The room does not exist
    """
    room = await ReadData.read_room(room_id, session)
    if room is None:
        raise RoomNotFound(room_id)
    visible = votes_visible(room)
    return RoomProjectionModel(
        room=room,
        participants=await ReadData.read_participants(room_id, session),
        options=await ReadData.read_options(room_id, session),
        votes=await ReadData.read_votes(room_id, session) if visible else [],
        decision=await ReadData.read_decision(room_id, session),
        votes_visible=visible,
    )


class RealtimeSync:
    """Keeps one client's projection of a room current with the change-feed.

    On every notification the whole affected relation is re-read and swapped
    into a new projection object; nothing is patched in place. A failed re-read
    leaves the previous projection untouched.

    Use as an async context manager: entering subscribes and loads the room,
    leaving unsubscribes.
    """

    def __init__(
        self,
        Session: async_sessionmaker,
        feed,
        room_id: UUID,
        viewer_id: UUID | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.Session: async_sessionmaker = Session
        self.feed = feed
        self.room_id: UUID = room_id
        self.viewer_id: UUID | None = viewer_id
        self.clock: Callable[[], datetime] = clock
        self._projection: RoomProjectionModel | None = None
        self._version: int = 0
        self._refresh_lock = asyncio.Lock()
        self._changed = asyncio.Condition()
        self._subscription = None
        self._task: asyncio.Task | None = None
        self._failure: Exception | None = None

    @property
    def projection(self) -> RoomProjectionModel | None:
        return self._projection

    async def __aenter__(self) -> "RealtimeSync":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def start(self) -> None:
        self._failure = None
        # Subscribe before the first read so no change between the two is missed.
        self._subscription = self.feed.subscribe(self.room_id)
        await self._subscription.__aenter__()
        try:
            await self.refresh_all()
        except BaseException:
            await self._subscription.__aexit__(None, None, None)
            self._subscription = None
            raise
        self._task = asyncio.create_task(self._listen())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._subscription is not None:
            await self._subscription.__aexit__(None, None, None)
            self._subscription = None

    async def refresh_all(self) -> RoomProjectionModel:
        async with self._refresh_lock:
            async with self.Session() as session:
                projection = await load_projection(self.room_id, session)
            await self._replace(projection)
        return projection

    async def refresh(self, relation: RelationModel) -> RoomProjectionModel:
        """Re-read one relation and replace that slice of the projection"""
        relation = RelationModel(relation)
        async with self._refresh_lock:
            current = self._projection
            if current is None:
                raise RuntimeError("refresh() called before start()")

            async with self.Session() as session:
                if relation is RelationModel.rooms:
                    room = await ReadData.read_room(self.room_id, session)
                    if room is None:
                        raise RoomNotFound(self.room_id)
                    visible = votes_visible(room)
                    update = {"room": room, "votes_visible": visible}
                    if visible != current.votes_visible:
                        update["votes"] = await ReadData.read_votes(self.room_id, session) if visible else []
                elif relation is RelationModel.participants:
                    update = {"participants": await ReadData.read_participants(self.room_id, session)}
                elif relation is RelationModel.options:
                    update = {"options": await ReadData.read_options(self.room_id, session)}
                elif relation is RelationModel.votes:
                    if not current.votes_visible:
                        return current
                    update = {"votes": await ReadData.read_votes(self.room_id, session)}
                else:
                    update = {"decision": await ReadData.read_decision(self.room_id, session)}

            projection = current.model_copy(update=update)
            await self._replace(projection)
        return projection

    async def _replace(self, projection: RoomProjectionModel) -> None:
        async with self._changed:
            self._projection = projection
            self._version += 1
            self._changed.notify_all()

    async def _listen(self) -> None:
        try:
            async for relation in self._subscription:
                try:
                    await self.refresh(relation)
                except (SQLAlchemyError, RoomNotFound) as e:
                    logging.error(f"Room {self.room_id}: failed to refresh {relation.value}: {e}")
        except Exception as e:
            # The feed is gone; waiters re-raise this instead of blocking on a stale projection.
            logging.error(f"Room {self.room_id}: change-feed failed: {e!r}")
            async with self._changed:
                self._failure = e
                self._changed.notify_all()

    async def wait_for(
        self, predicate: Callable[[RoomProjectionModel], bool], timeout: float = 5.0
    ) -> RoomProjectionModel:
        """Wait until the projection satisfies ``predicate``

        Raises:
            asyncio.TimeoutError: The condition did not hold within ``timeout`` seconds
            Exception: The change-feed failed before the condition held
        """

        async def _wait() -> RoomProjectionModel:
            async with self._changed:
                await self._changed.wait_for(
                    lambda: self._failure is not None
                    or (self._projection is not None and predicate(self._projection))
                )
                if self._failure is not None:
                    raise self._failure
                return self._projection

        return await asyncio.wait_for(_wait(), timeout)

    async def updates(self) -> AsyncIterator[RoomProjectionModel]:
        """Yield the current projection, then every later one

        Ends by raising the change-feed's error once the feed has failed.
        """
        seen = -1
        while True:
            async with self._changed:
                await self._changed.wait_for(lambda: self._version != seen or self._failure is not None)
                if self._failure is not None:
                    raise self._failure
                seen = self._version
                projection = self._projection
            yield projection

    async def event_generator(self) -> AsyncGenerator[str, None]:
        """Server-sent events stream of the room state as seen by ``viewer_id``"""
        async with self:
            async for projection in self.updates():
                state = data_converter.convert_projection_to_room_state(
                    projection, self.viewer_id, self.clock()
                )
                payload = json.dumps(state.model_dump(mode="json"))
                logging.debug(f"Payload: {payload}")
                yield f"event: room_state\ndata: {payload}\n\n"
