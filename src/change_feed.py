"""Change-feed: "relation X for room Y changed" notifications.

Notifications carry no payload beyond the relation name; subscribers re-read
whatever they need from the store.
"""
import asyncio
import logging
from typing import AsyncIterator, Dict, List
from uuid import UUID

from redis.asyncio import Redis
from redis.exceptions import RedisError

from src.models.dc_models import RelationModel


def room_channel(room_id: UUID) -> str:
    return f"room:{room_id}"


class RedisSubscription:
    """One pub/sub subscription to a room channel.

    Use as ``async with feed.subscribe(room_id) as events: async for relation in events``.
    """

    def __init__(self, redis: Redis, room_id: UUID):
        self.redis: Redis = redis
        self.channel: str = room_channel(room_id)
        self.pubsub = None

    async def __aenter__(self) -> "RedisSubscription":
        self.pubsub = self.redis.pubsub()
        await self.pubsub.subscribe(self.channel)
        logging.info(f"Subscribed to {self.channel}")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        logging.info(f"Unsubscribing from {self.channel}")
        if self.pubsub:
            await self.pubsub.unsubscribe(self.channel)
            await self.pubsub.aclose()

    def __aiter__(self) -> AsyncIterator[RelationModel]:
        return self._events()

    async def _events(self) -> AsyncIterator[RelationModel]:
        while True:
            msg = await self.pubsub.get_message(ignore_subscribe_messages=True, timeout=None)
            if msg and msg["type"] == "message":
                data = msg["data"]
                if isinstance(data, bytes):
                    data = data.decode()
                try:
                    yield RelationModel(data)
                except ValueError:
                    logging.warning(f"Ignoring unknown relation {data!r} on {self.channel}")


class RedisChangeFeed:
    """Change-feed over Redis pub/sub, one channel per room"""

    def __init__(self, redis: Redis):
        self.redis: Redis = redis

    async def publish(self, room_id: UUID, relation: RelationModel) -> None:
        """Announce that ``relation`` changed for ``room_id``

        The store write has already committed when this runs, so a failure
        here is logged and not raised.
        """
        try:
            await self.redis.publish(room_channel(room_id), RelationModel(relation).value)
        except RedisError as e:
            logging.error(f"Failed to publish {relation} change for room {room_id}: {e}")

    def subscribe(self, room_id: UUID) -> RedisSubscription:
        return RedisSubscription(self.redis, room_id)


class LocalSubscription:
    def __init__(self, feed: "LocalChangeFeed", room_id: UUID):
        self.feed = feed
        self.room_id = room_id
        self.queue: asyncio.Queue = asyncio.Queue()

    async def __aenter__(self) -> "LocalSubscription":
        self.feed.subscribers.setdefault(self.room_id, []).append(self.queue)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        queues = self.feed.subscribers.get(self.room_id, [])
        if self.queue in queues:
            queues.remove(self.queue)
        if not queues:
            self.feed.subscribers.pop(self.room_id, None)

    def __aiter__(self) -> AsyncIterator[RelationModel]:
        return self._events()

    async def _events(self) -> AsyncIterator[RelationModel]:
        while True:
            yield await self.queue.get()


class LocalChangeFeed:
    """In-process change-feed for a single server process"""

    def __init__(self):
        self.subscribers: Dict[UUID, List[asyncio.Queue]] = {}

    async def publish(self, room_id: UUID, relation: RelationModel) -> None:
        for queue in list(self.subscribers.get(room_id, [])):
            queue.put_nowait(RelationModel(relation))

    def subscribe(self, room_id: UUID) -> LocalSubscription:
        return LocalSubscription(self, room_id)
