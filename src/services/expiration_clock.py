import logging
from datetime import datetime
from typing import Callable, List
from uuid import UUID

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.crud import ReadData
from src.domain.room_rules import EXPIRABLE_PHASES, is_expired
from src.exceptions import DecisionRoomError
from src.load_secrets import expiration_sweep_seconds
from src.models.schema_models import DecisionSchema, RoomSchema
from src.services.phase_controller import PhaseController

SWEEP_JOB_ID = "expiration-sweep"


def expire_job_id(room_id: UUID) -> str:
    return f"expire:{room_id}"


class ExpirationClock:
    """Closes rooms whose deadline has passed.

    Each room gets a one-shot job at its ``expires_at``; a periodic sweep catches
    rooms whose job was lost (restart, misfire). Both end in
    ``PhaseController.force_results``, which tolerates redundant calls from
    several servers or clients.
    """

    def __init__(
        self,
        Session: async_sessionmaker,
        phase_controller: PhaseController,
        scheduler: AsyncIOScheduler | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.Session: async_sessionmaker = Session
        self.phase_controller: PhaseController = phase_controller
        self.scheduler: AsyncIOScheduler | None = scheduler
        self.clock: Callable[[], datetime] = clock

    def start(self, sweep_seconds: int = expiration_sweep_seconds) -> None:
        """Register the periodic sweep; the scheduler itself is started by its owner"""
        if self.scheduler is None:
            return
        self.scheduler.add_job(
            self.sweep,
            "interval",
            seconds=sweep_seconds,
            id=SWEEP_JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )

    def schedule(self, room: RoomSchema) -> None:
        """Arm (or re-arm) the one-shot expiry job for a room"""
        if self.scheduler is None:
            return
        self.scheduler.add_job(
            self.expire,
            "date",
            run_date=room.expires_at,
            args=[room.id],
            id=expire_job_id(room.id),
            replace_existing=True,
            misfire_grace_time=None,
        )
        logging.debug(f"Room {room.id}: expiry scheduled at {room.expires_at}")

    def cancel(self, room_id: UUID) -> None:
        if self.scheduler is None:
            return
        try:
            self.scheduler.remove_job(expire_job_id(room_id))
        except JobLookupError:
            pass

    async def expire(self, room_id: UUID) -> DecisionSchema | None:
        """Close the room if its deadline has passed while it is still open

        Returns:
            DecisionSchema | None: The decision, or None if the room was not due
        """
        now = self.clock()
        async with self.Session() as session:
            room = await ReadData.read_room(room_id, session)
        if room is None:
            logging.warning(f"Room {room_id}: expiry fired for a missing room")
            return None
        if room.phase not in EXPIRABLE_PHASES or not is_expired(room.expires_at, now):
            return None

        logging.info(f"Room {room_id}: deadline {room.expires_at} reached, closing")
        return await self.phase_controller.force_results(room_id)

    async def sweep(self) -> List[UUID]:
        """Close every open room past its deadline

        Returns:
            List[UUID]: Rooms closed by this sweep
        """
        now = self.clock()
        async with self.Session() as session:
            room_ids = await ReadData.read_expired_room_ids(now, session)

        closed: List[UUID] = []
        for room_id in room_ids:
            try:
                decision = await self.expire(room_id)
            except (SQLAlchemyError, DecisionRoomError) as e:
                logging.error(f"Room {room_id}: expiry failed, retrying on the next sweep: {e}")
                continue
            if decision is not None:
                closed.append(room_id)
                self.cancel(room_id)
        if closed:
            logging.info(f"Expiration sweep closed {len(closed)} room(s)")
        return closed
