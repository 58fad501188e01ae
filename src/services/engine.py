"""Wires the room components together and exposes the actions the HTTP layer calls."""
from datetime import datetime
from typing import Callable, Dict, List
from uuid import UUID

import numpy as np
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.converter import DataConverter
from src.exceptions import NotAuthorized
from src.models.dc_models import ProgressModel, RoomCreateModel
from src.models.schema_models import (
    DecisionSchema,
    HistoryEntryModel,
    OptionSchema,
    ParticipantSchema,
    RoomSchema,
    RoomStateModel,
    VoteSchema,
)
from src.realtime_sync import RealtimeSync, load_projection, votes_visible
from src.services.expiration_clock import ExpirationClock
from src.services.phase_controller import PhaseController
from src.services.room_service import RoomService
from src.services.submission_tracker import SubmissionTracker
from src.services.tie_breaker import TieBreaker
from src.services.vote_tally import VoteTally
from src.domain.room_rules import ready_progress, submission_progress

data_converter = DataConverter()


class DecisionRoomEngine:
    def __init__(
        self,
        Session: async_sessionmaker,
        feed,
        scheduler: AsyncIOScheduler | None = None,
        rng: np.random.Generator | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            Session (async_sessionmaker): Session factory for the room store
            feed: Change-feed (RedisChangeFeed or LocalChangeFeed)
            scheduler (AsyncIOScheduler | None): Runs expiry jobs; None disables scheduling
            rng (np.random.Generator | None): Randomness for tie-breaks and room codes
            clock: Returns the current time
        """
        rng = rng if rng is not None else np.random.default_rng()
        self.Session: async_sessionmaker = Session
        self.feed = feed
        self.clock: Callable[[], datetime] = clock

        self.tie_breaker = TieBreaker(rng)
        self.phase_controller = PhaseController(Session, feed, self.tie_breaker, clock)
        self.expiration_clock = ExpirationClock(Session, self.phase_controller, scheduler, clock)
        self.submission_tracker = SubmissionTracker(Session, feed, clock)
        self.vote_tally = VoteTally(
            Session, feed, on_vote_recorded=self.phase_controller.finish_voting_if_complete, clock=clock
        )
        self.room_service = RoomService(Session, feed, self.expiration_clock, rng, clock)

    # ==== Actions =============================================================

    async def create_room(self, actor: UUID, room_data: RoomCreateModel) -> RoomSchema:
        return await self.room_service.create_room(actor, room_data)

    async def join_room(self, room_id: UUID, actor: UUID) -> ParticipantSchema:
        return await self.room_service.join_room(room_id, actor)

    async def set_ready(self, room_id: UUID, actor: UUID, is_ready: bool = True) -> ParticipantSchema:
        return await self.room_service.set_ready(room_id, actor, is_ready)

    async def start_submission(self, room_id: UUID) -> RoomSchema:
        return await self.phase_controller.start_submission(room_id)

    async def request_voting(self, room_id: UUID, actor: UUID) -> RoomSchema:
        return await self.phase_controller.request_voting(room_id, actor)

    async def force_results(self, room_id: UUID, actor: UUID | None = None) -> DecisionSchema:
        decision = await self.phase_controller.force_results(room_id, actor)
        self.expiration_clock.cancel(room_id)
        return decision

    async def submit_option(self, room_id: UUID, actor: UUID, text: str) -> OptionSchema:
        return await self.submission_tracker.submit_option(room_id, actor, text)

    async def update_option(self, option_id: UUID, actor: UUID, text: str) -> OptionSchema:
        return await self.submission_tracker.update_option(option_id, actor, text)

    async def delete_option(self, option_id: UUID, actor: UUID) -> None:
        await self.submission_tracker.delete_option(option_id, actor)

    async def cast_vote(self, room_id: UUID, actor: UUID, option_id: UUID) -> VoteSchema:
        return await self.vote_tally.cast_vote(room_id, actor, option_id)

    # ==== Queries =============================================================

    async def get_room(self, room_id: UUID) -> RoomSchema:
        return await self.room_service.get_room(room_id)

    async def get_room_by_code(self, code: str) -> RoomSchema:
        return await self.room_service.get_room_by_code(code)

    async def vote_counts(self, room_id: UUID) -> Dict[UUID, int]:
        """Tally for display; refused while the room keeps results hidden"""
        room = await self.room_service.get_room(room_id)
        if not votes_visible(room):
            raise NotAuthorized("Results are hidden until the end")
        return await self.vote_tally.tally(room_id)

    async def progress(self, room_id: UUID) -> ProgressModel:
        async with self.Session() as session:
            projection = await load_projection(room_id, session)
        return ProgressModel(
            submitted=submission_progress(projection.participants),
            ready=ready_progress(projection.participants),
        )

    async def room_state(self, room_id: UUID, viewer: UUID | None) -> RoomStateModel:
        async with self.Session() as session:
            projection = await load_projection(room_id, session)
        return data_converter.convert_projection_to_room_state(projection, viewer, self.clock())

    async def list_user_rooms(self, actor: UUID, finished: bool = False) -> List[RoomSchema]:
        return await self.room_service.list_user_rooms(actor, finished)

    async def decision_history(self, actor: UUID) -> List[HistoryEntryModel]:
        return await self.room_service.decision_history(actor)

    def realtime(self, room_id: UUID, viewer: UUID | None = None) -> RealtimeSync:
        """A projection of the room kept current by the change-feed; use as an async context manager"""
        return RealtimeSync(self.Session, self.feed, room_id, viewer, self.clock)
