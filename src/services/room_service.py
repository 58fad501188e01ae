"""Room creation, membership and read-side queries.

- This layer owns session/transaction boundaries.
- Use CRUD helpers that do NOT commit inside session.begin().
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, List
from uuid import UUID

import numpy as np
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.crud import CreateData, ReadData, UpdateData
from src.domain.room_rules import (
    SUBMISSION_PHASES,
    generate_room_code,
    is_expired,
    is_valid_room_code,
    normalize_room_code,
)
from src.exceptions import (
    Conflict,
    Expired,
    InvalidPhase,
    NotAuthorized,
    NotFound,
    RoomFull,
    RoomNotFound,
    ValidationError,
)
from src.load_secrets import room_code_attempts, room_duration_minutes
from src.models.dc_models import PhaseModel, RelationModel, RoomCreateModel
from src.models.schema_models import (
    HistoryEntryModel,
    ParticipantSchema,
    RoomSchema,
)
from src.models.schemas import Room
from src.services.expiration_clock import ExpirationClock


class RoomService:
    def __init__(
        self,
        Session: async_sessionmaker,
        feed,
        expiration_clock: ExpirationClock | None = None,
        rng: np.random.Generator | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.Session: async_sessionmaker = Session
        self.feed = feed
        self.expiration_clock: ExpirationClock | None = expiration_clock
        self.rng: np.random.Generator = rng if rng is not None else np.random.default_rng()
        self.clock: Callable[[], datetime] = clock

    @staticmethod
    def validate_room_data(room_data: RoomCreateModel) -> None:
        if not (room_data.name or "").strip():
            raise ValidationError("Room name is required")
        if room_data.max_participants is not None and room_data.max_participants < 1:
            raise ValidationError("max_participants must be at least 1")
        if room_data.duration_minutes is not None and room_data.duration_minutes <= 0:
            raise ValidationError("duration_minutes must be positive")

    async def create_room(self, actor: UUID, room_data: RoomCreateModel) -> RoomSchema:
        """Create a room and join its creator as the first participant

        Args:
            actor (UUID): Creating user, recorded as ``created_by``
            room_data (RoomCreateModel): Room configuration

        Raises:
            ValidationError: Missing name, or non-positive cap or duration
            Conflict: No free room code was found

        Returns:
            RoomSchema: The stored room
        """
        self.validate_room_data(room_data)
        now = self.clock()
        duration = room_data.duration_minutes or room_duration_minutes
        phase = PhaseModel.submission if room_data.start_in_submission else PhaseModel.lobby

        for attempt in range(room_code_attempts):
            try:
                async with self.Session() as session, session.begin():
                    code = await self._free_room_code(session)
                    room = await CreateData.add_room(
                        Room(
                            code=code,
                            name=room_data.name.strip(),
                            description=(room_data.description or "").strip() or None,
                            decision_type=room_data.decision_type.value,
                            phase=phase.value,
                            allow_everyone_to_submit=room_data.allow_everyone_to_submit,
                            hide_results_until_end=room_data.hide_results_until_end,
                            max_participants=room_data.max_participants,
                            expires_at=now + timedelta(minutes=duration),
                            created_by=actor,
                            created_at=now,
                        ),
                        session,
                    )
                    await CreateData.add_participant(room.id, actor, now, session)
                break
            except IntegrityError:
                # Another room took the same code between the check and the insert.
                logging.warning(f"Room code collision on insert, retrying (attempt {attempt + 1})")
        else:
            raise Conflict("Could not allocate a unique room code")

        logging.info(f"Created room {room.id} with code {room.code} ({room.decision_type.value}, {phase.value})")
        if self.expiration_clock is not None:
            self.expiration_clock.schedule(room)
        return room

    async def _free_room_code(self, session) -> str:
        for _ in range(room_code_attempts):
            code = generate_room_code(self.rng)
            if not await ReadData.room_code_exists(code, session):
                return code
            logging.warning(f"Room code collision detected, regenerating: {code}")
        raise Conflict("Could not allocate a unique room code")

    async def get_room(self, room_id: UUID) -> RoomSchema:
        async with self.Session() as session:
            room = await ReadData.read_room(room_id, session)
        if room is None:
            raise RoomNotFound(room_id)
        return room

    async def get_room_by_code(self, code: str) -> RoomSchema:
        """Look a room up by its 6-character code, ignoring case and surrounding whitespace"""
        code = normalize_room_code(code)
        if not is_valid_room_code(code):
            raise ValidationError("Room codes are 6 letters or digits")
        async with self.Session() as session:
            room = await ReadData.read_room_by_code(code, session)
        if room is None:
            raise NotFound(f"Room with code {code} not found")
        return room

    async def join_room(self, room_id: UUID, actor: UUID) -> ParticipantSchema:
        """Add ``actor`` to a room

        Joining a room twice returns the existing participant. The room row is
        locked while participants are counted, so the cap holds under
        concurrent joins.

        Raises:
            RoomNotFound: The room does not exist
            InvalidPhase: The room already has its decision
            Expired: The room's deadline has passed
            RoomFull: The room is at ``max_participants``
            Conflict: A concurrent join by the same user won

        Returns:
            ParticipantSchema: The participant row
        """
        now = self.clock()
        try:
            async with self.Session() as session, session.begin():
                room = await ReadData.read_room(room_id, session, lock=True)
                if room is None:
                    raise RoomNotFound(room_id)
                existing = await ReadData.read_participant(room_id, actor, session)
                if existing is not None:
                    return existing
                if room.phase is PhaseModel.results:
                    raise InvalidPhase("This room has already reached its decision")
                if is_expired(room.expires_at, now):
                    raise Expired("The room's deadline has passed")
                if room.max_participants is not None:
                    count = await ReadData.count_participants(room_id, session)
                    if count >= room.max_participants:
                        raise RoomFull(f"Room is full ({room.max_participants} participants)")

                participant = await CreateData.add_participant(room_id, actor, now, session)
        except IntegrityError:
            raise Conflict("You have already joined this room")

        logging.info(f"Room {room_id}: {actor} joined")
        await self.feed.publish(room_id, RelationModel.participants)
        return participant

    async def set_ready(self, room_id: UUID, actor: UUID, is_ready: bool = True) -> ParticipantSchema:
        """Set the caller's readiness to leave the submission phase"""
        async with self.Session() as session, session.begin():
            room = await ReadData.read_room(room_id, session)
            if room is None:
                raise RoomNotFound(room_id)
            if room.phase not in SUBMISSION_PHASES:
                raise InvalidPhase(f"Readiness cannot change in the {room.phase.value} phase")
            updated = await UpdateData.set_participant_flags(room_id, actor, session, is_ready=is_ready)
            if not updated:
                raise NotAuthorized("Join the room first")
            participant = await ReadData.read_participant(room_id, actor, session)

        await self.feed.publish(room_id, RelationModel.participants)
        return participant

    async def list_user_rooms(self, actor: UUID, finished: bool = False) -> List[RoomSchema]:
        async with self.Session() as session:
            return await ReadData.read_rooms_for_user(actor, finished, session)

    async def decision_history(self, actor: UUID) -> List[HistoryEntryModel]:
        """Finished rooms of a user with their decisions, newest first"""
        async with self.Session() as session:
            rooms = await ReadData.read_rooms_for_user(actor, True, session)
            if not rooms:
                return []
            room_ids = [room.id for room in rooms]
            decisions = await ReadData.read_decisions_for_rooms(room_ids, session)
            options = await ReadData.read_options_for_rooms(room_ids, session)
            counts = await ReadData.count_participants_by_room(room_ids, session)

        decisions_by_room = {d.room_id: d for d in decisions}
        options_by_id = {o.id: o for o in options}
        history = []
        for room in rooms:
            decision = decisions_by_room.get(room.id)
            winning_option = None
            if decision is not None and decision.winning_option_id is not None:
                winning_option = options_by_id.get(decision.winning_option_id)
            history.append(
                HistoryEntryModel(
                    room=room,
                    decision=decision,
                    winning_option=winning_option,
                    options=[o for o in options if o.room_id == room.id],
                    participant_count=counts.get(room.id, 0),
                )
            )
        return history
