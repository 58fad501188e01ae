import logging
from datetime import datetime
from typing import Callable
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.crud import CreateData, DeleteData, ReadData, UpdateData
from src.domain.room_rules import SUBMISSION_PHASES, is_expired, submission_progress
from src.exceptions import (
    Expired,
    InvalidPhase,
    NotAuthorized,
    OptionNotFound,
    RoomNotFound,
    ValidationError,
)
from src.load_secrets import option_text_max_length
from src.models.dc_models import RelationModel
from src.models.schema_models import OptionSchema, RoomSchema


class SubmissionTracker:
    """Governs who may add options to a room and tracks who has submitted"""

    def __init__(
        self,
        Session: async_sessionmaker,
        feed,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.Session: async_sessionmaker = Session
        self.feed = feed
        self.clock: Callable[[], datetime] = clock

    @staticmethod
    def clean_text(text: str | None) -> str:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Option text must not be empty")
        if len(text) > option_text_max_length:
            raise ValidationError(f"Option text must be at most {option_text_max_length} characters")
        return text

    @staticmethod
    def check_may_submit(room: RoomSchema, actor: UUID) -> None:
        if not room.allow_everyone_to_submit and actor != room.created_by:
            raise NotAuthorized("Only the room creator can submit options in this room")

    async def submit_option(self, room_id: UUID, actor: UUID, text: str) -> OptionSchema:
        """Add an option to a room

        The submitter's ``has_submitted`` flag flips on their first accepted option
        only. That flag is a best-effort side effect: if it cannot be written the
        option still stands and the failure is logged.

        Args:
            room_id (UUID): To identify the room
            actor (UUID): Submitting user
            text (str): Option text, surrounding whitespace is dropped

        Raises:
            ValidationError: Empty or over-long text
            RoomNotFound: The room does not exist
            NotAuthorized: Submission is restricted to the creator, or ``actor`` has not joined
            InvalidPhase: The room no longer accepts options
            Expired: The room's deadline has passed

        Returns:
            OptionSchema: The stored option
        """
        text = self.clean_text(text)
        now = self.clock()

        async with self.Session() as session, session.begin():
            room = await ReadData.read_room(room_id, session)
            if room is None:
                raise RoomNotFound(room_id)
            self.check_may_submit(room, actor)
            if room.phase not in SUBMISSION_PHASES:
                raise InvalidPhase(f"Options cannot be added in the {room.phase.value} phase")
            if is_expired(room.expires_at, now):
                raise Expired("The room's deadline has passed")
            participant = await ReadData.read_participant(room_id, actor, session)
            if participant is None:
                raise NotAuthorized("Join the room before submitting options")

            option = await CreateData.add_option(room_id, text, actor, now, session)

        logging.info(f"Room {room_id}: option {option.id} added by {actor}")
        await self.feed.publish(room_id, RelationModel.options)

        if not participant.has_submitted:
            await self._mark_submitted(room_id, actor)
        return option

    async def _mark_submitted(self, room_id: UUID, actor: UUID) -> None:
        try:
            async with self.Session() as session, session.begin():
                flipped = await UpdateData.set_participant_flags(
                    room_id, actor, session, only_if_unset="has_submitted", has_submitted=True
                )
        except SQLAlchemyError as e:
            logging.error(f"Could not update participant status for {actor} in room {room_id}: {e}")
            return
        if flipped:
            await self.feed.publish(room_id, RelationModel.participants)

    async def update_option(self, option_id: UUID, actor: UUID, text: str) -> OptionSchema:
        """Change an option's text; allowed for its author and the room creator before voting"""
        text = self.clean_text(text)
        async with self.Session() as session, session.begin():
            option, room = await self._load_editable(option_id, actor, session)
            option = await UpdateData.update_option_text(option_id, text, session)

        await self.feed.publish(room.id, RelationModel.options)
        return option

    async def delete_option(self, option_id: UUID, actor: UUID) -> None:
        """Remove an option; the author's ``has_submitted`` flag stays set"""
        async with self.Session() as session, session.begin():
            option, room = await self._load_editable(option_id, actor, session)
            await DeleteData.delete_option(option_id, session)

        logging.info(f"Room {room.id}: option {option_id} deleted by {actor}")
        await self.feed.publish(room.id, RelationModel.options)

    async def _load_editable(self, option_id: UUID, actor: UUID, session) -> tuple[OptionSchema, RoomSchema]:
        option = await ReadData.read_option(option_id, session)
        if option is None:
            raise OptionNotFound(option_id)
        room = await ReadData.read_room(option.room_id, session)
        if room is None:
            raise RoomNotFound(option.room_id)
        if actor != option.created_by and actor != room.created_by:
            raise NotAuthorized("Only the option's author or the room creator can change it")
        if room.phase not in SUBMISSION_PHASES:
            raise InvalidPhase(f"Options cannot be changed in the {room.phase.value} phase")
        return option, room

    async def submission_progress(self, room_id: UUID) -> float:
        """Share of participants with ``has_submitted``; 0 when the room has no participants"""
        async with self.Session() as session:
            room = await ReadData.read_room(room_id, session)
            if room is None:
                raise RoomNotFound(room_id)
            participants = await ReadData.read_participants(room_id, session)
        return submission_progress(participants)
