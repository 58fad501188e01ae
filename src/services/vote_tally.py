import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.crud import CreateData, ReadData, UpdateData
from src.domain.room_rules import decide_winner, is_expired, tally_votes
from src.exceptions import (
    Conflict,
    Expired,
    InvalidPhase,
    NotAuthorized,
    OptionNotFound,
    RoomNotFound,
)
from src.models.dc_models import PhaseModel, RelationModel, WinnerModel
from src.models.schema_models import VoteSchema


class VoteTally:
    """Records votes, counts them and classifies the outcome"""

    def __init__(
        self,
        Session: async_sessionmaker,
        feed,
        on_vote_recorded: Callable[[UUID], Awaitable] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            Session (async_sessionmaker): Session factory
            feed: Change-feed to announce writes on
            on_vote_recorded: Awaited with the room id after every accepted vote;
                the engine uses it to close the room once everyone has voted
            clock: Returns the current time
        """
        self.Session: async_sessionmaker = Session
        self.feed = feed
        self.on_vote_recorded = on_vote_recorded
        self.clock: Callable[[], datetime] = clock

    async def cast_vote(self, room_id: UUID, actor: UUID, option_id: UUID) -> VoteSchema:
        """Record ``actor``'s single vote in a room

        Args:
            room_id (UUID): To identify the room
            actor (UUID): Voting user
            option_id (UUID): Chosen option; must belong to the room

        Raises:
            RoomNotFound: The room does not exist
            InvalidPhase: The room is not in the voting phase
            Expired: The room's deadline has passed
            NotAuthorized: ``actor`` has not joined the room
            Conflict: ``actor`` already voted in this room
            OptionNotFound: The option does not exist in this room

        Returns:
            VoteSchema: The stored vote
        """
        now = self.clock()
        try:
            async with self.Session() as session, session.begin():
                room = await ReadData.read_room(room_id, session)
                if room is None:
                    raise RoomNotFound(room_id)
                if room.phase is not PhaseModel.voting:
                    raise InvalidPhase(f"Votes cannot be cast in the {room.phase.value} phase")
                if is_expired(room.expires_at, now):
                    raise Expired("The room's deadline has passed")
                participant = await ReadData.read_participant(room_id, actor, session)
                if participant is None:
                    raise NotAuthorized("Join the room before voting")
                if await ReadData.read_vote_by_user(room_id, actor, session) is not None:
                    raise Conflict("You have already voted in this room")
                option = await ReadData.read_option(option_id, session)
                if option is None or option.room_id != room_id:
                    raise OptionNotFound(option_id)

                vote = await CreateData.add_vote(room_id, option_id, actor, now, session)
                await UpdateData.set_participant_flags(room_id, actor, session, has_voted=True)
        except IntegrityError:
            # Lost a race against a concurrent vote by the same user.
            raise Conflict("You have already voted in this room")

        logging.info(f"Room {room_id}: vote by {actor} recorded")
        await self.feed.publish(room_id, RelationModel.votes)
        await self.feed.publish(room_id, RelationModel.participants)

        if self.on_vote_recorded is not None:
            try:
                await self.on_vote_recorded(room_id)
            except SQLAlchemyError as e:
                logging.error(f"Room {room_id}: vote recorded but the completion check failed: {e}")
        return vote

    async def tally(self, room_id: UUID) -> Dict[UUID, int]:
        """Count votes per option, including options with no votes

        Returns:
            Dict[UUID, int]: Vote count keyed by option id, in option creation order
        """
        async with self.Session() as session:
            room = await ReadData.read_room(room_id, session)
            if room is None:
                raise RoomNotFound(room_id)
            options = await ReadData.read_options(room_id, session)
            votes = await ReadData.read_votes(room_id, session)
        return tally_votes([o.id for o in options], [v.option_id for v in votes])

    @staticmethod
    def winner(tally: Dict[UUID, int]) -> WinnerModel:
        return decide_winner(tally)
