"""Room phase state machine.

lobby -> submission -> voting -> results, with submission|voting -> results when a
room is forced closed. Results is terminal. Every transition is a conditional
UPDATE on the room's current phase, so concurrent callers from different clients
produce at most one phase change; the decision row is written in the same
transaction as the move to results.
"""
import logging
from datetime import datetime
from typing import Callable
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

from src.crud import CreateData, ReadData, UpdateData
from src.domain.room_rules import (
    decide_winner,
    is_expired,
    readiness_quorum,
    tally_votes,
)
from src.exceptions import (
    Conflict,
    Expired,
    InvalidPhase,
    NotAuthorized,
    NotReady,
    RoomNotFound,
)
from src.models.dc_models import PhaseModel, RelationModel, WinnerKindModel
from src.models.schema_models import DecisionSchema, RoomSchema
from src.services.tie_breaker import TieBreaker


class PhaseController:
    def __init__(
        self,
        Session: async_sessionmaker,
        feed,
        tie_breaker: TieBreaker,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.Session: async_sessionmaker = Session
        self.feed = feed
        self.tie_breaker: TieBreaker = tie_breaker
        self.clock: Callable[[], datetime] = clock

    async def start_submission(self, room_id: UUID) -> RoomSchema:
        """Open a lobby room for option submission

        Raises:
            RoomNotFound: The room does not exist
            InvalidPhase: The room already left the lobby
        """
        async with self.Session() as session, session.begin():
            changed = await UpdateData.compare_and_set_phase(
                room_id, [PhaseModel.lobby], PhaseModel.submission, session
            )
            room = await ReadData.read_room(room_id, session)

        if room is None:
            raise RoomNotFound(room_id)
        if not changed:
            raise InvalidPhase(f"Room is in the {room.phase.value} phase; submission can only start from the lobby")

        logging.info(f"Room {room_id}: lobby -> submission")
        await self.feed.publish(room_id, RelationModel.rooms)
        return room

    async def request_voting(self, room_id: UUID, actor: UUID) -> RoomSchema:
        """Move a room from submission to voting on behalf of its creator

        Args:
            room_id (UUID): To identify the room
            actor (UUID): User asking for the vote; must be the room creator

        Raises:
            RoomNotFound: The room does not exist
            NotAuthorized: ``actor`` is not the creator
            InvalidPhase: The room is not in the submission phase
            Expired: The room's deadline has passed
            NotReady: Some participant other than the creator is not ready

        Returns:
            RoomSchema: The room in the voting phase
        """
        now = self.clock()
        async with self.Session() as session, session.begin():
            room = await ReadData.read_room(room_id, session, lock=True)
            if room is None:
                raise RoomNotFound(room_id)
            if actor != room.created_by:
                raise NotAuthorized("Only the room creator can start voting")
            if room.phase is not PhaseModel.submission:
                raise InvalidPhase(f"Voting can only start from the submission phase, room is in {room.phase.value}")
            if is_expired(room.expires_at, now):
                raise Expired("The room's deadline has passed")

            participants = await ReadData.read_participants(room_id, session)
            if not readiness_quorum(participants, room.created_by):
                waiting = sum(1 for p in participants if not p.is_ready and p.user_id != room.created_by)
                raise NotReady(f"{waiting} participant(s) are not ready yet")

            changed = await UpdateData.compare_and_set_phase(
                room_id, [PhaseModel.submission], PhaseModel.voting, session
            )
            if not changed:
                raise InvalidPhase("The room left the submission phase")

        logging.info(f"Room {room_id}: submission -> voting ({len(participants)} participants)")
        await self.feed.publish(room_id, RelationModel.rooms)
        return room.model_copy(update={"phase": PhaseModel.voting})

    async def force_results(self, room_id: UUID, actor: UUID | None = None) -> DecisionSchema:
        """Close a room and write its decision

        Safe to call redundantly: a caller that finds the room already in the
        results phase writes nothing and gets the existing decision back.

        Args:
            room_id (UUID): To identify the room
            actor (UUID | None): User asking from outside; None for the expiration
                clock and the all-voted trigger

        Raises:
            RoomNotFound: The room does not exist
            NotAuthorized: ``actor`` may not close the room yet
            InvalidPhase: The room is still in the lobby

        Returns:
            DecisionSchema: The room's decision
        """
        now = self.clock()
        if actor is not None:
            await self._check_may_force(room_id, actor, now)

        try:
            async with self.Session() as session, session.begin():
                changed = await UpdateData.compare_and_set_phase(
                    room_id,
                    [PhaseModel.submission, PhaseModel.voting],
                    PhaseModel.results,
                    session,
                )
                room = await ReadData.read_room(room_id, session)
                if room is None:
                    raise RoomNotFound(room_id)
                if changed:
                    decision = await self._write_decision(room, now, session)
                elif room.phase is PhaseModel.results:
                    decision = await ReadData.read_decision(room_id, session)
                else:
                    raise InvalidPhase(f"A room in the {room.phase.value} phase cannot be closed")
        except IntegrityError:
            logging.warning(f"Room {room_id}: decision already recorded by another writer")
            async with self.Session() as session:
                decision = await ReadData.read_decision(room_id, session)
            changed = False

        if decision is None:
            raise Conflict(f"Room {room_id} is closed but has no decision")

        if changed:
            logging.info(
                f"Room {room_id}: -> results, winner={decision.winning_option_id} "
                f"tie_breaker_used={decision.tie_breaker_used}"
            )
            await self.feed.publish(room_id, RelationModel.rooms)
            await self.feed.publish(room_id, RelationModel.decisions)
        return decision

    async def finish_voting_if_complete(self, room_id: UUID) -> DecisionSchema | None:
        """Close the room once every participant has voted

        Returns:
            DecisionSchema | None: The decision if the room was (or already is) closed by this check
        """
        async with self.Session() as session:
            room = await ReadData.read_room(room_id, session)
            if room is None or room.phase is not PhaseModel.voting:
                return None
            participant_count = await ReadData.count_participants(room_id, session)
            voted_count = await ReadData.count_votes(room_id, session)

        if participant_count == 0 or voted_count < participant_count:
            return None
        logging.info(f"Room {room_id}: all {participant_count} participants voted")
        return await self.force_results(room_id)

    async def _check_may_force(self, room_id: UUID, actor: UUID, now: datetime) -> None:
        async with self.Session() as session:
            room = await ReadData.read_room(room_id, session)
            if room is None:
                raise RoomNotFound(room_id)
            if actor == room.created_by or is_expired(room.expires_at, now):
                return
            if room.phase is PhaseModel.voting:
                participant_count = await ReadData.count_participants(room_id, session)
                voted_count = await ReadData.count_votes(room_id, session)
                if participant_count > 0 and voted_count >= participant_count:
                    return
        raise NotAuthorized("Only the room creator can close the room before its deadline")

    async def _write_decision(self, room: RoomSchema, now: datetime, session: AsyncSession) -> DecisionSchema:
        options = await ReadData.read_options(room.id, session)
        votes = await ReadData.read_votes(room.id, session)
        tally = tally_votes([o.id for o in options], [v.option_id for v in votes])
        winner = decide_winner(tally)

        if winner.kind is WinnerKindModel.unique:
            return await CreateData.add_decision(
                room.id, winner.option_ids[0], False, None, now, session
            )
        if winner.kind is WinnerKindModel.tie:
            result = self.tie_breaker.resolve(winner.option_ids, room.decision_type)
            return await CreateData.add_decision(
                room.id, result.option_id, True, room.decision_type.value, now, session
            )
        return await CreateData.add_decision(room.id, None, False, None, now, session)
