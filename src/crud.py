"""Store helpers for the five room relations.

None of these helpers commit. The caller opens the transaction
(``async with Session() as session, session.begin():``) and decides its boundary.
Writes flush immediately so unique-constraint violations surface at the call site.
"""
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, desc, func
from typing import Dict, List
from uuid import UUID

from src.models.dc_models import PhaseModel
from src.models.schema_models import (
    DecisionSchema,
    OptionSchema,
    ParticipantSchema,
    RoomSchema,
    VoteSchema,
)
from src.models.schemas import (
    Decision,
    Option,
    Participant,
    Room,
    Vote,
)


class ReadData:
    @staticmethod
    async def read_room(room_id: UUID, session: AsyncSession, lock: bool = False) -> RoomSchema | None:
        """Read room data

        Args:
            room_id (UUID): To identify the room
            lock (bool): Take a row lock (SELECT ... FOR UPDATE) until the transaction ends

        Returns:
            RoomSchema | None: Room data, None if the room does not exist
        """
        stmt = select(Room).where(Room.id == room_id)
        if lock:
            stmt = stmt.with_for_update(nowait=False)
        result = await session.execute(stmt)
        result = result.scalars().first()
        if result is None:
            return None
        return RoomSchema.model_validate(result)

    @staticmethod
    async def read_room_by_code(code: str, session: AsyncSession) -> RoomSchema | None:
        stmt = select(Room).where(Room.code == code)
        result = await session.execute(stmt)
        result = result.scalars().first()
        if result is None:
            return None
        return RoomSchema.model_validate(result)

    @staticmethod
    async def room_code_exists(code: str, session: AsyncSession) -> bool:
        stmt = select(func.count()).select_from(Room).where(Room.code == code)
        result = await session.execute(stmt)
        return result.scalar_one() > 0

    @staticmethod
    async def read_rooms_for_user(user_id: UUID, finished: bool, session: AsyncSession) -> List[RoomSchema]:
        """Read the rooms a user participates in, newest first

        Args:
            user_id (UUID): To identify the user
            finished (bool): True for rooms in the results phase, False for the others

        Returns:
            List[RoomSchema]: Rooms ordered by creation time, descending
        """
        room_ids = select(Participant.room_id).where(Participant.user_id == user_id)
        stmt = select(Room).where(Room.id.in_(room_ids))
        if finished:
            stmt = stmt.where(Room.phase == PhaseModel.results.value)
        else:
            stmt = stmt.where(Room.phase != PhaseModel.results.value)
        stmt = stmt.order_by(desc(Room.created_at))
        result = await session.execute(stmt)
        return [RoomSchema.model_validate(room) for room in result.scalars().all()]

    @staticmethod
    async def read_expired_room_ids(now: datetime, session: AsyncSession) -> List[UUID]:
        """Read rooms still open for submission or voting whose deadline has passed"""
        stmt = select(Room.id).where(
            Room.expires_at <= now,
            Room.phase.in_([PhaseModel.submission.value, PhaseModel.voting.value]),
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def read_participants(room_id: UUID, session: AsyncSession) -> List[ParticipantSchema]:
        stmt = (
            select(Participant)
            .where(Participant.room_id == room_id)
            .order_by(Participant.joined_at, Participant.id)
        )
        result = await session.execute(stmt)
        return [ParticipantSchema.model_validate(p) for p in result.scalars().all()]

    @staticmethod
    async def read_participant(room_id: UUID, user_id: UUID, session: AsyncSession) -> ParticipantSchema | None:
        stmt = select(Participant).where(
            Participant.room_id == room_id, Participant.user_id == user_id
        )
        result = await session.execute(stmt)
        result = result.scalars().first()
        if result is None:
            return None
        return ParticipantSchema.model_validate(result)

    @staticmethod
    async def count_participants(room_id: UUID, session: AsyncSession) -> int:
        stmt = select(func.count()).select_from(Participant).where(Participant.room_id == room_id)
        result = await session.execute(stmt)
        return result.scalar_one()

    @staticmethod
    async def count_participants_by_room(room_ids: List[UUID], session: AsyncSession) -> Dict[UUID, int]:
        stmt = (
            select(Participant.room_id, func.count())
            .where(Participant.room_id.in_(room_ids))
            .group_by(Participant.room_id)
        )
        result = await session.execute(stmt)
        return {room_id: count for room_id, count in result.all()}

    @staticmethod
    async def read_options(room_id: UUID, session: AsyncSession) -> List[OptionSchema]:
        stmt = (
            select(Option)
            .where(Option.room_id == room_id)
            .order_by(Option.created_at, Option.id)
        )
        result = await session.execute(stmt)
        return [OptionSchema.model_validate(o) for o in result.scalars().all()]

    @staticmethod
    async def read_options_for_rooms(room_ids: List[UUID], session: AsyncSession) -> List[OptionSchema]:
        stmt = (
            select(Option)
            .where(Option.room_id.in_(room_ids))
            .order_by(Option.created_at, Option.id)
        )
        result = await session.execute(stmt)
        return [OptionSchema.model_validate(o) for o in result.scalars().all()]

    @staticmethod
    async def read_option(option_id: UUID, session: AsyncSession) -> OptionSchema | None:
        stmt = select(Option).where(Option.id == option_id)
        result = await session.execute(stmt)
        result = result.scalars().first()
        if result is None:
            return None
        return OptionSchema.model_validate(result)

    @staticmethod
    async def read_votes(room_id: UUID, session: AsyncSession) -> List[VoteSchema]:
        stmt = select(Vote).where(Vote.room_id == room_id).order_by(Vote.created_at, Vote.id)
        result = await session.execute(stmt)
        return [VoteSchema.model_validate(v) for v in result.scalars().all()]

    @staticmethod
    async def read_vote_by_user(room_id: UUID, user_id: UUID, session: AsyncSession) -> VoteSchema | None:
        stmt = select(Vote).where(Vote.room_id == room_id, Vote.user_id == user_id)
        result = await session.execute(stmt)
        result = result.scalars().first()
        if result is None:
            return None
        return VoteSchema.model_validate(result)

    @staticmethod
    async def count_votes(room_id: UUID, session: AsyncSession) -> int:
        stmt = select(func.count()).select_from(Vote).where(Vote.room_id == room_id)
        result = await session.execute(stmt)
        return result.scalar_one()

    @staticmethod
    async def read_decision(room_id: UUID, session: AsyncSession) -> DecisionSchema | None:
        stmt = select(Decision).where(Decision.room_id == room_id)
        result = await session.execute(stmt)
        result = result.scalars().first()
        if result is None:
            return None
        return DecisionSchema.model_validate(result)

    @staticmethod
    async def read_decisions_for_rooms(room_ids: List[UUID], session: AsyncSession) -> List[DecisionSchema]:
        stmt = select(Decision).where(Decision.room_id.in_(room_ids))
        result = await session.execute(stmt)
        return [DecisionSchema.model_validate(d) for d in result.scalars().all()]


class CreateData:
    @staticmethod
    async def add_room(room: Room, session: AsyncSession) -> RoomSchema:
        """Insert a room row

        Args:
            room (Room): Room row to insert; the code must be unique

        Returns:
            RoomSchema: The stored room
        """
        session.add(room)
        await session.flush()
        return RoomSchema.model_validate(room)

    @staticmethod
    async def add_participant(room_id: UUID, user_id: UUID, joined_at: datetime, session: AsyncSession) -> ParticipantSchema:
        new_participant = Participant(room_id=room_id, user_id=user_id, joined_at=joined_at)
        session.add(new_participant)
        await session.flush()
        return ParticipantSchema.model_validate(new_participant)

    @staticmethod
    async def add_option(room_id: UUID, text: str, created_by: UUID, created_at: datetime, session: AsyncSession) -> OptionSchema:
        new_option = Option(room_id=room_id, text=text, created_by=created_by, created_at=created_at)
        session.add(new_option)
        await session.flush()
        return OptionSchema.model_validate(new_option)

    @staticmethod
    async def add_vote(room_id: UUID, option_id: UUID, user_id: UUID, created_at: datetime, session: AsyncSession) -> VoteSchema:
        new_vote = Vote(room_id=room_id, option_id=option_id, user_id=user_id, created_at=created_at)
        session.add(new_vote)
        await session.flush()
        return VoteSchema.model_validate(new_vote)

    @staticmethod
    async def add_decision(
        room_id: UUID,
        winning_option_id: UUID | None,
        tie_breaker_used: bool,
        tie_breaker_type: str | None,
        decided_at: datetime,
        session: AsyncSession,
    ) -> DecisionSchema:
        new_decision = Decision(
            room_id=room_id,
            winning_option_id=winning_option_id,
            tie_breaker_used=tie_breaker_used,
            tie_breaker_type=tie_breaker_type,
            decided_at=decided_at,
        )
        session.add(new_decision)
        await session.flush()
        return DecisionSchema.model_validate(new_decision)


class UpdateData:
    @staticmethod
    async def compare_and_set_phase(
        room_id: UUID,
        expected_phases: List[PhaseModel],
        new_phase: PhaseModel,
        session: AsyncSession,
    ) -> bool:
        """Move a room to ``new_phase`` only if it is currently in one of ``expected_phases``

        Of several concurrent callers at most one sees True.

        Args:
            room_id (UUID): To identify the room
            expected_phases (List[PhaseModel]): Phases the room must be in
            new_phase (PhaseModel): Phase to write

        Returns:
            bool: True if this call changed the phase
        """
        stmt = (
            update(Room)
            .where(
                Room.id == room_id,
                Room.phase.in_([PhaseModel(p).value for p in expected_phases]),
            )
            .values(phase=PhaseModel(new_phase).value)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    async def set_participant_flags(room_id: UUID, user_id: UUID, session: AsyncSession, only_if_unset: str | None = None, **flags: bool) -> bool:
        """Update status flags of one participant

        Args:
            room_id (UUID): To identify the room
            user_id (UUID): To identify the participant within the room
            only_if_unset (str | None): Name of a flag that must currently be False for the update to apply
            **flags (bool): Flags to write, e.g. has_voted=True

        Returns:
            bool: True if a row was updated
        """
        stmt = update(Participant).where(
            Participant.room_id == room_id, Participant.user_id == user_id
        )
        if only_if_unset is not None:
            stmt = stmt.where(getattr(Participant, only_if_unset) == False)  # noqa: E712
        stmt = stmt.values(**flags).execution_options(synchronize_session=False)
        result = await session.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    async def update_option_text(option_id: UUID, text: str, session: AsyncSession) -> OptionSchema | None:
        stmt = select(Option).where(Option.id == option_id)
        result = await session.execute(stmt)
        option = result.scalars().first()
        if option is None:
            return None
        option.text = text
        await session.flush()
        return OptionSchema.model_validate(option)


class DeleteData:
    @staticmethod
    async def delete_option(option_id: UUID, session: AsyncSession) -> bool:
        stmt = delete(Option).where(Option.id == option_id).execution_options(synchronize_session=False)
        result = await session.execute(stmt)
        return result.rowcount == 1
