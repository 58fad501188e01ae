import logging
from typing import Dict, List
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import StreamingResponse

from src.authentication.identity import IdentityProvider
from src.models.dc_models import (
    OptionTextModel,
    ProgressModel,
    ReadyModel,
    RoomCreateModel,
    VoteRequestModel,
)
from src.models.schema_models import (
    DecisionSchema,
    HistoryEntryModel,
    OptionSchema,
    ParticipantSchema,
    RoomSchema,
    RoomStateModel,
    VoteSchema,
)
from src.services.engine import DecisionRoomEngine

room_router = APIRouter()
identity = IdentityProvider()


def get_engine(request: Request) -> DecisionRoomEngine:
    return request.app.state.engine


class RoomAPI:
    @staticmethod
    @room_router.post("/rooms", response_model=RoomSchema, status_code=status.HTTP_201_CREATED)
    async def create_room(
        room_data: RoomCreateModel,
        user_id: UUID = Depends(identity.current_user_id),
        engine: DecisionRoomEngine = Depends(get_engine),
    ):
        """Create a room; the caller becomes its creator and first participant

        Args:
            room_data (RoomCreateModel):
                    name: str
                    decision_type: DecisionTypeModel
                    allow_everyone_to_submit: bool
                    hide_results_until_end: bool
                    max_participants: int | None
                    duration_minutes: int | None

        Returns:
            RoomSchema: The new room, including its 6-character code
        """
        return await engine.create_room(user_id, room_data)

    @staticmethod
    @room_router.get("/rooms/code/{code}", response_model=RoomSchema)
    async def get_room_by_code(
        code: str,
        user_id: UUID = Depends(identity.current_user_id),
        engine: DecisionRoomEngine = Depends(get_engine),
    ):
        return await engine.get_room_by_code(code)

    @staticmethod
    @room_router.get("/rooms/{room_id}", response_model=RoomSchema)
    async def get_room(
        room_id: UUID,
        user_id: UUID = Depends(identity.current_user_id),
        engine: DecisionRoomEngine = Depends(get_engine),
    ):
        return await engine.get_room(room_id)

    @staticmethod
    @room_router.post("/rooms/{room_id}/join", response_model=ParticipantSchema)
    async def join_room(
        room_id: UUID,
        user_id: UUID = Depends(identity.current_user_id),
        engine: DecisionRoomEngine = Depends(get_engine),
    ):
        return await engine.join_room(room_id, user_id)

    @staticmethod
    @room_router.get("/rooms/{room_id}/state", response_model=RoomStateModel)
    async def get_room_state(
        room_id: UUID,
        user_id: UUID = Depends(identity.current_user_id),
        engine: DecisionRoomEngine = Depends(get_engine),
    ):
        return await engine.room_state(room_id, user_id)

    @staticmethod
    @room_router.get("/rooms/{room_id}/progress", response_model=ProgressModel)
    async def get_progress(
        room_id: UUID,
        user_id: UUID = Depends(identity.current_user_id),
        engine: DecisionRoomEngine = Depends(get_engine),
    ):
        return await engine.progress(room_id)

    @staticmethod
    @room_router.get("/rooms/{room_id}/stream")
    async def stream_room_state(
        room_id: UUID,
        user_id: UUID = Depends(identity.current_user_id),
        engine: DecisionRoomEngine = Depends(get_engine),
    ):
        """Stream the room state to the client as server-sent events"""
        logging.info(f"Room {room_id}: {user_id} opened a state stream")
        realtime_sync = engine.realtime(room_id, user_id)

        return StreamingResponse(
            realtime_sync.event_generator(),
            media_type="text/event-stream; charset=utf-8",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )


class PhaseAPI:
    @staticmethod
    @room_router.post("/rooms/{room_id}/start-submission", response_model=RoomSchema)
    async def start_submission(
        room_id: UUID,
        user_id: UUID = Depends(identity.current_user_id),
        engine: DecisionRoomEngine = Depends(get_engine),
    ):
        return await engine.start_submission(room_id)

    @staticmethod
    @room_router.post("/rooms/{room_id}/ready", response_model=ParticipantSchema)
    async def set_ready(
        room_id: UUID,
        ready: ReadyModel,
        user_id: UUID = Depends(identity.current_user_id),
        engine: DecisionRoomEngine = Depends(get_engine),
    ):
        return await engine.set_ready(room_id, user_id, ready.is_ready)

    @staticmethod
    @room_router.post("/rooms/{room_id}/request-voting", response_model=RoomSchema)
    async def request_voting(
        room_id: UUID,
        user_id: UUID = Depends(identity.current_user_id),
        engine: DecisionRoomEngine = Depends(get_engine),
    ):
        return await engine.request_voting(room_id, user_id)

    @staticmethod
    @room_router.post("/rooms/{room_id}/force-results", response_model=DecisionSchema)
    async def force_results(
        room_id: UUID,
        user_id: UUID = Depends(identity.current_user_id),
        engine: DecisionRoomEngine = Depends(get_engine),
    ):
        """Close the room and return its decision

        Allowed for the creator at any time, and for anyone once the deadline has
        passed or every participant has voted.
        """
        return await engine.force_results(room_id, user_id)


class OptionAPI:
    @staticmethod
    @room_router.post("/rooms/{room_id}/options", response_model=OptionSchema, status_code=status.HTTP_201_CREATED)
    async def submit_option(
        room_id: UUID,
        option: OptionTextModel,
        user_id: UUID = Depends(identity.current_user_id),
        engine: DecisionRoomEngine = Depends(get_engine),
    ):
        return await engine.submit_option(room_id, user_id, option.text)

    @staticmethod
    @room_router.patch("/options/{option_id}", response_model=OptionSchema)
    async def update_option(
        option_id: UUID,
        option: OptionTextModel,
        user_id: UUID = Depends(identity.current_user_id),
        engine: DecisionRoomEngine = Depends(get_engine),
    ):
        return await engine.update_option(option_id, user_id, option.text)

    @staticmethod
    @room_router.delete("/options/{option_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_option(
        option_id: UUID,
        user_id: UUID = Depends(identity.current_user_id),
        engine: DecisionRoomEngine = Depends(get_engine),
    ) -> None:
        await engine.delete_option(option_id, user_id)


class VoteAPI:
    @staticmethod
    @room_router.post("/rooms/{room_id}/votes", response_model=VoteSchema, status_code=status.HTTP_201_CREATED)
    async def cast_vote(
        room_id: UUID,
        vote: VoteRequestModel,
        user_id: UUID = Depends(identity.current_user_id),
        engine: DecisionRoomEngine = Depends(get_engine),
    ):
        return await engine.cast_vote(room_id, user_id, vote.option_id)

    @staticmethod
    @room_router.get("/rooms/{room_id}/vote-counts", response_model=Dict[UUID, int])
    async def get_vote_counts(
        room_id: UUID,
        user_id: UUID = Depends(identity.current_user_id),
        engine: DecisionRoomEngine = Depends(get_engine),
    ):
        return await engine.vote_counts(room_id)


class UserAPI:
    @staticmethod
    @room_router.get("/me/rooms", response_model=List[RoomSchema])
    async def list_my_rooms(
        finished: bool = False,
        user_id: UUID = Depends(identity.current_user_id),
        engine: DecisionRoomEngine = Depends(get_engine),
    ):
        return await engine.list_user_rooms(user_id, finished)

    @staticmethod
    @room_router.get("/me/history", response_model=List[HistoryEntryModel])
    async def get_history(
        user_id: UUID = Depends(identity.current_user_id),
        engine: DecisionRoomEngine = Depends(get_engine),
    ):
        return await engine.decision_history(user_id)
