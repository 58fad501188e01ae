from pydantic import BaseModel
from typing import Dict, List, Optional
from uuid import UUID
from datetime import datetime

from src.models.dc_models import DecisionTypeModel, PhaseModel, ProgressModel


class RoomSchema(BaseModel):
    id: UUID
    code: str
    name: str
    description: str | None
    decision_type: DecisionTypeModel
    phase: PhaseModel
    allow_everyone_to_submit: bool
    hide_results_until_end: bool
    max_participants: int | None
    expires_at: datetime
    created_by: UUID
    created_at: datetime

    class Config:
        from_attributes = True


class ParticipantSchema(BaseModel):
    id: UUID
    room_id: UUID
    user_id: UUID
    joined_at: datetime
    has_submitted: bool
    has_voted: bool
    is_ready: bool

    class Config:
        from_attributes = True


class OptionSchema(BaseModel):
    id: UUID
    room_id: UUID
    text: str
    created_by: UUID
    created_at: datetime

    class Config:
        from_attributes = True


class VoteSchema(BaseModel):
    id: UUID
    room_id: UUID
    option_id: UUID
    user_id: UUID
    created_at: datetime

    class Config:
        from_attributes = True


class DecisionSchema(BaseModel):
    id: UUID
    room_id: UUID
    winning_option_id: UUID | None
    tie_breaker_used: bool
    tie_breaker_type: DecisionTypeModel | None
    decided_at: datetime

    class Config:
        from_attributes = True


class RoomProjectionModel(BaseModel):
    """A client's local copy of one room's full aggregate state.

    Instances are never mutated; a refresh builds a new one with one slice replaced.
    """

    room: RoomSchema
    participants: List[ParticipantSchema] = []
    options: List[OptionSchema] = []
    votes: List[VoteSchema] = []
    decision: Optional[DecisionSchema] = None
    votes_visible: bool = False

    class Config:
        frozen = True


class RoomStateModel(BaseModel):
    """Projection as rendered for one viewer"""

    room: RoomSchema
    participants: List[ParticipantSchema]
    options: List[OptionSchema]
    decision: Optional[DecisionSchema] = None
    vote_counts: Optional[Dict[UUID, int]] = None
    my_vote: Optional[UUID] = None
    is_creator: bool
    seconds_remaining: int
    progress: ProgressModel


class HistoryEntryModel(BaseModel):
    room: RoomSchema
    decision: Optional[DecisionSchema] = None
    winning_option: Optional[OptionSchema] = None
    options: List[OptionSchema] = []
    participant_count: int = 0
