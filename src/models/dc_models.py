from pydantic import BaseModel, Field
from enum import Enum
from uuid import UUID
from typing import Optional, List


class PhaseModel(str, Enum):
    lobby = "lobby"
    submission = "submission"
    voting = "voting"
    results = "results"  # terminal


class DecisionTypeModel(str, Enum):
    dice = "dice"
    coin = "coin"
    spinner = "spinner"

    @property
    def arity(self) -> int | None:
        """Number of outcomes the instrument can show, None when it has one sector per option"""
        if self is DecisionTypeModel.dice:
            return 6
        if self is DecisionTypeModel.coin:
            return 2
        return None


class RelationModel(str, Enum):
    """Relations announced on the change-feed"""

    rooms = "rooms"
    participants = "participants"
    options = "options"
    votes = "votes"
    decisions = "decisions"


class WinnerKindModel(str, Enum):
    unique = "unique"
    tie = "tie"
    none = "none"


class CoinSideModel(str, Enum):
    heads = "heads"
    tails = "tails"


class WinnerModel(BaseModel):
    kind: WinnerKindModel
    option_ids: List[UUID] = []


class TieBreakResultModel(BaseModel):
    """Outcome of a tie-break draw.

    ``option_id`` is the selection. The remaining fields only describe how the draw
    should be animated; ``presentation`` differs from ``decision_type`` when the
    instrument cannot show that many outcomes.
    """

    option_id: UUID
    draw_index: int
    decision_type: DecisionTypeModel
    presentation: DecisionTypeModel
    die_face: Optional[int] = None
    coin_side: Optional[CoinSideModel] = None
    spinner_sector: Optional[int] = None


class RoomCreateModel(BaseModel):
    name: str
    description: Optional[str] = None
    decision_type: DecisionTypeModel
    allow_everyone_to_submit: bool = True
    hide_results_until_end: bool = False
    max_participants: Optional[int] = None
    duration_minutes: Optional[int] = None
    start_in_submission: bool = False


class OptionTextModel(BaseModel):
    text: str


class VoteRequestModel(BaseModel):
    option_id: UUID


class ReadyModel(BaseModel):
    is_ready: bool = True


class ProgressModel(BaseModel):
    submitted: float = Field(ge=0.0, le=1.0)
    ready: float = Field(ge=0.0, le=1.0)
