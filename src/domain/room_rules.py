"""Room lifecycle rules that are independent from HTTP and DB.

Rule of thumb:
- OK: phase ordering, counting, winner detection, tie-break selection.
- Not OK: touching DB sessions, Redis, FastAPI, datetime.now(), global RNG state.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Sequence
from uuid import UUID

import numpy as np

from src.models.dc_models import (
    CoinSideModel,
    DecisionTypeModel,
    PhaseModel,
    TieBreakResultModel,
    WinnerKindModel,
    WinnerModel,
)

ROOM_CODE_LENGTH = 6
ROOM_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

PHASE_ORDER = [
    PhaseModel.lobby,
    PhaseModel.submission,
    PhaseModel.voting,
    PhaseModel.results,
]

# Phases in which options may still be added, edited or removed.
SUBMISSION_PHASES = (PhaseModel.lobby, PhaseModel.submission)
# Phases the expiration clock is allowed to close.
EXPIRABLE_PHASES = (PhaseModel.submission, PhaseModel.voting)


# ==============================================================================
# ==== Phases ==================================================================
# ==============================================================================


def phase_rank(phase: PhaseModel) -> int:
    return PHASE_ORDER.index(PhaseModel(phase))


def can_transition(current: PhaseModel, target: PhaseModel) -> bool:
    """Return True if ``current -> target`` is a legal move.

    Phases only move forward one step at a time, except that Submission may
    jump straight to Results when the room is forced to close.
    """
    current, target = PhaseModel(current), PhaseModel(target)
    if target is PhaseModel.results:
        return current in EXPIRABLE_PHASES
    return phase_rank(target) == phase_rank(current) + 1


def is_expired(expires_at: datetime, now: datetime) -> bool:
    return now >= expires_at


def seconds_remaining(expires_at: datetime, now: datetime) -> int:
    return max(0, int((expires_at - now).total_seconds()))


# ==============================================================================
# ==== Participants ============================================================
# ==============================================================================


def _ratio(flags: Sequence[bool]) -> float:
    if len(flags) == 0:
        return 0.0
    return sum(1 for flag in flags if flag) / len(flags)


def submission_progress(participants: Sequence) -> float:
    """Share of participants that have submitted at least one option; 0 for an empty room."""
    return _ratio([p.has_submitted for p in participants])


def ready_progress(participants: Sequence) -> float:
    return _ratio([p.is_ready for p in participants])


def readiness_quorum(participants: Iterable, creator_id: UUID) -> bool:
    """True when every participant other than the creator is ready.

    The creator asking for the vote counts as the creator being ready, so a room
    where the creator is alone always has a quorum.
    """
    return all(p.is_ready for p in participants if p.user_id != creator_id)


# ==============================================================================
# ==== Votes ===================================================================
# ==============================================================================


def tally_votes(option_ids: Iterable[UUID], voted_option_ids: Iterable[UUID]) -> Dict[UUID, int]:
    """Count votes per option, keeping options nobody voted for at zero.

    The returned dict preserves the order of ``option_ids``.
    """
    tally = {option_id: 0 for option_id in option_ids}
    for option_id in voted_option_ids:
        tally[option_id] = tally.get(option_id, 0) + 1
    return tally


def decide_winner(tally: Dict[UUID, int]) -> WinnerModel:
    """Classify a tally as a unique winner, a tie, or no votes at all."""
    if sum(tally.values()) == 0:
        return WinnerModel(kind=WinnerKindModel.none)

    top = max(tally.values())
    leaders = [option_id for option_id, count in tally.items() if count == top]
    if len(leaders) == 1:
        return WinnerModel(kind=WinnerKindModel.unique, option_ids=leaders)
    return WinnerModel(kind=WinnerKindModel.tie, option_ids=leaders)


# ==============================================================================
# ==== Tie-break ===============================================================
# ==============================================================================


def draw_tie_break(
    tied_option_ids: Sequence[UUID],
    decision_type: DecisionTypeModel,
    rng: np.random.Generator,
) -> TieBreakResultModel:
    """Pick one of the tied options uniformly at random.

    The selection is a single ``rng.integers(0, n)`` draw, so it is uniform over
    all tied options whatever the decision type. The type only decides how the
    draw is presented: a die face, a coin side, or a spinner sector. When more
    options are tied than the instrument has outcomes (seven or more under dice,
    three or more under coin) the draw is presented as a spinner instead.

    Args:
        tied_option_ids (Sequence[UUID]): Options sharing the maximum count, at least one
        decision_type (DecisionTypeModel): The room's decision type
        rng (np.random.Generator): Source of randomness

    Returns:
        TieBreakResultModel: The selected option and how to animate it
    """
    if len(tied_option_ids) == 0:
        raise ValueError("tie-break needs at least one option")

    decision_type = DecisionTypeModel(decision_type)
    draw_index = int(rng.integers(0, len(tied_option_ids)))

    presentation = decision_type
    if decision_type.arity is not None and len(tied_option_ids) > decision_type.arity:
        presentation = DecisionTypeModel.spinner

    result = TieBreakResultModel(
        option_id=tied_option_ids[draw_index],
        draw_index=draw_index,
        decision_type=decision_type,
        presentation=presentation,
    )
    if presentation is DecisionTypeModel.dice:
        result.die_face = draw_index + 1
    elif presentation is DecisionTypeModel.coin:
        result.coin_side = CoinSideModel.heads if draw_index == 0 else CoinSideModel.tails
    else:
        result.spinner_sector = draw_index
    return result


# ==============================================================================
# ==== Room codes ==============================================================
# ==============================================================================


def generate_room_code(rng: np.random.Generator) -> str:
    indices = rng.integers(0, len(ROOM_CODE_ALPHABET), size=ROOM_CODE_LENGTH)
    return "".join(ROOM_CODE_ALPHABET[i] for i in indices)


def normalize_room_code(code: str) -> str:
    return (code or "").strip().upper()


def is_valid_room_code(code: str) -> bool:
    return len(code) == ROOM_CODE_LENGTH and all(c in ROOM_CODE_ALPHABET for c in code)
