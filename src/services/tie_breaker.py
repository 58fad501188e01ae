import logging
from typing import Sequence
from uuid import UUID

import numpy as np

from src.domain.room_rules import draw_tie_break
from src.models.dc_models import DecisionTypeModel, TieBreakResultModel


class TieBreaker:
    """Resolves ties among the top-voted options by a uniform random draw.

    The generator is seeded from OS entropy unless one is passed in; numpy's
    PCG64 yields 64 random bits per draw.
    """

    def __init__(self, rng: np.random.Generator | None = None):
        self.rng: np.random.Generator = rng if rng is not None else np.random.default_rng()

    def resolve(
        self, tied_option_ids: Sequence[UUID], decision_type: DecisionTypeModel
    ) -> TieBreakResultModel:
        """Select one of the tied options

        Args:
            tied_option_ids (Sequence[UUID]): Options sharing the maximum vote count
            decision_type (DecisionTypeModel): Room's decision type, used for presentation only

        Returns:
            TieBreakResultModel: Selected option and how the draw should be shown
        """
        result = draw_tie_break(tied_option_ids, decision_type, self.rng)
        logging.info(
            f"Tie-break among {len(tied_option_ids)} options by {result.decision_type.value} "
            f"(shown as {result.presentation.value}): picked index {result.draw_index}"
        )
        return result
