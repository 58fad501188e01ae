from datetime import datetime
from uuid import UUID

from src.domain.room_rules import (
    ready_progress,
    seconds_remaining,
    submission_progress,
    tally_votes,
)
from src.models.dc_models import ProgressModel
from src.models.schema_models import RoomProjectionModel, RoomStateModel


class DataConverter:
    """This class is used to convert data between different formats."""

    def convert_projection_to_room_state(
        self, projection: RoomProjectionModel, viewer_id: UUID | None, now: datetime
    ) -> RoomStateModel:
        """Convert the projection to the RoomStateModel to send a client

        Vote counts and the viewer's own vote are only filled in when the
        projection carries votes, i.e. when results are not being held back.

        Args:
            projection (RoomProjectionModel): Full state of the room
            viewer_id (UUID | None): User the state is rendered for
            now (datetime): Current time, for the countdown

        Returns:
            RoomStateModel: The room state for transmission to the client
        """
        vote_counts = None
        my_vote = None
        if projection.votes_visible:
            vote_counts = tally_votes(
                [o.id for o in projection.options],
                [v.option_id for v in projection.votes],
            )
            for vote in projection.votes:
                if vote.user_id == viewer_id:
                    my_vote = vote.option_id
                    break

        room_state = RoomStateModel(
            room=projection.room,
            participants=projection.participants,
            options=projection.options,
            decision=projection.decision,
            vote_counts=vote_counts,
            my_vote=my_vote,
            is_creator=viewer_id is not None and viewer_id == projection.room.created_by,
            seconds_remaining=seconds_remaining(projection.room.expires_at, now),
            progress=ProgressModel(
                submitted=submission_progress(projection.participants),
                ready=ready_progress(projection.participants),
            ),
        )
        return room_state
