from uuid import uuid4

import pytest
from sqlalchemy import func, select

from src.exceptions import (
    Expired,
    InvalidPhase,
    NotAuthorized,
    OptionNotFound,
    RoomNotFound,
    ValidationError,
)
from src.models.schemas import Option


async def option_count(Session, room_id):
    async with Session() as session:
        result = await session.execute(select(func.count()).select_from(Option).where(Option.room_id == room_id))
        return result.scalar_one()


async def participant_of(room_engine, room_id, user_id):
    state = await room_engine.room_state(room_id, user_id)
    return next(p for p in state.participants if p.user_id == user_id)


@pytest.mark.parametrize("text", ["", "   ", None, "x" * 201])
async def test_rejects_bad_text(room_engine, new_room, Session, text):
    creator = uuid4()
    room = await new_room(creator)
    with pytest.raises(ValidationError):
        await room_engine.submit_option(room.id, creator, text)
    assert await option_count(Session, room.id) == 0


async def test_text_is_stripped(room_engine, new_room):
    creator = uuid4()
    room = await new_room(creator)
    option = await room_engine.submit_option(room.id, creator, "  Ramen  ")
    assert option.text == "Ramen"
    assert option.created_by == creator


async def test_restricted_room_only_accepts_creator(room_engine, new_room, Session):
    creator, guest = uuid4(), uuid4()
    room = await new_room(creator, allow_everyone_to_submit=False)
    await room_engine.join_room(room.id, guest)

    with pytest.raises(NotAuthorized):
        await room_engine.submit_option(room.id, guest, "Burgers")
    assert await option_count(Session, room.id) == 0

    await room_engine.submit_option(room.id, creator, "Burgers")
    assert await option_count(Session, room.id) == 1


async def test_must_join_before_submitting(room_engine, new_room):
    room = await new_room()
    with pytest.raises(NotAuthorized):
        await room_engine.submit_option(room.id, uuid4(), "Salad")


async def test_no_options_during_voting(room_engine, voting_room):
    room, creator, _, _ = await voting_room()
    with pytest.raises(InvalidPhase):
        await room_engine.submit_option(room.id, creator, "Late idea")


async def test_no_options_after_deadline(room_engine, new_room, clock):
    creator = uuid4()
    room = await new_room(creator, duration_minutes=1)
    clock.advance(minutes=2)
    with pytest.raises(Expired):
        await room_engine.submit_option(room.id, creator, "Too late")


async def test_unknown_room(room_engine):
    with pytest.raises(RoomNotFound):
        await room_engine.submit_option(uuid4(), uuid4(), "Anything")


async def test_first_submission_sets_flag_and_progress(room_engine, new_room):
    creator, guest = uuid4(), uuid4()
    room = await new_room(creator)
    await room_engine.join_room(room.id, guest)
    assert (await participant_of(room_engine, room.id, creator)).has_submitted is False

    await room_engine.submit_option(room.id, creator, "Pizza")
    await room_engine.submit_option(room.id, creator, "Pasta")

    assert (await participant_of(room_engine, room.id, creator)).has_submitted is True
    assert (await participant_of(room_engine, room.id, guest)).has_submitted is False
    assert await room_engine.submission_tracker.submission_progress(room.id) == 0.5

    progress = await room_engine.progress(room.id)
    assert progress.submitted == 0.5
    assert progress.ready == 0.0


async def test_lobby_accepts_options(room_engine, new_room):
    creator = uuid4()
    room = await new_room(creator, start_in_submission=False)
    option = await room_engine.submit_option(room.id, creator, "Early bird")
    assert option.room_id == room.id


async def test_author_and_creator_edit_options(room_engine, new_room):
    creator, author, stranger = uuid4(), uuid4(), uuid4()
    room = await new_room(creator)
    await room_engine.join_room(room.id, author)
    await room_engine.join_room(room.id, stranger)
    option = await room_engine.submit_option(room.id, author, "Thai")

    assert (await room_engine.update_option(option.id, author, "Thai curry")).text == "Thai curry"
    assert (await room_engine.update_option(option.id, creator, "Green curry")).text == "Green curry"
    with pytest.raises(NotAuthorized):
        await room_engine.update_option(option.id, stranger, "Hijacked")
    with pytest.raises(ValidationError):
        await room_engine.update_option(option.id, author, " ")


async def test_delete_option_keeps_submitted_flag(room_engine, new_room, Session):
    creator, author = uuid4(), uuid4()
    room = await new_room(creator)
    await room_engine.join_room(room.id, author)
    option = await room_engine.submit_option(room.id, author, "Falafel")

    await room_engine.delete_option(option.id, author)

    assert await option_count(Session, room.id) == 0
    assert (await participant_of(room_engine, room.id, author)).has_submitted is True
    with pytest.raises(OptionNotFound):
        await room_engine.delete_option(option.id, author)


async def test_options_frozen_once_voting(room_engine, voting_room):
    room, creator, _, (pizza, _) = await voting_room()
    with pytest.raises(InvalidPhase):
        await room_engine.update_option(pizza.id, creator, "Pizza!")
    with pytest.raises(InvalidPhase):
        await room_engine.delete_option(pizza.id, creator)
