import asyncio
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from src.exceptions import Expired, InvalidPhase, NotAuthorized, NotReady, RoomNotFound
from src.models.dc_models import DecisionTypeModel, PhaseModel
from src.models.schemas import Decision


async def decision_count(Session, room_id):
    async with Session() as session:
        result = await session.execute(
            select(func.count()).select_from(Decision).where(Decision.room_id == room_id)
        )
        return result.scalar_one()


async def test_start_submission_only_from_lobby(room_engine, new_room):
    room = await new_room(start_in_submission=False)
    assert room.phase is PhaseModel.lobby

    room = await room_engine.start_submission(room.id)
    assert room.phase is PhaseModel.submission

    with pytest.raises(InvalidPhase):
        await room_engine.start_submission(room.id)


async def test_start_submission_unknown_room(room_engine):
    with pytest.raises(RoomNotFound):
        await room_engine.start_submission(uuid4())


async def test_only_creator_requests_voting(room_engine, new_room):
    creator, guest = uuid4(), uuid4()
    room = await new_room(creator)
    await room_engine.join_room(room.id, guest)
    await room_engine.set_ready(room.id, guest)

    with pytest.raises(NotAuthorized):
        await room_engine.request_voting(room.id, guest)
    assert (await room_engine.get_room(room.id)).phase is PhaseModel.submission


async def test_request_voting_waits_for_ready(room_engine, new_room):
    creator, guest = uuid4(), uuid4()
    room = await new_room(creator)
    await room_engine.join_room(room.id, guest)

    with pytest.raises(NotReady):
        await room_engine.request_voting(room.id, creator)

    await room_engine.set_ready(room.id, guest)
    room = await room_engine.request_voting(room.id, creator)
    assert room.phase is PhaseModel.voting


async def test_lone_creator_has_quorum(room_engine, new_room):
    creator = uuid4()
    room = await new_room(creator)
    room = await room_engine.request_voting(room.id, creator)
    assert room.phase is PhaseModel.voting


async def test_request_voting_needs_submission_phase(room_engine, new_room):
    creator = uuid4()
    room = await new_room(creator, start_in_submission=False)
    with pytest.raises(InvalidPhase):
        await room_engine.request_voting(room.id, creator)


async def test_request_voting_after_deadline(room_engine, new_room, clock):
    creator = uuid4()
    room = await new_room(creator, duration_minutes=5)
    clock.advance(minutes=5)
    with pytest.raises(Expired):
        await room_engine.request_voting(room.id, creator)


async def test_phases_never_go_back(room_engine, voting_room):
    room, creator, _, _ = await voting_room()
    await room_engine.force_results(room.id, creator)

    with pytest.raises(InvalidPhase):
        await room_engine.start_submission(room.id)
    with pytest.raises(InvalidPhase):
        await room_engine.request_voting(room.id, creator)
    assert (await room_engine.get_room(room.id)).phase is PhaseModel.results


async def test_force_results_with_no_votes(room_engine, voting_room):
    room, creator, _, _ = await voting_room()
    decision = await room_engine.force_results(room.id, creator)
    assert decision.winning_option_id is None
    assert decision.tie_breaker_used is False
    assert decision.tie_breaker_type is None


async def test_force_results_from_submission(room_engine, new_room):
    creator = uuid4()
    room = await new_room(creator)
    await room_engine.submit_option(room.id, creator, "Tacos")

    decision = await room_engine.force_results(room.id, creator)
    assert decision.winning_option_id is None
    assert (await room_engine.get_room(room.id)).phase is PhaseModel.results


async def test_force_results_not_from_lobby(room_engine, new_room):
    creator = uuid4()
    room = await new_room(creator, start_in_submission=False)
    with pytest.raises(InvalidPhase):
        await room_engine.force_results(room.id, creator)


async def test_unique_winner(room_engine, voting_room):
    room, creator, users, (pizza, sushi, _) = await voting_room(texts=("Pizza", "Sushi", "Curry"), extra_users=2)
    await room_engine.cast_vote(room.id, creator, pizza.id)
    await room_engine.cast_vote(room.id, users[0], pizza.id)

    decision = await room_engine.force_results(room.id, creator)
    assert decision.winning_option_id == pizza.id
    assert decision.tie_breaker_used is False


async def test_force_results_is_idempotent(room_engine, voting_room, Session):
    room, creator, users, (pizza, _) = await voting_room()
    await room_engine.cast_vote(room.id, creator, pizza.id)

    first = await room_engine.force_results(room.id, creator)
    second = await room_engine.force_results(room.id)
    assert first.id == second.id
    assert await decision_count(Session, room.id) == 1


async def test_concurrent_force_results_write_one_decision(room_engine, voting_room, Session):
    room, creator, users, (pizza, sushi) = await voting_room(extra_users=2)
    await room_engine.cast_vote(room.id, users[0], pizza.id)
    await room_engine.cast_vote(room.id, users[1], sushi.id)

    decisions = await asyncio.gather(*(room_engine.force_results(room.id) for _ in range(5)))

    assert len({d.id for d in decisions}) == 1
    assert await decision_count(Session, room.id) == 1
    assert decisions[0].tie_breaker_used is True
    assert decisions[0].winning_option_id in (pizza.id, sushi.id)


async def test_guest_may_not_force_early(room_engine, voting_room):
    room, creator, users, _ = await voting_room()
    with pytest.raises(NotAuthorized):
        await room_engine.force_results(room.id, users[0])


async def test_guest_may_force_after_deadline(room_engine, voting_room, clock):
    room, creator, users, _ = await voting_room(duration_minutes=10)
    clock.advance(minutes=11)
    decision = await room_engine.force_results(room.id, users[0])
    assert decision.room_id == room.id


async def test_coin_tie_between_two_voters(room_engine, voting_room):
    room, creator, users, (pizza, sushi) = await voting_room(decision_type=DecisionTypeModel.coin)
    await room_engine.cast_vote(room.id, creator, pizza.id)
    await room_engine.cast_vote(room.id, users[0], sushi.id)

    # Both participants voted, so the room closed itself.
    state = await room_engine.room_state(room.id, creator)
    assert state.room.phase is PhaseModel.results
    assert state.decision.tie_breaker_used is True
    assert state.decision.tie_breaker_type is DecisionTypeModel.coin
    assert state.decision.winning_option_id in (pizza.id, sushi.id)
    assert state.vote_counts == {pizza.id: 1, sushi.id: 1}
