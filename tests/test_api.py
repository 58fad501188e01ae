from uuid import uuid4

import httpx
import pytest

from src.main import app


@pytest.fixture
async def client(room_engine):
    app.state.engine = room_engine
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def as_user(user_id):
    return {"X-User-Id": str(user_id)}


async def create_room(client, creator, **overrides):
    body = {"name": "Lunch", "decision_type": "coin", "start_in_submission": True}
    body.update(overrides)
    response = await client.post("/rooms", json=body, headers=as_user(creator))
    assert response.status_code == 201, response.text
    return response.json()


async def test_requires_user_header(client):
    response = await client.post("/rooms", json={"name": "Lunch", "decision_type": "coin"})
    assert response.status_code == 401
    assert response.json() == {"detail": "User not authenticated", "error": "NotAuthenticated"}

    response = await client.get(f"/rooms/{uuid4()}", headers={"X-User-Id": "not-a-uuid"})
    assert response.status_code == 401


async def test_full_round(client):
    creator, guest = uuid4(), uuid4()
    room = await create_room(client, creator)
    room_id = room["id"]
    assert room["phase"] == "submission"

    response = await client.get(f"/rooms/code/{room['code'].lower()}", headers=as_user(guest))
    assert response.json()["id"] == room_id

    response = await client.post(f"/rooms/{room_id}/join", headers=as_user(guest))
    assert response.status_code == 200
    assert response.json()["user_id"] == str(guest)

    pizza = (await client.post(f"/rooms/{room_id}/options", json={"text": "Pizza"}, headers=as_user(creator))).json()
    sushi = (await client.post(f"/rooms/{room_id}/options", json={"text": "Sushi"}, headers=as_user(guest))).json()

    response = await client.post(f"/rooms/{room_id}/request-voting", headers=as_user(creator))
    assert response.status_code == 409
    assert response.json()["error"] == "NotReady"

    response = await client.post(f"/rooms/{room_id}/ready", json={"is_ready": True}, headers=as_user(guest))
    assert response.json()["is_ready"] is True

    response = await client.get(f"/rooms/{room_id}/progress", headers=as_user(guest))
    assert response.json() == {"submitted": 1.0, "ready": 0.5}

    response = await client.post(f"/rooms/{room_id}/request-voting", headers=as_user(creator))
    assert response.status_code == 200
    assert response.json()["phase"] == "voting"

    response = await client.post(f"/rooms/{room_id}/votes", json={"option_id": pizza["id"]}, headers=as_user(guest))
    assert response.status_code == 201
    response = await client.post(f"/rooms/{room_id}/votes", json={"option_id": sushi["id"]}, headers=as_user(guest))
    assert response.status_code == 409
    assert response.json()["error"] == "Conflict"

    response = await client.get(f"/rooms/{room_id}/vote-counts", headers=as_user(creator))
    assert response.json() == {pizza["id"]: 1, sushi["id"]: 0}

    response = await client.post(f"/rooms/{room_id}/force-results", headers=as_user(guest))
    assert response.status_code == 403

    response = await client.post(f"/rooms/{room_id}/force-results", headers=as_user(creator))
    assert response.status_code == 200
    assert response.json()["winning_option_id"] == pizza["id"]

    state = (await client.get(f"/rooms/{room_id}/state", headers=as_user(guest))).json()
    assert state["room"]["phase"] == "results"
    assert state["my_vote"] == pizza["id"]
    assert state["is_creator"] is False

    history = (await client.get("/me/history", headers=as_user(guest))).json()
    assert [entry["room"]["id"] for entry in history] == [room_id]
    assert history[0]["winning_option"]["text"] == "Pizza"

    finished = (await client.get("/me/rooms", params={"finished": "true"}, headers=as_user(creator))).json()
    assert [r["id"] for r in finished] == [room_id]
    active = (await client.get("/me/rooms", headers=as_user(creator))).json()
    assert active == []


async def test_option_edit_routes(client):
    creator = uuid4()
    room = await create_room(client, creator)
    option = (await client.post(f"/rooms/{room['id']}/options", json={"text": "Tapas"}, headers=as_user(creator))).json()

    response = await client.patch(f"/options/{option['id']}", json={"text": "Paella"}, headers=as_user(creator))
    assert response.json()["text"] == "Paella"

    response = await client.patch(f"/options/{option['id']}", json={"text": "Paella"}, headers=as_user(uuid4()))
    assert response.status_code == 403

    response = await client.delete(f"/options/{option['id']}", headers=as_user(creator))
    assert response.status_code == 204
    response = await client.delete(f"/options/{option['id']}", headers=as_user(creator))
    assert response.status_code == 404
    assert response.json()["error"] == "OptionNotFound"


async def test_error_statuses(client):
    creator = uuid4()
    room = await create_room(client, creator, max_participants=1)

    response = await client.post(f"/rooms/{room['id']}/join", headers=as_user(uuid4()))
    assert response.status_code == 409
    assert response.json()["error"] == "RoomFull"

    response = await client.post(f"/rooms/{room['id']}/options", json={"text": "  "}, headers=as_user(creator))
    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"

    response = await client.get(f"/rooms/{uuid4()}", headers=as_user(creator))
    assert response.status_code == 404
    assert response.json()["error"] == "RoomNotFound"

    response = await client.post(f"/rooms/{room['id']}/start-submission", headers=as_user(creator))
    assert response.status_code == 409
    assert response.json()["error"] == "InvalidPhase"


async def test_hidden_counts_are_forbidden(client):
    creator = uuid4()
    room = await create_room(client, creator, hide_results_until_end=True)
    response = await client.get(f"/rooms/{room['id']}/vote-counts", headers=as_user(creator))
    assert response.status_code == 403


async def test_expired_room(client, clock):
    creator = uuid4()
    room = await create_room(client, creator, duration_minutes=1)
    clock.advance(minutes=2)
    response = await client.post(f"/rooms/{room['id']}/options", json={"text": "Late"}, headers=as_user(creator))
    assert response.status_code == 410
    assert response.json()["error"] == "Expired"
