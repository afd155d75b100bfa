"""
HTTP surface tests: status codes and the error envelope.
"""
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from esports_backend.database import get_db
from esports_backend.main import app


ORGANIZER = {"X-User-Id": "1", "X-User-Role": "organizer"}
ADMIN = {"X-User-Id": "2", "X-User-Role": "admin"}


def player(user_id: int):
    return {"X-User-Id": str(user_id)}


@pytest_asyncio.fixture
async def client(db_session):
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def assert_error(response, status_code, code):
    assert response.status_code == status_code
    body = response.json()
    assert body["success"] is False
    assert body["code"] == code
    assert body["message"]
    return body


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_plan_preview(client):
    response = await client.post(
        "/api/tournaments/plan", json={"game": "BGMI", "max_players": 400, "mode": "squad"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total_teams"] == 100
    assert body["total_rounds"] == 3
    assert body["round_breakdown"][0] == {"round": 1, "rooms": 4, "teams": 100}


@pytest.mark.asyncio
async def test_create_requires_identity(client):
    response = await client.post(
        "/api/tournaments", json={"name": "Cup", "game": "BGMI", "max_participants": 100}
    )
    assert_error(response, 401, "AUTH_REQUIRED")


@pytest.mark.asyncio
async def test_create_tournament(client):
    response = await client.post(
        "/api/tournaments",
        json={"name": "Freshers Cup", "game": "Free Fire", "mode": "solo", "max_participants": 30, "entry_fee": "20"},
        headers=ORGANIZER,
    )

    assert response.status_code == 201
    tournament = response.json()["tournament"]
    assert tournament["status"] == "upcoming"
    assert tournament["game"] == "FREE_FIRE"
    assert tournament["room_capacity"] == 12
    assert tournament["total_rounds"] == 3
    assert tournament["prize_pool"] == "420.00"


@pytest.mark.asyncio
async def test_player_cannot_create(client):
    response = await client.post(
        "/api/tournaments",
        json={"name": "Mine", "game": "BGMI", "max_participants": 4},
        headers=player(77),
    )
    body = assert_error(response, 403, "FORBIDDEN")
    assert body["error"] == "Forbidden"


@pytest.mark.asyncio
async def test_system_role_cannot_be_asserted(client):
    response = await client.get("/api/wallets/me", headers={"X-User-Id": "0", "X-User-Role": "system"})
    assert_error(response, 403, "FORBIDDEN")


@pytest.mark.asyncio
async def test_missing_tournament(client):
    response = await client.get("/api/tournaments/9999")
    assert_error(response, 404, "NOT_FOUND")


@pytest.mark.asyncio
async def test_schema_errors_use_envelope(client):
    response = await client.post(
        "/api/tournaments",
        json={"name": "Cup", "game": "BGMI", "mode": "trio", "max_participants": 0},
        headers=ORGANIZER,
    )
    body = assert_error(response, 422, "VALIDATION_ERROR")
    fields = {tuple(error["loc"])[-1] for error in body["details"]["errors"]}
    assert {"mode", "max_participants"} <= fields


@pytest.mark.asyncio
async def test_invalid_transition_is_conflict(client, factory):
    tournament = await factory.tournament()

    response = await client.post(
        f"/api/tournaments/{tournament.id}/transition", json={"status": "completed"}, headers=ORGANIZER
    )

    body = assert_error(response, 409, "INVALID_TRANSITION")
    assert body["error"] == "Conflict"
    assert body["details"] == {"from": "upcoming", "to": "completed"}


@pytest.mark.asyncio
async def test_cancel_via_transition(client, factory):
    tournament = await factory.tournament()

    response = await client.post(
        f"/api/tournaments/{tournament.id}/transition",
        json={"status": "cancelled", "reason": "exams week"},
        headers=ORGANIZER,
    )

    assert response.status_code == 200
    assert response.json()["tournament"]["cancel_reason"] == "exams week"


@pytest.mark.asyncio
async def test_join_without_funds(client, factory):
    tournament = await factory.tournament(mode="solo", registration_deadline=None, scheduled_start=None)

    response = await client.post(f"/api/tournaments/{tournament.id}/join", json={}, headers=player(500))

    assert_error(response, 422, "INSUFFICIENT_BALANCE")


@pytest.mark.asyncio
async def test_deposit_then_join(client, factory):
    tournament = await factory.tournament(mode="solo", registration_deadline=None, scheduled_start=None)

    denied = await client.post("/api/wallets/501/deposit", json={"amount": "100"}, headers=player(501))
    assert_error(denied, 403, "FORBIDDEN")

    deposit = await client.post("/api/wallets/501/deposit", json={"amount": "100"}, headers=ADMIN)
    assert deposit.status_code == 200

    joined = await client.post(
        f"/api/tournaments/{tournament.id}/join", json={"team_name": "Solo Shot"}, headers=player(501)
    )
    assert joined.status_code == 201
    assert joined.json()["team"]["member_ids"] == [501]

    wallet = await client.get("/api/wallets/me", headers=player(501))
    assert Decimal(wallet.json()["balance"]) == Decimal("50")

    ledger = await client.get("/api/wallets/me/transactions", headers=player(501))
    assert [tx["type"] for tx in ledger.json()["transactions"]] == ["entry_fee", "deposit"]


@pytest.mark.asyncio
async def test_room_codes_hidden_from_players(client, factory):
    tournament = await factory.tournament(mode="solo", max_participants=10)
    team = await factory.join(tournament)
    await factory.start(tournament)
    url = f"/api/tournaments/{tournament.id}/rounds/1/rooms"

    as_player = (await client.get(url, headers=player(team.leader_id))).json()["rooms"]
    as_organizer = (await client.get(url, headers=ORGANIZER)).json()["rooms"]

    assert "room_code" not in as_player[0]
    assert "room_code" in as_organizer[0]
    assert as_player[0]["assignments"][0]["team_id"] == team.id


@pytest.mark.asyncio
async def test_allocation_waits_for_start(client, factory):
    tournament = await factory.tournament(mode="solo", max_participants=10)
    await factory.join(tournament)

    response = await client.post(
        f"/api/tournaments/{tournament.id}/rounds/1/allocate", json={}, headers=ORGANIZER
    )
    body = assert_error(response, 409, "STATE_CONFLICT")
    assert body["details"] == {"status": "upcoming"}


@pytest.mark.asyncio
async def test_complete_rooms_in_one_request(client, factory, db_session):
    tournament = await factory.tournament(mode="solo", max_participants=8, room_capacity=4)
    for _ in range(8):
        await factory.join(tournament)
    await factory.start(tournament)
    rooms = await factory.open_rooms(tournament.id, 1)
    room_ids = [room.id for room in rooms]
    for room in rooms:
        for assignment in room.assignments:
            await client.put(
                f"/api/assignments/{assignment.id}/outcome",
                json={"is_winner": assignment.slot_number == 1}, headers=ORGANIZER
            )

    denied = await client.post("/api/rooms/complete", json={"room_ids": room_ids}, headers=player(77))
    assert_error(denied, 403, "FORBIDDEN")

    response = await client.post("/api/rooms/complete", json={"room_ids": room_ids}, headers=ORGANIZER)
    assert response.status_code == 200
    assert [room["status"] for room in response.json()["rooms"]] == ["completed", "completed"]
