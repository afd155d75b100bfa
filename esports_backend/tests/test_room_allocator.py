"""
Room allocator tests: partitioning, persisted rooms and eligibility checks.
"""
import math
import random
from datetime import timedelta

import pytest

from esports_backend.exceptions import RoundAlreadyAllocatedError, StateConflictError, ValidationError
from esports_backend.orm import RoomStatus, TournamentStatus
from esports_backend.services.room_allocator import (
    GRAND_FINAL_NAME,
    allocate_round,
    get_round_rooms,
    partition_teams,
)


# ============================================================================
# partition_teams
# ============================================================================

def test_partition_keeps_order():
    assert partition_teams([5, 6, 7, 8, 9], 2) == [[5, 6], [7, 8], [9]]


def test_partition_empty():
    assert partition_teams([], 25) == []


def test_partition_randomized_never_exceeds_capacity():
    rng = random.Random(20240601)
    for _ in range(300):
        n = rng.randint(0, 250)
        capacity = rng.randint(1, 30)
        team_ids = rng.sample(range(1, 10_000), n)

        rooms = partition_teams(team_ids, capacity)

        assert len(rooms) == math.ceil(n / capacity)
        assert all(1 <= len(room) <= capacity for room in rooms)
        assert [t for room in rooms for t in room] == team_ids


def test_partition_rejects_zero_capacity():
    with pytest.raises(ValidationError):
        partition_teams([1, 2], 0)


# ============================================================================
# allocate_round
# ============================================================================

async def _solo_tournament(factory, players=10):
    tournament = await factory.tournament(mode="solo", max_participants=20, room_capacity=4)
    teams = [await factory.join(tournament) for _ in range(players)]
    return tournament, teams


async def _mark_ongoing(db, tournament):
    """Ongoing without round 1 seated, so allocation checks can run directly."""
    tournament.status = TournamentStatus.ONGOING.value
    await db.flush()


@pytest.mark.asyncio
async def test_start_allocates_first_round_in_join_order(factory, db_session):
    tournament, teams = await _solo_tournament(factory)
    await factory.start(tournament)

    rooms = await get_round_rooms(db_session, tournament.id, 1)

    assert [len(room.assignments) for room in rooms] == [4, 4, 2]
    seated = [a.team_id for room in rooms for a in room.assignments]
    assert seated == [team.id for team in teams]
    for room in rooms:
        assert [a.slot_number for a in room.assignments] == list(range(1, len(room.assignments) + 1))
        assert room.status == RoomStatus.PENDING.value
        assert room.capacity == 4


@pytest.mark.asyncio
async def test_rooms_scheduled_with_gap_and_named(factory, db_session):
    tournament, _ = await _solo_tournament(factory)
    await factory.start(tournament)

    rooms = await get_round_rooms(db_session, tournament.id, 1)

    assert [room.scheduled_time for room in rooms] == [
        factory.start_time,
        factory.start_time + timedelta(minutes=15),
        factory.start_time + timedelta(minutes=30),
    ]
    assert [room.name for room in rooms] == ["Round 1 - Room 1", "Round 1 - Room 2", "Round 1 - Room 3"]


@pytest.mark.asyncio
async def test_single_round_tournament_room_is_grand_final(factory, db_session):
    tournament = await factory.tournament(mode="solo", max_participants=4, room_capacity=4)
    for _ in range(3):
        await factory.join(tournament)
    await factory.start(tournament)

    rooms = await get_round_rooms(db_session, tournament.id, 1)
    assert len(rooms) == 1
    assert rooms[0].name == GRAND_FINAL_NAME


@pytest.mark.asyncio
async def test_round_cannot_be_allocated_twice(factory, db_session):
    tournament, teams = await _solo_tournament(factory)
    await factory.start(tournament)

    with pytest.raises(RoundAlreadyAllocatedError):
        await allocate_round(db_session, tournament.id, 1, [team.id for team in teams])


@pytest.mark.asyncio
async def test_empty_team_list_creates_no_rooms(factory, db_session):
    tournament, _ = await _solo_tournament(factory)
    await factory.start(tournament)

    assert await allocate_round(db_session, tournament.id, 2, []) == []
    assert await get_round_rooms(db_session, tournament.id, 2) == []


@pytest.mark.asyncio
async def test_team_from_another_round_rejected(factory, db_session):
    tournament, teams = await _solo_tournament(factory)
    await factory.start(tournament)

    # Every team is still in round 1
    with pytest.raises(ValidationError):
        await allocate_round(db_session, tournament.id, 2, [teams[0].id])


@pytest.mark.asyncio
async def test_eliminated_team_rejected(factory, db_session):
    tournament, teams = await _solo_tournament(factory, players=3)
    await _mark_ongoing(db_session, tournament)
    teams[1].is_eliminated = True
    await db_session.flush()

    with pytest.raises(ValidationError):
        await allocate_round(db_session, tournament.id, 1, [team.id for team in teams])


@pytest.mark.asyncio
async def test_duplicate_team_rejected(factory, db_session):
    tournament, teams = await _solo_tournament(factory, players=3)
    await _mark_ongoing(db_session, tournament)

    with pytest.raises(ValidationError):
        await allocate_round(db_session, tournament.id, 1, [teams[0].id, teams[1].id, teams[0].id])


@pytest.mark.asyncio
async def test_foreign_team_rejected(factory, db_session):
    tournament, _ = await _solo_tournament(factory, players=2)
    other = await factory.tournament(name="Other Cup", mode="solo", max_participants=20, room_capacity=4)
    stranger = await factory.join(other)
    await _mark_ongoing(db_session, tournament)

    with pytest.raises(ValidationError):
        await allocate_round(db_session, tournament.id, 1, [stranger.id])


@pytest.mark.asyncio
async def test_round_out_of_range_rejected(factory, db_session):
    tournament, teams = await _solo_tournament(factory, players=2)
    await _mark_ongoing(db_session, tournament)

    with pytest.raises(ValidationError):
        await allocate_round(db_session, tournament.id, tournament.total_rounds + 1, [teams[0].id])
    with pytest.raises(ValidationError):
        await allocate_round(db_session, tournament.id, 0, [teams[0].id])


@pytest.mark.asyncio
async def test_allocation_sets_current_round(factory, db_session):
    tournament, teams = await _solo_tournament(factory, players=5)
    assert tournament.current_round == 0
    await _mark_ongoing(db_session, tournament)

    rooms = await allocate_round(db_session, tournament.id, 1, [team.id for team in reversed(teams)])

    assert tournament.current_round == 1
    # Seeding ignores the caller's order
    assert rooms[0].assignments[0].team_id == teams[0].id


@pytest.mark.asyncio
async def test_allocation_rejected_before_start(factory, db_session):
    tournament, teams = await _solo_tournament(factory, players=1)

    with pytest.raises(StateConflictError):
        await allocate_round(db_session, tournament.id, 1, [teams[0].id])

    assert await get_round_rooms(db_session, tournament.id, 1) == []


@pytest.mark.asyncio
async def test_late_joiner_seated_at_start(factory, db_session):
    tournament, early = await _solo_tournament(factory, players=1)
    with pytest.raises(StateConflictError):
        await allocate_round(db_session, tournament.id, 1, [early[0].id])

    late = await factory.join(tournament)
    await factory.start(tournament)

    rooms = await get_round_rooms(db_session, tournament.id, 1)
    seated = {a.team_id for room in rooms for a in room.assignments}
    assert seated == {early[0].id, late.id}
