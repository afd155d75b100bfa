"""
Round progression tests: room lifecycle, outcome reporting and advancement.
"""
from datetime import timedelta

import pytest
from sqlalchemy import select, func

from esports_backend.exceptions import (
    RoomNotActiveError,
    RoundNotFullyReportedError,
    ValidationError,
)
from esports_backend.orm import Room, RoomStatus, Team
from esports_backend.services import round_progression
from esports_backend.services.room_allocator import GRAND_FINAL_NAME, get_round_rooms


async def _started(factory, players=8):
    """8 solo players, 4 per room: rounds of 8 → 2 → 1."""
    tournament = await factory.tournament(mode="solo", max_participants=8, room_capacity=4)
    teams = [await factory.join(tournament) for _ in range(players)]
    await factory.start(tournament)
    return tournament, teams


async def _room_count(db, tournament_id):
    result = await db.execute(select(func.count(Room.id)).where(Room.tournament_id == tournament_id))
    return result.scalar()


@pytest.mark.asyncio
async def test_outcome_rejected_until_room_active(factory, db_session):
    tournament, _ = await _started(factory)
    rooms = await get_round_rooms(db_session, tournament.id, 1)

    with pytest.raises(RoomNotActiveError):
        await round_progression.record_round_outcome(db_session, rooms[0].assignments[0].id, True)


@pytest.mark.asyncio
async def test_activation_requires_credentials(factory, db_session):
    tournament, _ = await _started(factory)
    rooms = await get_round_rooms(db_session, tournament.id, 1)

    with pytest.raises(ValidationError):
        await round_progression.activate_room(db_session, rooms[0].id)


@pytest.mark.asyncio
async def test_outcome_rejected_after_room_completed(factory, db_session):
    tournament, _ = await _started(factory)
    rooms = await factory.play_round(tournament.id, 1)

    with pytest.raises(RoomNotActiveError):
        await round_progression.record_round_outcome(db_session, rooms[0].assignments[1].id, True)


@pytest.mark.asyncio
async def test_match_rank_must_be_positive(factory, db_session):
    tournament, _ = await _started(factory)
    rooms = await factory.open_rooms(tournament.id, 1)

    with pytest.raises(ValidationError):
        await round_progression.record_round_outcome(db_session, rooms[0].assignments[0].id, True, match_rank=0)


@pytest.mark.asyncio
async def test_complete_room_requires_every_outcome(factory, db_session):
    tournament, _ = await _started(factory)
    rooms = await factory.open_rooms(tournament.id, 1)
    await round_progression.record_round_outcome(db_session, rooms[0].assignments[0].id, True)

    with pytest.raises(RoundNotFullyReportedError):
        await round_progression.complete_room(db_session, rooms[0].id)


@pytest.mark.asyncio
async def test_complete_room_requires_a_winner(factory, db_session):
    tournament, _ = await _started(factory)
    rooms = await factory.open_rooms(tournament.id, 1)
    for assignment in rooms[0].assignments:
        await round_progression.record_round_outcome(db_session, assignment.id, False)

    with pytest.raises(ValidationError):
        await round_progression.complete_room(db_session, rooms[0].id)


@pytest.mark.asyncio
async def test_advance_requires_finished_round(factory, db_session):
    tournament, _ = await _started(factory)
    rooms = await factory.open_rooms(tournament.id, 1)
    # Room 1 fully reported and completed, room 2 untouched
    for assignment in rooms[0].assignments:
        await round_progression.record_round_outcome(db_session, assignment.id, assignment.slot_number == 1)
    await round_progression.complete_room(db_session, rooms[0].id)

    with pytest.raises(RoundNotFullyReportedError) as exc_info:
        await round_progression.advance_round(db_session, tournament.id, 1)
    assert exc_info.value.details["pending_room_ids"] == [rooms[1].id]


@pytest.mark.asyncio
async def test_advance_eliminates_losers_and_seeds_next_round(factory, db_session):
    tournament, teams = await _started(factory)
    await factory.play_round(tournament.id, 1)

    result = await round_progression.advance_round(db_session, tournament.id, 1)
    await db_session.commit()

    assert result.ready_to_complete is False
    assert sorted(result.advanced_team_ids) == [teams[0].id, teams[4].id]
    assert len(result.eliminated_team_ids) == 6
    assert len(result.next_rooms) == 1
    assert [a.team_id for a in result.next_rooms[0].assignments] == [teams[0].id, teams[4].id]

    assert teams[0].current_round == 2
    assert teams[0].is_eliminated is False
    # Losers take their match rank as final rank
    assert teams[1].is_eliminated is True
    assert teams[1].final_rank == 2
    assert teams[7].final_rank == 4
    assert teams[1].current_round == 1
    assert tournament.current_round == 2


@pytest.mark.asyncio
async def test_advance_is_idempotent(factory, db_session):
    tournament, _ = await _started(factory)
    await factory.play_round(tournament.id, 1)
    first = await round_progression.advance_round(db_session, tournament.id, 1)
    await db_session.commit()
    rooms_before = await _room_count(db_session, tournament.id)

    again = await round_progression.advance_round(db_session, tournament.id, 1)

    assert again.already_processed is True
    assert [room.id for room in again.next_rooms] == [room.id for room in first.next_rooms]
    assert sorted(again.advanced_team_ids) == sorted(first.advanced_team_ids)
    assert await _room_count(db_session, tournament.id) == rooms_before


@pytest.mark.asyncio
async def test_all_winners_round_trip(factory, db_session):
    tournament, teams = await _started(factory)
    await factory.play_round(tournament.id, 1, winners_per_room=4)

    result = await round_progression.advance_round(db_session, tournament.id, 1)

    assert result.eliminated_team_ids == []
    seated = sorted(a.team_id for room in result.next_rooms for a in room.assignments)
    assert seated == sorted(team.id for team in teams)
    assert all(len(room.assignments) <= room.capacity for room in result.next_rooms)


@pytest.mark.asyncio
async def test_bracket_runs_to_final(factory, db_session):
    tournament, teams = await _started(factory)
    assert tournament.total_rounds == 3

    await factory.play_round(tournament.id, 1)
    await round_progression.advance_round(db_session, tournament.id, 1)
    await db_session.commit()

    await factory.play_round(tournament.id, 2)
    to_final = await round_progression.advance_round(db_session, tournament.id, 2)
    await db_session.commit()
    assert [room.name for room in to_final.next_rooms] == [GRAND_FINAL_NAME]
    assert [a.team_id for a in to_final.next_rooms[0].assignments] == [teams[0].id]

    await factory.play_round(tournament.id, 3)
    final = await round_progression.advance_round(db_session, tournament.id, 3)
    await db_session.commit()

    assert final.ready_to_complete is True
    assert final.next_rooms == []
    assert teams[0].current_round == 3
    assert teams[0].is_eliminated is False

    result = await db_session.execute(
        select(func.count(Team.id)).where(Team.tournament_id == tournament.id, Team.is_eliminated.is_(False))
    )
    assert result.scalar() == 1

    again = await round_progression.advance_round(db_session, tournament.id, 3)
    assert again.ready_to_complete is True
    assert again.already_processed is True


@pytest.mark.asyncio
async def test_rooms_complete_with_status(factory, db_session):
    tournament, _ = await _started(factory)
    rooms = await factory.play_round(tournament.id, 1)

    assert all(room.status == RoomStatus.COMPLETED.value for room in rooms)
    assert all(room.completed_at is not None for room in rooms)


@pytest.mark.asyncio
async def test_complete_rooms_finishes_whole_round(factory, db_session):
    tournament, _ = await _started(factory)
    rooms = await factory.open_rooms(tournament.id, 1)
    for room in rooms:
        for assignment in room.assignments:
            await round_progression.record_round_outcome(db_session, assignment.id, assignment.slot_number == 1)

    completed = await round_progression.complete_rooms(db_session, [room.id for room in rooms])
    await db_session.commit()

    assert [room.status for room in completed] == [RoomStatus.COMPLETED.value] * 2
    advance = await round_progression.advance_round(db_session, tournament.id, 1)
    assert len(advance.next_rooms) == 1


@pytest.mark.asyncio
async def test_complete_rooms_is_all_or_nothing(factory, db_session):
    tournament, _ = await _started(factory)
    rooms = await factory.open_rooms(tournament.id, 1)
    room_ids = [room.id for room in rooms]
    first_room, second_room = ([a.id for a in room.assignments] for room in rooms)

    for assignment_id in first_room:
        await round_progression.record_round_outcome(db_session, assignment_id, assignment_id == first_room[0])
    await round_progression.record_round_outcome(db_session, second_room[0], True)

    with pytest.raises(RoundNotFullyReportedError):
        await round_progression.complete_rooms(db_session, room_ids)
    await db_session.rollback()

    result = await db_session.execute(select(Room.status).where(Room.id.in_(room_ids)))
    assert set(result.scalars().all()) == {RoomStatus.ACTIVE.value}


@pytest.mark.asyncio
@pytest.mark.parametrize("room_ids", [[], [7, 7]])
async def test_complete_rooms_rejects_bad_batch(db_session, room_ids):
    with pytest.raises(ValidationError):
        await round_progression.complete_rooms(db_session, room_ids)


@pytest.mark.asyncio
async def test_later_rounds_scheduled_from_advance_time(factory, db_session):
    tournament, _ = await _started(factory)
    await factory.play_round(tournament.id, 1, winners_per_room=2)
    advanced_at = factory.start_time + timedelta(hours=2)

    advance = await round_progression.advance_round(db_session, tournament.id, 1, now=advanced_at)
    await db_session.commit()

    assert [room.scheduled_time for room in advance.next_rooms] == [advanced_at]
