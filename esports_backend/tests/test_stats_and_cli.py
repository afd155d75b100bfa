"""
Stats aggregation and CLI tests.
"""
import json
from datetime import timedelta

import pytest

from esports_backend.cli import create_parser, main
from esports_backend.rbac import ActorContext
from esports_backend.services import registration_service, round_progression
from esports_backend.services.stats_service import get_tournament_stats


@pytest.mark.asyncio
async def test_stats_track_rounds_and_withdrawals(factory, db_session, now):
    tournament = await factory.tournament(mode="solo", max_participants=8, room_capacity=4)
    teams = [await factory.join(tournament) for _ in range(6)]
    await registration_service.leave_tournament(
        db_session, tournament.id, ActorContext(teams[-1].leader_id), now=now + timedelta(minutes=5)
    )
    await db_session.commit()

    await factory.start(tournament)
    await factory.play_round(tournament.id, 1)
    await round_progression.advance_round(db_session, tournament.id, 1)
    await db_session.commit()

    stats = await get_tournament_stats(db_session, tournament.id)

    assert stats["status"] == "ongoing"
    assert stats["participants"] == 5
    assert stats["total_teams"] == 6
    assert stats["withdrawn_teams"] == 1
    assert stats["active_teams"] == 2
    assert stats["eliminated_teams"] == 3
    assert stats["current_round"] == 2
    assert stats["rounds"] == [
        {"round": 1, "rooms": 2, "completed_rooms": 2},
        {"round": 2, "rooms": 1, "completed_rooms": 0},
    ]


def test_cli_plan_table(capsys):
    assert main(["plan", "--game", "BGMI", "--players", "400", "--mode", "squad"]) == 0

    out = capsys.readouterr().out
    assert "Total rounds:   3" in out
    assert "Initial rooms:  4" in out


def test_cli_plan_json(capsys):
    assert main(["--json", "plan", "-g", "Free Fire", "-p", "30", "-m", "solo"]) == 0

    plan = json.loads(capsys.readouterr().out)
    assert plan["room_capacity"] == 12
    assert plan["round_breakdown"][-1] == {"round": 3, "rooms": 1, "teams": 1}


def test_cli_reports_engine_errors(capsys):
    assert main(["plan", "--game", "BGMI", "--players", "0"]) == 2
    assert "VALIDATION_ERROR" in capsys.readouterr().out


def test_cli_without_command_prints_help(capsys):
    assert main([]) == 1


def test_parser_defaults():
    args = create_parser().parse_args(["plan", "-g", "BGMI", "-p", "10"])
    assert args.mode == "squad"
    assert args.room_capacity is None
    assert args.json is False
