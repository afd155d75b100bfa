"""
Tournament CLI Commands

plan, sweep, stats
"""
import asyncio
import json

from esports_backend.exceptions import TournamentEngineError
from esports_backend.services.capacity_planner import plan_capacity


class TournamentCommand:
    """Tournament CLI command handler."""

    def __init__(self, as_json: bool = False):
        self.as_json = as_json

    def execute(self, args) -> int:
        """Execute tournament command."""
        handlers = {
            "plan": self._plan,
            "sweep": self._sweep,
            "stats": self._stats,
        }
        handler = handlers.get(args.command)
        if handler is None:
            print("Error: Unknown command")
            return 1
        try:
            return handler(args)
        except TournamentEngineError as e:
            print(f"Error [{e.code}]: {e.message}")
            return 2

    def _plan(self, args) -> int:
        """Print the capacity plan for a roster."""
        plan = plan_capacity(args.game, args.players, args.mode, room_capacity=args.room_capacity)

        if self.as_json:
            print(json.dumps(plan.to_dict(), indent=2))
            return 0

        print("=== Capacity Plan ===")
        print(f"Game:           {plan.game}")
        print(f"Mode:           {plan.mode}")
        print(f"Room capacity:  {plan.room_capacity} teams")
        print(f"Total teams:    {plan.total_teams}")
        print(f"Initial rooms:  {plan.initial_rooms}")
        print(f"Total rounds:   {plan.total_rounds}")
        print(f"\n{'Round':<7} {'Rooms':<7} {'Teams':<7}")
        print("-" * 21)
        for entry in plan.round_breakdown:
            print(f"{entry.round:<7} {entry.rooms:<7} {entry.teams:<7}")
        return 0

    def _sweep(self, args) -> int:
        """Run one auto-cancel sweep against DATABASE_URL."""
        from esports_backend.tasks.auto_cancel import run_sweep_once

        async def _run():
            from esports_backend.database import close_db
            try:
                return await run_sweep_once()
            finally:
                await close_db()

        outcome = asyncio.run(_run())
        if self.as_json:
            print(json.dumps(outcome))
        else:
            print(f"Cancelled: {outcome['cancelled'] or 'none'}")
            print(f"Skipped:   {outcome['skipped'] or 'none'}")
        return 0

    def _stats(self, args) -> int:
        """Print progress for one tournament."""
        from esports_backend.database import AsyncSessionLocal, close_db
        from esports_backend.services.stats_service import get_tournament_stats

        async def _run():
            try:
                async with AsyncSessionLocal() as db:
                    return await get_tournament_stats(db, args.id)
            finally:
                await close_db()

        stats = asyncio.run(_run())
        if self.as_json:
            print(json.dumps(stats, indent=2))
            return 0

        print(f"=== Tournament {stats['tournament_id']} ===")
        print(f"Status:        {stats['status']}")
        print(f"Round:         {stats['current_round']} / {stats['total_rounds']}")
        print(f"Participants:  {stats['participants']} / {stats['max_participants']}")
        print(f"Prize pool:    {stats['prize_pool']}")
        print(f"Teams:         {stats['active_teams']} active, {stats['eliminated_teams']} eliminated, "
              f"{stats['withdrawn_teams']} withdrawn")
        for entry in stats["rounds"]:
            print(f"  Round {entry['round']}: {entry['completed_rooms']}/{entry['rooms']} rooms completed")
        return 0
