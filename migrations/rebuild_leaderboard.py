"""
Rebuild the leaderboard cache from the result ledger

Recomputes every player's leaderboard entry (and, unless --entries-only is
given, every player aggregate) from game_results, then reports any player
whose aggregate best, cached best and ledger max still disagree.

Usage:
    python -m migrations.rebuild_leaderboard [--check] [--entries-only]
"""

import argparse
import asyncio
import sys

from standings.core import StandingsCore
from standings.utils.logger import setup_logger

logger = setup_logger(__name__)


async def main(check_only: bool = False, entries_only: bool = False) -> int:
    """Run the rebuild; returns a process exit code."""
    core = StandingsCore()
    await core.initialize()

    try:
        if not check_only:
            rebuilt = await core.rebuild_leaderboard(rebuild_aggregates=not entries_only)
            logger.info(f"Rebuilt {rebuilt} player(s)")

        issues = await core.verify_consistency()
        for issue in issues:
            logger.warning(
                f"Player {issue.player_id}: aggregate={issue.aggregate_best} "
                f"cached={issue.cached_best} ledger={issue.ledger_best}"
            )
        if issues:
            logger.error(f"{len(issues)} player(s) still inconsistent")
            return 1

        logger.info("Leaderboard consistent with the result ledger")
        return 0
    finally:
        await core.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description='Rebuild the leaderboard cache from game results')
    parser.add_argument('--check', action='store_true',
                        help='Only verify consistency, do not rebuild')
    parser.add_argument('--entries-only', action='store_true',
                        help='Rebuild leaderboard entries but keep player aggregates')
    args = parser.parse_args()

    sys.exit(asyncio.run(main(check_only=args.check, entries_only=args.entries_only)))
