"""
Block every trial subscription whose trial window has closed.

The server runs the same sweep daily; use this for a one-off run.

Usage (from backend/):
  python -m scripts.block_expired_trials
  python -m scripts.block_expired_trials --dry-run
"""
import asyncio
import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database import database
from models import utc_now


async def run(dry_run: bool = False) -> int:
    from services.subscription_store import list_expired_trials
    from services.subscription_service import block_expired_trials

    now = utc_now()
    if dry_run:
        expired = await list_expired_trials(now)
        for sub in expired:
            print(f"Would block owner_id={sub.owner_id} trial_end_date={sub.trial_end_date.isoformat()}")
        print(f"{len(expired)} expired trial(s) found")
        return len(expired)

    count = await block_expired_trials(now)
    print(f"Blocked {count} expired trial(s)")
    return count


def main():
    parser = argparse.ArgumentParser(description="Block expired trial subscriptions")
    parser.add_argument("--dry-run", action="store_true", help="List expired trials without blocking them")
    args = parser.parse_args()

    async def _():
        await database.connect()
        try:
            return await run(dry_run=args.dry_run)
        finally:
            await database.close()

    asyncio.run(_())
    return 0


if __name__ == "__main__":
    sys.exit(main())
