"""Find published objects that have no catalog record.

Dry run by default; pass --delete to remove what was found.

Usage:
    cd backend
    python scripts/find_orphaned_artifacts.py [--delete] [--limit N]
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from video_ingest.core.database import async_session_maker, engine
from video_ingest.core.storage import get_storage
from video_ingest.modules.video.reconcile import describe, find_orphaned_artifacts
from video_ingest.modules.video.repository import VideoRepository


async def main(delete: bool, limit: int) -> int:
    print(f"\n{'='*60}")
    print("Orphaned Artifact Sweep" + (" (DELETE)" if delete else " (dry run)"))
    print(f"{'='*60}")

    try:
        async with async_session_maker() as session:
            report = await find_orphaned_artifacts(
                get_storage(),
                VideoRepository(session),
                delete=delete,
            )
    finally:
        await engine.dispose()

    if not report.orphans:
        print("\nNo orphaned artifacts found.")
    else:
        print(f"\nFound {report.orphaned_key_count} objects under {len(report.orphans)} prefixes:\n")
        for line in describe(report, limit=limit):
            print(f"  {line}")

    if report.unrecognized_keys:
        print(f"\n{len(report.unrecognized_keys)} keys do not follow videos/<id>/ and were skipped.")

    if delete:
        print(f"\n✓ Deleted {len(report.deleted_keys)} objects")
        if report.failed_keys:
            print(f"✗ Could not delete {len(report.failed_keys)} objects")
            return 1
    elif report.orphans:
        print("\nRe-run with --delete to remove them.")

    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--delete", action="store_true", help="Delete orphaned objects")
    parser.add_argument("--limit", type=int, default=50, help="Max prefixes to print")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.delete, args.limit)))
