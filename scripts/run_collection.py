"""Run one collection from the command line.

Usage:
    python scripts/run_collection.py --themes "habit tracker" "ai notes"
    python scripts/run_collection.py --themes "habit tracker" --sources reddit,github
    python scripts/run_collection.py --themes "habit tracker" --region GB --force
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


async def run_collection(
    themes: list[str], sources: str, region: str, force: bool, timeout: float | None
) -> int:
    from trendscout.collectors.base import CancelToken
    from trendscout.services.collection_service import UnknownSourceError
    from trendscout.services.container import get_container

    container = get_container()
    print(f"\n=== Collecting {len(themes)} theme(s) from {sources} ({region}) ===")
    print(f"Store: {container.store_backend}")

    cancel = CancelToken.with_timeout(timeout) if timeout else None
    try:
        run = await container.orchestrator.collect(
            themes, sources, region, force, actor="cli", cancel=cancel
        )
    except UnknownSourceError as e:
        print(f"Error: {e}")
        return 2
    finally:
        await container.close()

    print("\n=== Results ===")
    for outcome in run.results:
        line = f"  {outcome.source:<15} {outcome.status:<8} {outcome.record_count:>4} records"
        if outcome.storage_errors:
            line += f"  [{outcome.storage_errors} not stored]"
        if outcome.error:
            line += f"  ({outcome.error})"
        print(line)
    summary = run.summary()
    print(
        f"\n{summary['successful_sources']}/{summary['total_sources']} sources succeeded, "
        f"{summary['total_records']} records written"
    )
    return 0 if summary["successful_sources"] == summary["total_sources"] else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Collect trend signals for themes")
    parser.add_argument("--themes", "-t", nargs="+", required=True, help="Theme names")
    parser.add_argument(
        "--sources", "-s", default="all", help='Comma-separated source ids, or "all"'
    )
    parser.add_argument("--region", "-r", default="US", help="Region / geo code")
    parser.add_argument(
        "--force", action="store_true", help="Collect even if observed in the current bucket"
    )
    parser.add_argument("--timeout", type=float, default=None, help="Deadline in seconds")
    args = parser.parse_args()
    sys.exit(asyncio.run(run_collection(args.themes, args.sources, args.region, args.force, args.timeout)))
