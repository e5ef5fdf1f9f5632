"""Run one processing operation from the command line.

Usage:
    python scripts/run_processing.py --operation batch_update
    python scripts/run_processing.py --operation batch_update --force --light
    python scripts/run_processing.py --operation analyze_themes --force
    python scripts/run_processing.py --operation realtime_sync
    python scripts/run_processing.py --operation normalize --data records.json
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

OPERATIONS = ("normalize", "batch_update", "analyze_themes", "realtime_sync")


def build_options(args: argparse.Namespace) -> dict:
    options: dict = {}
    if args.operation in ("batch_update", "analyze_themes") and args.force:
        options["force_update"] = True
    if args.operation == "batch_update":
        if args.light:
            options["light"] = True
        if args.batch_size:
            options["batch_size"] = args.batch_size
        if args.max_themes:
            options["max_themes"] = args.max_themes
    return options


async def run_processing(operation: str, options: dict, data: list[dict] | None) -> None:
    from trendscout.services.container import get_container

    container = get_container()
    print(f"\n=== {operation} ({container.store_backend} store) ===")
    try:
        result = await container.processing.process(operation, options, data)
    finally:
        await container.close()
    print(json.dumps(result, indent=2, ensure_ascii=False, default=str))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run a trend processing operation")
    parser.add_argument("--operation", "-o", required=True, choices=OPERATIONS)
    parser.add_argument("--force", action="store_true", help="Process all themes")
    parser.add_argument("--light", action="store_true", help="Light batch pass")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--max-themes", type=int, default=None)
    parser.add_argument("--data", type=Path, default=None, help="JSON file of raw records")
    args = parser.parse_args()

    records = None
    if args.data:
        records = json.loads(args.data.read_text(encoding="utf-8"))
    asyncio.run(run_processing(args.operation, build_options(args), records))
