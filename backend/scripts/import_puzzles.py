"""CLI script to import puzzles from a JSON file into the backend DB.

Usage: python scripts/import_puzzles.py PUZZLES.json [--dry-run]
       python scripts/import_puzzles.py PUZZLES.json --seed-demo EMAIL --password PASSWORD [--size N]

The file holds a list of puzzle objects::

    [{"id": "wpm_easy_001", "difficulty": "easy", "fen": "...",
      "solution": {"lines": [{"san": "Qxf7+", "isTick": true}]},
      "ticks": ["Qxf7+"], "solutionText": "1. Qxf7+ ..."}]
"""
import argparse
import json
import pathlib
import sys
from typing import Optional

# Ensure `backend/` is on sys.path so `woodpecker` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlmodel import Session  # noqa: E402

from woodpecker import services  # noqa: E402
from woodpecker.database import create_db_and_tables, engine  # noqa: E402
from woodpecker.errors import WoodpeckerError  # noqa: E402


def main(path: pathlib.Path, dry_run: bool = False, demo_email: Optional[str] = None,
         demo_password: Optional[str] = None, size: int = 5) -> int:
    """Import the puzzles in `path` and optionally seed a demo account.

    Results are printed to stdout for a quick CLI feedback loop. Returns
    the process exit code.
    """
    try:
        items = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        print(f'Cannot read {path}: {e}')
        return 1
    if not isinstance(items, list):
        print(f'{path} must contain a JSON list of puzzles')
        return 1
    create_db_and_tables()
    with Session(engine) as session:
        svc = services.ImportService(session)
        result = svc.import_puzzles(items, dry_run=dry_run)
        prefix = 'Would import' if dry_run else 'Imported'
        print(f"{prefix} {result['created']} puzzles, skipped {result['skipped']}, errors {len(result['errors'])}")
        for err in result['errors']:
            print(f"  item {err['index']} ({err['id']}): {err['error']}")
        if demo_email and not dry_run:
            try:
                seeded = svc.seed_demo(demo_email, demo_password or '', size=size)
            except WoodpeckerError as e:
                print(f'Demo seed failed: {e}')
                return 1
            print(f"Demo user {seeded['user_id']} has set {seeded['set_id']} with {seeded['puzzles']} puzzles")
    return 1 if result['errors'] else 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Import Woodpecker puzzles from JSON')
    parser.add_argument('path', type=pathlib.Path, help='JSON file with a list of puzzles')
    parser.add_argument('--dry-run', action='store_true', help='Validate only, write nothing')
    parser.add_argument('--seed-demo', metavar='EMAIL', help='Create a demo user with an easy set and one cycle')
    parser.add_argument('--password', help='Password for the demo user')
    parser.add_argument('--size', type=int, default=5, help='Number of easy puzzles in the demo set')
    args = parser.parse_args()
    if args.seed_demo and not args.password:
        parser.error('--seed-demo requires --password')
    sys.exit(main(args.path, dry_run=args.dry_run, demo_email=args.seed_demo,
                  demo_password=args.password, size=args.size))
