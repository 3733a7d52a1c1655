# backend/app/cli/__main__.py
from __future__ import annotations

import argparse
import json
import sys

from app.db import SessionLocal
from app.services.occupancy import check_occupancy


def _check_occupancy(args: argparse.Namespace) -> int:
    db = SessionLocal()
    try:
        issues = check_occupancy(db, property_id=args.property_id)
    finally:
        db.close()

    print(json.dumps({"ok": not issues, "issues": [i.as_dict() for i in issues]}, indent=2))
    return 1 if issues else 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="python -m app.cli")
    sub = p.add_subparsers(dest="command", required=True)

    occ = sub.add_parser("check-occupancy", help="report properties whose status disagrees with their leases")
    occ.add_argument("--property-id", type=int, default=None)
    occ.set_defaults(func=_check_occupancy)

    args = p.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
