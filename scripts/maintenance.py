from __future__ import annotations

import argparse
import json
import sys

from app.main import configure_logging
from app.settings import Settings
from diff.engine import hash_key, incidents_key
from store.cache import CacheStore
from store.db import close_database, open_database
from store.maintenance import clear_sources, rollback_recent


SOURCES = ("recaap", "ukmto", "mdat", "icc", "cwd")


def main() -> None:
    parser = argparse.ArgumentParser(description="Inspect or reset cached incident sets.")
    sub = parser.add_subparsers(dest="command", required=True)

    summary = sub.add_parser("summary")
    summary.add_argument("source", choices=SOURCES)

    clear = sub.add_parser("clear")
    clear.add_argument("source", nargs="?", choices=SOURCES)

    rollback = sub.add_parser("rollback")
    rollback.add_argument("source", choices=SOURCES)
    rollback.add_argument("--count", type=int, default=1)

    args = parser.parse_args()

    settings = Settings()
    configure_logging(settings)
    db = open_database(settings.db_path)
    store = CacheStore(
        db,
        ttl_seconds=settings.cache_ttl_seconds,
        reference_ttl_seconds=settings.reference_ttl_seconds,
    )
    try:
        if args.command == "summary":
            out = store.summary(incidents_key(args.source))
            if out is not None:
                out["storedHash"] = store.get(hash_key(args.source))
        elif args.command == "clear":
            out = {"removed": clear_sources(store, [args.source] if args.source else SOURCES)}
        else:
            out = rollback_recent(store, args.source, args.count)
    finally:
        close_database(db)

    if out is None:
        print(f"no cached data for {args.source}", file=sys.stderr)
        sys.exit(1)
    print(json.dumps(out, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
