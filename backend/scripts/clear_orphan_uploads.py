"""
Delete photo files in UPLOADS_DIR that no property references.

Publishing writes files before the listing row, so a crash between the two can
leave files behind. Run with `--dry-run` to only list them.
"""

from __future__ import annotations

import argparse
import json
import os

from sqlalchemy import create_engine, text

from immobilier.config import database_url, uploads_dir


def referenced_photos(db_url: str) -> set[str]:
    engine = create_engine(db_url, future=True)
    names: set[str] = set()
    with engine.connect() as conn:
        for (raw,) in conn.execute(text("SELECT photos_json FROM properties")):
            try:
                names.update(str(x) for x in json.loads(raw or "[]"))
            except ValueError:
                continue
    return names


def orphan_uploads(base: str, referenced: set[str]) -> list[str]:
    if not os.path.isdir(base):
        return []
    return sorted(
        name for name in os.listdir(base) if os.path.isfile(os.path.join(base, name)) and name not in referenced
    )


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--dry-run", action="store_true", help="list orphaned files without deleting them")
    args = parser.parse_args()

    base = uploads_dir()
    orphans = orphan_uploads(base, referenced_photos(database_url()))
    for name in orphans:
        if args.dry_run:
            print(name)
        else:
            os.remove(os.path.join(base, name))

    action = "Found" if args.dry_run else "Removed"
    print(f"{action} {len(orphans)} orphaned upload(s).")


if __name__ == "__main__":
    main()
