"""Load inventory assets from a CSV file so kiosks can be linked to them.

The CSV needs a header row with any of ``asset_tag``, ``serial_number`` and
``name``. Rows whose asset tag already exists are skipped.
"""

import argparse
import csv
import sys
from pathlib import Path

from sqlalchemy.orm import Session

from kiosk_pairing.db.session import SessionLocal
from kiosk_pairing.models.inventory_asset import InventoryAsset


def seed_assets(db: Session, rows) -> tuple[int, int]:
    """Insert assets from dict rows. Returns (created, skipped)."""
    created = skipped = 0
    seen: set[str] = set()
    for row in rows:
        asset_tag = (row.get("asset_tag") or "").strip() or None
        serial_number = (row.get("serial_number") or "").strip() or None
        if asset_tag is None and serial_number is None:
            skipped += 1
            continue
        if asset_tag is not None:
            exists = db.query(InventoryAsset.id).filter(InventoryAsset.asset_tag == asset_tag)
            if asset_tag in seen or exists.first() is not None:
                skipped += 1
                continue
            seen.add(asset_tag)
        db.add(
            InventoryAsset(
                asset_tag=asset_tag,
                serial_number=serial_number,
                name=(row.get("name") or "").strip() or None,
            )
        )
        created += 1
    db.commit()
    return created, skipped


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(description="Seed inventory assets from CSV")
    parser.add_argument("csv_path", type=Path, help="CSV with asset_tag,serial_number,name")
    args = parser.parse_args(argv)

    if not args.csv_path.exists():
        print(f"File not found: {args.csv_path}", file=sys.stderr)
        sys.exit(1)

    db = SessionLocal()
    try:
        with args.csv_path.open(newline="", encoding="utf-8") as f:
            created, skipped = seed_assets(db, csv.DictReader(f))
        print(f"Seeded {created} asset(s), skipped {skipped}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
