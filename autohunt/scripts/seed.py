import json, csv, os, sys
import logging
from sqlalchemy.orm import Session
from autohunt.db import SessionLocal, Base, engine
from autohunt.models import Fingerprint
from autohunt.schemas import ListingIn
from autohunt.services.listings import upsert_listing
from autohunt.services.orchestrator import sync_hunts
from autohunt.services.utils import configure_logging

logger = logging.getLogger(__name__)

FINGERPRINT_INT_FIELDS = ("year_min", "year_max", "reference_km", "buy_price", "sell_price", "sample_count")

def _fingerprint_from_row(r: dict) -> Fingerprint:
    values = {k: (v.strip() or None) if isinstance(v, str) else v for k, v in r.items()
              if hasattr(Fingerprint, k) and k != "id"}
    for k in FINGERPRINT_INT_FIELDS:
        if values.get(k) is not None:
            values[k] = int(values[k])
    if values.get("clearance_days") is not None:
        values["clearance_days"] = float(values["clearance_days"])
    return Fingerprint(**values)

def load_fingerprints(db: Session, path_csv: str) -> int:
    with open(path_csv, "r", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        rows = [_fingerprint_from_row(r) for r in reader]
    db.add_all(rows)
    db.commit()
    return len(rows)

def load_listings(db: Session, path_json: str) -> int:
    with open(path_json, "r", encoding="utf-8") as f:
        items = json.load(f)
    for it in items:
        upsert_listing(db, ListingIn.model_validate(it).model_dump())
    return len(items)

def seed(db: Session, path_csv: str = "data/seed_fingerprints.csv",
         path_json: str = "data/seed_listings.json") -> dict:
    counts = {"fingerprints": 0, "listings": 0, "hunts": 0}
    if os.path.exists(path_csv):
        counts["fingerprints"] = load_fingerprints(db, path_csv)
    if os.path.exists(path_json):
        counts["listings"] = load_listings(db, path_json)
    counts["hunts"], _ = sync_hunts(db)
    logger.info(f"Seeded {counts}")
    return counts

def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    configure_logging()
    Base.metadata.create_all(bind=engine)
    db: Session = SessionLocal()
    try:
        seed(db, *argv[:2])
    finally:
        db.close()

if __name__ == "__main__":
    main()
