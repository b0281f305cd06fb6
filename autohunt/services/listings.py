from typing import Optional, Dict, Any, Tuple
from datetime import datetime, timedelta
from sqlalchemy.orm import Session
import logging
from autohunt.models import Listing
from autohunt.services.utils import utcnow

logger = logging.getLogger(__name__)

PASSED_IN = "PASSED_IN"

# Bookkeeping columns are owned here, never taken from the payload
_MANAGED = {"id", "pass_count", "last_passed_in_auction_at", "first_seen_at", "last_seen_at", "delisted_at"}
_WRITABLE = {c.name for c in Listing.__table__.columns} - _MANAGED

def _record_pass_in(listing: Listing):
    """Count each new auction date the listing is passed in at; repeat sightings of the same auction don't count."""
    if listing.status != PASSED_IN or listing.auction_datetime is None:
        return
    if listing.last_passed_in_auction_at == listing.auction_datetime:
        return
    listing.pass_count = (listing.pass_count or 0) + 1
    listing.last_passed_in_auction_at = listing.auction_datetime

def upsert_listing(db: Session, data: Dict[str, Any], now: Optional[datetime] = None) -> Tuple[Listing, bool]:
    """Insert or refresh a listing keyed by (source, external_id). Returns (listing, created)."""
    now = now or utcnow()
    values = {k: v for k, v in data.items() if k in _WRITABLE}
    if values.get("status"):
        values["status"] = str(values["status"]).upper()

    listing = db.query(Listing).filter(Listing.source == values["source"],
                                       Listing.external_id == str(values["external_id"])).first()
    created = listing is None
    if created:
        listing = Listing(**{k: v for k, v in values.items() if v is not None},
                          pass_count=0, first_seen_at=data.get("first_seen_at") or now)
        listing.external_id = str(listing.external_id)
        db.add(listing)
    else:
        for k, v in values.items():
            if k == "raw" or v is not None:
                setattr(listing, k, v)
        if listing.delisted_at is not None:
            logger.info(f"Listing {listing.source}/{listing.external_id} re-sighted, clearing delisted_at")
            listing.delisted_at = None
    _record_pass_in(listing)
    listing.last_seen_at = now
    db.commit()
    db.refresh(listing)
    return listing, created

def mark_stale_listings(db: Session, now: Optional[datetime] = None, silence_days: int = 5) -> int:
    now = now or utcnow()
    cutoff = now - timedelta(days=silence_days)
    count = db.query(Listing).filter(
        Listing.delisted_at.is_(None),
        Listing.last_seen_at < cutoff,
    ).update({Listing.delisted_at: now}, synchronize_session=False)
    db.commit()
    if count:
        logger.info(f"Marked {count} listings delisted after {silence_days} days of silence")
    return count
