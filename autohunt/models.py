from sqlalchemy import (Column, Integer, String, Float, Text, DateTime, Boolean, ForeignKey,
                        JSON, UniqueConstraint, Index)
from sqlalchemy.orm import relationship
from autohunt.db import Base
from autohunt.services.utils import utcnow

class Fingerprint(Base):
    """A proven vehicle shape with historical buy/sell outcomes. Read-only to the engine."""
    __tablename__ = "fingerprints"
    id = Column(Integer, primary_key=True)
    make = Column(String(100), nullable=False, index=True)
    model = Column(String(100), nullable=False, index=True)
    variant = Column(String(200), nullable=True)
    body_type = Column(String(50), nullable=True)
    fuel = Column(String(30), nullable=True)
    transmission = Column(String(30), nullable=True)
    drivetrain = Column(String(30), nullable=True)
    year_min = Column(Integer, nullable=False)
    year_max = Column(Integer, nullable=False)
    reference_km = Column(Integer, nullable=True)  # median km of the sales
    buy_price = Column(Integer, nullable=True)
    sell_price = Column(Integer, nullable=True)
    sample_count = Column(Integer, nullable=False, default=0)
    clearance_days = Column(Float, nullable=True)
    platform_class = Column(String(100), nullable=True)
    trim_class = Column(String(50), nullable=True)
    refreshed_at = Column(DateTime, default=utcnow)
    retired_at = Column(DateTime, nullable=True)

class Listing(Base):
    __tablename__ = "listings"
    __table_args__ = (UniqueConstraint("source", "external_id", name="uq_listing_source_external"),)
    id = Column(Integer, primary_key=True)
    source = Column(String(100), nullable=False, index=True)
    source_class = Column(String(20), nullable=False, default="classifieds")  # auction, classifieds, dealer
    seller_type = Column(String(20), nullable=True)  # dealer, private
    external_id = Column(String(200), nullable=False)
    make = Column(String(100), index=True)
    model = Column(String(100), index=True)
    variant = Column(String(200), nullable=True)
    year = Column(Integer, index=True)
    km = Column(Integer, nullable=True)
    asking_price = Column(Integer, nullable=True)
    state = Column(String(10), nullable=True)
    location = Column(String(200), nullable=True)
    drivetrain = Column(String(30), nullable=True)
    fuel = Column(String(30), nullable=True)
    transmission = Column(String(30), nullable=True)
    url = Column(String(500), nullable=True)
    status = Column(String(20), nullable=False, default="ACTIVE")  # ACTIVE, PASSED_IN, SOLD, WITHDRAWN
    auction_datetime = Column(DateTime, nullable=True)
    pass_count = Column(Integer, nullable=False, default=0)
    last_passed_in_auction_at = Column(DateTime, nullable=True)
    first_seen_at = Column(DateTime, default=utcnow, index=True)
    last_seen_at = Column(DateTime, default=utcnow)
    delisted_at = Column(DateTime, nullable=True)
    raw = Column(JSON, nullable=True)

class Hunt(Base):
    """The scheduled search owned by one fingerprint."""
    __tablename__ = "hunts"
    id = Column(Integer, primary_key=True)
    fingerprint_id = Column(Integer, ForeignKey("fingerprints.id", ondelete="CASCADE"), unique=True, nullable=False)
    status = Column(String(12), nullable=False, default="active")  # active, paused, retired
    priority = Column(Integer, nullable=False, default=5)
    sources = Column(JSON, nullable=True)  # allow-list, None means all
    include_private = Column(Boolean, nullable=False, default=True)
    # Per-hunt threshold overrides, None means the configured default
    min_gap_abs_buy = Column(Integer, nullable=True)
    min_gap_pct_buy = Column(Float, nullable=True)
    min_gap_abs_watch = Column(Integer, nullable=True)
    min_gap_pct_watch = Column(Float, nullable=True)
    max_listing_age_days_buy = Column(Integer, nullable=True)
    max_listing_age_days_watch = Column(Integer, nullable=True)
    last_scan_at = Column(DateTime, nullable=True)
    claimed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    fingerprint = relationship("Fingerprint")

    def threshold_overrides(self) -> dict:
        names = ("min_gap_abs_buy", "min_gap_pct_buy", "min_gap_abs_watch", "min_gap_pct_watch",
                 "max_listing_age_days_buy", "max_listing_age_days_watch")
        return {n: getattr(self, n) for n in names if getattr(self, n) is not None}

class Scan(Base):
    __tablename__ = "hunt_scans"
    id = Column(Integer, primary_key=True)
    hunt_id = Column(Integer, ForeignKey("hunts.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(10), nullable=False, default="pending")  # pending, running, ok, error
    created_at = Column(DateTime, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    candidates_checked = Column(Integer, nullable=False, default=0)
    matches_found = Column(Integer, nullable=False, default=0)
    alerts_emitted = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)

    hunt = relationship("Hunt")

class Match(Base):
    __tablename__ = "matches"
    id = Column(Integer, primary_key=True)
    fingerprint_id = Column(Integer, ForeignKey("fingerprints.id", ondelete="CASCADE"), nullable=False, index=True)
    listing_id = Column(Integer, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True)
    hunt_id = Column(Integer, ForeignKey("hunts.id", ondelete="SET NULL"), nullable=True)
    scan_id = Column(Integer, ForeignKey("hunt_scans.id", ondelete="SET NULL"), nullable=True)
    # "<fingerprint_id>:<listing_id>" while open, NULL once superseded
    open_key = Column(String(64), unique=True, nullable=True)
    status = Column(String(12), nullable=False, default="open")  # open, superseded
    score = Column(Float, nullable=False, default=0.0)
    confidence = Column(String(8), nullable=False, default="low")
    decision = Column(String(12), nullable=False, default="IGNORE")  # BUY, WATCH, IGNORE, NO_EVIDENCE
    gap_dollars = Column(Integer, nullable=True)
    gap_pct = Column(Float, nullable=True)  # fraction of exit value
    exit_value = Column(Integer, nullable=True)
    asking_price = Column(Integer, nullable=True)
    km = Column(Integer, nullable=True)
    reasons = Column(JSON, nullable=True)
    blockers = Column(JSON, nullable=True)
    times_scored = Column(Integer, nullable=False, default=1)
    first_scored_at = Column(DateTime, default=utcnow)
    scored_at = Column(DateTime, default=utcnow)
    superseded_at = Column(DateTime, nullable=True)

    listing = relationship("Listing")
    fingerprint = relationship("Fingerprint")

class Alert(Base):
    __tablename__ = "alerts"
    __table_args__ = (Index("ix_alert_pair_type_created", "fingerprint_id", "listing_id", "alert_type", "created_at"),)
    id = Column(Integer, primary_key=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False)
    fingerprint_id = Column(Integer, nullable=False)
    listing_id = Column(Integer, nullable=False)
    alert_type = Column(String(8), nullable=False)  # BUY, WATCH
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    acknowledged_at = Column(DateTime, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    notification_attempts = Column(Integer, nullable=False, default=0)

    match = relationship("Match")
