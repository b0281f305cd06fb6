from pydantic import BaseModel, ConfigDict
from typing import Optional, Any, List, Dict
from datetime import datetime

class ListingIn(BaseModel):
    source: str
    external_id: str
    source_class: str = "classifieds"
    seller_type: Optional[str] = None
    make: str
    model: str
    variant: Optional[str] = None
    year: Optional[int] = None
    km: Optional[int] = None
    asking_price: Optional[int] = None
    state: Optional[str] = None
    location: Optional[str] = None
    drivetrain: Optional[str] = None
    fuel: Optional[str] = None
    transmission: Optional[str] = None
    url: Optional[str] = None
    status: str = "ACTIVE"
    auction_datetime: Optional[datetime] = None
    first_seen_at: Optional[datetime] = None
    raw: Optional[Any] = None

class ListingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source: str
    external_id: str
    make: Optional[str] = None
    model: Optional[str] = None
    variant: Optional[str] = None
    year: Optional[int] = None
    km: Optional[int] = None
    asking_price: Optional[int] = None
    status: str
    pass_count: int
    first_seen_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    delisted_at: Optional[datetime] = None

class MatchOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    fingerprint_id: int
    listing_id: int
    hunt_id: Optional[int] = None
    status: str
    score: float
    confidence: str
    decision: str
    gap_dollars: Optional[int] = None
    gap_pct: Optional[float] = None
    exit_value: Optional[int] = None
    asking_price: Optional[int] = None
    km: Optional[int] = None
    reasons: Optional[List[Dict[str, Any]]] = None
    blockers: Optional[List[str]] = None
    times_scored: int
    scored_at: Optional[datetime] = None

class AlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    match_id: int
    fingerprint_id: int
    listing_id: int
    alert_type: str
    payload: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None

class ScanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    hunt_id: int
    status: str
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    candidates_checked: int
    matches_found: int
    alerts_emitted: int
    error: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
