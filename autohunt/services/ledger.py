"""
Dedup & alert ledger.

Matches are keyed by (fingerprint, listing) through the unique `open_key`
column: re-scoring updates the open row, a price or km change supersedes it.
Alerts are rate-limited per (fingerprint, listing, type) by a cool-down window.
"""
from typing import Optional, Tuple, Dict, Any
from datetime import datetime, timedelta
from functools import wraps
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
import logging
from autohunt.config import settings
from autohunt.exceptions import PersistenceError
from autohunt.models import Match, Alert, Listing
from autohunt.services.decision import Tier
from autohunt.services.matching import MatchEvaluation
from autohunt.services.utils import utcnow

logger = logging.getLogger(__name__)

ALERTABLE = (Tier.BUY.value, Tier.WATCH.value)

def retry_once(what: str):
    """Retry a session-bound write once after rolling back; raise PersistenceError on the second failure."""
    def deco(f):
        @wraps(f)
        def wrapper(session: Session, *args, **kwargs):
            try:
                return f(session, *args, **kwargs)
            except SQLAlchemyError as e:
                session.rollback()
                logger.warning(f"Retryable error during {what}: {e}")
            try:
                return f(session, *args, **kwargs)
            except SQLAlchemyError as e:
                session.rollback()
                raise PersistenceError(f"{what} failed after retry: {e}") from e
        return wrapper
    return deco

def open_key(fingerprint_id: int, listing_id: int) -> str:
    return f"{fingerprint_id}:{listing_id}"

def _materially_changed(match: Match, evaluation: MatchEvaluation) -> bool:
    return match.asking_price != evaluation.listing.asking_price or match.km != evaluation.listing.km

def _apply(match: Match, evaluation: MatchEvaluation, hunt_id: Optional[int], scan_id: Optional[int], now: datetime):
    decision = evaluation.decision
    match.hunt_id = hunt_id
    match.scan_id = scan_id
    match.score = evaluation.result.score
    match.confidence = decision.confidence.value
    match.decision = decision.tier.value
    match.gap_dollars = decision.gap_dollars
    match.gap_pct = decision.gap_pct
    match.exit_value = decision.exit_value
    match.asking_price = evaluation.listing.asking_price
    match.km = evaluation.listing.km
    match.reasons = evaluation.result.reasons_as_dicts()
    match.blockers = list(decision.blockers)
    match.scored_at = now

@retry_once("match upsert")
def upsert_match(session: Session, evaluation: MatchEvaluation, hunt_id: Optional[int] = None,
                 scan_id: Optional[int] = None, now: Optional[datetime] = None) -> Tuple[Match, bool]:
    """Returns (match, created)."""
    now = now or utcnow()
    key = open_key(evaluation.fingerprint.id, evaluation.listing.id)

    existing = session.query(Match).filter(Match.open_key == key).first()
    if existing is not None and _materially_changed(existing, evaluation):
        logger.info(f"Superseding match {existing.id} for {key}: "
                    f"price {existing.asking_price}->{evaluation.listing.asking_price}, "
                    f"km {existing.km}->{evaluation.listing.km}")
        existing.status = "superseded"
        existing.open_key = None
        existing.superseded_at = now
        session.flush()
        existing = None

    if existing is not None:
        _apply(existing, evaluation, hunt_id, scan_id, now)
        existing.times_scored = (existing.times_scored or 0) + 1
        session.commit()
        return existing, False

    match = Match(fingerprint_id=evaluation.fingerprint.id, listing_id=evaluation.listing.id,
                  open_key=key, status="open", times_scored=1, first_scored_at=now)
    _apply(match, evaluation, hunt_id, scan_id, now)
    session.add(match)
    try:
        session.commit()
        return match, True
    except IntegrityError:
        # Another scan opened this key first; update its row instead
        session.rollback()
        current = session.query(Match).filter(Match.open_key == key).one()
        _apply(current, evaluation, hunt_id, scan_id, now)
        current.times_scored = (current.times_scored or 0) + 1
        session.commit()
        return current, False

def build_alert_payload(match: Match, listing: Optional[Listing]) -> Dict[str, Any]:
    payload = {
        "fingerprint_id": match.fingerprint_id,
        "listing_id": match.listing_id,
        "decision": match.decision,
        "score": match.score,
        "confidence": match.confidence,
        "gap_dollars": match.gap_dollars,
        "gap_pct": match.gap_pct,
        "exit_value": match.exit_value,
        "asking_price": match.asking_price,
        "km": match.km,
    }
    if listing is not None:
        payload.update({
            "source": listing.source,
            "year": listing.year,
            "make": listing.make,
            "model": listing.model,
            "variant": listing.variant,
            "state": listing.state,
            "url": listing.url,
        })
    return payload

@retry_once("alert emission")
def maybe_emit_alert(session: Session, match: Match, now: Optional[datetime] = None,
                     cooldown_hours: Optional[float] = None) -> Optional[Alert]:
    """Emit a BUY/WATCH alert unless one of the same type exists for the pair within the cool-down."""
    if match.decision not in ALERTABLE:
        return None
    now = now or utcnow()
    cooldown = timedelta(hours=settings.ALERT_COOLDOWN_HOURS if cooldown_hours is None else cooldown_hours)

    # Row lock on the match serializes concurrent emitters for this pair
    locked = session.query(Match).filter(Match.id == match.id).with_for_update().one()
    recent = session.query(Alert).filter(
        Alert.fingerprint_id == locked.fingerprint_id,
        Alert.listing_id == locked.listing_id,
        Alert.alert_type == locked.decision,
        Alert.created_at > now - cooldown,
    ).first()
    if recent is not None:
        session.commit()
        logger.debug(f"Alert suppressed for {locked.fingerprint_id}:{locked.listing_id}, "
                     f"{recent.alert_type} alert {recent.id} inside cool-down")
        return None

    listing = session.get(Listing, locked.listing_id)
    alert = Alert(match_id=locked.id, fingerprint_id=locked.fingerprint_id, listing_id=locked.listing_id,
                  alert_type=locked.decision, payload=build_alert_payload(locked, listing), created_at=now)
    session.add(alert)
    session.commit()
    logger.info(f"{alert.alert_type} alert {alert.id} for fingerprint {alert.fingerprint_id} "
                f"listing {alert.listing_id}")
    return alert

def acknowledge_alert(session: Session, alert_id: int, now: Optional[datetime] = None) -> Optional[Alert]:
    alert = session.get(Alert, alert_id)
    if alert is None:
        return None
    if alert.acknowledged_at is None:
        alert.acknowledged_at = now or utcnow()
        session.commit()
    return alert

def record_evaluation(session: Session, evaluation: MatchEvaluation, hunt_id: Optional[int] = None,
                      scan_id: Optional[int] = None, now: Optional[datetime] = None,
                      cooldown_hours: Optional[float] = None) -> Tuple[Match, bool, Optional[Alert]]:
    """Upsert the match, then apply the alert gate. Returns (match, created, alert)."""
    match, created = upsert_match(session, evaluation, hunt_id, scan_id, now)
    alert = maybe_emit_alert(session, match, now, cooldown_hours)
    return match, created, alert
