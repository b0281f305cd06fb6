"""
Decision policy: maps a score, the monetary gap and listing facts to a tier.

Input-quality problems (no price, no km, stale listing) never raise here;
they degrade the tier and show up as blockers.
"""
from typing import Optional, Tuple, List
from dataclasses import dataclass, field, replace
from enum import Enum
from autohunt.config import settings
from autohunt.exceptions import ConfigurationError
from autohunt.services.shapes import FingerprintShape, ListingShape

class Tier(str, Enum):
    BUY = "BUY"
    WATCH = "WATCH"
    IGNORE = "IGNORE"
    NO_EVIDENCE = "NO_EVIDENCE"

class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

@dataclass(frozen=True)
class DecisionThresholds:
    buy_score_min: float = 7.5
    watch_score_min: float = 5.0
    min_gap_abs_buy: int = 800
    min_gap_pct_buy: float = 0.04
    min_gap_abs_watch: int = 400
    min_gap_pct_watch: float = 0.02
    max_listing_age_days_buy: int = 7
    max_listing_age_days_watch: int = 14
    buy_disallowed_sources: Tuple[str, ...] = ("gumtree_private", "facebook_marketplace")
    min_proven_samples: int = 3
    confidence_high_min: float = 7.0
    confidence_medium_min: float = 5.5

    @classmethod
    def from_settings(cls, **overrides) -> "DecisionThresholds":
        base = cls(
            buy_score_min=settings.BUY_SCORE_MIN,
            watch_score_min=settings.WATCH_SCORE_MIN,
            min_gap_abs_buy=settings.MIN_GAP_ABS_BUY,
            min_gap_pct_buy=settings.MIN_GAP_PCT_BUY,
            min_gap_abs_watch=settings.MIN_GAP_ABS_WATCH,
            min_gap_pct_watch=settings.MIN_GAP_PCT_WATCH,
            max_listing_age_days_buy=settings.MAX_LISTING_AGE_DAYS_BUY,
            max_listing_age_days_watch=settings.MAX_LISTING_AGE_DAYS_WATCH,
            buy_disallowed_sources=tuple(s.lower() for s in settings.BUY_DISALLOWED_SOURCES),
            min_proven_samples=settings.MIN_PROVEN_SAMPLES,
            confidence_high_min=settings.CONFIDENCE_HIGH_MIN,
            confidence_medium_min=settings.CONFIDENCE_MEDIUM_MIN,
        )
        return replace(base, **overrides) if overrides else base

    def validate(self) -> "DecisionThresholds":
        problems = []
        if self.buy_score_min < self.watch_score_min:
            problems.append("buy_score_min below watch_score_min")
        if self.max_listing_age_days_buy > self.max_listing_age_days_watch:
            problems.append("buy max age looser than watch max age")
        if self.min_gap_abs_buy < self.min_gap_abs_watch or self.min_gap_pct_buy < self.min_gap_pct_watch:
            problems.append("buy gap floors looser than watch gap floors")
        if self.confidence_high_min < self.confidence_medium_min:
            problems.append("confidence_high_min below confidence_medium_min")
        if self.min_proven_samples < 1:
            problems.append("min_proven_samples must be at least 1")
        if problems:
            raise ConfigurationError("; ".join(problems))
        return self

@dataclass(frozen=True)
class Decision:
    tier: Tier
    confidence: Confidence
    gap_dollars: Optional[int] = None
    gap_pct: Optional[float] = None
    exit_value: Optional[int] = None
    blockers: List[str] = field(default_factory=list)

def confidence_label(score: float, thresholds: Optional[DecisionThresholds] = None) -> Confidence:
    t = thresholds or DecisionThresholds()
    if score >= t.confidence_high_min:
        return Confidence.HIGH
    if score >= t.confidence_medium_min:
        return Confidence.MEDIUM
    return Confidence.LOW

def compute_gap(exit_value: Optional[int], asking_price: Optional[int]) -> Tuple[Optional[int], Optional[float]]:
    """(exit - asking, gap as a fraction of exit); (None, None) when not computable."""
    if exit_value is None or asking_price is None or exit_value <= 0:
        return None, None
    gap = exit_value - asking_price
    return gap, round(gap / exit_value, 4)

def buy_blockers(score: float, fingerprint: FingerprintShape, listing: ListingShape,
                 age_days: Optional[float], gap: int, gap_pct: float,
                 t: DecisionThresholds) -> List[str]:
    blockers = []
    if score < t.buy_score_min:
        blockers.append(f"score {score} below {t.buy_score_min}")
    if age_days is None:
        blockers.append("listing age unknown")
    elif age_days > t.max_listing_age_days_buy:
        blockers.append(f"listing age {age_days:.1f}d over {t.max_listing_age_days_buy}d")
    if gap < t.min_gap_abs_buy:
        blockers.append(f"gap ${gap} below ${t.min_gap_abs_buy}")
    if gap_pct < t.min_gap_pct_buy:
        blockers.append(f"gap {gap_pct:.1%} below {t.min_gap_pct_buy:.1%}")
    if listing.km is None:
        blockers.append("km unknown")
    if (listing.source or "").lower() in t.buy_disallowed_sources:
        blockers.append(f"source {listing.source} not allowed for BUY")
    if listing.is_private:
        blockers.append("private seller")
    if (fingerprint.sample_count or 0) < t.min_proven_samples:
        blockers.append(f"fingerprint not proven ({fingerprint.sample_count} samples)")
    return blockers

def decide(score: float, fingerprint: FingerprintShape, listing: ListingShape,
           age_days: Optional[float], thresholds: Optional[DecisionThresholds] = None,
           eligible: bool = True) -> Decision:
    """
    Classify one scored pair.

    `eligible` is False when scoring short-circuited on a platform mismatch;
    such pairs keep their gap figures but can never be BUY or WATCH.
    """
    t = thresholds or DecisionThresholds()
    confidence = confidence_label(score, t)
    exit_value = fingerprint.exit_value
    gap, gap_pct = compute_gap(exit_value, listing.asking_price)

    if gap is None:
        reason = "no historical exit value" if not exit_value or exit_value <= 0 else "listing has no asking price"
        return Decision(Tier.NO_EVIDENCE, confidence, exit_value=exit_value, blockers=[reason])

    if not eligible:
        return Decision(Tier.IGNORE, confidence, gap, gap_pct, exit_value, ["platform mismatch"])

    blockers = buy_blockers(score, fingerprint, listing, age_days, gap, gap_pct, t)
    if not blockers:
        return Decision(Tier.BUY, confidence, gap, gap_pct, exit_value, [])

    watch_age_ok = age_days is None or age_days <= t.max_listing_age_days_watch
    watch_gap_ok = gap >= t.min_gap_abs_watch or gap_pct >= t.min_gap_pct_watch
    if score >= t.watch_score_min and watch_age_ok and watch_gap_ok:
        return Decision(Tier.WATCH, confidence, gap, gap_pct, exit_value, blockers)
    return Decision(Tier.IGNORE, confidence, gap, gap_pct, exit_value, blockers)
