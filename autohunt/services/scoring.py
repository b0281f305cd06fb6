"""
Match scorer: weighted multi-factor score of a (fingerprint, listing) pair.

Every factor that is evaluated lands in the reasons trail, including factors
that contributed nothing, so a reviewer can see why a listing was or wasn't
flagged. A platform (make/model family) mismatch stops evaluation.
"""
from typing import Optional, List, Dict, Any
from dataclasses import dataclass, fields, replace
from enum import Enum
from autohunt.config import settings
from autohunt.exceptions import ConfigurationError
from autohunt.services.classifier import (
    UNKNOWN, TrimRelation, trim_allowed, trim_classifier,
    drivetrain_bucket, fuel_bucket, transmission_bucket,
)
from autohunt.services.shapes import FingerprintShape, ListingShape

AUCTION_SOURCES = {"pickles", "manheim", "grays", "lloyds", "slattery", "valleys"}

class Factor(str, Enum):
    MAKE_MODEL = "make_model"
    TRIM = "trim"
    ODOMETER = "odometer"
    PRICE_TARGET = "price_target"
    PRICE_BELOW_SELL = "price_below_sell"
    YEAR = "year"
    DRIVETRAIN = "drivetrain"
    FUEL = "fuel"
    TRANSMISSION = "transmission"
    SOURCE = "source"

@dataclass(frozen=True)
class Reason:
    factor: Factor
    points: float
    detail: str

    def as_dict(self) -> Dict[str, Any]:
        return {"factor": self.factor.value, "points": self.points, "detail": self.detail}

@dataclass(frozen=True)
class ScoreResult:
    score: float
    reasons: List[Reason]
    short_circuited: bool = False
    platform_class: Optional[str] = None
    listing_trim: str = UNKNOWN
    fingerprint_trim: str = UNKNOWN
    trim_relation: Optional[TrimRelation] = None

    def points_for(self, factor: Factor) -> float:
        return sum(r.points for r in self.reasons if r.factor == factor)

    def reasons_as_dicts(self) -> List[Dict[str, Any]]:
        return [r.as_dict() for r in self.reasons]

@dataclass(frozen=True)
class ScoringWeights:
    """Factor weights on a 10-point scale. Callers may pass their own calibration."""
    make_model: float = 3.0
    trim_exact: float = 1.5
    trim_upgrade: float = 0.75
    trim_reject: float = -2.0
    odometer: float = 1.5
    price_target: float = 1.25
    price_below_sell: float = 0.5
    year: float = 0.5
    drivetrain: float = 0.25
    fuel: float = 0.25
    transmission: float = 0.25
    source_auction: float = 1.0
    source_dealer: float = 0.75
    source_classifieds: float = 0.5
    source_private: float = 0.0
    mismatch_score: float = 0.0
    km_tolerance_base: float = 10000
    km_tolerance_pct: float = 0.10

    @classmethod
    def from_settings(cls, **overrides) -> "ScoringWeights":
        base = cls(km_tolerance_base=settings.KM_TOLERANCE_BASE, km_tolerance_pct=settings.KM_TOLERANCE_PCT)
        return replace(base, **overrides) if overrides else base

    def validate(self) -> "ScoringWeights":
        """Check the relative ordering of importance. Raises ConfigurationError."""
        problems = []
        minor = [self.odometer, self.price_target, self.price_below_sell, self.year,
                 self.drivetrain, self.fuel, self.transmission, self.trim_exact, self.source_auction]
        if any(self.make_model <= w for w in minor):
            problems.append("make_model must outweigh every other factor")
        if not self.trim_exact > self.trim_upgrade > 0:
            problems.append("trim weights must satisfy exact > upgrade > 0")
        if self.trim_reject >= 0:
            problems.append("trim_reject must be negative")
        if self.price_target <= self.price_below_sell:
            problems.append("price_target must outweigh price_below_sell")
        for name in ("year", "drivetrain", "fuel", "transmission"):
            if getattr(self, name) > self.trim_exact:
                problems.append(f"{name} must not outweigh trim_exact")
        if not self.source_auction >= self.source_dealer >= self.source_classifieds >= self.source_private:
            problems.append("source tiers must satisfy auction >= dealer >= classifieds >= private")
        for f in fields(self):
            if f.name in ("trim_reject", "mismatch_score"):
                continue
            if getattr(self, f.name) < 0:
                problems.append(f"{f.name} must not be negative")
        if self.mismatch_score > 0:
            problems.append("mismatch_score must not be positive")
        if problems:
            raise ConfigurationError("; ".join(problems))
        return self

DEFAULT_WEIGHTS = ScoringWeights()

def odometer_tolerance(reference_km: float, weights: ScoringWeights = DEFAULT_WEIGHTS) -> float:
    """Allowed km deviation; widens with the reference odometer."""
    return weights.km_tolerance_base + max(reference_km or 0, 0) * weights.km_tolerance_pct

def source_tier(listing: ListingShape) -> str:
    if listing.is_private:
        return "private"
    src = (listing.source or "").lower()
    if listing.source_class == "auction" or src in AUCTION_SOURCES:
        return "auction"
    if listing.source_class == "dealer" or src.startswith("dealer_site:"):
        return "dealer"
    return "classifieds"

def _bucket_reason(factor: Factor, points: float, fp_value: str, listing_value: str) -> Reason:
    if fp_value == UNKNOWN or listing_value == UNKNOWN:
        return Reason(factor, 0.0, f"{factor.value} unknown (fingerprint {fp_value}, listing {listing_value})")
    if fp_value == listing_value:
        return Reason(factor, points, f"{factor.value} match {listing_value}")
    return Reason(factor, 0.0, f"{factor.value} differs: fingerprint {fp_value}, listing {listing_value}")

def score_match(fingerprint: FingerprintShape, listing: ListingShape,
                weights: ScoringWeights = DEFAULT_WEIGHTS, classifier=None) -> ScoreResult:
    classifier = classifier or trim_classifier
    fp_class = classifier.classify_fingerprint(fingerprint)
    listing_class = classifier.classify(listing.make, listing.model, listing.variant)
    reasons: List[Reason] = []

    # 1. Platform
    if fp_class.platform_class != listing_class.platform_class:
        reasons.append(Reason(Factor.MAKE_MODEL, weights.mismatch_score,
                              f"platform mismatch: fingerprint {fp_class.platform_class}, "
                              f"listing {listing_class.platform_class}"))
        return ScoreResult(score=weights.mismatch_score, reasons=reasons, short_circuited=True,
                           platform_class=listing_class.platform_class,
                           listing_trim=listing_class.trim_label, fingerprint_trim=fp_class.trim_label)
    reasons.append(Reason(Factor.MAKE_MODEL, weights.make_model, f"platform match {fp_class.platform_class}"))

    # 2. Trim
    relation = None
    if fp_class.trim_label == UNKNOWN or listing_class.trim_label == UNKNOWN:
        reasons.append(Reason(Factor.TRIM, 0.0,
                              f"trim not comparable (fingerprint {fp_class.trim_label}, listing {listing_class.trim_label})"))
    else:
        relation = trim_allowed(fp_class.platform_class, listing_class.trim_label, fp_class.trim_label)
        if relation == TrimRelation.EXACT:
            reasons.append(Reason(Factor.TRIM, weights.trim_exact, f"trim exact {listing_class.trim_label}"))
        elif relation == TrimRelation.UPGRADE:
            reasons.append(Reason(Factor.TRIM, weights.trim_upgrade,
                                  f"trim upgrade {fp_class.trim_label} -> {listing_class.trim_label}"))
        else:
            reasons.append(Reason(Factor.TRIM, weights.trim_reject,
                                  f"trim rejected: fingerprint {fp_class.trim_label}, listing {listing_class.trim_label}"))

    # 3. Odometer
    if listing.km is None or fingerprint.reference_km is None:
        reasons.append(Reason(Factor.ODOMETER, 0.0, "km unknown"))
    else:
        tolerance = odometer_tolerance(fingerprint.reference_km, weights)
        deviation = abs(listing.km - fingerprint.reference_km)
        if deviation <= tolerance:
            reasons.append(Reason(Factor.ODOMETER, weights.odometer,
                                  f"km {listing.km} within {int(tolerance)} of {fingerprint.reference_km}"))
        else:
            reasons.append(Reason(Factor.ODOMETER, 0.0,
                                  f"km {listing.km} outside {int(tolerance)} of {fingerprint.reference_km}"))

    # 4. Price
    target = fingerprint.target_buy_price
    if listing.asking_price is None or target is None:
        reasons.append(Reason(Factor.PRICE_TARGET, 0.0, "target buy price not computable"))
    elif listing.asking_price <= target:
        reasons.append(Reason(Factor.PRICE_TARGET, weights.price_target,
                              f"asking {listing.asking_price} at or below target {target}"))
    else:
        reasons.append(Reason(Factor.PRICE_TARGET, 0.0, f"asking {listing.asking_price} above target {target}"))
    if listing.asking_price is None or fingerprint.sell_price is None:
        reasons.append(Reason(Factor.PRICE_BELOW_SELL, 0.0, "historical sell price not comparable"))
    elif listing.asking_price < fingerprint.sell_price:
        reasons.append(Reason(Factor.PRICE_BELOW_SELL, weights.price_below_sell,
                              f"asking {listing.asking_price} below sell {fingerprint.sell_price}"))
    else:
        reasons.append(Reason(Factor.PRICE_BELOW_SELL, 0.0,
                              f"asking {listing.asking_price} not below sell {fingerprint.sell_price}"))

    # 5. Year and minor attributes
    if listing.year is not None and fingerprint.year_min <= listing.year <= fingerprint.year_max:
        reasons.append(Reason(Factor.YEAR, weights.year,
                              f"year {listing.year} in {fingerprint.year_min}-{fingerprint.year_max}"))
    else:
        reasons.append(Reason(Factor.YEAR, 0.0,
                              f"year {listing.year} outside {fingerprint.year_min}-{fingerprint.year_max}"))
    reasons.append(_bucket_reason(Factor.DRIVETRAIN, weights.drivetrain,
                                  drivetrain_bucket(fingerprint.drivetrain), drivetrain_bucket(listing.drivetrain)))
    reasons.append(_bucket_reason(Factor.FUEL, weights.fuel,
                                  fuel_bucket(fingerprint.fuel), fuel_bucket(listing.fuel)))
    reasons.append(_bucket_reason(Factor.TRANSMISSION, weights.transmission,
                                  transmission_bucket(fingerprint.transmission),
                                  transmission_bucket(listing.transmission)))

    # 6. Source
    tier = source_tier(listing)
    reasons.append(Reason(Factor.SOURCE, getattr(weights, f"source_{tier}"), f"source {listing.source} ({tier})"))

    score = round(sum(r.points for r in reasons), 2)
    return ScoreResult(score=score, reasons=reasons, platform_class=fp_class.platform_class,
                       listing_trim=listing_class.trim_label, fingerprint_trim=fp_class.trim_label,
                       trim_relation=relation)
