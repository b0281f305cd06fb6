"""
Immutable copies of fingerprints and listings.

Scoring runs on worker threads, so it never touches ORM rows or sessions;
the orchestrator snapshots rows into these shapes first.
"""
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Optional, Dict, Any

@dataclass(frozen=True)
class FingerprintShape:
    id: Optional[int]
    make: str
    model: str
    year_min: int
    year_max: int
    variant: Optional[str] = None
    fuel: Optional[str] = None
    transmission: Optional[str] = None
    drivetrain: Optional[str] = None
    reference_km: Optional[int] = None
    buy_price: Optional[int] = None
    sell_price: Optional[int] = None
    sample_count: int = 0
    platform_class: Optional[str] = None
    trim_class: Optional[str] = None

    @property
    def exit_value(self) -> Optional[int]:
        return self.sell_price

    @property
    def historical_profit(self) -> Optional[int]:
        if self.sell_price is None or self.buy_price is None:
            return None
        return self.sell_price - self.buy_price

    @property
    def target_buy_price(self) -> Optional[int]:
        """Historical sell price minus historical profit."""
        profit = self.historical_profit
        if profit is None:
            return None
        return self.sell_price - profit

    @classmethod
    def from_orm(cls, row) -> "FingerprintShape":
        return cls(**{f.name: getattr(row, f.name) for f in fields(cls)})

@dataclass(frozen=True)
class ListingShape:
    id: Optional[int]
    source: str
    make: str
    model: str
    year: Optional[int] = None
    external_id: Optional[str] = None
    source_class: str = "classifieds"
    seller_type: Optional[str] = None
    variant: Optional[str] = None
    km: Optional[int] = None
    asking_price: Optional[int] = None
    state: Optional[str] = None
    drivetrain: Optional[str] = None
    fuel: Optional[str] = None
    transmission: Optional[str] = None
    url: Optional[str] = None
    first_seen_at: Optional[datetime] = None

    @property
    def is_private(self) -> bool:
        return (self.seller_type or "").lower() == "private"

    def age_days(self, now: datetime) -> Optional[float]:
        if self.first_seen_at is None:
            return None
        return max((now - self.first_seen_at).total_seconds() / 86400.0, 0.0)

    @classmethod
    def from_orm(cls, row) -> "ListingShape":
        return cls(**{f.name: getattr(row, f.name) for f in fields(cls)})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ListingShape":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})
