"""
Trim/platform classification for fingerprint and listing text.

Collapses free-text make/model into a coarse platform class, extracts a badge
(trim) label and answers whether a listing trim may stand in for a fingerprint
trim according to the hand-curated trim ladders.
"""
from typing import Optional, Dict, List, Tuple
from dataclasses import dataclass
from enum import Enum
from rapidfuzz import fuzz, process
import re
import logging
from autohunt.config import settings
from autohunt.services.cache import TTLCache

logger = logging.getLogger(__name__)

UNKNOWN = "UNKNOWN"

MAKE_ALIASES = {
    "VW": "VOLKSWAGEN",
    "MERCEDES": "MERCEDES-BENZ",
    "MERCEDES BENZ": "MERCEDES-BENZ",
    "HOLDEN SPECIAL VEHICLES": "HSV",
}

# Canonical model names per make, compacted (no spaces or dashes)
KNOWN_MODELS: Dict[str, List[str]] = {
    "TOYOTA": ["HILUX", "LANDCRUISER", "PRADO", "HIACE", "FORTUNER", "RAV4", "KLUGER", "COROLLA", "CAMRY"],
    "FORD": ["RANGER", "EVEREST", "TRANSIT", "FALCON", "TERRITORY"],
    "ISUZU": ["DMAX", "MUX"],
    "MITSUBISHI": ["TRITON", "OUTLANDER", "PAJERO", "PAJEROSPORT", "ASX"],
    "NISSAN": ["NAVARA", "PATROL", "XTRAIL", "PATHFINDER"],
    "HOLDEN": ["COLORADO", "COMMODORE", "TRAILBLAZER"],
    "MAZDA": ["BT50", "CX5", "CX9"],
    "VOLKSWAGEN": ["AMAROK", "TIGUAN", "TRANSPORTER"],
}

MODEL_MATCH_CUTOFF = 85

# Ordered: specific badges first so "ST" never wins inside "ST-X".
# Separators inside a token are optional ("LSU", "LS-U" and "LS U" all match LS-U).
BADGES: List[Tuple[str, Tuple[str, ...]]] = [
    ("EXCEED TOURER", ("EXCEED TOURER",)),
    ("EXCEED", ("EXCEED",)),
    ("X-TERRAIN", ("X-TERRAIN",)),
    ("PRO-4X", ("PRO-4X",)),
    ("GLX-R", ("GLX-R",)),
    ("GLX+", ("GLX+", "GLX PLUS")),
    ("SR5", ("SR5",)),
    ("ROGUE", ("ROGUE",)),
    ("RUGGED X", ("RUGGED X", "RUGGED")),
    ("RAPTOR", ("RAPTOR",)),
    ("WILDTRAK", ("WILDTRAK",)),
    ("KAKADU", ("KAKADU",)),
    ("SAHARA", ("SAHARA",)),
    ("ASPIRE", ("ASPIRE",)),
    ("TITANIUM", ("TITANIUM",)),
    ("PLATINUM", ("PLATINUM",)),
    ("GXL", ("GXL",)),
    ("VX", ("VX",)),
    ("GX", ("GX",)),
    ("XLT", ("XLT",)),
    ("XLS", ("XLS",)),
    ("LS-U", ("LS-U",)),
    ("LS-M", ("LS-M",)),
    ("LS-T", ("LS-T",)),
    ("ST-X", ("ST-X",)),
    ("ST-L", ("ST-L",)),
    ("TI-L", ("TI-L",)),
    ("GLS", ("GLS",)),
    ("GLX", ("GLX",)),
    ("GR", ("GR",)),
    ("N-TREK", ("N-TREK",)),
    ("COMMUTER", ("COMMUTER",)),
    ("SLWB", ("SLWB",)),
    ("LWB", ("LWB",)),
    ("WORKMATE", ("WORKMATE",)),
    ("AMBIENTE", ("AMBIENTE",)),
    ("TREND", ("TREND",)),
    ("ASCENT SPORT", ("ASCENT SPORT",)),
    ("ASCENT", ("ASCENT",)),
    ("MAXX SPORT", ("MAXX SPORT",)),
    ("MAXX", ("MAXX",)),
    ("AKARI", ("AKARI",)),
    ("GT-LINE", ("GT-LINE",)),
    ("SPORT", ("SPORT",)),
    ("TOURING", ("TOURING",)),
    # short badges
    ("LTZ", ("LTZ",)),
    ("SR", ("SR",)),
    ("XL", ("XL",)),
    ("LS", ("LS",)),
    ("ES", ("ES",)),
    ("SL", ("SL",)),
    ("ST", ("ST",)),
    ("TI", ("TI",)),
    ("LT", ("LT",)),
    ("Z71", ("Z71",)),
    ("SSV", ("SSV",)),
    ("SS", ("SS",)),
    ("SV6", ("SV6",)),
    ("SX", ("SX",)),
    ("XT", ("XT",)),
    ("RX", ("RX",)),
]

TRIM_LADDERS: Dict[str, List[str]] = {
    "LANDCRUISER": ["WORKMATE", "GX", "GXL", "VX", "SAHARA"],
    "PRADO": ["GX", "GXL", "VX", "KAKADU"],
    "TOYOTA:HILUX": ["WORKMATE", "SR", "SR5", "ROGUE", "RUGGED X"],
    "TOYOTA:HIACE": ["LWB", "SLWB", "COMMUTER"],
    "FORD:RANGER": ["XL", "XLS", "XLT", "WILDTRAK", "RAPTOR"],
    "FORD:EVEREST": ["AMBIENTE", "TREND", "TITANIUM"],
    "ISUZU:DMAX": ["SX", "LS-M", "LS-U", "X-TERRAIN"],
    "ISUZU:MUX": ["LS-M", "LS-U", "LS-T"],
    "MITSUBISHI:TRITON": ["GLX", "GLX+", "GLX-R", "GLS"],
    "OUTLANDER": ["ES", "LS", "ASPIRE", "EXCEED", "EXCEED TOURER"],
    "NISSAN:NAVARA": ["RX", "SL", "ST", "ST-L", "ST-X", "PRO-4X"],
    "NISSAN:PATROL": ["TI", "TI-L"],
    "HOLDEN:COLORADO": ["LS", "LT", "LTZ", "Z71"],
}

def _badge_pattern(alias: str) -> re.Pattern:
    parts = re.split(r"[-\s]+", alias)
    body = r"[-\s]?".join(re.escape(p) for p in parts)
    return re.compile(rf"(?<![A-Z0-9]){body}(?![A-Z0-9])")

_BADGE_PATTERNS: List[Tuple[str, re.Pattern]] = [
    (label, _badge_pattern(alias)) for label, aliases in BADGES for alias in aliases
]

class TrimRelation(str, Enum):
    EXACT = "EXACT"
    UPGRADE = "UPGRADE"

@dataclass(frozen=True)
class Classification:
    platform_class: str
    trim_label: str

def _compact(text: Optional[str]) -> str:
    return re.sub(r"[^A-Z0-9]", "", (text or "").upper())

def normalize_make(make: Optional[str]) -> str:
    m = " ".join((make or "").upper().split())
    return MAKE_ALIASES.get(m, m)

def canonical_model(make: Optional[str], model: Optional[str]) -> str:
    """Resolve spelling variants (HI-LUX, D-MAX, Land Cruiser, typos) to a known model name."""
    compact = _compact(model)
    if not compact:
        return ""
    known = KNOWN_MODELS.get(normalize_make(make))
    if not known:
        return compact
    # Longest prefix first so PAJEROSPORT beats PAJERO
    for name in sorted(known, key=len, reverse=True):
        if compact.startswith(name):
            return name
    best = process.extractOne(compact, known, scorer=fuzz.ratio, score_cutoff=MODEL_MATCH_CUTOFF)
    if best:
        return best[0]
    return compact

def derive_platform(make: Optional[str], model: Optional[str]) -> str:
    m = normalize_make(make)
    mo = canonical_model(make, model)
    if m == "TOYOTA":
        if "PRADO" in _compact(model):
            return "PRADO"
        if mo == "LANDCRUISER":
            return "LANDCRUISER"
    if m == "MITSUBISHI" and mo == "OUTLANDER":
        return "OUTLANDER"
    return f"{m}:{mo}"

def make_spellings(make: Optional[str]) -> List[str]:
    """Every upper-cased make spelling that normalizes to the same make (VW and VOLKSWAGEN)."""
    m = normalize_make(make)
    return sorted({m} | {alias for alias, target in MAKE_ALIASES.items() if target == m})

def model_token(make: Optional[str], model: Optional[str]) -> str:
    """Compacted model name for a loose text prefilter; platform families search on the family name."""
    platform = derive_platform(make, model)
    return platform.split(":", 1)[1] if ":" in platform else platform

def extract_trim(text: Optional[str]) -> str:
    if not text:
        return UNKNOWN
    upper = " ".join(text.upper().split())
    for label, pattern in _BADGE_PATTERNS:
        if pattern.search(upper):
            return label
    return UNKNOWN

def trim_rank(platform_class: str, trim: str) -> Optional[int]:
    ladder = TRIM_LADDERS.get(platform_class)
    if not ladder or trim not in ladder:
        return None
    return ladder.index(trim) + 1

def trim_allowed(platform_class: str, listing_trim: str, fingerprint_trim: str) -> Optional[TrimRelation]:
    """
    EXACT when equal, UPGRADE when the listing sits exactly one ladder rank above
    the fingerprint. None means rejected (downgrade, multi-step, unranked or UNKNOWN).
    """
    if listing_trim == UNKNOWN or fingerprint_trim == UNKNOWN:
        return None
    if listing_trim == fingerprint_trim:
        return TrimRelation.EXACT
    listing_rank = trim_rank(platform_class, listing_trim)
    fingerprint_rank = trim_rank(platform_class, fingerprint_trim)
    if listing_rank is None or fingerprint_rank is None:
        return None
    if listing_rank == fingerprint_rank + 1:
        return TrimRelation.UPGRADE
    return None

def drivetrain_bucket(value: Optional[str]) -> str:
    if not value:
        return UNKNOWN
    v = value.upper()
    if re.search(r"4X4|4WD|AWD", v):
        return "4WD"
    if re.search(r"2WD|2X4|4X2|FWD|RWD", v):
        return "2WD"
    return UNKNOWN

def fuel_bucket(value: Optional[str]) -> str:
    if not value:
        return UNKNOWN
    v = value.upper()
    if "HYBRID" in v:
        return "HYBRID"
    if "DIESEL" in v or v == "D":
        return "DIESEL"
    if "ELECTRIC" in v or v == "EV":
        return "ELECTRIC"
    if "PETROL" in v or "UNLEADED" in v or "ULP" in v or v == "P":
        return "PETROL"
    return UNKNOWN

def transmission_bucket(value: Optional[str]) -> str:
    if not value:
        return UNKNOWN
    v = value.upper()
    if "MANUAL" in v or v in ("M", "MT"):
        return "MANUAL"
    if "AUTO" in v or v in ("A", "AT", "CVT", "DCT"):
        return "AUTO"
    return UNKNOWN

def classify(make: Optional[str], model: Optional[str], badge_text: Optional[str]) -> Classification:
    return Classification(platform_class=derive_platform(make, model), trim_label=extract_trim(badge_text))

class TrimClassifier:
    """classify() with an injected cache; listing text repeats heavily across scans"""

    def __init__(self, cache=None):
        self._cache = cache if cache is not None else TTLCache(maxsize=settings.CLASSIFIER_CACHE_SIZE)

    def classify(self, make: Optional[str], model: Optional[str], badge_text: Optional[str]) -> Classification:
        key = (make or "", model or "", badge_text or "")
        result = self._cache.get(key)
        if result is None:
            result = classify(make, model, badge_text)
            self._cache.set(key, result)
        return result

    def classify_fingerprint(self, fingerprint) -> Classification:
        """Stored platform/trim classes win over text extraction."""
        derived = self.classify(fingerprint.make, fingerprint.model, fingerprint.variant)
        return Classification(
            platform_class=(fingerprint.platform_class or derived.platform_class).upper(),
            trim_label=(fingerprint.trim_class or derived.trim_label).upper(),
        )

# Global instance
trim_classifier = TrimClassifier()
