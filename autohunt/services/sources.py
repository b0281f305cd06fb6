"""
Read-side collaborators: the fingerprint store and the listing source.

Both raise SourceFetchError on any failure so the orchestrator can record it
against the owning scan and move on.
"""
from typing import Optional, List, Dict, Any, Tuple, Protocol
from dataclasses import dataclass
from datetime import datetime
from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from pydantic import ValidationError
import httpx
import logging
from autohunt.config import settings
from autohunt.exceptions import SourceFetchError
from autohunt.models import Fingerprint, Listing
from autohunt.schemas import ListingIn
from autohunt.services.cache import TTLCache
from autohunt.services.classifier import derive_platform, make_spellings, model_token
from autohunt.services.shapes import FingerprintShape

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class CandidateQuery:
    make: str
    model: str
    year_min: int
    year_max: int
    first_seen_after: Optional[datetime] = None
    sources: Optional[Tuple[str, ...]] = None
    include_private: bool = True
    limit: int = 500

class FingerprintStore(Protocol):
    def get(self, fingerprint_id: int) -> Optional[FingerprintShape]: ...
    def list_proven(self, make: Optional[str] = None, model: Optional[str] = None,
                    min_samples: int = 3) -> List[FingerprintShape]: ...

class ListingSource(Protocol):
    def fetch_candidates(self, query: CandidateQuery) -> List[Dict[str, Any]]:
        """Listing records as dicts of Listing fields. Records without an `id` are not stored locally yet."""
        ...

class SqlFingerprintStore:
    def __init__(self, session: Session, cache=None):
        self.session = session
        self._cache = cache if cache is not None else TTLCache(maxsize=1024, ttl=settings.FINGERPRINT_CACHE_TTL_SECONDS)

    def get(self, fingerprint_id: int) -> Optional[FingerprintShape]:
        shape = self._cache.get(fingerprint_id)
        if shape is not None:
            return shape
        try:
            row = self.session.get(Fingerprint, fingerprint_id)
        except SQLAlchemyError as e:
            raise SourceFetchError(f"fingerprint {fingerprint_id} could not be loaded: {e}") from e
        if row is None or row.retired_at is not None:
            return None
        shape = FingerprintShape.from_orm(row)
        self._cache.set(fingerprint_id, shape)
        return shape

    def list_proven(self, make: Optional[str] = None, model: Optional[str] = None,
                    min_samples: int = 3) -> List[FingerprintShape]:
        q = self.session.query(Fingerprint).filter(
            Fingerprint.retired_at.is_(None),
            Fingerprint.sample_count >= min_samples,
        )
        if make:
            q = q.filter(Fingerprint.make.ilike(make))
        if model:
            q = q.filter(Fingerprint.model.ilike(model))
        try:
            return [FingerprintShape.from_orm(r) for r in q.order_by(Fingerprint.id).all()]
        except SQLAlchemyError as e:
            raise SourceFetchError(f"fingerprint listing failed: {e}") from e

def listing_to_record(row: Listing) -> Dict[str, Any]:
    return {c.name: getattr(row, c.name) for c in Listing.__table__.columns}

class SqlListingSource:
    """Pages through the local listings table."""

    def __init__(self, session: Session, page_size: int = 100):
        self.session = session
        self.page_size = page_size

    def _base_query(self, query: CandidateQuery):
        # Loose text match on make spellings and the compacted model; platform is checked per row
        compact_model = func.replace(func.replace(func.upper(Listing.model), "-", ""), " ", "")
        q = self.session.query(Listing).filter(
            func.upper(func.trim(Listing.make)).in_(make_spellings(query.make)),
            compact_model.like(f"%{model_token(query.make, query.model)}%"),
            Listing.year >= query.year_min,
            Listing.year <= query.year_max,
            Listing.delisted_at.is_(None),
        )
        if query.first_seen_after is not None:
            q = q.filter(Listing.first_seen_at >= query.first_seen_after)
        if query.sources:
            q = q.filter(Listing.source.in_(list(query.sources)))
        if not query.include_private:
            q = q.filter(or_(Listing.seller_type.is_(None), Listing.seller_type != "private"))
        return q.order_by(Listing.id)

    def fetch_candidates(self, query: CandidateQuery) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        platform = derive_platform(query.make, query.model)
        offset = skipped = 0
        try:
            base = self._base_query(query)
            while len(records) < query.limit:
                page = base.offset(offset).limit(self.page_size).all()
                for row in page:
                    if derive_platform(row.make, row.model) != platform:
                        skipped += 1
                        continue
                    records.append(listing_to_record(row))
                    if len(records) >= query.limit:
                        break
                if len(page) < self.page_size:
                    break
                offset += self.page_size
        except SQLAlchemyError as e:
            raise SourceFetchError(f"listing query failed for {query.make} {query.model}: {e}") from e
        if skipped:
            logger.debug(f"Dropped {skipped} listings outside platform {platform}")
        return records

class HttpListingSource:
    """
    Reads candidates from a remote listings API.

    GET {base_url}/listings?make=..&model=..&year_min=..&year_max=..&page=N
    returns {"items": [...], "next_page": N | null}.
    """

    def __init__(self, base_url: str, timeout: float = 20.0, page_size: int = 100,
                 client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.page_size = page_size
        self._client = client

    def _params(self, query: CandidateQuery, page: int) -> Dict[str, Any]:
        params = {
            "make": query.make,
            "model": query.model,
            "year_min": query.year_min,
            "year_max": query.year_max,
            "include_private": str(query.include_private).lower(),
            "page": page,
            "page_size": self.page_size,
        }
        if query.first_seen_after is not None:
            params["first_seen_after"] = query.first_seen_after.isoformat()
        if query.sources:
            params["sources"] = ",".join(query.sources)
        return params

    def _get_pages(self, client: httpx.Client, query: CandidateQuery) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        page = 1
        while page is not None and len(records) < query.limit:
            resp = client.get(f"{self.base_url}/listings", params=self._params(query, page))
            resp.raise_for_status()
            body = resp.json()
            for item in body.get("items", []):
                try:
                    records.append(ListingIn.model_validate(item).model_dump())
                except ValidationError as e:
                    logger.warning(f"Skipping malformed listing from {self.base_url}: {e.error_count()} errors")
            page = body.get("next_page")
        return records[:query.limit]

    def fetch_candidates(self, query: CandidateQuery) -> List[Dict[str, Any]]:
        try:
            if self._client is not None:
                return self._get_pages(self._client, query)
            with httpx.Client(timeout=self.timeout) as client:
                return self._get_pages(client, query)
        except httpx.HTTPStatusError as e:
            raise SourceFetchError(f"listing source returned {e.response.status_code} for {e.request.url}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise SourceFetchError(f"listing source request failed: {e}") from e
