"""
Scan orchestrator.

Claims due hunts, pulls candidates for each hunt's fingerprint, runs the
scorer and decision policy over them and records the results in the ledger.
Each scan moves pending -> running -> ok | error. Only an ok scan advances
the hunt's last_scan_at, so failed hunts are retried on the next tick.
"""
from typing import Optional, List, Dict, Any, Tuple, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from sqlalchemy import or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
import logging
import time
from autohunt.config import settings
from autohunt.exceptions import ConfigurationError, SourceFetchError, PersistenceError
from autohunt.models import Hunt, Scan, Fingerprint
from autohunt.services.classifier import trim_classifier
from autohunt.services.decision import DecisionThresholds, Tier
from autohunt.services.ledger import record_evaluation
from autohunt.services.listings import upsert_listing
from autohunt.services.matching import evaluate_many
from autohunt.services.scoring import ScoringWeights
from autohunt.services.shapes import ListingShape, FingerprintShape
from autohunt.services.sources import CandidateQuery, SqlFingerprintStore, SqlListingSource
from autohunt.services.utils import utcnow

logger = logging.getLogger(__name__)

STALE_CLAIM_MINUTES = 30

@dataclass
class ScanSummary:
    scan_id: int
    hunt_id: int
    status: str
    candidates_checked: int = 0
    matches_found: int = 0
    alerts_emitted: int = 0
    partial: bool = False
    error: Optional[str] = None

    @classmethod
    def from_scan(cls, scan: Scan) -> "ScanSummary":
        return cls(scan_id=scan.id, hunt_id=scan.hunt_id, status=scan.status,
                   candidates_checked=scan.candidates_checked, matches_found=scan.matches_found,
                   alerts_emitted=scan.alerts_emitted, partial=bool((scan.details or {}).get("partial")),
                   error=scan.error)

class ScanOrchestrator:
    def __init__(self, db: Session, listing_source=None, fingerprint_store=None,
                 weights: Optional[ScoringWeights] = None, classifier=None,
                 clock: Callable[[], float] = time.monotonic,
                 now_fn: Callable[[], datetime] = utcnow,
                 batch_size: Optional[int] = None,
                 interval_minutes: Optional[int] = None,
                 time_budget_seconds: Optional[float] = None,
                 workers: Optional[int] = None,
                 candidate_limit: Optional[int] = None,
                 year_window: Optional[int] = None,
                 cooldown_hours: Optional[float] = None):
        self.db = db
        self.listing_source = listing_source or SqlListingSource(db, settings.LISTING_SOURCE_PAGE_SIZE)
        self.fingerprint_store = fingerprint_store or SqlFingerprintStore(db)
        self.weights = weights or ScoringWeights.from_settings()
        self.classifier = classifier or trim_classifier
        self.clock = clock
        self.now_fn = now_fn
        self.batch_size = batch_size or settings.SCAN_BATCH_SIZE
        self.interval = timedelta(minutes=interval_minutes if interval_minutes is not None
                                  else settings.SCAN_INTERVAL_MINUTES)
        self.time_budget = time_budget_seconds if time_budget_seconds is not None else settings.SCAN_TIME_BUDGET_SECONDS
        self.workers = workers or settings.SCAN_SCORING_WORKERS
        self.candidate_limit = candidate_limit or settings.SCAN_CANDIDATE_LIMIT
        self.year_window = year_window if year_window is not None else settings.SCAN_YEAR_WINDOW
        self.cooldown_hours = cooldown_hours

    # -- claiming -----------------------------------------------------------

    def due_hunts(self, now: datetime) -> List[Hunt]:
        return self.db.query(Hunt).filter(
            Hunt.status == "active",
            or_(Hunt.last_scan_at.is_(None), Hunt.last_scan_at < now - self.interval),
            or_(Hunt.claimed_at.is_(None), Hunt.claimed_at < now - timedelta(minutes=STALE_CLAIM_MINUTES)),
        ).order_by(Hunt.priority.desc(), Hunt.last_scan_at.asc().nulls_first(), Hunt.id).limit(self.batch_size).all()

    def _claim(self, hunt: Hunt, now: datetime) -> bool:
        """Conditional update on claimed_at; loses cleanly when another run got there first."""
        previous = hunt.claimed_at
        q = self.db.query(Hunt).filter(Hunt.id == hunt.id)
        q = q.filter(Hunt.claimed_at.is_(None)) if previous is None else q.filter(Hunt.claimed_at == previous)
        claimed = q.update({Hunt.claimed_at: now}, synchronize_session=False) == 1
        self.db.commit()
        if claimed:
            self.db.refresh(hunt)
        return claimed

    def claim_due_hunts(self, now: Optional[datetime] = None) -> List[Tuple[Hunt, Scan]]:
        now = now or self.now_fn()
        claimed = []
        for hunt in self.due_hunts(now):
            if not self._claim(hunt, now):
                logger.debug(f"Hunt {hunt.id} already claimed by another run")
                continue
            scan = Scan(hunt_id=hunt.id, status="pending", created_at=now)
            self.db.add(scan)
            self.db.commit()
            claimed.append((hunt, scan))
        logger.info(f"Claimed {len(claimed)} due hunts")
        return claimed

    def _release(self, hunt: Hunt):
        self.db.query(Hunt).filter(Hunt.id == hunt.id).update({Hunt.claimed_at: None}, synchronize_session=False)
        self.db.commit()

    # -- scanning -----------------------------------------------------------

    def build_query(self, hunt: Hunt, fingerprint: FingerprintShape, thresholds: DecisionThresholds,
                    now: datetime) -> CandidateQuery:
        return CandidateQuery(
            make=fingerprint.make,
            model=fingerprint.model,
            year_min=fingerprint.year_min - self.year_window,
            year_max=fingerprint.year_max + self.year_window,
            first_seen_after=now - timedelta(days=thresholds.max_listing_age_days_watch),
            sources=tuple(hunt.sources) if hunt.sources else None,
            include_private=bool(hunt.include_private),
            limit=self.candidate_limit,
        )

    def _materialize(self, records: List[Dict[str, Any]], now: datetime) -> List[ListingShape]:
        """Shapes for every record, storing remote records locally first so matches can reference them."""
        shapes = []
        for record in records:
            if record.get("id") is not None:
                shapes.append(ListingShape.from_dict(record))
                continue
            try:
                row, _ = upsert_listing(self.db, record, now)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Could not store listing {record.get('source')}/{record.get('external_id')}: {e}")
                continue
            shapes.append(ListingShape.from_orm(row))
        return shapes

    def _fail(self, hunt: Hunt, scan: Scan, error: Exception, now: datetime):
        self.db.rollback()
        scan.status = "error"
        scan.error = f"{type(error).__name__}: {error}"
        scan.completed_at = now
        self.db.commit()

    def run_scan(self, hunt: Hunt, scan: Scan) -> ScanSummary:
        now = self.now_fn()
        scan.status = "running"
        scan.started_at = now
        self.db.commit()
        try:
            return self._run(hunt, scan, now)
        except ConfigurationError as e:
            logger.error(f"Scan {scan.id} aborted, configuration error: {e}")
            self._fail(hunt, scan, e, self.now_fn())
            raise
        except SourceFetchError as e:
            logger.error(f"Scan {scan.id} for hunt {hunt.id} fingerprint {hunt.fingerprint_id} fetch failed: {e}")
            self._fail(hunt, scan, e, self.now_fn())
            return ScanSummary.from_scan(scan)
        except Exception as e:
            logger.exception(f"Scan {scan.id} for hunt {hunt.id} fingerprint {hunt.fingerprint_id} failed")
            self._fail(hunt, scan, e, self.now_fn())
            return ScanSummary.from_scan(scan)
        finally:
            self._release(hunt)

    def _run(self, hunt: Hunt, scan: Scan, now: datetime) -> ScanSummary:
        self.weights.validate()
        thresholds = DecisionThresholds.from_settings(**hunt.threshold_overrides()).validate()

        fingerprint = self.fingerprint_store.get(hunt.fingerprint_id)
        if fingerprint is None:
            raise SourceFetchError(f"fingerprint {hunt.fingerprint_id} not found or retired")

        records = self.listing_source.fetch_candidates(self.build_query(hunt, fingerprint, thresholds, now))
        listings = self._materialize(records, now)

        deadline = self.clock() + self.time_budget
        batch = evaluate_many(fingerprint, listings, now, self.weights, thresholds, self.classifier,
                              workers=self.workers, deadline=deadline, clock=self.clock)

        tiers = {t.value: 0 for t in Tier}
        matches_found = alerts_emitted = created_count = short_circuited = 0
        persistence_errors = []
        for evaluation in batch.evaluations:
            if not evaluation.persistable:
                short_circuited += 1
                continue
            try:
                _, created, alert = record_evaluation(self.db, evaluation, hunt.id, scan.id, now,
                                                      self.cooldown_hours)
            except PersistenceError as e:
                logger.error(f"Scan {scan.id}: listing {evaluation.listing.id} not persisted: {e}")
                persistence_errors.append({"listing_id": evaluation.listing.id, "error": str(e)})
                continue
            matches_found += 1
            created_count += int(created)
            alerts_emitted += int(alert is not None)
            tiers[evaluation.decision.tier.value] += 1

        completed = self.now_fn()
        scan.status = "ok"
        scan.completed_at = completed
        scan.candidates_checked = len(batch.evaluations) + len(batch.failures)
        scan.matches_found = matches_found
        scan.alerts_emitted = alerts_emitted
        scan.details = {
            "partial": batch.budget_exhausted,
            "not_evaluated": batch.not_evaluated,
            "tiers": tiers,
            "matches_created": created_count,
            "short_circuited": short_circuited,
            "evaluation_failures": [{"listing_id": lid, "error": err} for lid, err in batch.failures],
            "persistence_errors": persistence_errors,
        }
        if persistence_errors:
            scan.error = f"{len(persistence_errors)} matches could not be persisted"
        hunt.last_scan_at = completed
        self.db.commit()
        logger.info(f"Scan {scan.id} hunt {hunt.id}: {scan.candidates_checked} checked, "
                    f"{matches_found} matches, {alerts_emitted} alerts"
                    + (" (partial)" if batch.budget_exhausted else ""))
        return ScanSummary.from_scan(scan)

    def run_due_scans(self, now: Optional[datetime] = None) -> List[ScanSummary]:
        claimed = self.claim_due_hunts(now)
        summaries = []
        for i, (hunt, scan) in enumerate(claimed):
            try:
                summaries.append(self.run_scan(hunt, scan))
            except ConfigurationError as e:
                summaries.append(ScanSummary.from_scan(scan))
                for rest_hunt, rest_scan in claimed[i + 1:]:
                    rest_scan.status = "error"
                    rest_scan.error = f"aborted: {e}"
                    rest_scan.completed_at = self.now_fn()
                    self.db.commit()
                    self._release(rest_hunt)
                    summaries.append(ScanSummary.from_scan(rest_scan))
                break
        return summaries

    def run_hunt(self, hunt_id: int) -> Optional[ScanSummary]:
        """Scan one hunt now, ignoring its schedule."""
        hunt = self.db.get(Hunt, hunt_id)
        if hunt is None:
            return None
        now = self.now_fn()
        if not self._claim(hunt, now):
            return None
        scan = Scan(hunt_id=hunt.id, status="pending", created_at=now)
        self.db.add(scan)
        self.db.commit()
        try:
            return self.run_scan(hunt, scan)
        except ConfigurationError:
            return ScanSummary.from_scan(scan)

def sync_hunts(db: Session, store=None, now: Optional[datetime] = None) -> Tuple[int, int]:
    """Open hunts for proven fingerprints and retire hunts whose fingerprint is retired. Returns (created, retired)."""
    store = store or SqlFingerprintStore(db)
    existing = {fid for (fid,) in db.query(Hunt.fingerprint_id).all()}
    created = 0
    for fp in store.list_proven(min_samples=settings.MIN_PROVEN_SAMPLES):
        if fp.id in existing:
            continue
        db.add(Hunt(fingerprint_id=fp.id, created_at=now or utcnow()))
        created += 1
    stale = db.query(Hunt).join(Fingerprint, Hunt.fingerprint_id == Fingerprint.id).filter(
        Fingerprint.retired_at.isnot(None), Hunt.status != "retired").all()
    for hunt in stale:
        hunt.status = "retired"
    db.commit()
    if created or stale:
        logger.info(f"Hunts synced: {created} created, {len(stale)} retired")
    return created, len(stale)
