from typing import Optional, List, Callable, Tuple, Iterable
from dataclasses import dataclass, field
from datetime import datetime
import concurrent.futures
import logging
import time
from autohunt.services.shapes import FingerprintShape, ListingShape
from autohunt.services.scoring import ScoringWeights, ScoreResult, DEFAULT_WEIGHTS, score_match
from autohunt.services.decision import DecisionThresholds, Decision, decide

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class MatchEvaluation:
    fingerprint: FingerprintShape
    listing: ListingShape
    result: ScoreResult
    decision: Decision
    evaluated_at: datetime

    @property
    def persistable(self) -> bool:
        """Wrong-family pairs are never recorded as matches."""
        return not self.result.short_circuited

@dataclass
class BatchResult:
    evaluations: List[MatchEvaluation] = field(default_factory=list)
    failures: List[Tuple[Optional[int], str]] = field(default_factory=list)
    budget_exhausted: bool = False
    not_evaluated: int = 0

def evaluate_pair(fingerprint: FingerprintShape, listing: ListingShape, now: datetime,
                  weights: ScoringWeights = DEFAULT_WEIGHTS,
                  thresholds: Optional[DecisionThresholds] = None,
                  classifier=None) -> MatchEvaluation:
    """Score and classify one pair. Pure; safe to call from worker threads."""
    result = score_match(fingerprint, listing, weights, classifier)
    decision = decide(result.score, fingerprint, listing, listing.age_days(now),
                      thresholds, eligible=not result.short_circuited)
    return MatchEvaluation(fingerprint, listing, result, decision, now)

def evaluate_many(fingerprint: FingerprintShape, listings: Iterable[ListingShape], now: datetime,
                  weights: ScoringWeights = DEFAULT_WEIGHTS,
                  thresholds: Optional[DecisionThresholds] = None,
                  classifier=None, workers: int = 4,
                  deadline: Optional[float] = None,
                  clock: Callable[[], float] = time.monotonic) -> BatchResult:
    """
    Evaluate listings on a thread pool, one chunk of `workers` at a time.

    No new chunk is submitted once `clock()` passes `deadline`; the chunk in
    flight always finishes. Per-listing failures are logged and skipped.
    """
    pending = list(listings)
    batch = BatchResult()
    workers = max(1, workers)
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
        for start in range(0, len(pending), workers):
            if deadline is not None and clock() >= deadline:
                batch.budget_exhausted = True
                batch.not_evaluated = len(pending) - start
                logger.warning(f"Time budget exhausted for fingerprint {fingerprint.id}: "
                               f"{batch.not_evaluated} listings not evaluated")
                break
            chunk = pending[start:start + workers]
            futures = [executor.submit(evaluate_pair, fingerprint, listing, now, weights, thresholds, classifier)
                       for listing in chunk]
            for listing, future in zip(chunk, futures):
                try:
                    batch.evaluations.append(future.result())
                except Exception as e:
                    logger.error(f"Error evaluating listing {listing.id} against fingerprint {fingerprint.id}: {e}")
                    batch.failures.append((listing.id, str(e)))
    return batch
