from datetime import timedelta
import pytest
from sqlalchemy.exc import OperationalError
from autohunt.exceptions import PersistenceError
from autohunt.models import Match, Alert
from autohunt.services.ledger import (
    upsert_match, maybe_emit_alert, acknowledge_alert, record_evaluation, open_key,
)
from autohunt.services.matching import evaluate_pair
from autohunt.services.shapes import FingerprintShape, ListingShape
from conftest import NOW, make_fingerprint, make_listing

def _evaluate(fp, listing, now=NOW):
    return evaluate_pair(FingerprintShape.from_orm(fp), ListingShape.from_orm(listing), now)

def _refresh(db, listing, **changes):
    for k, v in changes.items():
        setattr(listing, k, v)
    db.commit()
    return listing

def test_rescoring_an_unchanged_pair_updates_in_place(db):
    fp = make_fingerprint(db)
    listing = make_listing(db)
    first, created_first, alert_first = record_evaluation(db, _evaluate(fp, listing), now=NOW)
    second, created_second, alert_second = record_evaluation(
        db, _evaluate(fp, listing, NOW + timedelta(hours=1)), now=NOW + timedelta(hours=1))

    assert created_first and not created_second
    assert first.id == second.id
    assert db.query(Match).count() == 1
    assert second.times_scored == 2
    assert second.scored_at == NOW + timedelta(hours=1)
    assert alert_first is not None and alert_first.alert_type == "BUY"
    assert alert_second is None
    assert db.query(Alert).count() == 1

def test_match_record_carries_gap_and_reasons(db):
    fp = make_fingerprint(db)
    listing = make_listing(db)
    match, _ = upsert_match(db, _evaluate(fp, listing), now=NOW)
    assert match.open_key == open_key(fp.id, listing.id)
    assert match.decision == "BUY"
    assert match.confidence == "high"
    assert match.gap_dollars == 9000
    assert match.gap_pct == pytest.approx(0.2)
    assert match.exit_value == 45000
    assert match.reasons[0]["factor"] == "make_model"
    assert len(match.reasons) == 10

def test_price_change_supersedes_the_open_match(db):
    fp = make_fingerprint(db)
    listing = make_listing(db)
    original, _ = upsert_match(db, _evaluate(fp, listing), now=NOW)
    _refresh(db, listing, asking_price=35000)
    replacement, created = upsert_match(db, _evaluate(fp, listing), now=NOW + timedelta(hours=2))

    assert created
    assert replacement.id != original.id
    db.refresh(original)
    assert original.status == "superseded"
    assert original.open_key is None
    assert original.superseded_at == NOW + timedelta(hours=2)
    assert replacement.status == "open"
    assert replacement.asking_price == 35000
    assert db.query(Match).filter(Match.status == "open").count() == 1

def test_alert_cooldown_survives_supersession(db):
    fp = make_fingerprint(db)
    listing = make_listing(db)
    record_evaluation(db, _evaluate(fp, listing), now=NOW)
    _refresh(db, listing, asking_price=35500)
    _, _, alert = record_evaluation(db, _evaluate(fp, listing), now=NOW + timedelta(hours=3))
    assert alert is None
    assert db.query(Alert).count() == 1

def test_alert_reemitted_after_cooldown(db):
    fp = make_fingerprint(db)
    listing = make_listing(db)
    record_evaluation(db, _evaluate(fp, listing), now=NOW)
    later = NOW + timedelta(hours=25)
    _, _, alert = record_evaluation(db, _evaluate(fp, listing, later), now=later)
    assert alert is not None
    assert db.query(Alert).count() == 2

def test_different_alert_types_are_independent(db):
    fp = make_fingerprint(db)
    listing = make_listing(db)
    record_evaluation(db, _evaluate(fp, listing), now=NOW)
    _refresh(db, listing, km=None)
    match, _, alert = record_evaluation(db, _evaluate(fp, listing), now=NOW + timedelta(hours=1))
    assert match.decision == "WATCH"
    assert alert is not None and alert.alert_type == "WATCH"
    assert {a.alert_type for a in db.query(Alert).all()} == {"BUY", "WATCH"}

def test_ignore_never_alerts(db):
    fp = make_fingerprint(db)
    listing = make_listing(db, asking_price=52000)
    match, _, alert = record_evaluation(db, _evaluate(fp, listing), now=NOW)
    assert match.decision == "IGNORE"
    assert alert is None
    assert maybe_emit_alert(db, match, now=NOW) is None

def test_alert_payload_snapshot(db):
    fp = make_fingerprint(db)
    listing = make_listing(db)
    _, _, alert = record_evaluation(db, _evaluate(fp, listing), now=NOW)
    assert alert.payload["gap_dollars"] == 9000
    assert alert.payload["make"] == "Toyota"
    assert alert.payload["url"] == listing.url
    assert alert.created_at == NOW

def test_acknowledge_alert(db):
    fp = make_fingerprint(db)
    listing = make_listing(db)
    _, _, alert = record_evaluation(db, _evaluate(fp, listing), now=NOW)
    acked = acknowledge_alert(db, alert.id, now=NOW + timedelta(minutes=5))
    assert acked.acknowledged_at == NOW + timedelta(minutes=5)
    # idempotent
    again = acknowledge_alert(db, alert.id, now=NOW + timedelta(hours=1))
    assert again.acknowledged_at == NOW + timedelta(minutes=5)
    assert acknowledge_alert(db, 9999) is None

def test_write_retried_once_then_succeeds(db, monkeypatch):
    fp = make_fingerprint(db)
    listing = make_listing(db)
    real_commit = db.commit
    calls = {"n": 0}

    def flaky_commit():
        calls["n"] += 1
        if calls["n"] == 1:
            raise OperationalError("COMMIT", {}, Exception("database is locked"))
        real_commit()

    monkeypatch.setattr(db, "commit", flaky_commit)
    match, created = upsert_match(db, _evaluate(fp, listing), now=NOW)
    assert created
    assert calls["n"] == 2
    assert db.query(Match).count() == 1

def test_second_failure_raises_persistence_error(db, monkeypatch):
    fp = make_fingerprint(db)
    listing = make_listing(db)
    evaluation = _evaluate(fp, listing)

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db, "commit", broken_commit)
    with pytest.raises(PersistenceError):
        upsert_match(db, evaluation, now=NOW)
