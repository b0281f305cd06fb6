from typing import Optional, List
from dataclasses import asdict
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from autohunt.db import get_db
from autohunt.jobs import build_orchestrator
from autohunt.models import Match, Alert, Scan
from autohunt.schemas import ListingIn, ListingOut, MatchOut, AlertOut, ScanOut
from autohunt.services.ledger import acknowledge_alert
from autohunt.services.listings import upsert_listing

router = APIRouter(prefix="/api")

@router.post("/listings")
def ingest_listing(payload: ListingIn, db: Session = Depends(get_db)):
    listing, created = upsert_listing(db, payload.model_dump())
    return {"ok": True, "created": created, "listing": ListingOut.model_validate(listing)}

@router.get("/matches", response_model=List[MatchOut])
def list_matches(decision: Optional[str] = None, fingerprint_id: Optional[int] = None,
                 include_superseded: bool = False, limit: int = 100, db: Session = Depends(get_db)):
    q = db.query(Match)
    if not include_superseded:
        q = q.filter(Match.status == "open")
    if decision:
        q = q.filter(Match.decision == decision.upper())
    if fingerprint_id is not None:
        q = q.filter(Match.fingerprint_id == fingerprint_id)
    return q.order_by(Match.score.desc(), Match.id).limit(limit).all()

@router.get("/alerts", response_model=List[AlertOut])
def list_alerts(unacknowledged: bool = False, limit: int = 100, db: Session = Depends(get_db)):
    q = db.query(Alert)
    if unacknowledged:
        q = q.filter(Alert.acknowledged_at.is_(None))
    return q.order_by(Alert.created_at.desc(), Alert.id.desc()).limit(limit).all()

@router.post("/alerts/{alert_id}/ack", response_model=AlertOut)
def ack_alert(alert_id: int, db: Session = Depends(get_db)):
    alert = acknowledge_alert(db, alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert

@router.post("/scans/run")
def run_scans(hunt_id: Optional[int] = None, db: Session = Depends(get_db)):
    """Run due scans now, or a single hunt when hunt_id is given."""
    orchestrator = build_orchestrator(db)
    if hunt_id is not None:
        summary = orchestrator.run_hunt(hunt_id)
        if summary is None:
            raise HTTPException(status_code=409, detail="Hunt not found or already being scanned")
        summaries = [summary]
    else:
        summaries = orchestrator.run_due_scans()
    return {"ok": True, "scans": [asdict(s) for s in summaries]}

@router.get("/scans", response_model=List[ScanOut])
def list_scans(hunt_id: Optional[int] = None, limit: int = 50, db: Session = Depends(get_db)):
    q = db.query(Scan)
    if hunt_id is not None:
        q = q.filter(Scan.hunt_id == hunt_id)
    return q.order_by(Scan.id.desc()).limit(limit).all()
