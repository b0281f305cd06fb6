from typing import Optional, Dict, Any, Tuple
from datetime import datetime
from sqlalchemy.orm import Session
import httpx
import logging
from autohunt.models import Alert
from autohunt.services.utils import utcnow

logger = logging.getLogger(__name__)

class SlackWebhookSink:
    """Posts pre-formatted alert messages to a Slack-style incoming webhook."""

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    def send(self, message: Dict[str, Any]) -> None:
        if self._client is not None:
            resp = self._client.post(self.url, json=message)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(self.url, json=message)
        resp.raise_for_status()

def format_alert_message(alert: Alert) -> Dict[str, Any]:
    p = alert.payload or {}
    vehicle = " ".join(str(x) for x in (p.get("year"), p.get("make"), p.get("model"), p.get("variant")) if x)
    gap = p.get("gap_dollars")
    gap_pct = p.get("gap_pct")
    lines = [
        f"*{alert.alert_type}* {vehicle or 'listing ' + str(alert.listing_id)}",
        f"Asking ${p.get('asking_price'):,}" if p.get("asking_price") is not None else "Asking price unknown",
        f"Gap ${gap:,} ({gap_pct:.1%}) vs exit ${p.get('exit_value'):,}" if gap is not None and gap_pct is not None else "Gap unknown",
        f"Score {p.get('score')} ({p.get('confidence')} confidence)",
    ]
    if p.get("km") is not None:
        lines.append(f"{p['km']:,} km")
    if p.get("url"):
        lines.append(p["url"])
    return {"text": "\n".join(lines), "alert": {"id": alert.id, **p}}

def deliver_pending_alerts(db: Session, sink, max_attempts: int = 3,
                           now: Optional[datetime] = None) -> Tuple[int, int]:
    """Send unsent, unacknowledged alerts. Returns (sent, failed)."""
    pending = db.query(Alert).filter(
        Alert.sent_at.is_(None),
        Alert.acknowledged_at.is_(None),
        Alert.notification_attempts < max_attempts,
    ).order_by(Alert.created_at).all()
    sent = failed = 0
    for alert in pending:
        alert.notification_attempts = (alert.notification_attempts or 0) + 1
        try:
            sink.send(format_alert_message(alert))
            alert.sent_at = now or utcnow()
            sent += 1
        except httpx.HTTPError as e:
            logger.warning(f"Alert {alert.id} delivery failed (attempt {alert.notification_attempts}): {e}")
            failed += 1
        db.commit()
    return sent, failed
