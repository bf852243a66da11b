"""
Append-only audit channel.

Events are handed to the retry queue and written by a sink in the
background. Appending never raises and never blocks the caller.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from garagedesk.models.database import AuditLog
from garagedesk.models.domain import AuditAction, Clock, SystemClock
from garagedesk.services.retry import RetryQueue
from garagedesk.services.store import ParkingStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEvent:
    ts_utc: datetime
    actor_id: Optional[str]
    action: str
    entity_type: str
    entity_id: Optional[str]
    amount: Optional[Decimal] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict:
        payload = asdict(self)
        payload['ts_utc'] = self.ts_utc.isoformat()
        payload['amount'] = str(self.amount) if self.amount is not None else None
        return payload


class DatabaseAuditSink:
    """Writes audit rows through a session of its own."""

    def __init__(self, session_factory: Callable):
        self.session_factory = session_factory

    def write(self, event: AuditEvent):
        db = self.session_factory()
        try:
            ParkingStore(db).insert_audit(AuditLog(
                ts_utc=event.ts_utc,
                actor_id=event.actor_id,
                action=event.action,
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                amount=event.amount,
                details=event.details,
            ))
        finally:
            db.close()


class HttpAuditSink:
    """
    Posts audit events to an external audit service.

    Failed posts are retried by the queue that runs the write, so the
    adapter only retries connection failures and only when max_retries is set.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float = 5.0,
        max_retries: int = 0
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries
        self._session = requests.Session()
        self._init_session()

    def _init_session(self):
        """Initialize requests session with retry logic."""
        retry_strategy = Retry(
            total=self.max_retries,
            connect=self.max_retries,
            read=0,
            status=0,
            backoff_factor=0.5
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)

    def write(self, event: AuditEvent):
        response = self._session.post(
            self.url,
            json=event.to_payload(),
            headers={'X-API-Key': self.api_key},
            timeout=self.timeout
        )
        response.raise_for_status()


class AuditTrail:
    """Builds audit events and queues them for a sink."""

    def __init__(
        self,
        sink,
        queue: RetryQueue,
        clock: Clock = SystemClock(),
        max_attempts: Optional[int] = None
    ):
        self.sink = sink
        self.queue = queue
        self.clock = clock
        self.max_attempts = max_attempts

    def append(
        self,
        actor_id: Optional[str],
        action: AuditAction,
        entity_type: str,
        entity_id: Any,
        amount: Optional[Decimal] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Queue an event. Returns False when it could not be queued."""
        try:
            event = AuditEvent(
                ts_utc=self.clock(),
                actor_id=actor_id,
                action=AuditAction(action).value,
                entity_type=entity_type,
                entity_id=str(entity_id) if entity_id is not None else None,
                amount=amount,
                details=details or {},
            )
            return self.queue.submit(
                lambda: self.sink.write(event),
                name=f"audit:{event.action}",
                max_attempts=self.max_attempts,
            )
        except Exception as e:
            logger.error(f"Could not queue audit event {action} for {entity_type} {entity_id}: {e}")
            return False
