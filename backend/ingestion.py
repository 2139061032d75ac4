# backend/ingestion.py
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from models import SubmissionRecord
from storage import FILE, RELATIONAL, FallbackChain

log = logging.getLogger(__name__)

SUBMITTED_MESSAGE = "Form submitted successfully!"
RECEIVED_MESSAGE = "Form received. Our team will contact you shortly."


@dataclass(frozen=True)
class RequestContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class Acknowledgment:
    success: bool
    message: str
    id: Optional[int] = None
    fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.id is not None:
            body["id"] = self.id
        if self.fallback:
            body["fallback"] = True
        return body


class IngestionService:
    """Validate a raw form payload and hand it to the fallback chain.

    Once a payload passes validation the visitor is always told it was
    received, even when every store failed and the record was dropped.
    """

    def __init__(self, chain: FallbackChain, clock: Optional[Callable[[], datetime]] = None):
        self.chain = chain
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def submit(self, raw_payload: Any, context: RequestContext) -> Acknowledgment:
        # Raises ValidationError before any store is touched.
        record = SubmissionRecord.from_payload(
            raw_payload,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            created_at=self.clock(),
        )
        try:
            outcome = self.chain.save(record)
        except Exception:
            log.exception("Form submission error")
            return Acknowledgment(success=True, message=RECEIVED_MESSAGE)

        if outcome.backend == RELATIONAL:
            return Acknowledgment(success=True, message=SUBMITTED_MESSAGE, id=outcome.record_id)
        if outcome.backend == FILE:
            return Acknowledgment(success=True, message=SUBMITTED_MESSAGE, fallback=True)
        return Acknowledgment(success=True, message=SUBMITTED_MESSAGE)
