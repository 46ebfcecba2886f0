"""Lead capture: validation results in, persisted lead and receipt out."""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict
from typing import List, Optional

from agent_layer.core.db import RecordStore, generate_id, utcnow
from agent_layer.core.models import LEAD_STATUSES, LeadReceipt, LeadRecord, LeadRequest

logger = logging.getLogger(__name__)

RESPONSE_TIMES = {
    "book": "Within 24 hours",
    "match": "Within 2 hours",
    "shortlist": "Within 4 hours",
    "contact": "Within 1 business day",
}
DEFAULT_RESPONSE_TIME = "Within 24 hours"

CONFIRMATION_MESSAGES = {
    "match": "We received your request and will match you with the best options shortly.",
    "shortlist": "Your shortlist request has been saved. We will send you a curated list shortly.",
    "contact": "Your message has been forwarded to the business. They will contact you directly.",
    "book": "Your booking request has been received. We will confirm a time with you.",
}

# closed and converted are both terminal.
_STATUS_RANK = {"new": 0, "contacted": 1, "qualified": 2, "closed": 3, "converted": 3}


class InvalidTransition(ValueError):
    """Raised when a lead status change would move backwards or leave a terminal state."""


def calculate_priority(request: LeadRequest) -> str:
    place_count = len(request.place_ids)
    if request.type == "contact" and place_count >= 1:
        return "high"
    if request.type == "shortlist" and place_count >= 3:
        return "high"
    if request.type == "match":
        return "medium"
    return "low"


def estimate_response(request: LeadRequest) -> str:
    return RESPONSE_TIMES.get(request.type, DEFAULT_RESPONSE_TIME)


def next_steps(request: LeadRequest) -> List[str]:
    steps = ["Check your email for confirmation"]
    if request.type == "book":
        steps.append("Prepare your availability for scheduling")
    if request.place_ids:
        steps.append("Review the places we matched for you")
    steps.append("Watch for follow-up questions from our team")
    return steps


def check_transition(current: str, target: str) -> None:
    if target not in _STATUS_RANK:
        raise InvalidTransition(f"unknown status {target!r}; expected one of {', '.join(LEAD_STATUSES)}")
    if current == target:
        return
    if _STATUS_RANK[current] == _STATUS_RANK["closed"]:
        raise InvalidTransition(f"lead is already {current}")
    if _STATUS_RANK[target] <= _STATUS_RANK[current]:
        raise InvalidTransition(f"cannot move lead from {current} back to {target}")


class LeadService:
    """Persists conversion requests and hands them to a notifier in the background."""

    def __init__(self, store: RecordStore, notifier=None, executor: Optional[ThreadPoolExecutor] = None) -> None:
        self.store = store
        self.notifier = notifier
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="lead-notify")

    def create_lead(self, request: LeadRequest) -> LeadReceipt:
        now = utcnow()
        lead = LeadRecord(
            id=generate_id("lead"),
            action_type=request.type,
            vertical=request.vertical,
            province=request.province,
            city=request.city,
            email=request.email,
            phone=request.phone,
            name=request.name,
            place_ids=list(request.place_ids),
            message=request.message,
            requirements=request.requirements,
            timing=request.timing,
            payload=asdict(request),
            status="new",
            priority=calculate_priority(request),
            created_at=now,
            updated_at=now,
        )
        self.store.insert_lead(lead)
        logger.info("Lead %s created (type=%s, priority=%s)", lead.id, lead.action_type, lead.priority)

        self._notify(lead)

        return LeadReceipt(
            id=lead.id,
            status="accepted",
            priority=lead.priority,
            created_at=lead.created_at,
            estimated_response=estimate_response(request),
            message=CONFIRMATION_MESSAGES.get(request.type, "Your request has been received."),
            next_steps=next_steps(request),
        )

    def _notify(self, lead: LeadRecord) -> Optional[Future]:
        if self.notifier is None:
            return None
        return self._executor.submit(self._notify_safe, lead)

    def _notify_safe(self, lead: LeadRecord) -> None:
        try:
            self.notifier.notify_new_lead(lead)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Notification for lead %s failed: %s", lead.id, exc)

    def get_lead(self, lead_id: str) -> Optional[LeadRecord]:
        return self.store.get_lead(lead_id)

    def update_status(self, lead_id: str, status: str, assigned_to: Optional[str] = None) -> Optional[LeadRecord]:
        """Move a lead forward; returns ``None`` for unknown ids."""
        updated = self.store.update_lead(lead_id, status=status, assigned_to=assigned_to, check=check_transition)
        if updated is not None:
            logger.info("Lead %s status -> %s", lead_id, status)
        return updated

    def list_leads(
        self,
        status: Optional[str] = None,
        vertical: Optional[str] = None,
        priority: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[LeadRecord]:
        return self.store.list_leads(
            status=status,
            vertical=vertical,
            priority=priority,
            limit=max(1, min(limit, 200)),
            offset=max(0, offset),
        )
