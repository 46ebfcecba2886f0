"""Slack incoming-webhook client for lead notifications."""

import logging
from typing import Any, Dict, List

import requests

from agent_layer.core.models import LeadRecord

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
REQUEST_TIMEOUT = 10

_PRIORITY_MARKERS = {"high": ":red_circle:", "medium": ":large_yellow_circle:", "low": ":large_green_circle:"}
_ACTION_LABELS = {
    "match": "Get Matched",
    "shortlist": "Request Shortlist",
    "contact": "Contact Business",
    "book": "Book Appointment",
}


class NotificationError(RuntimeError):
    """Raised when the webhook rejects a notification."""


def format_lead_message(lead: LeadRecord) -> Dict[str, Any]:
    marker = _PRIORITY_MARKERS.get(lead.priority, _PRIORITY_MARKERS["low"])
    label = _ACTION_LABELS.get(lead.action_type, lead.action_type)

    contact = f"*Contact:* {lead.name or 'Anonymous'}\n*Email:* {lead.email}"
    if lead.phone:
        contact += f"\n*Phone:* {lead.phone}"

    blocks: List[Dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": f"{marker} New Lead: {label}"}},
        {"type": "section", "text": {"type": "mrkdwn", "text": contact}},
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"*Location:* {lead.city or 'Unknown'}, {lead.province}\n"
                    f"*Vertical:* {lead.vertical}\n*Priority:* {lead.priority}"
                ),
            },
        },
    ]
    if lead.message:
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f"*Message:*\n>{lead.message}"}})
    blocks.append({"type": "divider"})
    blocks.append(
        {
            "type": "context",
            "elements": [
                {"type": "mrkdwn", "text": f"Lead ID: `{lead.id}` | Created: {lead.created_at.isoformat()}"}
            ],
        }
    )
    return {"text": f"New lead {lead.id} ({lead.priority})", "blocks": blocks}


class SlackNotifier:
    """Posts lead notifications to a Slack incoming webhook."""

    def __init__(self, webhook_url: str, timeout: int = REQUEST_TIMEOUT) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout

    def notify_new_lead(self, lead: LeadRecord) -> bool:
        """Returns ``False`` when no webhook is configured; raises on delivery failure."""
        if not self.webhook_url:
            logger.info("Slack webhook not configured; skipping notification for %s", lead.id)
            return False

        try:
            response = _SESSION.post(self.webhook_url, json=format_lead_message(lead), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise NotificationError(f"Slack notification for {lead.id} failed: {exc}") from exc

        logger.info("Slack notification sent for lead %s", lead.id)
        return True
