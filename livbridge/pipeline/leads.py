"""Lead progress tracking driven by marketplace and valuation callbacks.

A session becomes a hot lead once the caller has created an account,
completed the application and authorized a credit pull. The first time
that happens, a human is notified through the configured webhook.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from loguru import logger

from livbridge.core.errors import ToolExecutionError
from livbridge.tools.outbound import WebhookForwarder

if TYPE_CHECKING:
    from livbridge.session import Session

MARKETPLACE_EVENTS = (
    "ACCOUNT_CREATED",
    "APP_COMPLETED",
    "CREDIT_AUTHORIZED",
    "DOC_UPLOAD_STARTED",
    "DOC_UPLOAD_COMPLETE",
)

HOT_LEAD_REQUIRES = ("ACCOUNT_CREATED", "APP_COMPLETED", "CREDIT_AUTHORIZED")

VALUATION_FIELDS = (
    "value_estimate",
    "range_low",
    "range_high",
    "rental_estimate",
    "equity",
    "ltv",
)


def is_hot_lead(session: Session) -> bool:
    return all(session.flags.get(flag) for flag in HOT_LEAD_REQUIRES)


class LeadTracker:
    """Applies marketplace/valuation events to sessions.

    Args:
        webhooks: Forwarder used for the human notification.
        notify_url: Endpoint notified once per hot lead. Empty disables it.
    """

    def __init__(self, webhooks: WebhookForwarder, notify_url: str = "") -> None:
        self._webhooks = webhooks
        self._notify_url = notify_url

    async def apply_marketplace_event(self, session: Session, event_type: str) -> bool:
        """Record a marketplace event. Returns True if the session is a hot lead.

        Raises:
            ValueError: If ``event_type`` is not a known marketplace event.
        """
        if event_type not in MARKETPLACE_EVENTS:
            raise ValueError(f"Unknown marketplace event: {event_type}")

        async with session.lock:
            session.flags[event_type] = True
            session.touch()
            logger.info(f"Marketplace event {event_type} for session {session.session_id}")

            if not is_hot_lead(session):
                return False

            session.flags["HOT_LEAD"] = True
            if not session.hot_lead_notified:
                session.hot_lead_notified = True
                await self._notify_hot_lead(session)
            return True

    async def apply_valuation(self, session: Session, valuation: dict[str, Any]) -> None:
        """Store a property valuation result on the session."""
        async with session.lock:
            session.valuation = {k: valuation.get(k) for k in VALUATION_FIELDS}
            session.flags["VALUATION_COMPLETE"] = True
            session.touch()
        logger.info(f"Valuation stored for session {session.session_id}")

    async def _notify_hot_lead(self, session: Session) -> None:
        if not self._notify_url:
            logger.info(f"Hot lead {session.session_id} (no notify URL configured)")
            return
        payload = {
            "lead_status": "HOT",
            "session_id": session.session_id,
            "caller": session.caller,
            "state": session.state(),
        }
        try:
            await self._webhooks.post(self._notify_url, payload, tool_name="notify_human")
        except ToolExecutionError as e:
            logger.error(f"notify-human failed: {e}")
