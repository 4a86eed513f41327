"""Outbound collaborators used by tools: SMS delivery and webhook posts.

Both raise ToolExecutionError on failure; the tool registry turns that
into a degraded acknowledgment for the caller.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
from loguru import logger
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client as TwilioClient

from livbridge.core.errors import ToolExecutionError


class SmsSender:
    """Sends text messages through the Twilio REST API.

    The Twilio client is synchronous, so sends run in a worker thread.

    Args:
        account_sid: Twilio account SID.
        auth_token: Twilio auth token.
        from_number: Sender number (E.164).
    """

    def __init__(self, account_sid: str = "", auth_token: str = "", from_number: str = ""):
        self._from_number = from_number
        self._client: TwilioClient | None = None
        if account_sid and auth_token:
            self._client = TwilioClient(account_sid, auth_token)

    @property
    def configured(self) -> bool:
        return self._client is not None and bool(self._from_number)

    async def send(self, to: str, body: str, tool_name: str = "send_sms") -> str:
        """Send ``body`` to ``to``. Returns the message SID."""
        if not self.configured:
            raise ToolExecutionError(tool_name, "SMS delivery is not configured")
        if not to:
            raise ToolExecutionError(tool_name, "no destination number")

        try:
            message = await asyncio.to_thread(
                self._client.messages.create,
                to=to,
                from_=self._from_number,
                body=body,
            )
        except TwilioRestException as e:
            raise ToolExecutionError(tool_name, f"Twilio error {e.code}: {e.msg}") from e

        logger.info(f"SMS sent to {to}: sid={message.sid}")
        return message.sid


class WebhookForwarder:
    """Posts JSON payloads to CRM / scheduling / notification webhooks.

    Args:
        timeout: HTTP request timeout in seconds (default: 8).
    """

    def __init__(self, timeout: float = 8.0) -> None:
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def post(self, url: str, payload: dict[str, Any], tool_name: str = "webhook") -> Any:
        """POST ``payload`` as JSON. Returns the parsed response body."""
        if not url:
            raise ToolExecutionError(tool_name, "no webhook URL configured")

        await self.start()
        start_time = time.time()
        try:
            response = await self._client.post(url, json=payload)
        except httpx.TimeoutException as e:
            raise ToolExecutionError(tool_name, "request timed out") from e
        except httpx.HTTPError as e:
            raise ToolExecutionError(tool_name, str(e)) from e

        duration_ms = int((time.time() - start_time) * 1000)
        if not response.is_success:
            logger.warning(f"Webhook {tool_name} returned {response.status_code} in {duration_ms}ms")
            raise ToolExecutionError(tool_name, f"HTTP {response.status_code}")

        logger.info(f"Webhook {tool_name} delivered in {duration_ms}ms")
        try:
            return response.json()
        except ValueError:
            return response.text
