"""MSG91 transactional SMS sender.

Implements the SmsSender collaborator contract: ``send(contact, message)``
returns an SmsDelivery and never raises for provider or network failures.
All calls have a 15-second timeout and structured error logging.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Protocol

import httpx
import structlog

logger = structlog.get_logger(__name__)

_SEND_URL = "https://api.msg91.com/api/v2/sendsms"
_TIMEOUT_SECONDS = 15.0


@dataclass(frozen=True)
class SmsDelivery:
    delivered: bool
    id: str | None = None
    error: str | None = None


class SmsSender(Protocol):
    async def send(self, contact: str, message: str) -> SmsDelivery: ...


def sanitize_phone(phone: str, country_code: str = "91") -> str:
    """Digits only; bare 10-digit numbers get the default country code."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 10:
        digits = country_code + digits
    return digits


class Msg91SmsSender:
    """Sends SMS through the MSG91 v2 transactional route."""

    def __init__(
        self,
        auth_key: str,
        sender_id: str = "MSGIND",
        country_code: str = "91",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._auth_key = auth_key
        self._sender_id = sender_id
        self._country_code = country_code
        self._client = client

    async def _post(self, payload: dict) -> httpx.Response:
        headers = {"authkey": self._auth_key, "Content-Type": "application/json"}
        if self._client is not None:
            return await self._client.post(
                _SEND_URL, json=payload, headers=headers, timeout=_TIMEOUT_SECONDS
            )
        async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
            return await client.post(_SEND_URL, json=payload, headers=headers)

    async def send(self, contact: str, message: str) -> SmsDelivery:
        mobile = sanitize_phone(contact, self._country_code)
        payload = {
            "sender": self._sender_id,
            "route": "4",  # transactional
            "country": self._country_code,
            "sms": [{"message": message, "to": [mobile]}],
        }
        try:
            response = await self._post(payload)
        except httpx.HTTPError as e:
            logger.error("msg91_send_failed", error=str(e), error_type=type(e).__name__)
            return SmsDelivery(delivered=False, error=str(e))

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        ok = response.status_code == 200 and (
            data.get("type") == "success"
            or "success" in str(data.get("message", "")).lower()
        )
        if not ok:
            logger.error(
                "msg91_send_rejected",
                status_code=response.status_code,
                response=data,
            )
            return SmsDelivery(delivered=False, error=str(data.get("message") or "rejected"))

        messages = data.get("messages")
        first = messages[0] if isinstance(messages, list) and messages else {}
        message_id = (
            (first.get("message-id") if isinstance(first, dict) else None)
            or data.get("batch_id")
            or f"msg91_{int(time.time() * 1000)}"
        )
        logger.info("msg91_sms_sent", message_id=message_id)
        return SmsDelivery(delivered=True, id=str(message_id))
