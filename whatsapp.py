"""WhatsApp Cloud API integration helpers."""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Any, Dict

import requests

WA_BASE = "https://graph.facebook.com/v20.0"


class WhatsAppError(RuntimeError):
    """Error raised when the WhatsApp Cloud API request fails."""


@dataclass(frozen=True)
class _WAConfig:
    phone_number_id: str
    access_token: str


def _current_config() -> _WAConfig:
    phone_number_id = os.getenv("WA_PHONE_NUMBER_ID", "").strip()
    access_token = os.getenv("WA_ACCESS_TOKEN", "").strip()
    if not phone_number_id or not access_token:
        missing = []
        if not phone_number_id:
            missing.append("WA_PHONE_NUMBER_ID")
        if not access_token:
            missing.append("WA_ACCESS_TOKEN")
        raise WhatsAppError(
            f"Missing WhatsApp credentials: {', '.join(missing)}"
        )
    return _WAConfig(phone_number_id=phone_number_id, access_token=access_token)


def _to_e164_id(phone: str) -> str:
    """Normalise Indonesian mobile numbers (08xx, +62 8xx, 62 8xx) into E.164 digits."""

    if phone is None:
        raise ValueError("Phone number is required")

    digits = re.sub(r"\D+", "", phone)
    if not digits:
        raise ValueError("Phone number contains no digits")

    if digits.startswith("0062"):
        digits = "62" + digits[4:]
    elif digits.startswith("0"):
        digits = "62" + digits[1:]
    elif digits.startswith("8"):
        digits = "62" + digits

    if digits.startswith("628") and 11 <= len(digits) <= 15:
        return digits

    raise ValueError("Phone number is not a valid Indonesian mobile number")


def wa_send_text(to_phone: str, body: str) -> Dict[str, Any]:
    """Send a plain text WhatsApp message to a phone number.

    Business-initiated messages outside the customer service window need an
    approved template; plain text only reaches numbers that wrote to us in the
    last 24 hours or test numbers registered on the app.
    """

    config = _current_config()

    url = f"{WA_BASE}/{config.phone_number_id}/messages"
    headers = {
        "Authorization": f"Bearer {config.access_token}",
        "Content-Type": "application/json",
    }
    payload = {
        "messaging_product": "whatsapp",
        "to": to_phone,
        "type": "text",
        "text": {"body": body},
    }

    response = requests.post(url, headers=headers, json=payload, timeout=20)
    if response.status_code >= 400:
        raise WhatsAppError(
            f"{response.status_code}: {response.text}"
        )

    return response.json()


def wa_send_text_id(any_format_phone: str, body: str) -> Dict[str, Any]:
    """Convenience helper that accepts an Indonesian phone number in any format."""

    normalized = _to_e164_id(any_format_phone)
    return wa_send_text(normalized, body)


__all__ = [
    "WA_BASE",
    "WhatsAppError",
    "_to_e164_id",
    "wa_send_text",
    "wa_send_text_id",
]
