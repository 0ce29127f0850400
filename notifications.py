from __future__ import annotations

import smtplib
from typing import Iterable, Optional

import requests
from flask import current_app
from flask_mail import Message

from extensions import mail
from models import Complaint
from whatsapp import WhatsAppError, wa_send_text_id


def _split_recipients(recipients: Iterable[Optional[str]] | str | None) -> list[str]:
    if recipients is None:
        return []
    if isinstance(recipients, str):
        recipients = recipients.replace(";", ",").split(",")
    seen: set[str] = set()
    cleaned: list[str] = []
    for address in recipients:
        address = (address or "").strip()
        if not address or address.lower() in seen:
            continue
        seen.add(address.lower())
        cleaned.append(address)
    return cleaned


def send_email(subject: str, recipients, body: str) -> tuple[bool, Optional[str]]:
    """Send a plain text email; failures are logged and reported, never raised."""

    addresses = _split_recipients(recipients)
    if not addresses:
        return False, "No recipient email address was provided."

    message = Message(subject=subject, recipients=addresses, body=body)
    try:
        mail.send(message)
    except (smtplib.SMTPException, OSError) as exc:
        current_app.logger.warning(
            {"event": "email_failed", "subject": subject, "error": str(exc)},
        )
        return False, "Failed to send the notification email."
    return True, f"Notification email sent to {', '.join(addresses)}."


def send_whatsapp(phone: Optional[str], body: str) -> tuple[bool, Optional[str]]:
    if not phone:
        return False, "No phone number was provided."
    try:
        wa_send_text_id(phone, body)
    except ValueError as exc:
        current_app.logger.info({"event": "whatsapp_skipped", "reason": str(exc)})
        return False, str(exc)
    except (WhatsAppError, requests.RequestException) as exc:
        current_app.logger.warning({"event": "whatsapp_failed", "error": str(exc)})
        return False, "Failed to send the WhatsApp notification."
    return True, "WhatsApp notification sent."


def notify_admins(subject: str, body: str) -> tuple[bool, Optional[str]]:
    return send_email(subject, current_app.config.get("ADMIN_NOTIFICATION_EMAILS") or [], body)


def _tracking_url(complaint: Complaint) -> str:
    base = current_app.config.get("PUBLIC_BASE_URL", "").rstrip("/")
    return f"{base}/complaints/track/{complaint.complaint_number}"


def complaint_received(complaint: Complaint) -> None:
    body = (
        f"Dear {complaint.customer_name},\n\n"
        f"We have received your complaint \"{complaint.subject}\".\n"
        f"Complaint number: {complaint.complaint_number}\n"
        f"Track its progress at {_tracking_url(complaint)}\n\n"
        "Our team will contact you shortly."
    )
    send_email(f"Complaint received: {complaint.complaint_number}", complaint.customer_email, body)
    notify_admins(
        f"New complaint {complaint.complaint_number}",
        f"{complaint.customer_name} ({complaint.customer_city}, {complaint.customer_province}) "
        f"submitted \"{complaint.subject}\".",
    )


def complaint_acknowledged(complaint: Complaint) -> None:
    body = (
        f"Dear {complaint.customer_name},\n\n"
        f"Your complaint {complaint.complaint_number} has been acknowledged.\n"
        f"Replacement: {complaint.acknowledged_replacement_qty} x "
        f"{complaint.acknowledged_replacement_hybrid}.\n"
        f"Track its progress at {_tracking_url(complaint)}"
    )
    send_email(f"Complaint acknowledged: {complaint.complaint_number}", complaint.customer_email, body)
    send_whatsapp(complaint.customer_phone, body)


def complaint_response(complaint: Complaint, message: str, author: Optional[str]) -> None:
    body = (
        f"Dear {complaint.customer_name},\n\n"
        f"{author or 'Our team'} replied to complaint {complaint.complaint_number}:\n\n"
        f"{message}\n\n"
        f"Track its progress at {_tracking_url(complaint)}"
    )
    send_email(f"Update on complaint {complaint.complaint_number}", complaint.customer_email, body)


def complaint_resolved(complaint: Complaint) -> None:
    body = (
        f"Dear {complaint.customer_name},\n\n"
        f"Your complaint {complaint.complaint_number} has been resolved.\n\n"
        f"{complaint.resolution or ''}\n\n"
        f"Please rate our service at {_tracking_url(complaint)}"
    )
    send_email(f"Complaint resolved: {complaint.complaint_number}", complaint.customer_email, body)


def verification_failure_reported(serial_number: str, error_message: Optional[str]) -> None:
    notify_admins(
        "Product verification failure reported",
        f"A customer could not verify serial {serial_number}.\n\n{error_message or ''}".strip(),
    )


__all__ = [
    "complaint_acknowledged",
    "complaint_received",
    "complaint_resolved",
    "complaint_response",
    "notify_admins",
    "send_email",
    "send_whatsapp",
    "verification_failure_reported",
]
