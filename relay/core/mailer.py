"""Class-add-request email delivery through the Mailgun HTTP API."""
from __future__ import annotations
import logging

import requests

from relay.core.errors import ConfigurationError, ValidationError

REQUEST_TIMEOUT = 10

logger = logging.getLogger(__name__)


class MailerError(Exception):
    """Mailgun rejected the message or could not be reached."""
    pass


def build_class_add_request(class_name: str, teacher_name: str, student_name: str) -> tuple[str, str]:
    """Return (subject, text) for a class add request."""
    subject = f"Class Add Request: {class_name}"
    text = f"{teacher_name} has requested that {student_name} be added to the following class: {class_name}"
    return subject, text


def send_class_email(cfg, to: str, class_name: str, teacher_name: str, student_name: str) -> dict:
    """Send a class add request and return Mailgun's response body.

    Raises:
        ValidationError: If a required field is missing
        ConfigurationError: If Mailgun is not configured
        MailerError: If Mailgun rejects the message
    """
    missing = [
        name for name, value in (
            ("to", to), ("className", class_name), ("teacherName", teacher_name), ("studentName", student_name),
        )
        if not (isinstance(value, str) and value.strip())
    ]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}", {"fields": missing})
    if not cfg.mailgun_domain:
        raise ConfigurationError("MAILGUN_DOMAIN is not set")
    if not cfg.mailgun_api_key:
        raise ConfigurationError("MAILGUN_API_KEY is not set")

    sender = cfg.mailgun_from or f"Aish Attendance <no-reply@{cfg.mailgun_domain}>"
    subject, text = build_class_add_request(class_name, teacher_name, student_name)
    url = f"{cfg.mailgun_base_url}/v3/{cfg.mailgun_domain}/messages"

    try:
        resp = requests.post(
            url,
            auth=("api", cfg.mailgun_api_key),
            data={"from": sender, "to": to, "subject": subject, "text": text},
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException as e:
        raise MailerError(f"Mailgun unreachable: {e}") from e

    if resp.status_code >= 400:
        raise MailerError(f"Mailgun rejected message [{resp.status_code}]: {resp.text}")

    logger.info("Class add request for %s sent", class_name)
    return resp.json()
