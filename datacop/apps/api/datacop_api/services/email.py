"""Email collaborator: templated transactional email.

Delivery is fire-and-forget from the engine's point of view. A send failure
is logged and never rolls back the state change that triggered it.

- HttpEmailSender: POST {EMAIL_SERVICE_URL}/send with the template type,
  recipient and variables (bearer EMAIL_SERVICE_TOKEN)
- LoggingEmailSender: used when EMAIL_SERVICE_URL is unset (local dev)
"""

import logging
from typing import Any, Optional, Protocol

import httpx

from datacop_api.context import request_id_var

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    def send_templated_email(self, template_type: str, recipient: str, variables: dict[str, Any]) -> None:
        """Deliver a templated email. May raise; callers go through notify()."""
        ...


class HttpEmailSender:
    """Email sender posting to the portal's email service."""

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def send_templated_email(self, template_type: str, recipient: str, variables: dict[str, Any]) -> None:
        """Send one email.

        Raises:
            httpx.HTTPError: Transport failure or non-2xx response
        """
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        request_id = request_id_var.get()
        if request_id:
            headers["X-Request-ID"] = request_id

        payload = {"type": template_type, "to": recipient, "variables": variables}

        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(f"{self.base_url}/send", headers=headers, json=payload)
            response.raise_for_status()


class LoggingEmailSender:
    """Development sender: records the email in the log instead of sending it."""

    def send_templated_email(self, template_type: str, recipient: str, variables: dict[str, Any]) -> None:
        # variables carry the invitation link; the log sanitizer redacts the token
        logger.info(
            "email.logged",
            extra={"template_type": template_type, "recipient": recipient, "variables": variables},
        )


def notify(sender: EmailSender, template_type: str, recipient: str, variables: dict[str, Any]) -> bool:
    """Send an email without letting a delivery failure escape.

    Returns:
        True if the sender accepted the email
    """
    try:
        sender.send_templated_email(template_type, recipient, variables)
    except Exception as e:
        logger.warning(
            "email.send.failed",
            extra={"template_type": template_type, "error_type": type(e).__name__},
            exc_info=True,
        )
        return False
    logger.info("email.sent", extra={"template_type": template_type})
    return True
