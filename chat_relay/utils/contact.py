from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Tuple

import httpx

from chat_relay.errors import UpstreamError
from chat_relay.utils.log import mask_secret


logger = logging.getLogger("chat_relay.contact")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_NAME_LENGTH = 100
MAX_EMAIL_LENGTH = 254
MAX_MESSAGE_LENGTH = 5000


@dataclass
class ContactForm:
    name: str
    email: str
    message: str


def validate_contact_form(name: Any, email: Any, message: Any) -> Optional[Tuple[str, str]]:
    """Return the first (field, error) found, or None when the form is acceptable."""
    for field, value in (("name", name), ("email", email), ("message", message)):
        if value is not None and not isinstance(value, str):
            return field, f"{field.capitalize()} must be text"
        if value is None or not value.strip():
            return field, "Missing required fields"

    if len(name.strip()) < 2:
        return "name", "Name must be at least 2 characters long"
    if len(name.strip()) > MAX_NAME_LENGTH:
        return "name", f"Name must be at most {MAX_NAME_LENGTH} characters long"
    if len(email.strip()) > MAX_EMAIL_LENGTH or not EMAIL_PATTERN.match(email.strip()):
        return "email", "Please provide a valid email address"
    if len(message.strip()) < 10:
        return "message", "Message must be at least 10 characters long"
    if len(message.strip()) > MAX_MESSAGE_LENGTH:
        return "message", f"Message must be at most {MAX_MESSAGE_LENGTH} characters long"
    return None


class ContactRelay:
    """Forwards contact-form submissions to the Web3Forms email relay."""

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._endpoint = endpoint
        self._access_key = access_key
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def validate_connection(self) -> bool:
        try:
            response = await self._client.post(
                self._endpoint, json={"access_key": self._access_key, "test": True}
            )
            result = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Contact relay connection check failed (access key %s): %s", mask_secret(self._access_key), exc)
            return False
        return isinstance(result, dict) and result.get("success") is True

    async def send(self, form: ContactForm) -> None:
        data = {
            "access_key": self._access_key,
            "name": form.name,
            "email": form.email,
            "message": form.message,
            "subject": f"Portfolio Contact: Message from {form.name}",
            "from_name": "Portfolio Website Contact",
            "replyTo": form.email,
        }
        logger.info("Forwarding contact message from %s", form.name)
        try:
            response = await self._client.post(self._endpoint, data=data)
            result = response.json()
        except httpx.HTTPError as exc:
            logger.error("Contact relay unreachable: %s", exc)
            raise UpstreamError(f"Message sending failed: {exc}") from exc
        except ValueError as exc:
            raise UpstreamError("Message sending failed: response is not JSON", upstream_status=response.status_code) from exc

        if not isinstance(result, dict) or not result.get("success"):
            message = result.get("message") if isinstance(result, dict) else None
            logger.error("Contact relay rejected message: %s", message)
            raise UpstreamError(
                f"Message sending failed: {message or 'Failed to send message'}",
                upstream_status=response.status_code,
            )
        logger.info("Contact message from %s delivered", form.name)
