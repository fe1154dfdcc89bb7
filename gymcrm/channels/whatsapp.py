"""
WhatsApp channel - Meta Cloud API text messages.
"""

import asyncio
import logging
import re
from typing import Optional

import requests

from gymcrm.config import config
from gymcrm.models import NotificationKind, SendResult, WhatsAppContent

logger = logging.getLogger(__name__)

NOT_CONFIGURED = 'not_configured'


def format_phone_number(phone: str, country_code: Optional[str] = None) -> str:
    """
    Normalise a stored phone number to the international digits-only form.
    '+961 3 123 456' -> '9613123456', '03123456' -> '9613123456'
    """
    country_code = country_code or config.DEFAULT_COUNTRY_CODE
    digits = re.sub(r'\D', '', phone or '').lstrip('0')
    if digits and not digits.startswith(country_code) and len(digits) <= 10:
        digits = country_code + digits
    return digits


class WhatsAppChannel:
    """Sends one WhatsAppContent as a plain text message."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        phone_number_id: Optional[str] = None,
        access_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_url = (api_url or config.WHATSAPP_API_URL).rstrip('/')
        self.phone_number_id = phone_number_id if phone_number_id is not None else config.WHATSAPP_PHONE_NUMBER_ID
        self.access_token = access_token if access_token is not None else config.WHATSAPP_ACCESS_TOKEN
        self.timeout = timeout or config.SEND_TIMEOUT_SECONDS

    @property
    def configured(self) -> bool:
        return bool(self.phone_number_id and self.access_token)

    @property
    def messages_url(self) -> str:
        return f"{self.api_url}/{self.phone_number_id}/messages"

    def _post(self, phone: str, text: str) -> requests.Response:
        payload = {
            'messaging_product': 'whatsapp',
            'recipient_type': 'individual',
            'to': phone,
            'type': 'text',
            'text': {'preview_url': False, 'body': text},
        }
        headers = {
            'Authorization': f"Bearer {self.access_token}",
            'Content-Type': 'application/json',
        }
        return requests.post(self.messages_url, json=payload, headers=headers, timeout=self.timeout)

    async def send(self, kind: NotificationKind, recipient: str, content: WhatsAppContent) -> SendResult:
        if not self.configured:
            logger.warning(f"WhatsApp not configured, skipping {kind.value} to {recipient}")
            return SendResult(success=False, error=NOT_CONFIGURED)

        phone = format_phone_number(recipient)
        if not phone:
            return SendResult(success=False, error=f"Invalid phone number {recipient!r}")

        try:
            response = await asyncio.to_thread(self._post, phone, content.text)
        except requests.exceptions.RequestException as e:
            logger.error(f"WhatsApp {kind.value} to {phone} failed: {e}")
            return SendResult(success=False, error=str(e))

        if response.status_code != 200:
            try:
                detail = response.json().get('error', {}).get('message', response.text)
            except ValueError:
                detail = response.text
            logger.error(f"WhatsApp API error {response.status_code} for {phone}: {detail}")
            return SendResult(success=False, error=f"HTTP {response.status_code}: {detail}")

        messages = response.json().get('messages') or [{}]
        message_id = messages[0].get('id')
        logger.info(f"WhatsApp {kind.value} sent to {phone} (message_id={message_id})")
        return SendResult(success=True, message_id=message_id)
