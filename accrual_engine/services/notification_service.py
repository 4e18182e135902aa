"""
SMS gateway client used by the notification queue worker.
"""

import logging
from typing import Optional
import httpx
from accrual_engine.core import Settings
from accrual_engine.core.exceptions import NotificationGatewayError

logger = logging.getLogger(__name__)


class NotificationService:
    """Service for sending SMS messages through the configured HTTP gateway."""

    def __init__(self, api_url: Optional[str] = None, api_token: Optional[str] = None,
                 sender_id: Optional[str] = None, timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_url = api_url or Settings.SMS_API_URL
        self.api_token = api_token or Settings.SMS_API_TOKEN
        self.sender_id = sender_id or Settings.SMS_SENDER_ID
        self.timeout = timeout
        self.transport = transport

        if self.api_token and self.sender_id:
            logger.info("SMS gateway initialized successfully")
        else:
            logger.warning(
                "SMS gateway credentials not configured. Set SMS_API_TOKEN "
                "and SMS_SENDER_ID environment variables"
            )

    @staticmethod
    def _sanitize_message(message: str) -> str:
        """
        Replace characters that would force unicode (multi-part) SMS encoding.

        Args:
            message: Original message text

        Returns:
            str: Message with only plain ASCII characters
        """
        replacements = {
            '₹': 'Rs. ',
            '‘': "'",
            '’': "'",
            '“': '"',
            '”': '"',
            '–': '-',
            '—': '-',
        }

        for old, new in replacements.items():
            message = message.replace(old, new)

        return ''.join(char if ord(char) < 128 else '' for char in message)

    @staticmethod
    def _normalize_phone_number(phone_number: str) -> str:
        """
        Normalize phone number to Indian format (91XXXXXXXXXX) without the + prefix.

        Args:
            phone_number: Phone number in various formats
                         Examples: "9876543210", "09876543210", "+919876543210", "919876543210"

        Returns:
            str: Normalized phone number in format "919876543210"

        Raises:
            ValueError: If phone number format is invalid
        """
        if not phone_number:
            raise ValueError("Phone number cannot be empty")

        cleaned = phone_number.replace(" ", "").replace("-", "").replace("(", "").replace(")", "")

        if cleaned.startswith("+"):
            cleaned = cleaned[1:]

        if cleaned.startswith("0"):
            cleaned = cleaned[1:]

        if len(cleaned) == 10:
            cleaned = f"91{cleaned}"

        if len(cleaned) != 12 or not cleaned.startswith("91"):
            raise ValueError(
                f"Invalid phone number format. Expected 12 digits (91XXXXXXXXXX), got {len(cleaned)}"
            )

        if not cleaned.isdigit():
            raise ValueError("Phone number must contain only digits")

        return cleaned

    async def send_sms(
        self,
        phone_number: str,
        message: str,
        sender_id: Optional[str] = None
    ) -> dict:
        """
        Send an SMS message.

        Args:
            phone_number: Recipient's phone number
            message: SMS message content
            sender_id: Optional custom sender ID (default: configured SMS_SENDER_ID)

        Returns:
            dict: Delivery details from the gateway

        Raises:
            NotificationGatewayError: If the gateway is not configured or rejects the message
        """
        if not self.api_token or not self.sender_id:
            raise NotificationGatewayError(
                "SMS gateway not configured. Please configure SMS_API_TOKEN and SMS_SENDER_ID"
            )

        try:
            normalized_number = self._normalize_phone_number(phone_number)
        except ValueError as e:
            raise NotificationGatewayError(str(e)) from e

        sanitized_message = self._sanitize_message(message)
        active_sender_id = sender_id or self.sender_id

        logger.info(
            f"Attempting to send SMS to {normalized_number[:5]}...***. "
            f"Message length: {len(sanitized_message)} chars, Sender: {active_sender_id}"
        )

        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
            "Accept": "application/json"
        }

        payload = {
            "recipient": normalized_number,
            "sender_id": active_sender_id,
            "type": "plain",
            "message": sanitized_message
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.api_url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"HTTP error sending SMS: {str(e)}")
            raise NotificationGatewayError(f"Failed to send SMS: {str(e)}") from e

        try:
            response_data = response.json()
        except ValueError as e:
            logger.error(f"Failed to parse JSON response: {response.text}")
            raise NotificationGatewayError(f"Invalid JSON response from SMS gateway: {response.text}") from e

        # Gateway returns: {"status": "success", "message": "...", "data": {...}}
        if response.is_success and response_data.get("status") == "success":
            data = response_data.get("data") or {}
            logger.info(
                f"SMS sent successfully to {normalized_number[:5]}...***. "
                f"UID: {data.get('uid')}, Status: {data.get('status')}"
            )
            return {
                "success": True,
                "message_id": data.get("uid"),
                "status": data.get("status"),
                "phone": normalized_number,
                "sender": active_sender_id,
            }

        error_message = response_data.get("message", "Unknown error")
        logger.error(f"SMS gateway error: HTTP {response.status_code} - Message: {error_message}")
        raise NotificationGatewayError(f"SMS gateway error: {error_message}")


notification_service = NotificationService()
