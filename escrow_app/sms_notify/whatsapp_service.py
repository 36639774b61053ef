import logging
import uuid
from typing import Protocol

import httpx

from core.normalizer import normalize_phone
from core.settings import settings

logger = logging.getLogger(__name__)


MESSAGES = {
    "signing_link": (
        "You have a rental contract {reference} to sign. "
        "Open this link to review and sign it: {link}"
    ),
    "contract_signed": "Contract {reference} was signed by the {signer}.",
    "contract_active": (
        "Contract {reference} is now signed by both parties and active. "
        "You may retract it until {retraction_expires_at} UTC."
    ),
    "contract_retracted": "Contract {reference} was retracted: {reason}",
    "retraction_window_closing": (
        "The retraction window of contract {reference} closes in about {hours_remaining} "
        "hours, at {retraction_expires_at} UTC."
    ),
    "retraction_window_closed": (
        "The retraction window of contract {reference} has closed. The contract is final."
    ),
    "contract_terminated": "Contract {reference} ended on {effective_date}.",
    "contract_disputed": "Contract {reference} has been escalated for dispute review.",
    "termination_requested": (
        "A termination of contract {reference} was requested. "
        "Reason: {motive}. Effective date: {effective_date}. Please confirm."
    ),
    "termination_confirmed": "The termination of contract {reference} was confirmed.",
    "termination_overdue": (
        "The notice period of contract {reference} has elapsed without confirmation."
    ),
    "payment_escrow": (
        "Payment {payment_reference} of {amount} {currency} is held in escrow "
        "for contract {reference}."
    ),
    "payment_released": (
        "Payment {payment_reference} for contract {reference} was released to the landlord."
    ),
    "payment_disputed": "Payment {payment_reference} for contract {reference} is disputed.",
    "payment_refunded": (
        "Payment {payment_reference} was refunded: {amount} {currency}. "
        "The platform commission is not refundable."
    ),
    "payment_failed": "Payment {payment_reference} for contract {reference} failed.",
    "cash_settlement_recorded": (
        "A cash payment {payment_reference} of {amount} {currency} was recorded "
        "for contract {reference}."
    ),
}


class NotificationDispatcher(Protocol):
    async def send_otp(self, phone: str | None, code: str) -> bool: ...

    async def notify(self, party_id: uuid.UUID | str, kind: str, payload: dict) -> bool: ...


class WahaClient:
    """WhatsApp HTTP API client; every failure is logged and reported as False."""

    def __init__(self, base_url: str | None = None, api_key: str | None = None):
        self.base_url = base_url or settings.WAHA_BASE_URL
        self.api_key = api_key or settings.WAHA_API_KEY
        self.session = settings.WAHA_SESSION

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    async def send_text(self, phone: str | None, text: str) -> bool:
        number = normalize_phone(phone)
        if not number:
            logger.warning("WhatsApp message skipped: missing or invalid phone number")
            return False
        if not self.configured:
            logger.warning("WhatsApp message skipped: WAHA_BASE_URL not configured")
            return False

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-Api-Key"] = self.api_key
        payload = {"session": self.session, "chatId": f"{number}@c.us", "text": text}

        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=10) as client:
                res = await client.post("/api/sendText", json=payload, headers=headers)
            res.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("WhatsApp send to %s****** failed: %s", number[:6], e)
            return False
        return True

    async def send_otp(self, phone: str | None, code: str) -> bool:
        text = (
            f"Your contract signature code is {code}. "
            f"It expires in {settings.OTP_TTL_MINUTES} minutes. Do not share it with anyone."
        )
        return await self.send_text(phone, text)

    async def notify(self, party_id, kind: str, payload: dict) -> bool:
        template = MESSAGES.get(kind)
        if template is None:
            logger.error("Unknown notification kind %s", kind)
            return False
        try:
            text = template.format(**payload)
        except KeyError as e:
            logger.error("Notification %s missing field %s", kind, e)
            return False
        sent = await self.send_text(payload.get("phone"), text)
        logger.info("Notification %s to party %s sent=%s", kind, party_id, sent)
        return sent


whatsapp = WahaClient()
