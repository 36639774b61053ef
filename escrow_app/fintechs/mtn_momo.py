import uuid
from decimal import Decimal

from core.normalizer import normalize_phone
from core.settings import settings
from models.enums import PaymentMethod, ProviderOutcome

from .base import (
    HttpProviderClient,
    ProviderConfirmation,
    ProviderError,
    ProviderInitiation,
    parse_amount,
)


class MtnMomoClient(HttpProviderClient):
    method = PaymentMethod.MTN_MOMO
    signature_header = "X-MTN-Signature"
    STATUS_MAP = {
        "SUCCESSFUL": ProviderOutcome.SUCCESS,
        "SUCCESS": ProviderOutcome.SUCCESS,
        "FAILED": ProviderOutcome.FAILED,
        "REJECTED": ProviderOutcome.FAILED,
        "TIMEOUT": ProviderOutcome.FAILED,
        "PENDING": ProviderOutcome.PENDING,
    }

    def __init__(self):
        super().__init__(
            settings.MTN_MOMO_BASE_URL,
            settings.MTN_MOMO_API_KEY,
            settings.MTN_MOMO_WEBHOOK_SECRET,
        )

    async def initiate(
        self, amount: Decimal, reference: str, payer_phone: str | None = None
    ) -> ProviderInitiation:
        msisdn = normalize_phone(payer_phone)
        if not msisdn:
            raise ProviderError("MTN MoMo requires a valid payer phone number")
        request_id = str(uuid.uuid4())
        await self._send(
            "POST",
            "/requesttopay",
            json={
                "amount": str(int(amount)),
                "currency": settings.CURRENCY,
                "externalId": reference,
                "payer": {"partyIdType": "MSISDN", "partyId": msisdn},
                "payerMessage": f"Payment {reference}",
                "payeeNote": reference,
            },
            params={"referenceId": request_id},
        )
        return ProviderInitiation(provider_txn_id=request_id)

    async def check_status(self, provider_txn_id: str) -> ProviderConfirmation:
        data = await self._read(f"/requesttopay/{provider_txn_id}")
        return ProviderConfirmation(
            external_txn_id=provider_txn_id,
            outcome=self.outcome(data.get("status")),
            reference=data.get("externalId"),
            amount=parse_amount(data.get("amount")),
            raw=data,
        )

    async def release(self, provider_txn_id: str, amount: Decimal) -> None:
        await self._send(
            "POST",
            "/transfer",
            json={
                "amount": str(int(amount)),
                "currency": settings.CURRENCY,
                "externalId": provider_txn_id,
            },
        )

    async def refund(self, provider_txn_id: str, amount: Decimal) -> None:
        await self._send(
            "POST",
            "/refund",
            json={
                "amount": str(int(amount)),
                "currency": settings.CURRENCY,
                "referenceIdToRefund": provider_txn_id,
            },
        )

    def parse_webhook(self, body: bytes) -> ProviderConfirmation:
        data = self._load(body)
        txn = data.get("referenceId") or data.get("financialTransactionId")
        if not txn:
            raise ProviderError("MTN MoMo webhook without transaction id")
        return ProviderConfirmation(
            external_txn_id=str(txn),
            outcome=self.outcome(data.get("status")),
            reference=data.get("externalId"),
            amount=parse_amount(data.get("amount")),
            raw=data,
        )
