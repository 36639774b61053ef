from decimal import Decimal

from core.settings import settings
from models.enums import PaymentMethod, ProviderOutcome

from .base import (
    HttpProviderClient,
    ProviderConfirmation,
    ProviderError,
    ProviderInitiation,
    parse_amount,
)


class OrangeMoneyClient(HttpProviderClient):
    method = PaymentMethod.ORANGE_MONEY
    signature_header = "X-Orange-Signature"
    STATUS_MAP = {
        "SUCCESS": ProviderOutcome.SUCCESS,
        "SUCCESSFUL": ProviderOutcome.SUCCESS,
        "FAILED": ProviderOutcome.FAILED,
        "EXPIRED": ProviderOutcome.FAILED,
        "CANCELLED": ProviderOutcome.FAILED,
        "PENDING": ProviderOutcome.PENDING,
        "INITIATED": ProviderOutcome.PENDING,
    }

    def __init__(self):
        super().__init__(
            settings.ORANGE_MONEY_BASE_URL,
            settings.ORANGE_MONEY_API_KEY,
            settings.ORANGE_MONEY_WEBHOOK_SECRET,
        )

    async def initiate(
        self, amount: Decimal, reference: str, payer_phone: str | None = None
    ) -> ProviderInitiation:
        data = await self._send(
            "POST",
            "/webpayment",
            json={
                "order_id": reference,
                "amount": int(amount),
                "currency": settings.CURRENCY,
                "reference": reference,
                "return_url": f"{settings.FRONTEND_URL}/payments/{reference}",
                "cancel_url": f"{settings.FRONTEND_URL}/payments/{reference}?cancelled=1",
                "lang": "fr",
            },
        )
        pay_token = data.get("pay_token")
        if not pay_token:
            raise ProviderError(data.get("message", "Orange Money did not return a pay token"))
        return ProviderInitiation(provider_txn_id=pay_token, redirect_url=data.get("payment_url"))

    async def check_status(self, provider_txn_id: str) -> ProviderConfirmation:
        data = await self._read(f"/transactionstatus/{provider_txn_id}")
        return ProviderConfirmation(
            external_txn_id=provider_txn_id,
            outcome=self.outcome(data.get("status")),
            reference=data.get("order_id"),
            amount=parse_amount(data.get("amount")),
            raw=data,
        )

    async def release(self, provider_txn_id: str, amount: Decimal) -> None:
        await self._send(
            "POST",
            "/transfers",
            json={"pay_token": provider_txn_id, "amount": int(amount), "currency": settings.CURRENCY},
        )

    async def refund(self, provider_txn_id: str, amount: Decimal) -> None:
        await self._send(
            "POST",
            "/refunds",
            json={"pay_token": provider_txn_id, "amount": int(amount), "currency": settings.CURRENCY},
        )

    def parse_webhook(self, body: bytes) -> ProviderConfirmation:
        data = self._load(body)
        txn = data.get("pay_token") or data.get("txnid")
        if not txn:
            raise ProviderError("Orange Money webhook without transaction id")
        return ProviderConfirmation(
            external_txn_id=str(txn),
            outcome=self.outcome(data.get("status")),
            reference=data.get("order_id"),
            amount=parse_amount(data.get("amount")),
            raw=data,
        )
