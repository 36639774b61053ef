import logging
from decimal import Decimal

from models.enums import PaymentMethod, ProviderOutcome

from .base import ProviderConfirmation, ProviderError, ProviderInitiation

logger = logging.getLogger(__name__)


class ManualSettlementClient:
    """Cash, bank transfer and check: money moves outside the platform."""

    signature_header = None

    def __init__(self, method: PaymentMethod):
        self.method = method

    async def initiate(
        self, amount: Decimal, reference: str, payer_phone: str | None = None
    ) -> ProviderInitiation:
        raise ProviderError(f"{self.method.value} payments are recorded as settlements")

    async def check_status(self, provider_txn_id: str) -> ProviderConfirmation:
        return ProviderConfirmation(external_txn_id=provider_txn_id, outcome=ProviderOutcome.PENDING)

    async def release(self, provider_txn_id: str, amount: Decimal) -> None:
        logger.info("Manual release of %s recorded for %s", amount, provider_txn_id)

    async def refund(self, provider_txn_id: str, amount: Decimal) -> None:
        logger.info(
            "Manual refund of %s recorded for %s; settle %s outside the platform",
            amount,
            provider_txn_id,
            self.method.value,
        )

    def verify_webhook_signature(self, body: bytes, signature: str | None) -> bool:
        return False

    def parse_webhook(self, body: bytes) -> ProviderConfirmation:
        raise ProviderError(f"{self.method.value} has no webhook")
