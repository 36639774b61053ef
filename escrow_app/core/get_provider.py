from core.breaker import CircuitBreaker
from fintechs.base import ProviderAdapter
from fintechs.manual import ManualSettlementClient
from fintechs.mtn_momo import MtnMomoClient
from fintechs.orange_money import OrangeMoneyClient
from models.enums import PaymentMethod

WEBHOOK_SLUGS = {
    "orange-money": PaymentMethod.ORANGE_MONEY,
    "mtn-momo": PaymentMethod.MTN_MOMO,
}


class ProviderResolver:
    def __init__(self, adapters: dict[PaymentMethod, ProviderAdapter] | None = None):
        self.adapters = adapters or {
            PaymentMethod.ORANGE_MONEY: OrangeMoneyClient(),
            PaymentMethod.MTN_MOMO: MtnMomoClient(),
            PaymentMethod.BANK_TRANSFER: ManualSettlementClient(PaymentMethod.BANK_TRANSFER),
            PaymentMethod.CASH: ManualSettlementClient(PaymentMethod.CASH),
            PaymentMethod.CHECK: ManualSettlementClient(PaymentMethod.CHECK),
        }
        self.breakers = {
            method: CircuitBreaker(name=f"provider:{method.value}", failure_threshold=5)
            for method in self.adapters
        }

    def get(self, method: PaymentMethod) -> ProviderAdapter:
        return self.adapters[method]

    def breaker(self, method: PaymentMethod) -> CircuitBreaker:
        return self.breakers[method]

    def for_slug(self, slug: str) -> ProviderAdapter | None:
        method = WEBHOOK_SLUGS.get(slug)
        return self.adapters.get(method) if method else None
