import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Protocol

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from fintech_verify_signature.verify_signature import verify_hmac_sha256
from models.enums import PaymentMethod, ProviderOutcome

logger = logging.getLogger(__name__)


class ProviderError(RuntimeError):
    pass


@dataclass(frozen=True)
class ProviderInitiation:
    provider_txn_id: str
    redirect_url: str | None = None


@dataclass(frozen=True)
class ProviderConfirmation:
    external_txn_id: str
    outcome: ProviderOutcome
    reference: str | None = None
    amount: Decimal | None = None
    raw: dict = field(default_factory=dict)


class ProviderAdapter(Protocol):
    method: PaymentMethod
    signature_header: str | None

    async def initiate(
        self, amount: Decimal, reference: str, payer_phone: str | None = None
    ) -> ProviderInitiation: ...

    async def check_status(self, provider_txn_id: str) -> ProviderConfirmation: ...

    async def release(self, provider_txn_id: str, amount: Decimal) -> None: ...

    async def refund(self, provider_txn_id: str, amount: Decimal) -> None: ...

    def verify_webhook_signature(self, body: bytes, signature: str | None) -> bool: ...

    def parse_webhook(self, body: bytes) -> ProviderConfirmation: ...


def parse_amount(value) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class HttpProviderClient:
    """Shared httpx plumbing for mobile-money providers.

    Money-moving calls are sent once; only status reads are retried.
    """

    method: PaymentMethod
    signature_header: str | None = None
    STATUS_MAP: dict[str, ProviderOutcome] = {}

    def __init__(self, base_url: str, api_key: str | None, webhook_secret: str | None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    @property
    def headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def outcome(self, raw_status: str | None) -> ProviderOutcome:
        return self.STATUS_MAP.get((raw_status or "").upper(), ProviderOutcome.PENDING)

    async def _send(self, method: str, path: str, **kwargs) -> dict:
        async with httpx.AsyncClient(base_url=self.base_url, timeout=20) as client:
            res = await client.request(method, path, headers=self.headers, **kwargs)
        if res.status_code >= 400:
            raise ProviderError(
                f"{self.method.value} {path} rejected ({res.status_code}): {res.text[:200]}"
            )
        if not res.content:
            return {}
        try:
            return res.json()
        except ValueError:
            raise ProviderError(f"{self.method.value} {path} returned a non-JSON body")

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _read(self, path: str) -> dict:
        return await self._send("GET", path)

    def verify_webhook_signature(self, body: bytes, signature: str | None) -> bool:
        return verify_hmac_sha256(self.webhook_secret, body, signature)

    def _load(self, body: bytes) -> dict:
        try:
            data = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            raise ProviderError("Webhook body is not valid JSON")
        if not isinstance(data, dict):
            raise ProviderError("Webhook body must be a JSON object")
        return data
