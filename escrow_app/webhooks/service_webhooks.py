import logging

from fastapi import Request

from core.dependencies import Collaborators, get_collaborators
from fintechs.base import ProviderError
from models.enums import IngestResult
from services.escrow_payment_service import EscrowPaymentEngine

logger = logging.getLogger(__name__)

IGNORED = {"status": "ignored"}


class ProviderWebhooks:
    """Provider confirmation endpoint.

    Bad signatures, malformed bodies and unknown payments all get the same
    200 answer, so a caller cannot probe which references exist.
    """

    def __init__(self, db, request: Request, collaborators: Collaborators | None = None):
        self.request = request
        self.collab = collaborators or get_collaborators()
        self.engine = EscrowPaymentEngine(db, self.collab)

    async def receive(self, slug: str) -> dict:
        adapter = self.collab.providers.for_slug(slug)
        if adapter is None:
            logger.warning("Webhook for unknown provider %s discarded", slug)
            return IGNORED

        raw_body = await self.request.body()
        signature = self.request.headers.get(adapter.signature_header or "")
        if not adapter.verify_webhook_signature(raw_body, signature):
            client_ip = self.request.client.host if self.request.client else "unknown"
            logger.warning("Webhook from %s with invalid signature discarded (client %s)", slug, client_ip)
            return IGNORED

        try:
            confirmation = adapter.parse_webhook(raw_body)
        except ProviderError as e:
            logger.warning("Malformed %s webhook discarded: %s", slug, e)
            return IGNORED

        result = await self.engine.ingest_provider_confirmation(
            adapter.method, confirmation, raw_body
        )
        if result is IngestResult.IGNORED:
            return IGNORED
        return {"status": result.value.lower()}
