from fastapi import APIRouter, Depends, Request
from fastapi_utils.cbv import cbv
from sqlalchemy.ext.asyncio import AsyncSession

from core.dependencies import Collaborators, get_collaborators
from core.get_db import get_db_async
from core.safe_handler import safe_handler
from webhooks.service_webhooks import ProviderWebhooks

router = APIRouter(tags=["Webhooks"])


@cbv(router)
class WebhookRoutes:
    @router.post("/{provider}")
    @safe_handler
    async def provider_webhook(
        self,
        provider: str,
        request: Request,
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await ProviderWebhooks(db=db, request=request, collaborators=collab).receive(
            provider
        )
