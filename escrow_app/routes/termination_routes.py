import uuid

from fastapi import APIRouter, Depends
from fastapi_utils.cbv import cbv
from sqlalchemy.ext.asyncio import AsyncSession

from core.dependencies import Collaborators, get_collaborators
from core.get_current_user import Actor, get_current_actor
from core.get_db import get_db_async
from core.safe_handler import safe_handler
from schemas.schema import TerminationRequest
from services.termination_service import TerminationWorkflow

router = APIRouter(tags=["Contract Termination"])


@cbv(router)
class TerminationRoutes:
    @router.post("/{contract_id}/termination")
    @safe_handler
    async def request_termination(
        self,
        contract_id: uuid.UUID,
        data: TerminationRequest,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await TerminationWorkflow(db, collab).request(
            contract_id, actor, data.motive, data.notice_months
        )

    @router.post("/{contract_id}/termination/confirm")
    @safe_handler
    async def confirm_termination(
        self,
        contract_id: uuid.UUID,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await TerminationWorkflow(db, collab).confirm(contract_id, actor)

    @router.get("/{contract_id}/termination")
    @safe_handler
    async def termination_status(
        self,
        contract_id: uuid.UUID,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await TerminationWorkflow(db, collab).status(contract_id, actor)
