import logging
import uuid

from fastapi import APIRouter, Depends, Request, status
from fastapi_utils.cbv import cbv
from sqlalchemy.ext.asyncio import AsyncSession

from core.dependencies import Collaborators, get_collaborators
from core.get_current_user import Actor, get_current_actor
from core.get_db import get_db_async
from core.safe_handler import safe_handler
from schemas.schema import (
    ContractCreate,
    ContractIssuedOut,
    ContractOut,
    OtpRequestOut,
    ReasonRequest,
    SignRequest,
    TenantAssign,
)
from services.contract_service import ContractLifecycle, IssuedContract
from services.signature_service import SignatureService

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Contracts"])


def issued_out(issued: IssuedContract) -> ContractIssuedOut:
    return ContractIssuedOut(
        contract=ContractOut.model_validate(issued.contract),
        signing_link=issued.signing_link,
    )


def signature_context(request: Request, device_info: str | None) -> tuple[str | None, str | None]:
    ip = request.client.host if request.client else None
    device = device_info or request.headers.get("user-agent")
    return ip, device


@cbv(router)
class ContractRoutes:
    @router.post("", response_model=ContractIssuedOut, status_code=status.HTTP_201_CREATED)
    @safe_handler
    async def create_contract(
        self,
        data: ContractCreate,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        issued = await ContractLifecycle(db, collab).create(actor, data)
        return issued_out(issued)

    @router.get("/{contract_id}", response_model=ContractOut)
    @safe_handler
    async def get_contract(
        self,
        contract_id: uuid.UUID,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await ContractLifecycle(db, collab).get(contract_id, actor)

    @router.post("/{contract_id}/tenant", response_model=ContractIssuedOut)
    @safe_handler
    async def assign_tenant(
        self,
        contract_id: uuid.UUID,
        data: TenantAssign,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        issued = await ContractLifecycle(db, collab).assign_tenant(
            contract_id, actor, data.tenant_id, data.tenant_phone
        )
        return issued_out(issued)

    @router.post("/{contract_id}/signing-link", response_model=ContractIssuedOut)
    @safe_handler
    async def reissue_signing_link(
        self,
        contract_id: uuid.UUID,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        issued = await ContractLifecycle(db, collab).reissue_signing_link(contract_id, actor)
        return issued_out(issued)

    @router.post("/{contract_id}/otp", response_model=OtpRequestOut)
    @safe_handler
    async def request_otp(
        self,
        contract_id: uuid.UUID,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await SignatureService(db, collab).request_otp(contract_id, actor)

    @router.post("/{contract_id}/sign", response_model=ContractOut)
    @safe_handler
    async def sign_contract(
        self,
        contract_id: uuid.UUID,
        data: SignRequest,
        request: Request,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        ip, device = signature_context(request, data.device_info)
        return await SignatureService(db, collab).verify_and_sign(
            contract_id, actor, data.code, ip=ip, device=device
        )

    @router.get("/{contract_id}/certificate")
    @safe_handler
    async def signature_certificate(
        self,
        contract_id: uuid.UUID,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await SignatureService(db, collab).certificate(contract_id, actor)

    @router.get("/{contract_id}/retraction")
    @safe_handler
    async def retraction_status(
        self,
        contract_id: uuid.UUID,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await ContractLifecycle(db, collab).retraction_status(contract_id, actor)

    @router.post("/{contract_id}/retract", response_model=ContractOut)
    @safe_handler
    async def retract_contract(
        self,
        contract_id: uuid.UUID,
        data: ReasonRequest,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await ContractLifecycle(db, collab).retract(contract_id, actor, data.reason)

    @router.post("/{contract_id}/dispute", response_model=ContractOut)
    @safe_handler
    async def escalate_dispute(
        self,
        contract_id: uuid.UUID,
        data: ReasonRequest,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await ContractLifecycle(db, collab).escalate_dispute(
            contract_id, actor, data.reason
        )

    @router.delete("/{contract_id}")
    @safe_handler
    async def cancel_contract(
        self,
        contract_id: uuid.UUID,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await ContractLifecycle(db, collab).cancel(contract_id, actor)
