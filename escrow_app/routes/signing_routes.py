from fastapi import APIRouter, Depends, Request
from fastapi_utils.cbv import cbv
from sqlalchemy.ext.asyncio import AsyncSession

from core.dependencies import Collaborators, get_collaborators
from core.get_db import get_db_async
from core.normalizer import mask_phone
from core.safe_handler import safe_handler
from schemas.schema import OtpRequestOut, SignRequest
from services.signature_service import SignatureService

from .contract_routes import signature_context

router = APIRouter(tags=["Public Contract Signing"])


@cbv(router)
class SigningRoutes:
    @router.get("/{token}")
    @safe_handler
    async def resolve_signing_link(
        self,
        token: str,
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        contract = await SignatureService(db, collab).resolve_signing_token(token)
        return {
            "reference": contract.reference,
            "status": contract.status.value,
            "transaction_type": contract.transaction_type.value,
            "monthly_rent": contract.monthly_rent,
            "deposit_amount": contract.deposit_amount,
            "advance_amount": contract.advance_amount,
            "start_date": contract.start_date,
            "end_date": contract.end_date,
            "is_indefinite": contract.is_indefinite,
            "clauses": contract.clauses,
            "special_clauses": contract.special_clauses,
            "tenant_phone_masked": mask_phone(contract.tenant_phone),
            "landlord_signed": contract.landlord_signed_at is not None,
            "expires_at": contract.tenant_signing_token_expires_at,
        }

    @router.post("/{token}/otp", response_model=OtpRequestOut)
    @safe_handler
    async def request_otp_by_token(
        self,
        token: str,
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await SignatureService(db, collab).request_otp_by_token(token)

    @router.post("/{token}")
    @safe_handler
    async def sign_by_token(
        self,
        token: str,
        data: SignRequest,
        request: Request,
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        ip, device = signature_context(request, data.device_info)
        contract = await SignatureService(db, collab).sign_by_token(
            token, data.code, ip=ip, device=device
        )
        return {
            "reference": contract.reference,
            "status": contract.status.value,
            "signed_at": contract.tenant_signed_at,
        }
