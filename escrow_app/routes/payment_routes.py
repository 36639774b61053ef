import uuid

from fastapi import APIRouter, Depends, status
from fastapi_utils.cbv import cbv
from sqlalchemy.ext.asyncio import AsyncSession

from core.dependencies import Collaborators, get_collaborators
from core.get_current_user import Actor, get_current_actor
from core.get_db import get_db_async
from core.safe_handler import safe_handler
from models.enums import PaymentKind
from schemas.schema import (
    CashSettlement,
    LandlordValidation,
    PaymentInitiate,
    PaymentOut,
    RefundRequest,
)
from services.commission_calculator import commission_calculator
from services.escrow_payment_service import EscrowPaymentEngine

router = APIRouter(tags=["Escrow Payments"])


@cbv(router)
class PaymentRoutes:
    @router.get("/rates")
    @safe_handler
    async def commission_rates(self):
        return commission_calculator.rates_info()

    @router.get("/breakdown/{contract_id}")
    @safe_handler
    async def contract_breakdown(
        self,
        contract_id: uuid.UUID,
        kind: PaymentKind = PaymentKind.INITIAL,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await EscrowPaymentEngine(db, collab).contract_breakdown(contract_id, actor, kind)

    @router.get("/contract/{contract_id}", response_model=list[PaymentOut])
    @safe_handler
    async def list_contract_payments(
        self,
        contract_id: uuid.UUID,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await EscrowPaymentEngine(db, collab).list_for_contract(contract_id, actor)

    @router.post("/initiate", response_model=PaymentOut, status_code=status.HTTP_201_CREATED)
    @safe_handler
    async def initiate_payment(
        self,
        data: PaymentInitiate,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await EscrowPaymentEngine(db, collab).initiate(actor, data)

    @router.post("/cash", response_model=PaymentOut, status_code=status.HTTP_201_CREATED)
    @safe_handler
    async def record_cash_settlement(
        self,
        data: CashSettlement,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await EscrowPaymentEngine(db, collab).record_cash_settlement(actor, data)

    @router.get("/{payment_id}", response_model=PaymentOut)
    @safe_handler
    async def get_payment(
        self,
        payment_id: uuid.UUID,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await EscrowPaymentEngine(db, collab).get(payment_id, actor)

    @router.get("/{payment_id}/breakdown")
    @safe_handler
    async def payment_breakdown(
        self,
        payment_id: uuid.UUID,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await EscrowPaymentEngine(db, collab).breakdown_for(payment_id, actor)

    @router.post("/{payment_id}/check-status", response_model=PaymentOut)
    @safe_handler
    async def refresh_payment_status(
        self,
        payment_id: uuid.UUID,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await EscrowPaymentEngine(db, collab).refresh_status(payment_id, actor)

    @router.post("/{payment_id}/validate", response_model=PaymentOut)
    @safe_handler
    async def validate_payment(
        self,
        payment_id: uuid.UUID,
        data: LandlordValidation,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await EscrowPaymentEngine(db, collab).validate_by_landlord(
            payment_id, actor, data.approve, data.note
        )

    @router.post("/{payment_id}/refund", response_model=PaymentOut)
    @safe_handler
    async def refund_payment(
        self,
        payment_id: uuid.UUID,
        data: RefundRequest,
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_async),
        collab: Collaborators = Depends(get_collaborators),
    ):
        return await EscrowPaymentEngine(db, collab).refund(
            payment_id, actor, data.reason, data.amount
        )
