import hashlib
import logging
import uuid
from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

import models.event_listener  # noqa: F401
from core.errors import StateConflict
from models.enums import UNRESOLVED_PAYMENT_STATUSES, PaymentKind, PaymentMethod, PaymentStatus
from models.models import Payment, ProviderEvent

logger = logging.getLogger(__name__)


class PaymentRepo:
    def __init__(self, db):
        self.db = db

    async def get(self, payment_id: uuid.UUID, for_update: bool = False) -> Payment | None:
        stmt = (
            select(Payment)
            .where(Payment.id == payment_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_for_confirmation(
        self, provider_txn_id: str | None, reference: str | None
    ) -> Payment | None:
        clauses = []
        if provider_txn_id:
            clauses.append(Payment.provider_txn_id == provider_txn_id)
        if reference:
            clauses.append(Payment.reference == reference)
        if not clauses:
            return None
        result = await self.db.execute(select(Payment).where(or_(*clauses)))
        return result.scalars().first()

    async def find_recent_unresolved(
        self, contract_id: uuid.UUID, payer_id: uuid.UUID, since: datetime
    ) -> Payment | None:
        result = await self.db.execute(
            select(Payment).where(
                Payment.contract_id == contract_id,
                Payment.payer_id == payer_id,
                Payment.status.in_(UNRESOLVED_PAYMENT_STATUSES),
                or_(Payment.created_at >= since, Payment.updated_at >= since),
            )
        )
        return next((p for p in result.scalars() if not p.is_undispatched), None)

    async def find_undispatched(
        self, contract_id: uuid.UUID, payer_id: uuid.UUID, kind: PaymentKind
    ) -> Payment | None:
        result = await self.db.execute(
            select(Payment)
            .where(
                Payment.contract_id == contract_id,
                Payment.payer_id == payer_id,
                Payment.kind == kind,
                Payment.status == PaymentStatus.PENDING,
                Payment.provider_txn_id.is_(None),
                Payment.failure_reason.is_not(None),
            )
            .order_by(Payment.created_at.desc())
        )
        return result.scalars().first()

    async def list_for_contract(self, contract_id: uuid.UUID) -> list[Payment]:
        result = await self.db.execute(
            select(Payment)
            .where(Payment.contract_id == contract_id)
            .order_by(Payment.created_at)
        )
        return list(result.scalars().all())

    async def add(self, payment: Payment) -> Payment:
        self.db.add(payment)
        await self.commit()
        return payment

    async def provider_event_exists(
        self, provider: PaymentMethod, external_txn_id: str, status: str
    ) -> bool:
        result = await self.db.execute(
            select(ProviderEvent.id).where(
                ProviderEvent.provider == provider,
                ProviderEvent.external_txn_id == external_txn_id,
                ProviderEvent.status == status,
            )
        )
        return result.first() is not None

    def stage_provider_event(
        self,
        provider: PaymentMethod,
        external_txn_id: str,
        status: str,
        payment_id: uuid.UUID,
        payload: bytes,
        received_at: datetime,
    ) -> ProviderEvent:
        # Committed together with the payment transition; the unique key is the backstop.
        event = ProviderEvent(
            provider=provider,
            external_txn_id=external_txn_id,
            status=status,
            payment_id=payment_id,
            payload_digest=hashlib.sha256(payload).hexdigest(),
            received_at=received_at,
        )
        self.db.add(event)
        return event

    async def commit(self) -> None:
        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            logger.warning("Concurrent payment modification detected")
            raise StateConflict(
                "The payment was modified concurrently. Reload and retry.",
                code="CONCURRENT_MODIFICATION",
            )
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def rollback(self) -> None:
        await self.db.rollback()
