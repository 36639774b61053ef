import logging
import uuid
from datetime import date, datetime

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

import models.event_listener  # noqa: F401
from core.errors import StateConflict
from models.enums import PENDING_SIGNATURE_STATUSES, ContractStatus
from models.models import Contract

logger = logging.getLogger(__name__)


class ContractRepo:
    def __init__(self, db):
        self.db = db

    async def get(self, contract_id: uuid.UUID, for_update: bool = False) -> Contract | None:
        stmt = (
            select(Contract)
            .where(Contract.id == contract_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_token_hash(self, token_hash: str) -> Contract | None:
        result = await self.db.execute(
            select(Contract)
            .where(Contract.tenant_signing_token_hash == token_hash)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_pending_for_listing_tenant(
        self, listing_id: uuid.UUID, tenant_id: uuid.UUID
    ) -> Contract | None:
        result = await self.db.execute(
            select(Contract).where(
                Contract.listing_id == listing_id,
                Contract.tenant_id == tenant_id,
                Contract.status.in_(PENDING_SIGNATURE_STATUSES),
            )
        )
        return result.scalars().first()

    async def listing_has_active_contract(self, listing_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(Contract.id).where(
                Contract.listing_id == listing_id,
                Contract.status.in_(
                    [ContractStatus.ACTIVE, ContractStatus.IN_NOTICE_PERIOD]
                ),
            )
        )
        return result.first() is not None

    async def list_notice_due(self, today: date) -> list[Contract]:
        result = await self.db.execute(
            select(Contract).where(
                Contract.status == ContractStatus.IN_NOTICE_PERIOD,
                Contract.termination_effective_date <= today,
            )
        )
        return list(result.scalars().all())

    async def list_retraction_elapsed(self, now: datetime) -> list[Contract]:
        result = await self.db.execute(
            select(Contract).where(
                Contract.is_locked.is_(True),
                Contract.retraction_expires_at <= now,
                Contract.retraction_closed_at.is_(None),
                Contract.retracted_at.is_(None),
            )
        )
        return list(result.scalars().all())

    async def list_retraction_closing(self, now: datetime, until: datetime) -> list[Contract]:
        result = await self.db.execute(
            select(Contract).where(
                Contract.status == ContractStatus.ACTIVE,
                Contract.retraction_expires_at > now,
                Contract.retraction_expires_at <= until,
                Contract.retraction_reminder_sent_at.is_(None),
            )
        )
        return list(result.scalars().all())

    async def list_with_expired_secrets(self, now: datetime) -> list[Contract]:
        result = await self.db.execute(
            select(Contract).where(
                or_(
                    Contract.landlord_otp_expires_at < now,
                    Contract.tenant_otp_expires_at < now,
                    Contract.tenant_signing_token_expires_at < now,
                )
            )
        )
        return list(result.scalars().all())

    async def add(self, contract: Contract) -> Contract:
        self.db.add(contract)
        await self.commit()
        return contract

    async def delete(self, contract: Contract) -> None:
        await self.db.delete(contract)
        await self.commit()

    async def commit(self) -> None:
        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            logger.warning("Concurrent contract modification detected")
            raise StateConflict(
                "The contract was modified concurrently. Reload and retry.",
                code="CONCURRENT_MODIFICATION",
            )
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def rollback(self) -> None:
        await self.db.rollback()
