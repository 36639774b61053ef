import asyncio
import logging
import uuid
from datetime import timedelta
from decimal import Decimal

import httpx
from sqlalchemy.exc import IntegrityError

from core.dependencies import Collaborators
from core.errors import (
    ExternalDependencyFailed,
    NotAuthorized,
    NotFound,
    StateConflict,
    ValidationFailed,
)
from core.get_current_user import Actor
from core.job_queue import GENERATE_RECEIPT, defer
from core.keyed_lock import payment_locks
from core.settings import settings
from fintechs.base import ProviderConfirmation, ProviderError
from models.enums import (
    PAYABLE_CONTRACT_STATUSES,
    REFUNDABLE_PAYMENT_STATUSES,
    UNRESOLVED_PAYMENT_STATUSES,
    CashReceiver,
    IngestResult,
    Party,
    PaymentKind,
    PaymentMethod,
    PaymentStatus,
    ProviderOutcome,
)
from models.models import Contract, Payment
from policy.contract_policy import ContractPolicy, PaymentPolicy
from repos.payment_repo import PaymentRepo
from schemas.schema import CashSettlement, PaymentInitiate
from security.security_generate import security_generate
from services.commission_calculator import Breakdown

from .contract_service import ContractLifecycle

logger = logging.getLogger(__name__)

PROVIDER_FAILURES = (ProviderError, ConnectionError, asyncio.TimeoutError, httpx.HTTPError)
SETTLED_INITIAL_STATUSES = frozenset(
    {
        PaymentStatus.PENDING,
        PaymentStatus.PROCESSING,
        PaymentStatus.ESCROW,
        PaymentStatus.CONFIRMED,
        PaymentStatus.DISPUTED,
    }
)
COMMISSION_DEFERRED_NOTE = "Commission to be collected separately"


class EscrowPaymentEngine:
    """Tenant payments held by the platform until the landlord validates them.

    Provider calls run once, behind a timeout and a per-provider circuit
    breaker; the provider's asynchronous confirmation is authoritative and is
    ingested idempotently through ``ingest_provider_confirmation``.
    """

    def __init__(self, db, collaborators: Collaborators | None = None):
        self.db = db
        self.lifecycle = ContractLifecycle(db, collaborators)
        self.collab = self.lifecycle.collab
        self.clock = self.lifecycle.clock
        self.calculator = self.lifecycle.calculator
        self.contracts = self.lifecycle.repo
        self.repo = PaymentRepo(db)

    async def _load(self, payment_id: uuid.UUID, for_update: bool = False) -> Payment:
        payment = await self.repo.get(payment_id, for_update=for_update)
        if not payment:
            raise NotFound("Payment not found.", code="PAYMENT_NOT_FOUND")
        return payment

    async def _contract(self, contract_id: uuid.UUID) -> Contract:
        contract = await self.contracts.get(contract_id)
        if not contract:
            raise NotFound("Contract not found.", code="CONTRACT_NOT_FOUND")
        return contract

    async def _provider_call(self, method: PaymentMethod, operation: str, call):
        breaker = self.collab.providers.breaker(method)
        try:
            return await breaker.call(
                lambda: asyncio.wait_for(call(), timeout=self.collab.provider_timeout)
            )
        except PROVIDER_FAILURES as e:
            logger.error("Provider %s %s failed: %s", method.value, operation, e)
            raise ExternalDependencyFailed(
                "The payment provider is unavailable. Please try again later.",
                code="PROVIDER_UNAVAILABLE",
            ) from e

    def _notify(self, contract: Contract, party: Party, kind: str, payment: Payment, amount=None):
        self.lifecycle.notify(
            contract,
            party,
            kind,
            payment_reference=payment.reference,
            amount=f"{Decimal(amount if amount is not None else payment.total_amount):,.0f}",
            currency=payment.currency,
        )

    def _breakdown(self, contract: Contract, kind: PaymentKind) -> Breakdown:
        if kind is PaymentKind.RENT:
            if not contract.transaction_type.is_lease:
                raise ValidationFailed(
                    "Monthly rent payments only apply to leases.", code="INVALID_PAYMENT_KIND"
                )
            return self.calculator.rent_breakdown(contract.transaction_type, contract.monthly_rent)
        return self.calculator.compute_breakdown(
            contract.transaction_type,
            contract.monthly_rent,
            deposit_months=contract.deposit_months,
            advance_months=contract.advance_months,
            at=self.clock.now(),
        )

    async def _require_initial_unpaid(self, contract: Contract, kind: PaymentKind) -> None:
        if kind is not PaymentKind.INITIAL:
            return
        for existing in await self.repo.list_for_contract(contract.id):
            if existing.kind is not PaymentKind.INITIAL or existing.is_undispatched:
                continue
            if existing.status in SETTLED_INITIAL_STATUSES:
                raise StateConflict(
                    "The initial payment for this contract is already recorded.",
                    code="INITIAL_PAYMENT_EXISTS",
                )

    @staticmethod
    def _new_payment(
        contract: Contract,
        breakdown: Breakdown,
        kind: PaymentKind,
        method: PaymentMethod,
        now,
    ) -> Payment:
        return Payment(
            contract_id=contract.id,
            payer_id=contract.tenant_id,
            beneficiary_id=contract.landlord_id,
            kind=kind,
            rent_amount=breakdown.rent_portion,
            deposit_amount=breakdown.deposit_amount,
            commission_amount=breakdown.commission_amount,
            total_amount=breakdown.total_amount,
            commission_rate=breakdown.commission_rate,
            commission_rate_version=breakdown.rate_version,
            currency=settings.CURRENCY,
            method=method,
            status=PaymentStatus.PENDING,
            commission_collected=False,
            created_at=now,
            updated_at=now,
        )

    async def initiate(self, actor: Actor, data: PaymentInitiate) -> Payment:
        if not data.method.is_provider_backed:
            raise ValidationFailed(
                "Cash, bank transfer and check payments are recorded as settlements.",
                code="MANUAL_METHOD",
            )

        async def handler() -> Payment:
            contract = await self._contract(data.contract_id)
            if contract.tenant_id is None or actor.id != contract.tenant_id:
                raise NotAuthorized()
            if contract.status not in PAYABLE_CONTRACT_STATUSES:
                raise StateConflict(
                    "Payments are only accepted on a signed contract.",
                    code="CONTRACT_NOT_PAYABLE",
                )

            now = self.clock.now()
            since = now - timedelta(seconds=settings.DUPLICATE_PAYMENT_WINDOW_SECONDS)
            if await self.repo.find_recent_unresolved(contract.id, actor.id, since):
                raise StateConflict(
                    "A payment for this contract is already in progress.",
                    code="DUPLICATE_PAYMENT",
                )

            # A payment the provider never accepted is dispatched again as is.
            retry = await self.repo.find_undispatched(contract.id, actor.id, data.kind)
            if retry is not None:
                retry.method = data.method
                retry.payer_phone = data.payer_phone or retry.payer_phone or contract.tenant_phone
                retry.failure_reason = None
                retry.updated_at = now
                await self.repo.commit()
                logger.info(
                    "Retrying undispatched payment %s for contract %s method=%s",
                    retry.reference,
                    contract.reference,
                    retry.method.value,
                )
                return retry

            await self._require_initial_unpaid(contract, data.kind)

            breakdown = self._breakdown(contract, data.kind)
            payment = self._new_payment(contract, breakdown, data.kind, data.method, now)
            payment.payer_phone = data.payer_phone or contract.tenant_phone
            await self.repo.add(payment)
            logger.info(
                "Payment %s created for contract %s total=%s method=%s",
                payment.reference,
                contract.reference,
                payment.total_amount,
                payment.method.value,
            )
            return payment

        payment = await self.collab.locks.run_once(
            f"payment:initiate:{actor.id}", handler, ttl=settings.CREATE_LOCK_TTL_SECONDS
        )

        adapter = self.collab.providers.get(payment.method)
        try:
            initiation = await self._provider_call(
                payment.method,
                "initiate",
                lambda: adapter.initiate(payment.total_amount, payment.reference, payment.payer_phone),
            )
        except ExternalDependencyFailed as e:
            async with payment_locks.hold(payment.id):
                payment = await self._load(payment.id, for_update=True)
                payment.failure_reason = str(e.__cause__ or e)[:500]
                await self.repo.commit()
            raise

        async with payment_locks.hold(payment.id):
            try:
                payment = await self._load(payment.id, for_update=True)
                payment.provider_txn_id = initiation.provider_txn_id
                payment.redirect_url = initiation.redirect_url
                payment.failure_reason = None
                if payment.status == PaymentStatus.PENDING:
                    payment.status = PaymentStatus.PROCESSING
                await self.repo.commit()
            except BaseException:
                await self.repo.rollback()
                raise
        return payment

    def _apply(self, payment: Payment, confirmation: ProviderConfirmation) -> IngestResult:
        if confirmation.outcome is ProviderOutcome.SUCCESS:
            if payment.status not in UNRESOLVED_PAYMENT_STATUSES:
                return IngestResult.DUPLICATE
            if confirmation.amount is not None and confirmation.amount < Decimal(payment.total_amount):
                logger.warning(
                    "Payment %s confirmation amount %s below expected %s; ignored",
                    payment.reference,
                    confirmation.amount,
                    payment.total_amount,
                )
                return IngestResult.IGNORED
            payment.status = PaymentStatus.ESCROW
            payment.escrow_at = self.clock.now()
            if not payment.provider_txn_id:
                payment.provider_txn_id = confirmation.external_txn_id
            return IngestResult.APPLIED

        if confirmation.outcome is ProviderOutcome.FAILED:
            if payment.status not in UNRESOLVED_PAYMENT_STATUSES:
                return IngestResult.DUPLICATE
            payment.status = PaymentStatus.FAILED
            payment.failure_reason = "Reported failed by provider"
            return IngestResult.APPLIED

        return IngestResult.IGNORED

    async def ingest_provider_confirmation(
        self,
        method: PaymentMethod,
        confirmation: ProviderConfirmation,
        raw_body: bytes = b"",
    ) -> IngestResult:
        """Apply one provider confirmation; replays and out-of-order deliveries are no-ops."""
        found = await self.repo.find_for_confirmation(
            confirmation.external_txn_id, confirmation.reference
        )
        if found is None or found.method != method:
            logger.info(
                "Confirmation %s from %s matches no payment; ignored",
                confirmation.external_txn_id,
                method.value,
            )
            return IngestResult.IGNORED

        status_key = confirmation.outcome.value
        async with payment_locks.hold(found.id):
            try:
                if await self.repo.provider_event_exists(
                    method, confirmation.external_txn_id, status_key
                ):
                    return IngestResult.DUPLICATE

                payment = await self._load(found.id, for_update=True)
                result = self._apply(payment, confirmation)
                if result is not IngestResult.APPLIED:
                    await self.repo.rollback()
                    return result

                self.repo.stage_provider_event(
                    method,
                    confirmation.external_txn_id,
                    status_key,
                    payment.id,
                    raw_body,
                    self.clock.now(),
                )
                try:
                    await self.repo.commit()
                except IntegrityError:
                    logger.info(
                        "Confirmation %s/%s already recorded", confirmation.external_txn_id, status_key
                    )
                    return IngestResult.DUPLICATE
            except BaseException:
                await self.repo.rollback()
                raise

        logger.info(
            "Payment %s moved to %s by %s confirmation %s",
            payment.reference,
            payment.status.value,
            method.value,
            confirmation.external_txn_id,
        )
        contract = await self.contracts.get(payment.contract_id)
        if contract is not None:
            if payment.status == PaymentStatus.ESCROW:
                self._notify(contract, Party.LANDLORD, "payment_escrow", payment)
                self._notify(contract, Party.TENANT, "payment_escrow", payment)
            elif payment.status == PaymentStatus.FAILED:
                self._notify(contract, Party.TENANT, "payment_failed", payment)
        return IngestResult.APPLIED

    async def refresh_status(self, payment_id: uuid.UUID, actor: Actor) -> Payment:
        payment = await self._load(payment_id)
        PaymentPolicy.require_involved(payment, actor)
        if payment.status not in UNRESOLVED_PAYMENT_STATUSES or not payment.provider_txn_id:
            return payment

        adapter = self.collab.providers.get(payment.method)
        confirmation = await self._provider_call(
            payment.method,
            "check_status",
            lambda: adapter.check_status(payment.provider_txn_id),
        )
        if confirmation.reference is None:
            confirmation = ProviderConfirmation(
                external_txn_id=confirmation.external_txn_id,
                outcome=confirmation.outcome,
                reference=payment.reference,
                amount=confirmation.amount,
                raw=confirmation.raw,
            )
        await self.ingest_provider_confirmation(payment.method, confirmation)
        return await self._load(payment_id)

    async def validate_by_landlord(
        self,
        payment_id: uuid.UUID,
        actor: Actor,
        approve: bool,
        note: str | None = None,
    ) -> Payment:
        async with payment_locks.hold(payment_id):
            try:
                payment = await self._load(payment_id, for_update=True)
                PaymentPolicy.require_beneficiary(payment, actor)
                if payment.status != PaymentStatus.ESCROW:
                    raise StateConflict(
                        "Only a payment held in escrow can be validated.",
                        code="INVALID_TRANSITION",
                    )

                if approve:
                    adapter = self.collab.providers.get(payment.method)
                    payout = Decimal(payment.rent_amount) + Decimal(payment.deposit_amount)
                    await self._provider_call(
                        payment.method,
                        "release",
                        lambda: adapter.release(payment.provider_txn_id, payout),
                    )
                    payment.status = PaymentStatus.CONFIRMED
                    payment.commission_collected = True
                else:
                    payment.status = PaymentStatus.DISPUTED

                payment.validated_at = self.clock.now()
                payment.validated_by = actor.id
                payment.validation_note = note
                await self.repo.commit()
            except BaseException:
                await self.repo.rollback()
                raise

        logger.info(
            "Payment %s %s by landlord %s",
            payment.reference,
            "released" if approve else "disputed",
            actor.id,
        )
        contract = await self.contracts.get(payment.contract_id)
        if approve:
            defer(self.collab.jobs, GENERATE_RECEIPT, str(payment.id))
            if contract is not None:
                self._notify(contract, Party.TENANT, "payment_released", payment)
        elif contract is not None:
            for party in Party:
                self._notify(contract, party, "payment_disputed", payment)
        return payment

    async def refund(
        self,
        payment_id: uuid.UUID,
        actor: Actor,
        reason: str,
        amount: Decimal | None = None,
    ) -> Payment:
        if amount is not None and Decimal(amount) <= 0:
            raise ValidationFailed("Refund amount must be greater than zero.", code="INVALID_AMOUNT")

        async with payment_locks.hold(payment_id):
            try:
                payment = await self._load(payment_id, for_update=True)
                PaymentPolicy.require_involved(payment, actor)
                if payment.status not in REFUNDABLE_PAYMENT_STATUSES:
                    raise StateConflict(
                        "This payment cannot be refunded in its current state.",
                        code="INVALID_TRANSITION",
                    )

                cap = payment.refundable_cap
                refund_amount = cap if amount is None else min(Decimal(amount), cap)
                if amount is not None and Decimal(amount) > cap:
                    logger.info(
                        "Refund on %s clamped from %s to %s; commission is not refundable",
                        payment.reference,
                        amount,
                        refund_amount,
                    )

                adapter = self.collab.providers.get(payment.method)
                await self._provider_call(
                    payment.method,
                    "refund",
                    lambda: adapter.refund(payment.provider_txn_id or payment.reference, refund_amount),
                )
                payment.status = PaymentStatus.REFUNDED
                payment.refund_amount = refund_amount
                payment.refund_reason = reason
                payment.refunded_at = self.clock.now()
                payment.refunded_by = actor.id
                await self.repo.commit()
            except BaseException:
                await self.repo.rollback()
                raise

        logger.info("Payment %s refunded %s by %s", payment.reference, refund_amount, actor.id)
        contract = await self.contracts.get(payment.contract_id)
        if contract is not None:
            self._notify(contract, Party.TENANT, "payment_refunded", payment, amount=refund_amount)
        return payment

    async def record_cash_settlement(self, actor: Actor, data: CashSettlement) -> Payment:
        async def handler() -> Payment:
            contract = await self._contract(data.contract_id)
            ContractPolicy.require_landlord_or_admin(contract, actor)
            if contract.tenant_id is None or contract.status not in PAYABLE_CONTRACT_STATUSES:
                raise StateConflict(
                    "Payments are only accepted on a signed contract.",
                    code="CONTRACT_NOT_PAYABLE",
                )
            await self._require_initial_unpaid(contract, data.kind)

            breakdown = self._breakdown(contract, data.kind)
            received = Decimal(data.amount_received)
            if received < breakdown.total_amount:
                raise ValidationFailed(
                    f"Amount received is below the expected total of {breakdown.total_amount}.",
                    code="INSUFFICIENT_AMOUNT",
                )

            now = self.clock.now()
            payment = self._new_payment(contract, breakdown, data.kind, data.method, now)
            payment.reference = security_generate.payment_reference("PAY-CASH")
            payment.status = PaymentStatus.CONFIRMED
            payment.amount_received = received
            payment.cash_received_by = data.received_by
            payment.validated_at = now
            payment.validated_by = actor.id
            payment.validation_note = data.note
            if data.received_by is CashReceiver.PLATFORM or breakdown.commission_amount == 0:
                payment.commission_collected = True
            else:
                payment.commission_collection_note = COMMISSION_DEFERRED_NOTE
            await self.repo.add(payment)
            return payment

        payment = await self.collab.locks.run_once(
            f"payment:cash:{actor.id}", handler, ttl=settings.CREATE_LOCK_TTL_SECONDS
        )
        logger.info(
            "Cash settlement %s recorded by %s received_by=%s",
            payment.reference,
            actor.id,
            payment.cash_received_by.value,
        )
        defer(self.collab.jobs, GENERATE_RECEIPT, str(payment.id))
        contract = await self.contracts.get(payment.contract_id)
        if contract is not None:
            self._notify(
                contract,
                Party.TENANT,
                "cash_settlement_recorded",
                payment,
                amount=payment.amount_received,
            )
        return payment

    async def generate_receipt(self, payment_id: uuid.UUID) -> str | None:
        async with payment_locks.hold(payment_id):
            try:
                payment = await self._load(payment_id, for_update=True)
                if payment.status != PaymentStatus.CONFIRMED:
                    logger.info("Receipt for %s skipped: status %s", payment.reference, payment.status.value)
                    return None
                if payment.receipt_ref:
                    return payment.receipt_ref
                contract = await self._contract(payment.contract_id)
                payment.receipt_ref = await self.collab.documents.render_receipt(payment, contract)
                await self.repo.commit()
            except BaseException:
                await self.repo.rollback()
                raise
        return payment.receipt_ref

    async def get(self, payment_id: uuid.UUID, actor: Actor) -> Payment:
        payment = await self._load(payment_id)
        PaymentPolicy.require_involved(payment, actor)
        return payment

    async def list_for_contract(self, contract_id: uuid.UUID, actor: Actor) -> list[Payment]:
        contract = await self._contract(contract_id)
        ContractPolicy.require_participant(contract, actor)
        return await self.repo.list_for_contract(contract.id)

    async def breakdown_for(self, payment_id: uuid.UUID, actor: Actor) -> dict:
        payment = await self.get(payment_id, actor)
        table = self.calculator.rate_table_version(payment.commission_rate_version)
        return {
            "payment_reference": payment.reference,
            "kind": payment.kind.value,
            "rate_version": table.version,
            "rate_effective_from": table.effective_from.isoformat(),
            "commission_rate": payment.commission_rate,
            "rent_amount": payment.rent_amount,
            "deposit_amount": payment.deposit_amount,
            "commission_amount": payment.commission_amount,
            "total_amount": payment.total_amount,
            "refundable_amount": payment.refundable_cap,
            "currency": payment.currency,
        }

    async def contract_breakdown(
        self, contract_id: uuid.UUID, actor: Actor, kind: PaymentKind = PaymentKind.INITIAL
    ) -> dict:
        contract = await self._contract(contract_id)
        ContractPolicy.require_participant(contract, actor)
        breakdown = self._breakdown(contract, kind)
        return {
            "contract_reference": contract.reference,
            "kind": kind.value,
            "currency": settings.CURRENCY,
            **breakdown.as_dict(),
        }
