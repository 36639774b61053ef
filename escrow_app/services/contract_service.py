import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum

from core.date_helper import add_months, seconds_until
from core.dependencies import Collaborators, get_collaborators
from core.errors import NotFound, StateConflict, ValidationFailed
from core.get_current_user import Actor
from core.job_queue import NOTIFY_PARTY, SEAL_CONTRACT, defer
from core.keyed_lock import contract_locks
from core.pdf_generate import LOCAL_DISK
from core.settings import settings
from models.enums import (
    PENDING_SIGNATURE_STATUSES,
    ContractStatus,
    Party,
)
from models.models import TERM_COLUMNS, Contract
from policy.contract_policy import ContractPolicy
from repos.contract_repo import ContractRepo
from schemas.schema import ContractCreate
from security.security_generate import security_generate
from services.commission_calculator import commission_calculator

logger = logging.getLogger(__name__)

# (state, signing party, other party already signed) -> next state
SIGNATURE_TRANSITIONS: dict[tuple[ContractStatus, Party, bool], ContractStatus] = {
    (ContractStatus.PENDING_TENANT_SIGNATURE, Party.TENANT, False): ContractStatus.PENDING_LANDLORD_SIGNATURE,
    (ContractStatus.PENDING_TENANT_SIGNATURE, Party.TENANT, True): ContractStatus.ACTIVE,
    (ContractStatus.PENDING_TENANT_SIGNATURE, Party.LANDLORD, False): ContractStatus.PENDING_TENANT_SIGNATURE,
    (ContractStatus.PENDING_LANDLORD_SIGNATURE, Party.LANDLORD, True): ContractStatus.ACTIVE,
}

LEASE_CLAUSES = (
    "The landlord lets the premises to the tenant, who accepts them in their current state.",
    "Rent is payable monthly in advance through the platform or as recorded cash settlement.",
    "The deposit is held in escrow and returned at the end of the lease, less documented damages.",
    "Either party may terminate the lease by giving written notice through the platform.",
    "Both parties may retract this contract within 48 hours of the second signature.",
)
SALE_CLAUSES = (
    "The seller transfers the property to the buyer free of undisclosed encumbrances.",
    "The sale price is paid through platform escrow and released after seller validation.",
    "The platform commission is due on completion and is not refundable.",
    "Both parties may retract this contract within 48 hours of the second signature.",
)


@dataclass
class IssuedContract:
    contract: Contract
    signing_token: str | None = None

    @property
    def signing_link(self) -> str | None:
        if not self.signing_token:
            return None
        return f"{settings.FRONTEND_URL.rstrip('/')}/sign/{self.signing_token}"


@dataclass(frozen=True)
class SignatureEvidence:
    signed_at: datetime
    ip: str | None
    device: str | None


def _canonical(value) -> str:
    if value is None:
        return ""
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return "\n".join(str(item) for item in value)
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def terms_fingerprint(contract: Contract) -> str:
    return security_generate.sha256(
        "|".join(_canonical(getattr(contract, column)) for column in TERM_COLUMNS)
    )


def signature_digest(contract: Contract, party: Party) -> str:
    """Evidence hash over who signed, when, from where and which terms.

    The rendered document changes when the contract is sealed, so the evidence
    binds the frozen term columns instead of the document hash.
    """
    parts = [
        str(contract.id),
        contract.reference,
        _canonical(contract.column_value(party, "party_id")),
        party.value,
        _canonical(contract.column_value(party, "signed_at")),
        contract.column_value(party, "signature_ip") or "",
        contract.column_value(party, "signature_device") or "",
        terms_fingerprint(contract),
    ]
    return security_generate.sha256("|".join(parts))


def seal_digest(contract: Contract) -> str:
    parts = [
        str(contract.id),
        contract.reference,
        contract.document_hash or "",
        contract.landlord_signature_hash or "",
        contract.tenant_signature_hash or "",
        contract.landlord_signed_at.isoformat() if contract.landlord_signed_at else "",
        contract.tenant_signed_at.isoformat() if contract.tenant_signed_at else "",
    ]
    return security_generate.sha256("|".join(parts))


class ContractLifecycle:
    def __init__(self, db, collaborators: Collaborators | None = None):
        self.db = db
        self.collab = collaborators or get_collaborators()
        self.clock = self.collab.clock
        self.repo = ContractRepo(db)
        self.calculator = commission_calculator

    async def _load(self, contract_id: uuid.UUID, for_update: bool = False) -> Contract:
        contract = await self.repo.get(contract_id, for_update=for_update)
        if not contract:
            raise NotFound("Contract not found.", code="CONTRACT_NOT_FOUND")
        return contract

    @asynccontextmanager
    async def locked(self, contract_id: uuid.UUID):
        """Single writer per contract id; uncommitted changes roll back on error."""
        async with contract_locks.hold(contract_id):
            try:
                yield await self._load(contract_id, for_update=True)
            except BaseException:
                await self.repo.rollback()
                raise

    def notify(self, contract: Contract, party: Party, kind: str, **fields) -> None:
        party_id = contract.column_value(party, "party_id")
        if party_id is None:
            return
        payload = {
            "reference": contract.reference,
            "party": party.value.lower(),
            "phone": contract.column_value(party, "phone"),
        }
        payload.update({key: str(value) for key, value in fields.items()})
        defer(self.collab.jobs, NOTIFY_PARTY, str(party_id), kind, payload)

    def _mint_signing_token(self, contract: Contract) -> str:
        token = security_generate.signing_token()
        contract.tenant_signing_token_hash = security_generate.sha256(token)
        contract.tenant_signing_token_expires_at = self.clock.now() + timedelta(
            days=settings.SIGNING_TOKEN_TTL_DAYS
        )
        return token

    def _send_signing_link(self, issued: IssuedContract) -> None:
        if issued.signing_token:
            self.notify(issued.contract, Party.TENANT, "signing_link", link=issued.signing_link)

    async def _render_document(self, contract: Contract) -> None:
        try:
            ref, content_hash = await self.collab.documents.render_contract_document(contract)
        except Exception:
            logger.exception("Contract document rendering failed for %s", contract.reference)
            return
        contract.document_ref = ref
        contract.document_disk = LOCAL_DISK
        contract.document_hash = content_hash
        await self.repo.commit()

    async def create(self, actor: Actor, data: ContractCreate) -> IssuedContract:
        if data.tenant_id is not None and data.tenant_id == actor.id:
            raise ValidationFailed(
                "The landlord cannot also be the tenant.", code="INVALID_PARTIES"
            )

        async def handler() -> IssuedContract:
            if data.listing_id is not None:
                if data.tenant_id is not None and await self.repo.find_pending_for_listing_tenant(
                    data.listing_id, data.tenant_id
                ):
                    raise StateConflict(
                        "A contract awaiting signature already exists for this listing and tenant.",
                        code="DUPLICATE_CONTRACT",
                    )
                if await self.repo.listing_has_active_contract(data.listing_id):
                    raise StateConflict(
                        "This listing already has an active contract.",
                        code="LISTING_ALREADY_CONTRACTED",
                    )

            now = self.clock.now()
            breakdown = self.calculator.compute_breakdown(
                data.transaction_type,
                data.monthly_rent,
                deposit_months=data.deposit_months,
                advance_months=data.advance_months,
                at=now,
            )
            months = (
                settings.INDEFINITE_TERM_MONTHS if data.is_indefinite else data.duration_months
            )
            clauses = LEASE_CLAUSES if data.transaction_type.is_lease else SALE_CLAUSES

            contract = Contract(
                listing_id=data.listing_id,
                landlord_id=actor.id,
                landlord_phone=data.landlord_phone,
                tenant_id=data.tenant_id,
                tenant_phone=data.tenant_phone,
                transaction_type=data.transaction_type,
                monthly_rent=breakdown.base_amount,
                deposit_months=data.deposit_months,
                advance_months=data.advance_months,
                deposit_amount=breakdown.deposit_amount,
                advance_amount=breakdown.advance_amount,
                duration_months=months,
                is_indefinite=data.is_indefinite,
                start_date=data.start_date,
                end_date=add_months(data.start_date, months),
                clauses=list(clauses),
                special_clauses=data.special_clauses,
                status=ContractStatus.DRAFT,
                created_at=now,
                updated_at=now,
            )
            token = None
            if data.tenant_id is not None:
                contract.status = ContractStatus.PENDING_TENANT_SIGNATURE
                token = self._mint_signing_token(contract)

            await self.repo.add(contract)
            logger.info(
                "Contract %s created by %s status=%s",
                contract.reference,
                actor.id,
                contract.status.value,
            )
            await self._render_document(contract)
            return IssuedContract(contract=contract, signing_token=token)

        issued = await self.collab.locks.run_once(
            f"contract:create:{actor.id}", handler, ttl=settings.CREATE_LOCK_TTL_SECONDS
        )
        self._send_signing_link(issued)
        return issued

    async def assign_tenant(
        self,
        contract_id: uuid.UUID,
        actor: Actor,
        tenant_id: uuid.UUID,
        tenant_phone: str | None = None,
    ) -> IssuedContract:
        async with self.locked(contract_id) as contract:
            ContractPolicy.require_landlord_or_admin(contract, actor)
            if contract.status != ContractStatus.DRAFT:
                raise StateConflict(
                    "A tenant can only be assigned to a draft contract.",
                    code="INVALID_TRANSITION",
                )
            if tenant_id == contract.landlord_id:
                raise ValidationFailed(
                    "The landlord cannot also be the tenant.", code="INVALID_PARTIES"
                )
            if contract.listing_id is not None and await self.repo.find_pending_for_listing_tenant(
                contract.listing_id, tenant_id
            ):
                raise StateConflict(
                    "A contract awaiting signature already exists for this listing and tenant.",
                    code="DUPLICATE_CONTRACT",
                )
            contract.tenant_id = tenant_id
            contract.tenant_phone = tenant_phone
            contract.status = ContractStatus.PENDING_TENANT_SIGNATURE
            token = self._mint_signing_token(contract)
            await self.repo.commit()

        logger.info("Tenant %s assigned to contract %s", tenant_id, contract.reference)
        issued = IssuedContract(contract=contract, signing_token=token)
        self._send_signing_link(issued)
        return issued

    async def reissue_signing_link(self, contract_id: uuid.UUID, actor: Actor) -> IssuedContract:
        async with self.locked(contract_id) as contract:
            ContractPolicy.require_landlord_or_admin(contract, actor)
            if (
                contract.status not in PENDING_SIGNATURE_STATUSES
                or contract.has_signed(Party.TENANT)
            ):
                raise StateConflict(
                    "The tenant has no signature pending on this contract.",
                    code="INVALID_TRANSITION",
                )
            token = self._mint_signing_token(contract)
            await self.repo.commit()

        issued = IssuedContract(contract=contract, signing_token=token)
        self._send_signing_link(issued)
        return issued

    async def get(self, contract_id: uuid.UUID, actor: Actor) -> Contract:
        contract = await self._load(contract_id)
        ContractPolicy.require_participant(contract, actor)
        return contract

    def record_signature(
        self, contract: Contract, party: Party, evidence: SignatureEvidence
    ) -> bool:
        """Apply one party's consent in memory; the caller holds the lock and commits.

        Returns True when this signature completed the contract.
        """
        if contract.has_signed(party):
            raise StateConflict("This party has already signed.", code="ALREADY_SIGNED")

        key = (contract.status, party, contract.has_signed(party.other))
        next_status = SIGNATURE_TRANSITIONS.get(key)
        if next_status is None:
            raise StateConflict(
                "The contract cannot be signed in its current state.",
                code="INVALID_TRANSITION",
            )

        contract.set_column_value(party, "signed_at", evidence.signed_at)
        contract.set_column_value(party, "signature_ip", evidence.ip)
        contract.set_column_value(
            party, "signature_device", (evidence.device or "")[:255] or None
        )
        contract.set_column_value(party, "signature_hash", signature_digest(contract, party))
        contract.status = next_status

        if next_status == ContractStatus.ACTIVE:
            self._activate(contract, evidence.signed_at)
            return True
        return False

    def _activate(self, contract: Contract, at: datetime) -> None:
        contract.is_locked = True
        contract.locked_at = at
        contract.activated_at = at
        contract.retraction_expires_at = at + timedelta(hours=settings.RETRACTION_WINDOW_HOURS)
        contract.seal_job_token = security_generate.job_token()
        if contract.tenant_id is not None:
            contract.tenant_signing_token_hash = None
            contract.tenant_signing_token_expires_at = None

    def after_signature(self, contract: Contract, party: Party, activated: bool) -> None:
        """Post-commit side effects of a recorded signature."""
        if not activated:
            self.notify(contract, party.other, "contract_signed", signer=party.value.lower())
            return

        defer(
            self.collab.jobs,
            SEAL_CONTRACT,
            str(contract.id),
            contract.seal_job_token,
            delay_seconds=settings.SEAL_DELAY_SECONDS,
        )
        for each in Party:
            self.notify(
                contract,
                each,
                "contract_active",
                retraction_expires_at=contract.retraction_expires_at.isoformat(timespec="minutes"),
            )
        logger.info("Contract %s is active and locked", contract.reference)

    async def cancel(self, contract_id: uuid.UUID, actor: Actor) -> dict:
        async with self.locked(contract_id) as contract:
            ContractPolicy.require_can_cancel(contract, actor)
            if contract.signature_count:
                raise StateConflict(
                    "The contract can no longer be cancelled: a party has signed.",
                    code="ALREADY_SIGNED",
                )
            if contract.status not in PENDING_SIGNATURE_STATUSES | {ContractStatus.DRAFT}:
                raise StateConflict(
                    "The contract cannot be cancelled in its current state.",
                    code="INVALID_TRANSITION",
                )
            document_ref = contract.document_ref
            reference = contract.reference
            await self.repo.delete(contract)

        if document_ref:
            try:
                await self.collab.documents.delete_document(document_ref)
            except Exception:
                logger.exception("Failed to delete document %s", document_ref)

        logger.info("Contract %s cancelled by %s", reference, actor.id)
        return {
            "id": str(contract_id),
            "reference": reference,
            "status": ContractStatus.CANCELLED.value,
        }

    async def retract(self, contract_id: uuid.UUID, actor: Actor, reason: str) -> Contract:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationFailed("A retraction reason is required.", code="REASON_REQUIRED")

        async with self.locked(contract_id) as contract:
            ContractPolicy.require_participant(contract, actor)
            if contract.status != ContractStatus.ACTIVE:
                raise StateConflict(
                    "Only an active contract can be retracted.", code="INVALID_TRANSITION"
                )
            now = self.clock.now()
            if now >= contract.retraction_expires_at:
                raise StateConflict(
                    "The retraction window has closed.", code="RETRACTION_WINDOW_CLOSED"
                )
            contract.status = ContractStatus.TERMINATED
            contract.retracted_at = now
            contract.retraction_reason = reason[:500]
            contract.terminated_at = now
            contract.seal_job_token = None
            await self.repo.commit()

        logger.info("Contract %s retracted by %s", contract.reference, actor.id)
        for party in Party:
            self.notify(contract, party, "contract_retracted", reason=contract.retraction_reason)
        return contract

    async def retraction_status(self, contract_id: uuid.UUID, actor: Actor) -> dict:
        contract = await self.get(contract_id, actor)
        now = self.clock.now()
        open_window = (
            contract.status == ContractStatus.ACTIVE
            and contract.retraction_expires_at is not None
            and now < contract.retraction_expires_at
        )
        return {
            "can_retract": open_window,
            "expires_at": contract.retraction_expires_at,
            "closed_at": contract.retraction_closed_at,
            "seconds_remaining": seconds_until(contract.retraction_expires_at, now) if open_window else 0,
        }

    async def request_termination(
        self,
        contract_id: uuid.UUID,
        actor: Actor,
        motive: str,
        notice_months: int | None = None,
    ) -> Contract:
        motive = (motive or "").strip()
        notice_months = settings.DEFAULT_NOTICE_MONTHS if notice_months is None else notice_months
        if not motive or len(motive) > 500:
            raise ValidationFailed(
                "A termination motive of at most 500 characters is required.",
                code="INVALID_MOTIVE",
            )
        if notice_months < 1:
            raise ValidationFailed(
                "The notice period must be at least one month.", code="INVALID_NOTICE"
            )

        async with self.locked(contract_id) as contract:
            ContractPolicy.require_party(contract, actor)
            if contract.status == ContractStatus.IN_NOTICE_PERIOD:
                raise StateConflict(
                    "A termination request is already pending.",
                    code="TERMINATION_ALREADY_PENDING",
                )
            if contract.status != ContractStatus.ACTIVE:
                raise StateConflict(
                    "Only an active contract can be terminated.", code="INVALID_TRANSITION"
                )
            now = self.clock.now()
            contract.termination_requested_at = now
            contract.termination_requested_by = actor.id
            contract.termination_motive = motive
            contract.notice_months = notice_months
            contract.termination_effective_date = add_months(now.date(), notice_months)
            contract.termination_confirmed_at = None
            contract.termination_confirmed_by = None
            contract.status = ContractStatus.IN_NOTICE_PERIOD
            await self.repo.commit()

        logger.info(
            "Termination of %s requested by %s effective %s",
            contract.reference,
            actor.id,
            contract.termination_effective_date,
        )
        return contract

    async def confirm_termination(self, contract_id: uuid.UUID, actor: Actor) -> Contract:
        async with self.locked(contract_id) as contract:
            party = ContractPolicy.require_participant(contract, actor)
            if contract.status != ContractStatus.IN_NOTICE_PERIOD:
                raise StateConflict(
                    "There is no pending termination to confirm.", code="INVALID_TRANSITION"
                )
            if party is not None and actor.id == contract.termination_requested_by:
                raise StateConflict(
                    "The requesting party cannot confirm its own termination.",
                    code="REQUESTER_CANNOT_CONFIRM",
                )
            if contract.termination_confirmed_at is not None:
                raise StateConflict(
                    "The termination has already been confirmed.",
                    code="TERMINATION_ALREADY_CONFIRMED",
                )
            contract.termination_confirmed_at = self.clock.now()
            contract.termination_confirmed_by = actor.id
            await self.repo.commit()

        logger.info("Termination of %s confirmed by %s", contract.reference, actor.id)
        return contract

    async def escalate_dispute(self, contract_id: uuid.UUID, actor: Actor, reason: str) -> Contract:
        async with self.locked(contract_id) as contract:
            party = ContractPolicy.require_participant(contract, actor)
            if contract.status not in {ContractStatus.ACTIVE, ContractStatus.IN_NOTICE_PERIOD}:
                raise StateConflict(
                    "Only a signed contract can be disputed.", code="INVALID_TRANSITION"
                )
            contract.status = ContractStatus.DISPUTED
            contract.disputed_at = self.clock.now()
            contract.seal_job_token = None
            await self.repo.commit()

        logger.warning("Contract %s disputed by %s: %s", contract.reference, actor.id, reason)
        targets = [party.other] if party is not None else list(Party)
        for target in targets:
            self.notify(contract, target, "contract_disputed")
        return contract

    async def seal(self, contract_id: uuid.UUID, job_token: str) -> bool:
        """Delayed post-signature job: render the final document and store the seal."""
        try:
            async with self.locked(contract_id) as contract:
                if (
                    contract.seal_job_token is None
                    or contract.seal_job_token != job_token
                    or contract.status != ContractStatus.ACTIVE
                    or not contract.is_fully_signed
                ):
                    logger.info("Seal job for %s skipped: cancelled or stale", contract_id)
                    return False

                ref, content_hash = await self.collab.documents.render_contract_document(contract)
                contract.document_ref = ref
                contract.document_disk = LOCAL_DISK
                contract.document_hash = content_hash
                contract.seal_hash = seal_digest(contract)
                contract.sealed_at = self.clock.now()
                contract.seal_job_token = None
                await self.repo.commit()
        except NotFound:
            logger.info("Seal job for %s skipped: contract no longer exists", contract_id)
            return False

        logger.info("Contract %s sealed", contract.reference)
        return True

    async def close_retraction_windows(self, now: datetime | None = None) -> dict:
        """Stamp contracts whose retraction window elapsed and warn those about to close."""
        now = now or self.clock.now()
        closed, reminded = [], []

        for elapsed in await self.repo.list_retraction_elapsed(now):
            async with self.locked(elapsed.id) as contract:
                if (
                    contract.retraction_closed_at is not None
                    or contract.retracted_at is not None
                    or contract.retraction_expires_at > now
                ):
                    continue
                contract.retraction_closed_at = now
                await self.repo.commit()
                closed.append(contract)

        until = now + timedelta(hours=settings.RETRACTION_REMINDER_HOURS)
        for closing in await self.repo.list_retraction_closing(now, until):
            async with self.locked(closing.id) as contract:
                if (
                    contract.status != ContractStatus.ACTIVE
                    or contract.retraction_reminder_sent_at is not None
                ):
                    continue
                contract.retraction_reminder_sent_at = now
                await self.repo.commit()
                reminded.append(contract)

        for contract in closed:
            logger.info("Retraction window of %s closed", contract.reference)
            for party in Party:
                self.notify(contract, party, "retraction_window_closed")
        for contract in reminded:
            hours_remaining = -(-seconds_until(contract.retraction_expires_at, now) // 3600)
            for party in Party:
                self.notify(
                    contract,
                    party,
                    "retraction_window_closing",
                    hours_remaining=hours_remaining,
                    retraction_expires_at=contract.retraction_expires_at.isoformat(
                        timespec="minutes"
                    ),
                )

        return {
            "closed": [c.reference for c in closed],
            "reminded": [c.reference for c in reminded],
        }

    async def sweep_notice_periods(self, today: date | None = None) -> dict:
        today = today or self.clock.today()
        terminated, overdue = [], []

        for due in await self.repo.list_notice_due(today):
            async with self.locked(due.id) as contract:
                if (
                    contract.status != ContractStatus.IN_NOTICE_PERIOD
                    or contract.termination_effective_date > today
                ):
                    continue
                if contract.termination_confirmed_at is None:
                    overdue.append(contract)
                    continue
                contract.status = ContractStatus.TERMINATED
                contract.terminated_at = self.clock.now()
                await self.repo.commit()
                terminated.append(contract)

        for contract in terminated:
            for party in Party:
                self.notify(
                    contract,
                    party,
                    "contract_terminated",
                    effective_date=contract.termination_effective_date,
                )
        for contract in overdue:
            logger.warning(
                "Notice period of %s elapsed without confirmation", contract.reference
            )
            for party in Party:
                self.notify(contract, party, "termination_overdue")

        return {
            "terminated": [c.reference for c in terminated],
            "awaiting_confirmation": [c.reference for c in overdue],
        }

    async def purge_expired_signing_secrets(self, now: datetime | None = None) -> int:
        now = now or self.clock.now()
        purged = 0
        for stale in await self.repo.list_with_expired_secrets(now):
            async with self.locked(stale.id) as contract:
                changed = False
                for party in Party:
                    expires = contract.column_value(party, "otp_expires_at")
                    if expires is not None and expires < now:
                        contract.set_column_value(party, "otp_hash", None)
                        contract.set_column_value(party, "otp_expires_at", None)
                        contract.set_column_value(party, "otp_attempts", 0)
                        changed = True
                token_expiry = contract.tenant_signing_token_expires_at
                if token_expiry is not None and token_expiry < now:
                    contract.tenant_signing_token_hash = None
                    contract.tenant_signing_token_expires_at = None
                    changed = True
                if changed:
                    await self.repo.commit()
                    purged += 1
        if purged:
            logger.info("Purged expired signing secrets on %s contracts", purged)
        return purged
