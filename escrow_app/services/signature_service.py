import logging
import uuid
from datetime import timedelta

from core.asyncio_threads import asyncio_run
from core.dependencies import Collaborators
from core.errors import Gone, IntegrityRejected, NotFound, StateConflict
from core.get_current_user import Actor
from core.normalizer import mask_phone
from core.settings import settings
from models.enums import Party
from models.models import Contract
from policy.contract_policy import ContractPolicy
from security.security_generate import security_generate

from .contract_service import (
    SIGNATURE_TRANSITIONS,
    ContractLifecycle,
    SignatureEvidence,
    signature_digest,
)

logger = logging.getLogger(__name__)

INVALID_OTP_MESSAGE = "Invalid or expired code."


class SignatureService:
    """OTP-gated consent for both signing paths.

    The authenticated path identifies the party from the bearer token; the
    public path identifies the tenant by possession of the signing link.
    Both share one OTP flow and end in ``ContractLifecycle.record_signature``.
    """

    def __init__(self, db, collaborators: Collaborators | None = None):
        self.lifecycle = ContractLifecycle(db, collaborators)
        self.collab = self.lifecycle.collab
        self.clock = self.lifecycle.clock
        self.repo = self.lifecycle.repo

    @staticmethod
    def _require_signable(contract: Contract, party: Party) -> None:
        if contract.has_signed(party):
            raise StateConflict("This party has already signed.", code="ALREADY_SIGNED")
        key = (contract.status, party, contract.has_signed(party.other))
        if key not in SIGNATURE_TRANSITIONS:
            raise StateConflict(
                "The contract cannot be signed in its current state.",
                code="INVALID_TRANSITION",
            )

    def _require_live_token(self, contract: Contract | None, token_hash: str) -> Contract:
        if contract is None or contract.tenant_signing_token_hash != token_hash:
            raise NotFound("This signing link is not valid.", code="SIGNING_LINK_INVALID")
        expires_at = contract.tenant_signing_token_expires_at
        if expires_at is None or self.clock.now() >= expires_at:
            raise Gone("This signing link has expired.", code="SIGNING_LINK_EXPIRED")
        if contract.has_signed(Party.TENANT):
            raise StateConflict("This party has already signed.", code="ALREADY_SIGNED")
        return contract

    async def _issue_otp(self, contract: Contract, party: Party) -> dict:
        self._require_signable(contract, party)
        code = security_generate.generate_otp()
        hashed = await asyncio_run.run_blocking(security_generate.hash_otp, code)
        ttl = timedelta(minutes=settings.OTP_TTL_MINUTES)

        contract.set_column_value(party, "otp_hash", hashed)
        contract.set_column_value(party, "otp_expires_at", self.clock.now() + ttl)
        contract.set_column_value(party, "otp_attempts", 0)
        await self.repo.commit()

        phone = contract.column_value(party, "phone")
        sent = False
        try:
            sent = await self.collab.notifier.send_otp(phone, code)
        except Exception:
            logger.exception("OTP dispatch failed for contract %s", contract.reference)
        if not sent:
            logger.warning(
                "OTP for contract %s party=%s was not delivered",
                contract.reference,
                party.value,
            )

        return {
            "sent": sent,
            "expires_in_seconds": int(ttl.total_seconds()),
            "phone_masked": mask_phone(phone),
        }

    async def _check_otp(self, contract: Contract, party: Party, code: str) -> None:
        hashed = contract.column_value(party, "otp_hash")
        expires_at = contract.column_value(party, "otp_expires_at")
        if not hashed:
            raise IntegrityRejected(INVALID_OTP_MESSAGE, code="INVALID_OTP")

        expired = expires_at is None or self.clock.now() >= expires_at
        valid = not expired and await asyncio_run.run_blocking(
            security_generate.check_otp, code, hashed
        )
        if valid:
            return

        attempts = (contract.column_value(party, "otp_attempts") or 0) + 1
        contract.set_column_value(party, "otp_attempts", attempts)
        if expired or attempts >= settings.OTP_MAX_ATTEMPTS:
            contract.set_column_value(party, "otp_hash", None)
            contract.set_column_value(party, "otp_expires_at", None)
        await self.repo.commit()
        logger.warning(
            "Rejected OTP for contract %s party=%s attempts=%s",
            contract.reference,
            party.value,
            attempts,
        )
        raise IntegrityRejected(INVALID_OTP_MESSAGE, code="INVALID_OTP")

    async def _sign(
        self,
        contract: Contract,
        party: Party,
        code: str,
        ip: str | None,
        device: str | None,
    ) -> bool:
        self._require_signable(contract, party)
        await self._check_otp(contract, party, code)

        contract.set_column_value(party, "otp_hash", None)
        contract.set_column_value(party, "otp_expires_at", None)
        contract.set_column_value(party, "otp_attempts", 0)
        evidence = SignatureEvidence(signed_at=self.clock.now(), ip=ip, device=device)
        activated = self.lifecycle.record_signature(contract, party, evidence)
        if party is Party.TENANT:
            contract.tenant_signing_token_hash = None
            contract.tenant_signing_token_expires_at = None
        await self.repo.commit()

        logger.info(
            "Contract %s signed by %s status=%s",
            contract.reference,
            party.value,
            contract.status.value,
        )
        return activated

    async def request_otp(self, contract_id: uuid.UUID, actor: Actor) -> dict:
        async with self.lifecycle.locked(contract_id) as contract:
            party = ContractPolicy.require_party(contract, actor)
            return await self._issue_otp(contract, party)

    async def verify_and_sign(
        self,
        contract_id: uuid.UUID,
        actor: Actor,
        code: str,
        ip: str | None = None,
        device: str | None = None,
    ) -> Contract:
        async with self.lifecycle.locked(contract_id) as contract:
            party = ContractPolicy.require_party(contract, actor)
            activated = await self._sign(contract, party, code, ip, device)

        self.lifecycle.after_signature(contract, party, activated)
        return contract

    async def resolve_signing_token(self, token: str) -> Contract:
        token_hash = security_generate.sha256(token or "")
        contract = await self.repo.get_by_token_hash(token_hash)
        return self._require_live_token(contract, token_hash)

    async def request_otp_by_token(self, token: str) -> dict:
        token_hash = security_generate.sha256(token or "")
        contract = await self.resolve_signing_token(token)
        async with self.lifecycle.locked(contract.id) as contract:
            self._require_live_token(contract, token_hash)
            return await self._issue_otp(contract, Party.TENANT)

    async def sign_by_token(
        self,
        token: str,
        code: str,
        ip: str | None = None,
        device: str | None = None,
    ) -> Contract:
        token_hash = security_generate.sha256(token or "")
        contract = await self.resolve_signing_token(token)
        async with self.lifecycle.locked(contract.id) as contract:
            self._require_live_token(contract, token_hash)
            activated = await self._sign(contract, Party.TENANT, code, ip, device)

        self.lifecycle.after_signature(contract, Party.TENANT, activated)
        return contract

    async def _document_verified(self, contract: Contract) -> bool | None:
        """Re-hash the stored document; ``None`` when nothing was rendered."""
        if not contract.document_ref or not contract.document_hash:
            return None
        try:
            content = await self.collab.documents.get_document_bytes(contract.document_ref)
        except (OSError, ValueError) as e:
            logger.warning(
                "Document %s of %s unreadable: %s", contract.document_ref, contract.reference, e
            )
            return False
        verified = security_generate.sha256(content) == contract.document_hash
        if not verified:
            logger.critical(
                "Document %s of %s does not match its recorded hash",
                contract.document_ref,
                contract.reference,
            )
        return verified

    async def certificate(self, contract_id: uuid.UUID, actor: Actor) -> dict:
        contract = await self.lifecycle.get(contract_id, actor)
        signatures = []
        for party in Party:
            if not contract.has_signed(party):
                continue
            stored = contract.column_value(party, "signature_hash")
            signatures.append(
                {
                    "signer_id": str(contract.column_value(party, "party_id")),
                    "role": party.value,
                    "signed_at": contract.column_value(party, "signed_at"),
                    "ip": contract.column_value(party, "signature_ip"),
                    "device": contract.column_value(party, "signature_device"),
                    "evidence_hash": stored,
                    "verified": stored == signature_digest(contract, party),
                }
            )
        return {
            "reference": contract.reference,
            "status": contract.status.value,
            "document_hash": contract.document_hash,
            "document_verified": await self._document_verified(contract),
            "seal_hash": contract.seal_hash,
            "sealed_at": contract.sealed_at,
            "signatures": signatures,
        }
