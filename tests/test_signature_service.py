"""OTP-gated signing on the authenticated and public link paths."""

import asyncio
from datetime import timedelta

import pytest

from core.errors import Gone, IntegrityRejected, NotAuthorized, NotFound, StateConflict
from core.job_queue import NOTIFY_PARTY
from models.enums import ContractStatus
from services.signature_service import SignatureService


class TestOtpRequest:
    """Issuing one-time codes to a signing party."""

    async def test_code_sent_to_party_phone(self, issued_contract, signatures, tenant, notifier):
        contract = (await issued_contract()).contract

        result = await signatures.request_otp(contract.id, tenant)

        assert result == {
            "sent": True,
            "expires_in_seconds": 600,
            "phone_masked": "224621****02",
        }
        phone, code = notifier.codes[-1]
        assert phone == "+224621000002"
        assert len(code) == 6 and code.isdigit()
        assert contract.tenant_otp_hash and contract.tenant_otp_hash != code

    async def test_dispatch_failure_keeps_code(self, issued_contract, signatures, tenant, notifier):
        contract = (await issued_contract()).contract
        notifier.fail = True

        result = await signatures.request_otp(contract.id, tenant)

        assert result["sent"] is False
        assert contract.tenant_otp_hash is not None

    async def test_stranger_rejected(self, issued_contract, signatures, stranger):
        contract = (await issued_contract()).contract

        with pytest.raises(NotAuthorized):
            await signatures.request_otp(contract.id, stranger)

    async def test_admin_cannot_sign_on_behalf(self, issued_contract, signatures, admin):
        contract = (await issued_contract()).contract

        with pytest.raises(NotAuthorized):
            await signatures.request_otp(contract.id, admin)

    async def test_signed_party_gets_no_new_code(self, active_contract, signatures, tenant):
        contract = await active_contract()

        with pytest.raises(StateConflict) as exc:
            await signatures.request_otp(contract.id, tenant)
        assert exc.value.code == "ALREADY_SIGNED"


class TestVerifyAndSign:
    """Consuming a code to record a signature."""

    async def test_tenant_signs_first(self, issued_contract, signatures, tenant, notifier, jobs):
        contract = (await issued_contract()).contract
        await signatures.request_otp(contract.id, tenant)

        signed = await signatures.verify_and_sign(
            contract.id, tenant, notifier.last_code, ip="10.0.0.2", device="Firefox"
        )

        assert signed.status == ContractStatus.PENDING_LANDLORD_SIGNATURE
        assert signed.tenant_signature_ip == "10.0.0.2"
        assert signed.tenant_signature_device == "Firefox"
        assert signed.tenant_otp_hash is None
        assert signed.tenant_signing_token_hash is None
        last = jobs.named(NOTIFY_PARTY)[-1][1]
        assert last[1] == "contract_signed"
        assert last[2]["party"] == "landlord"
        assert last[2]["signer"] == "tenant"

    async def test_both_signatures_activate(self, active_contract, clock):
        contract = await active_contract()

        assert contract.status == ContractStatus.ACTIVE
        assert contract.is_locked
        assert contract.activated_at == clock.now()
        assert contract.retraction_expires_at == clock.now() + timedelta(hours=48)

    async def test_wrong_code_counts_attempts(self, issued_contract, signatures, tenant, notifier):
        contract = (await issued_contract()).contract
        await signatures.request_otp(contract.id, tenant)
        wrong = "000000" if notifier.last_code != "000000" else "111111"

        with pytest.raises(IntegrityRejected) as exc:
            await signatures.verify_and_sign(contract.id, tenant, wrong)

        assert exc.value.code == "INVALID_OTP"
        assert contract.tenant_otp_attempts == 1
        assert contract.tenant_otp_hash is not None

    async def test_code_invalidated_after_max_attempts(
        self, issued_contract, signatures, tenant, notifier
    ):
        contract = (await issued_contract()).contract
        contract_id = contract.id
        await signatures.request_otp(contract_id, tenant)
        good = notifier.last_code
        wrong = "000000" if good != "000000" else "111111"

        for _ in range(3):
            with pytest.raises(IntegrityRejected):
                await signatures.verify_and_sign(contract_id, tenant, wrong)

        assert contract.tenant_otp_hash is None
        with pytest.raises(IntegrityRejected):
            await signatures.verify_and_sign(contract_id, tenant, good)
        reloaded = await signatures.lifecycle._load(contract_id)
        assert reloaded.tenant_signed_at is None

    async def test_expired_code_rejected(self, issued_contract, signatures, tenant, notifier, clock):
        contract = (await issued_contract()).contract
        await signatures.request_otp(contract.id, tenant)
        clock.advance(minutes=10)

        with pytest.raises(IntegrityRejected):
            await signatures.verify_and_sign(contract.id, tenant, notifier.last_code)
        assert contract.tenant_otp_hash is None

    async def test_without_requested_code(self, issued_contract, signatures, landlord):
        contract = (await issued_contract()).contract

        with pytest.raises(IntegrityRejected):
            await signatures.verify_and_sign(contract.id, landlord, "123456")

    async def test_new_code_resets_attempts(self, issued_contract, signatures, tenant, notifier):
        contract = (await issued_contract()).contract
        await signatures.request_otp(contract.id, tenant)
        wrong = "000000" if notifier.last_code != "000000" else "111111"
        with pytest.raises(IntegrityRejected):
            await signatures.verify_and_sign(contract.id, tenant, wrong)

        await signatures.request_otp(contract.id, tenant)
        signed = await signatures.verify_and_sign(contract.id, tenant, notifier.last_code)

        assert signed.tenant_signed_at is not None
        assert signed.tenant_otp_attempts == 0


class TestSigningLink:
    """The tenant's public path, authenticated by the link token."""

    async def test_resolve_live_token(self, issued_contract, signatures):
        issued = await issued_contract()

        contract = await signatures.resolve_signing_token(issued.signing_token)

        assert contract.id == issued.contract.id

    async def test_unknown_token(self, issued_contract, signatures):
        await issued_contract()

        with pytest.raises(NotFound) as exc:
            await signatures.resolve_signing_token("not-a-real-token")
        assert exc.value.code == "SIGNING_LINK_INVALID"

    async def test_expired_token(self, issued_contract, signatures, clock):
        issued = await issued_contract()
        clock.advance(days=7)

        with pytest.raises(Gone) as exc:
            await signatures.resolve_signing_token(issued.signing_token)
        assert exc.value.code == "SIGNING_LINK_EXPIRED"

    async def test_reissued_link_invalidates_old(self, issued_contract, signatures, lifecycle, landlord):
        issued = await issued_contract()
        await lifecycle.reissue_signing_link(issued.contract.id, landlord)

        with pytest.raises(NotFound):
            await signatures.resolve_signing_token(issued.signing_token)

    async def test_token_then_authenticated_activates(
        self, issued_contract, signatures, landlord, notifier, clock
    ):
        issued = await issued_contract()
        await signatures.request_otp_by_token(issued.signing_token)
        tenant_signed = await signatures.sign_by_token(
            issued.signing_token, notifier.last_code, ip="10.0.0.9", device="Safari"
        )
        assert tenant_signed.status == ContractStatus.PENDING_LANDLORD_SIGNATURE

        clock.advance(hours=3)
        await signatures.request_otp(issued.contract.id, landlord)
        contract = await signatures.verify_and_sign(issued.contract.id, landlord, notifier.last_code)

        assert contract.status == ContractStatus.ACTIVE
        assert contract.landlord_signed_at == clock.now()
        assert contract.retraction_expires_at == clock.now() + timedelta(hours=48)

    async def test_token_is_single_use(self, issued_contract, signatures, notifier):
        issued = await issued_contract()
        await signatures.request_otp_by_token(issued.signing_token)
        await signatures.sign_by_token(issued.signing_token, notifier.last_code)

        with pytest.raises(NotFound):
            await signatures.request_otp_by_token(issued.signing_token)


class TestConcurrentSigning:
    """Signatures arriving at the same time through separate sessions."""

    async def test_both_parties_at_once(
        self, issued_contract, session_factory, collab, landlord, tenant, notifier
    ):
        contract_id = (await issued_contract()).contract.id

        async with session_factory() as tenant_db, session_factory() as landlord_db:
            tenant_side = SignatureService(tenant_db, collab)
            landlord_side = SignatureService(landlord_db, collab)
            await tenant_side.request_otp(contract_id, tenant)
            tenant_code = notifier.last_code
            await landlord_side.request_otp(contract_id, landlord)
            landlord_code = notifier.last_code

            results = await asyncio.gather(
                tenant_side.verify_and_sign(contract_id, tenant, tenant_code),
                landlord_side.verify_and_sign(contract_id, landlord, landlord_code),
                return_exceptions=True,
            )

        assert not [r for r in results if isinstance(r, Exception)]
        statuses = {r.status for r in results}
        assert ContractStatus.ACTIVE in statuses

    async def test_same_party_twice(
        self, issued_contract, session_factory, collab, tenant, notifier
    ):
        contract_id = (await issued_contract()).contract.id

        async with session_factory() as first_db, session_factory() as second_db:
            first = SignatureService(first_db, collab)
            second = SignatureService(second_db, collab)
            await first.request_otp(contract_id, tenant)
            code = notifier.last_code

            results = await asyncio.gather(
                first.verify_and_sign(contract_id, tenant, code),
                second.verify_and_sign(contract_id, tenant, code),
                return_exceptions=True,
            )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], StateConflict)
        assert failures[0].code == "ALREADY_SIGNED"


class TestCertificate:
    """Evidence report built from the stored signature hashes."""

    async def test_signatures_verify_after_seal(self, active_contract, signatures, lifecycle, tenant):
        contract = await active_contract()
        await lifecycle.seal(contract.id, contract.seal_job_token)

        report = await signatures.certificate(contract.id, tenant)

        assert report["seal_hash"]
        assert {s["role"] for s in report["signatures"]} == {"Landlord", "Tenant"}
        assert all(s["verified"] for s in report["signatures"])
        ips = {s["role"]: s["ip"] for s in report["signatures"]}
        assert ips == {"Landlord": "10.0.0.1", "Tenant": "10.0.0.2"}

    async def test_tampered_evidence_fails_verification(
        self, active_contract, signatures, lifecycle, db, tenant
    ):
        contract = await active_contract()
        stored = await lifecycle._load(contract.id)
        stored.tenant_signature_ip = "192.168.1.1"
        await db.commit()

        report = await signatures.certificate(contract.id, tenant)

        by_role = {s["role"]: s["verified"] for s in report["signatures"]}
        assert by_role == {"Landlord": True, "Tenant": False}

    async def test_sealed_document_matches_hash(self, active_contract, signatures, lifecycle, tenant):
        contract = await active_contract()
        await lifecycle.seal(contract.id, contract.seal_job_token)

        report = await signatures.certificate(contract.id, tenant)

        assert report["document_verified"] is True

    async def test_document_altered_on_disk(
        self, active_contract, signatures, lifecycle, collab, tenant
    ):
        contract = await active_contract()
        await lifecycle.seal(contract.id, contract.seal_job_token)
        sealed = await lifecycle._load(contract.id)
        stored_file = collab.documents.root / sealed.document_ref
        stored_file.write_bytes(stored_file.read_bytes() + b"\n% amended rent")

        report = await signatures.certificate(contract.id, tenant)

        assert report["document_verified"] is False
        assert report["document_hash"] == sealed.document_hash

    async def test_missing_document_not_verified(
        self, active_contract, signatures, lifecycle, collab, tenant
    ):
        contract = await active_contract()
        sealed = await lifecycle._load(contract.id)
        (collab.documents.root / sealed.document_ref).unlink()

        report = await signatures.certificate(contract.id, tenant)

        assert report["document_verified"] is False

    async def test_unsigned_contract_has_no_signatures(self, issued_contract, signatures, landlord):
        contract = (await issued_contract()).contract

        report = await signatures.certificate(contract.id, landlord)
        assert report["signatures"] == []
        assert report["seal_hash"] is None
