"""Contract lifecycle: creation, cancellation, retraction, disputes, sealing and sweeps."""

import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest

from core.errors import InvariantViolation, NotAuthorized, NotFound, StateConflict, ValidationFailed
from core.job_queue import NOTIFY_PARTY, SEAL_CONTRACT
from models.enums import ContractStatus, Party, TransactionType
from services.contract_service import ContractLifecycle, SignatureEvidence


class TestCreate:
    """Creating contracts with and without a tenant."""

    async def test_with_tenant_awaits_tenant_signature(self, issued_contract, jobs):
        issued = await issued_contract()
        contract = issued.contract

        assert contract.status == ContractStatus.PENDING_TENANT_SIGNATURE
        assert contract.reference.startswith("CTR-2026-")
        assert issued.signing_token
        assert issued.signing_link.endswith(f"/sign/{issued.signing_token}")
        assert contract.tenant_signing_token_hash != issued.signing_token
        assert contract.tenant_signing_token_expires_at == contract.created_at + timedelta(days=7)
        assert [job[1][1] for job in jobs.named(NOTIFY_PARTY)] == ["signing_link"]

    async def test_terms_snapshot(self, issued_contract):
        contract = (await issued_contract()).contract

        assert contract.deposit_amount == Decimal("2000000")
        assert contract.advance_amount == Decimal("1000000")
        assert contract.end_date == date(2027, 1, 1)
        assert contract.clauses
        assert contract.document_hash and contract.document_ref.endswith("-draft.pdf")

    async def test_without_tenant_is_draft(self, lifecycle, landlord, contract_terms):
        issued = await lifecycle.create(
            landlord, contract_terms(tenant_id=None, tenant_phone=None)
        )

        assert issued.contract.status == ContractStatus.DRAFT
        assert issued.signing_token is None
        assert issued.signing_link is None

    async def test_indefinite_lease_runs_ten_years(self, issued_contract):
        contract = (await issued_contract(is_indefinite=True, duration_months=None)).contract

        assert contract.duration_months == 120
        assert contract.end_date == date(2036, 1, 1)

    async def test_sale_has_sale_clauses(self, issued_contract):
        contract = (
            await issued_contract(
                transaction_type=TransactionType.LAND_SALE, monthly_rent=Decimal("50000000")
            )
        ).contract

        assert contract.deposit_amount == Decimal("0")
        assert any("sale price" in clause for clause in contract.clauses)

    async def test_duplicate_pending_contract_rejected(self, issued_contract):
        listing = uuid.uuid4()
        await issued_contract(listing_id=listing)

        with pytest.raises(StateConflict) as exc:
            await issued_contract(listing_id=listing)
        assert exc.value.code == "DUPLICATE_CONTRACT"

    async def test_listing_with_active_contract_rejected(
        self, active_contract, issued_contract, stranger
    ):
        contract = await active_contract()

        with pytest.raises(StateConflict) as exc:
            await issued_contract(listing_id=contract.listing_id, tenant_id=stranger.id)
        assert exc.value.code == "LISTING_ALREADY_CONTRACTED"

    async def test_landlord_cannot_be_tenant(self, lifecycle, landlord, contract_terms):
        with pytest.raises(ValidationFailed):
            await lifecycle.create(landlord, contract_terms(tenant_id=landlord.id))

    async def test_concurrent_duplicate_submission_blocked(self, collab, landlord, contract_terms):
        await collab.locks.acquire(f"contract:create:{landlord.id}", 30)

        with pytest.raises(StateConflict) as exc:
            await ContractLifecycle(None, collab).create(landlord, contract_terms())
        assert exc.value.code == "DUPLICATE_SUBMISSION"

    async def test_rendering_failure_does_not_block(self, lifecycle, collab, landlord, contract_terms):
        async def broken(contract):
            raise OSError("disk full")

        collab.documents.render_contract_document = broken
        issued = await lifecycle.create(landlord, contract_terms())

        assert issued.contract.status == ContractStatus.PENDING_TENANT_SIGNATURE
        assert issued.contract.document_hash is None


class TestAssignTenant:
    """Moving a draft to the tenant's signature."""

    async def test_assign_mints_token(self, lifecycle, landlord, tenant, contract_terms):
        draft = (await lifecycle.create(landlord, contract_terms(tenant_id=None, tenant_phone=None))).contract

        issued = await lifecycle.assign_tenant(draft.id, landlord, tenant.id, "+224621000002")

        assert issued.contract.status == ContractStatus.PENDING_TENANT_SIGNATURE
        assert issued.contract.tenant_id == tenant.id
        assert issued.signing_token

    async def test_only_from_draft(self, issued_contract, lifecycle, landlord, stranger):
        contract = (await issued_contract()).contract

        with pytest.raises(StateConflict):
            await lifecycle.assign_tenant(contract.id, landlord, stranger.id)

    async def test_tenant_cannot_assign(self, lifecycle, landlord, tenant, contract_terms):
        draft = (await lifecycle.create(landlord, contract_terms(tenant_id=None, tenant_phone=None))).contract

        with pytest.raises(NotAuthorized):
            await lifecycle.assign_tenant(draft.id, tenant, tenant.id)

    async def test_reissue_replaces_token(self, issued_contract, lifecycle, landlord, clock):
        issued = await issued_contract()
        clock.advance(days=6)

        reissued = await lifecycle.reissue_signing_link(issued.contract.id, landlord)

        assert reissued.signing_token != issued.signing_token
        assert reissued.contract.tenant_signing_token_expires_at == clock.now() + timedelta(days=7)


class TestRecordSignature:
    """Table-driven signature transitions."""

    async def test_landlord_first_keeps_tenant_pending(self, issued_contract, lifecycle, clock):
        contract = (await issued_contract()).contract
        evidence = SignatureEvidence(signed_at=clock.now(), ip="1.1.1.1", device="test")

        activated = lifecycle.record_signature(contract, Party.LANDLORD, evidence)

        assert activated is False
        assert contract.status == ContractStatus.PENDING_TENANT_SIGNATURE
        assert contract.landlord_signature_hash

    async def test_second_signature_activates(self, issued_contract, lifecycle, clock):
        contract = (await issued_contract()).contract
        evidence = SignatureEvidence(signed_at=clock.now(), ip=None, device=None)
        lifecycle.record_signature(contract, Party.LANDLORD, evidence)

        activated = lifecycle.record_signature(contract, Party.TENANT, evidence)

        assert activated is True
        assert contract.status == ContractStatus.ACTIVE
        assert contract.is_locked
        assert contract.retraction_expires_at == evidence.signed_at + timedelta(hours=48)
        assert contract.seal_job_token

    async def test_same_party_twice_rejected(self, issued_contract, lifecycle, clock):
        contract = (await issued_contract()).contract
        evidence = SignatureEvidence(signed_at=clock.now(), ip=None, device=None)
        lifecycle.record_signature(contract, Party.TENANT, evidence)

        with pytest.raises(StateConflict) as exc:
            lifecycle.record_signature(contract, Party.TENANT, evidence)
        assert exc.value.code == "ALREADY_SIGNED"

    async def test_draft_cannot_be_signed(self, lifecycle, landlord, contract_terms, clock):
        draft = (await lifecycle.create(landlord, contract_terms(tenant_id=None, tenant_phone=None))).contract
        evidence = SignatureEvidence(signed_at=clock.now(), ip=None, device=None)

        with pytest.raises(StateConflict) as exc:
            lifecycle.record_signature(draft, Party.LANDLORD, evidence)
        assert exc.value.code == "INVALID_TRANSITION"

    async def test_activation_schedules_seal(self, active_contract, jobs):
        contract = await active_contract()

        seal_jobs = jobs.named(SEAL_CONTRACT)
        assert len(seal_jobs) == 1
        assert seal_jobs[0][1] == (str(contract.id), contract.seal_job_token)
        assert seal_jobs[0][2] == 60


class TestCancel:
    """Cancellation is only possible before any signature."""

    async def test_landlord_cancels_unsigned(self, issued_contract, lifecycle, landlord, db):
        contract = (await issued_contract()).contract

        result = await lifecycle.cancel(contract.id, landlord)

        assert result["status"] == ContractStatus.CANCELLED.value
        with pytest.raises(NotFound):
            await lifecycle.get(contract.id, landlord)

    async def test_tenant_may_cancel_before_signing(self, issued_contract, lifecycle, tenant):
        contract = (await issued_contract()).contract

        result = await lifecycle.cancel(contract.id, tenant)
        assert result["reference"] == contract.reference

    async def test_cannot_cancel_after_a_signature(
        self, issued_contract, signatures, lifecycle, landlord, notifier
    ):
        contract = (await issued_contract()).contract
        await signatures.request_otp(contract.id, landlord)
        await signatures.verify_and_sign(contract.id, landlord, notifier.last_code)

        with pytest.raises(StateConflict) as exc:
            await lifecycle.cancel(contract.id, landlord)
        assert exc.value.code == "ALREADY_SIGNED"

    async def test_tenant_who_signed_is_not_authorized(
        self, issued_contract, signatures, lifecycle, tenant, notifier
    ):
        contract = (await issued_contract()).contract
        await signatures.request_otp(contract.id, tenant)
        await signatures.verify_and_sign(contract.id, tenant, notifier.last_code)

        with pytest.raises(NotAuthorized):
            await lifecycle.cancel(contract.id, tenant)

    async def test_stranger_not_authorized(self, issued_contract, lifecycle, stranger):
        contract = (await issued_contract()).contract

        with pytest.raises(NotAuthorized):
            await lifecycle.cancel(contract.id, stranger)

    async def test_admin_cancels(self, issued_contract, lifecycle, admin):
        contract = (await issued_contract()).contract

        result = await lifecycle.cancel(contract.id, admin)
        assert result["status"] == ContractStatus.CANCELLED.value


class TestRetraction:
    """The 48 hour window after the second signature."""

    async def test_retract_just_before_window_closes(self, active_contract, lifecycle, tenant, clock, jobs):
        contract = await active_contract()
        clock.set(contract.activated_at + timedelta(hours=47, minutes=59))

        retracted = await lifecycle.retract(contract.id, tenant, "Changed my mind")

        assert retracted.status == ContractStatus.TERMINATED
        assert retracted.retraction_reason == "Changed my mind"
        assert retracted.seal_job_token is None
        kinds = [job[1][1] for job in jobs.named(NOTIFY_PARTY)]
        assert kinds.count("contract_retracted") == 2

    async def test_retract_after_window_fails(self, active_contract, lifecycle, tenant, clock):
        contract = await active_contract()
        clock.set(contract.activated_at + timedelta(hours=48, minutes=1))

        with pytest.raises(StateConflict) as exc:
            await lifecycle.retract(contract.id, tenant, "Too late")
        assert exc.value.code == "RETRACTION_WINDOW_CLOSED"

    async def test_retract_exactly_at_expiry_fails(self, active_contract, lifecycle, landlord, clock):
        contract = await active_contract()
        clock.set(contract.retraction_expires_at)

        with pytest.raises(StateConflict):
            await lifecycle.retract(contract.id, landlord, "Boundary")

    async def test_reason_required(self, active_contract, lifecycle, tenant):
        contract = await active_contract()

        with pytest.raises(ValidationFailed):
            await lifecycle.retract(contract.id, tenant, "   ")

    async def test_retraction_status(self, active_contract, lifecycle, tenant, clock):
        contract = await active_contract()
        clock.advance(hours=47)

        status = await lifecycle.retraction_status(contract.id, tenant)

        assert status["can_retract"] is True
        assert status["seconds_remaining"] == 3600

    async def test_retracted_contract_is_never_sealed(self, active_contract, lifecycle, tenant):
        contract = await active_contract()
        token = contract.seal_job_token
        await lifecycle.retract(contract.id, tenant, "No longer needed")

        assert await lifecycle.seal(contract.id, token) is False


class TestRetractionWindowJob:
    """Scheduled closing of retraction windows and the reminder before it."""

    async def test_open_window_left_alone(self, active_contract, lifecycle, clock):
        await active_contract()
        clock.advance(hours=10)

        assert await lifecycle.close_retraction_windows() == {"closed": [], "reminded": []}

    async def test_reminder_before_close(self, active_contract, lifecycle, clock, jobs):
        contract = await active_contract()
        clock.advance(hours=43)

        result = await lifecycle.close_retraction_windows()

        assert result == {"closed": [], "reminded": [contract.reference]}
        reminders = [job[1] for job in jobs.named(NOTIFY_PARTY) if job[1][1] == "retraction_window_closing"]
        assert {payload["party"] for _, _, payload in reminders} == {"landlord", "tenant"}
        assert reminders[0][2]["hours_remaining"] == "5"
        again = await lifecycle.close_retraction_windows()
        assert again["reminded"] == []

    async def test_elapsed_window_stamped_and_notified(self, active_contract, lifecycle, tenant, clock, jobs):
        contract = await active_contract()
        clock.advance(hours=48, minutes=5)

        result = await lifecycle.close_retraction_windows()

        assert result["closed"] == [contract.reference]
        stored = await lifecycle.get(contract.id, tenant)
        assert stored.retraction_closed_at == clock.now()
        assert stored.status == ContractStatus.ACTIVE
        kinds = [job[1][1] for job in jobs.named(NOTIFY_PARTY)]
        assert kinds.count("retraction_window_closed") == 2
        status = await lifecycle.retraction_status(contract.id, tenant)
        assert status["closed_at"] == clock.now()
        assert status["can_retract"] is False

    async def test_closing_is_idempotent(self, active_contract, lifecycle, clock, jobs):
        await active_contract()
        clock.advance(days=3)
        await lifecycle.close_retraction_windows()

        assert (await lifecycle.close_retraction_windows())["closed"] == []
        kinds = [job[1][1] for job in jobs.named(NOTIFY_PARTY)]
        assert kinds.count("retraction_window_closed") == 2

    async def test_retracted_contract_not_closed(self, active_contract, lifecycle, tenant, clock):
        contract = await active_contract()
        await lifecycle.retract(contract.id, tenant, "Changed my mind")
        clock.advance(days=3)

        assert (await lifecycle.close_retraction_windows())["closed"] == []


class TestSeal:
    """The delayed sealing job."""

    async def test_seal_stores_hash(self, active_contract, lifecycle, clock):
        contract = await active_contract()
        clock.advance(seconds=60)

        assert await lifecycle.seal(contract.id, contract.seal_job_token) is True

        sealed = await lifecycle._load(contract.id)
        assert sealed.seal_hash
        assert sealed.sealed_at == clock.now()
        assert sealed.document_ref.endswith("-sealed.pdf")
        assert sealed.seal_job_token is None

    async def test_stale_token_skipped(self, active_contract, lifecycle):
        contract = await active_contract()

        assert await lifecycle.seal(contract.id, "not-the-token") is False

    async def test_missing_contract_skipped(self, lifecycle):
        assert await lifecycle.seal(uuid.uuid4(), "token") is False


class TestLockedTerms:
    """Term columns are frozen once both parties signed."""

    async def test_changing_rent_on_locked_contract_fails_loudly(self, active_contract, lifecycle, db):
        contract = await active_contract()
        locked = await lifecycle._load(contract.id)
        locked.monthly_rent = Decimal("1")

        with pytest.raises(InvariantViolation):
            await db.commit()
        await db.rollback()


class TestDispute:
    """Escalation of a signed contract."""

    async def test_party_escalates(self, active_contract, lifecycle, tenant, jobs):
        contract = await active_contract()

        disputed = await lifecycle.escalate_dispute(contract.id, tenant, "Water damage")

        assert disputed.status == ContractStatus.DISPUTED
        assert disputed.disputed_at is not None
        assert [job[1][1] for job in jobs.named(NOTIFY_PARTY)][-1] == "contract_disputed"

    async def test_pending_contract_cannot_be_disputed(self, issued_contract, lifecycle, tenant):
        contract = (await issued_contract()).contract

        with pytest.raises(StateConflict):
            await lifecycle.escalate_dispute(contract.id, tenant, "Nothing signed yet")


class TestReads:
    """Attribute-based read access."""

    async def test_stranger_cannot_read(self, issued_contract, lifecycle, stranger):
        contract = (await issued_contract()).contract

        with pytest.raises(NotAuthorized):
            await lifecycle.get(contract.id, stranger)

    async def test_admin_can_read(self, issued_contract, lifecycle, admin):
        contract = (await issued_contract()).contract

        assert (await lifecycle.get(contract.id, admin)).id == contract.id


class TestPurgeSecrets:
    """Expired OTP hashes and signing tokens are nulled by the hourly job."""

    async def test_purge(self, issued_contract, signatures, lifecycle, tenant, clock):
        contract = (await issued_contract()).contract
        await signatures.request_otp(contract.id, tenant)
        clock.advance(days=8)

        assert await lifecycle.purge_expired_signing_secrets() == 1

        purged = await lifecycle._load(contract.id)
        assert purged.tenant_otp_hash is None
        assert purged.tenant_signing_token_hash is None
