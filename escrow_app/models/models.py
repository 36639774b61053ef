import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.clock import system_clock
from core.errors import InvariantViolation
from core.get_db import Base

from .enums import (
    CashReceiver,
    ContractStatus,
    Party,
    PaymentKind,
    PaymentMethod,
    PaymentStatus,
    TransactionType,
)


@dataclass(frozen=True)
class PartyColumns:
    party_id: str
    phone: str
    signed_at: str
    signature_ip: str
    signature_device: str
    signature_hash: str
    otp_hash: str
    otp_expires_at: str
    otp_attempts: str


PARTY_COLUMNS = {
    party: PartyColumns(
        party_id=f"{prefix}_id",
        phone=f"{prefix}_phone",
        signed_at=f"{prefix}_signed_at",
        signature_ip=f"{prefix}_signature_ip",
        signature_device=f"{prefix}_signature_device",
        signature_hash=f"{prefix}_signature_hash",
        otp_hash=f"{prefix}_otp_hash",
        otp_expires_at=f"{prefix}_otp_expires_at",
        otp_attempts=f"{prefix}_otp_attempts",
    )
    for party, prefix in ((Party.LANDLORD, "landlord"), (Party.TENANT, "tenant"))
}

# Columns frozen once a contract is locked.
TERM_COLUMNS = (
    "landlord_id",
    "tenant_id",
    "listing_id",
    "transaction_type",
    "monthly_rent",
    "deposit_months",
    "advance_months",
    "deposit_amount",
    "advance_amount",
    "duration_months",
    "is_indefinite",
    "start_date",
    "end_date",
    "clauses",
    "special_clauses",
)


class Contract(Base):
    __tablename__ = "contracts"
    __table_args__ = (
        Index("ix_contracts_listing_tenant", "listing_id", "tenant_id"),
        Index("ix_contracts_status_effective", "status", "termination_effective_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reference: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    listing_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    landlord_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    tenant_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    landlord_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    tenant_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    transaction_type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, native_enum=False)
    )
    monthly_rent: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    deposit_months: Mapped[int] = mapped_column(Integer, default=2)
    advance_months: Mapped[int] = mapped_column(Integer, default=1)
    deposit_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    advance_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    duration_months: Mapped[int] = mapped_column(Integer)
    is_indefinite: Mapped[bool] = mapped_column(Boolean, default=False)
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date] = mapped_column(Date)
    clauses: Mapped[list] = mapped_column(JSON, default=list)
    special_clauses: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    landlord_signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    landlord_signature_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    landlord_signature_device: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    landlord_signature_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    landlord_otp_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    landlord_otp_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    landlord_otp_attempts: Mapped[int] = mapped_column(Integer, default=0)

    tenant_signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    tenant_signature_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    tenant_signature_device: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    tenant_signature_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    tenant_otp_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    tenant_otp_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    tenant_otp_attempts: Mapped[int] = mapped_column(Integer, default=0)

    tenant_signing_token_hash: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, unique=True, index=True
    )
    tenant_signing_token_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )

    document_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    document_disk: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    document_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    document_encrypted: Mapped[bool] = mapped_column(Boolean, default=False)
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False)
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    seal_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    sealed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    seal_job_token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    status: Mapped[ContractStatus] = mapped_column(
        Enum(ContractStatus, native_enum=False), default=ContractStatus.DRAFT, index=True
    )
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    retraction_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    retraction_reminder_sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    retraction_closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    retracted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    retraction_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    terminated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    disputed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    termination_requested_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    termination_requested_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    termination_motive: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    termination_effective_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    notice_months: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    termination_confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    termination_confirmed_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=system_clock.now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=system_clock.now, onupdate=system_clock.now
    )

    payments = relationship("Payment", back_populates="contract", lazy="noload")

    __mapper_args__ = {"version_id_col": version_id}

    def column_value(self, party: Party, field: str):
        return getattr(self, getattr(PARTY_COLUMNS[party], field))

    def set_column_value(self, party: Party, field: str, value) -> None:
        setattr(self, getattr(PARTY_COLUMNS[party], field), value)

    def party_of(self, user_id: uuid.UUID) -> Party | None:
        if user_id == self.landlord_id:
            return Party.LANDLORD
        if self.tenant_id is not None and user_id == self.tenant_id:
            return Party.TENANT
        return None

    def has_signed(self, party: Party) -> bool:
        return self.column_value(party, "signed_at") is not None

    @property
    def signature_count(self) -> int:
        return sum(1 for party in Party if self.has_signed(party))

    @property
    def is_fully_signed(self) -> bool:
        return self.signature_count == 2

    @property
    def has_pending_termination(self) -> bool:
        return (
            self.termination_requested_at is not None
            and self.status == ContractStatus.IN_NOTICE_PERIOD
        )

    def check_active_invariant(self) -> None:
        if self.status == ContractStatus.ACTIVE and not self.is_fully_signed:
            raise InvariantViolation(
                f"Contract {self.id} is ACTIVE without both signature timestamps"
            )


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_contract_payer_status", "contract_id", "payer_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reference: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contracts.id"), index=True
    )
    payer_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    beneficiary_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    payer_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    kind: Mapped[PaymentKind] = mapped_column(
        Enum(PaymentKind, native_enum=False), default=PaymentKind.INITIAL
    )
    rent_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    deposit_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    commission_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4))
    commission_rate_version: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(10))

    method: Mapped[PaymentMethod] = mapped_column(Enum(PaymentMethod, native_enum=False))
    provider_txn_id: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, index=True, nullable=True
    )
    redirect_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, native_enum=False), default=PaymentStatus.PENDING, index=True
    )
    escrow_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    validated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    validated_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    validation_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    refund_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    refunded_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    receipt_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    amount_received: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    cash_received_by: Mapped[Optional[CashReceiver]] = mapped_column(
        Enum(CashReceiver, native_enum=False), nullable=True
    )
    commission_collected: Mapped[bool] = mapped_column(Boolean, default=False)
    commission_collection_note: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=system_clock.now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=system_clock.now, onupdate=system_clock.now
    )

    contract = relationship("Contract", back_populates="payments", lazy="noload")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_undispatched(self) -> bool:
        """Created locally but never accepted by the provider."""
        return (
            self.status == PaymentStatus.PENDING
            and self.provider_txn_id is None
            and self.failure_reason is not None
        )

    @property
    def refundable_cap(self) -> Decimal:
        return Decimal(self.total_amount) - Decimal(self.commission_amount)

    def check_amounts(self) -> None:
        expected = (
            Decimal(self.rent_amount)
            + Decimal(self.deposit_amount)
            + Decimal(self.commission_amount)
        )
        if Decimal(self.total_amount) != expected:
            raise InvariantViolation(
                f"Payment {self.reference} total {self.total_amount} does not match "
                f"line items {expected}"
            )
        if self.refund_amount is not None and Decimal(self.refund_amount) > self.refundable_cap:
            raise InvariantViolation(
                f"Payment {self.reference} refund {self.refund_amount} exceeds "
                f"refundable cap {self.refundable_cap}"
            )


class ProviderEvent(Base):
    __tablename__ = "provider_events"
    __table_args__ = (
        UniqueConstraint(
            "provider", "external_txn_id", "status", name="uq_provider_event_txn_status"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider: Mapped[PaymentMethod] = mapped_column(Enum(PaymentMethod, native_enum=False))
    external_txn_id: Mapped[str] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(32))
    payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    payload_digest: Mapped[str] = mapped_column(String(64))
    received_at: Mapped[datetime] = mapped_column(DateTime, default=system_clock.now)
