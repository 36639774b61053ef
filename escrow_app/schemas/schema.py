from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

import phonenumbers
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models.enums import (
    CashReceiver,
    ContractStatus,
    PaymentKind,
    PaymentMethod,
    PaymentStatus,
    TransactionType,
)


def _validate_phone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    try:
        parsed = phonenumbers.parse(value, "GN")
    except phonenumbers.NumberParseException:
        raise ValueError("Invalid phone number format. Use e.g. +224621000000")
    if not phonenumbers.is_valid_number(parsed):
        raise ValueError("Invalid phone number. Use full international format.")
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


class ContractCreate(BaseModel):
    listing_id: Optional[uuid.UUID] = None
    transaction_type: TransactionType = TransactionType.RESIDENTIAL_LEASE
    monthly_rent: Decimal = Field(..., gt=0)
    deposit_months: int = Field(2, ge=0, le=12)
    advance_months: int = Field(1, ge=0, le=12)
    duration_months: Optional[int] = Field(None, ge=1, le=1200)
    is_indefinite: bool = False
    start_date: date
    tenant_id: Optional[uuid.UUID] = None
    tenant_phone: Optional[str] = None
    landlord_phone: Optional[str] = None
    special_clauses: Optional[str] = Field(None, max_length=5000)

    @field_validator("tenant_phone", "landlord_phone")
    @classmethod
    def validate_phone(cls, value: Optional[str]):
        return _validate_phone(value)

    @model_validator(mode="after")
    def check_duration(self):
        if not self.is_indefinite and self.duration_months is None:
            raise ValueError("duration_months is required unless the lease is indefinite")
        if self.tenant_id is None and self.tenant_phone:
            raise ValueError("tenant_phone requires tenant_id")
        return self


class TenantAssign(BaseModel):
    tenant_id: uuid.UUID
    tenant_phone: Optional[str] = None

    @field_validator("tenant_phone")
    @classmethod
    def validate_phone(cls, value: Optional[str]):
        return _validate_phone(value)


class SignRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=6, pattern=r"^\d{6}$")
    device_info: Optional[str] = Field(None, max_length=1000)


class ReasonRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=500)


class TerminationRequest(BaseModel):
    motive: str = Field(..., min_length=3, max_length=500)
    notice_months: int = Field(3, ge=1, le=24)


class ContractOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    reference: str
    status: ContractStatus
    listing_id: Optional[uuid.UUID] = None
    landlord_id: uuid.UUID
    tenant_id: Optional[uuid.UUID] = None
    transaction_type: TransactionType
    monthly_rent: Decimal
    deposit_amount: Decimal
    advance_amount: Decimal
    duration_months: int
    is_indefinite: bool
    start_date: date
    end_date: date
    clauses: List[str] = []
    special_clauses: Optional[str] = None
    landlord_signed_at: Optional[datetime] = None
    tenant_signed_at: Optional[datetime] = None
    document_hash: Optional[str] = None
    is_locked: bool
    locked_at: Optional[datetime] = None
    seal_hash: Optional[str] = None
    activated_at: Optional[datetime] = None
    retraction_expires_at: Optional[datetime] = None
    retraction_reason: Optional[str] = None
    termination_effective_date: Optional[date] = None
    terminated_at: Optional[datetime] = None
    created_at: datetime


class ContractIssuedOut(BaseModel):
    contract: ContractOut
    signing_link: Optional[str] = None


class OtpRequestOut(BaseModel):
    sent: bool
    expires_in_seconds: int
    phone_masked: Optional[str] = None


class PaymentInitiate(BaseModel):
    contract_id: uuid.UUID
    method: PaymentMethod
    kind: PaymentKind = PaymentKind.INITIAL
    payer_phone: Optional[str] = None

    @field_validator("payer_phone")
    @classmethod
    def validate_phone(cls, value: Optional[str]):
        return _validate_phone(value)


class LandlordValidation(BaseModel):
    approve: bool
    note: Optional[str] = Field(None, max_length=1000)


class RefundRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=500)
    amount: Optional[Decimal] = Field(None, gt=0)


class CashSettlement(BaseModel):
    contract_id: uuid.UUID
    amount_received: Decimal = Field(..., gt=0)
    received_by: CashReceiver
    method: PaymentMethod = PaymentMethod.CASH
    kind: PaymentKind = PaymentKind.INITIAL
    note: Optional[str] = Field(None, max_length=1000)

    @field_validator("method")
    @classmethod
    def manual_only(cls, value: PaymentMethod):
        if value.is_provider_backed:
            raise ValueError("Cash settlements only accept cash, bank transfer or check")
        return value


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    reference: str
    contract_id: uuid.UUID
    payer_id: uuid.UUID
    beneficiary_id: uuid.UUID
    kind: PaymentKind
    method: PaymentMethod
    status: PaymentStatus
    rent_amount: Decimal
    deposit_amount: Decimal
    commission_amount: Decimal
    total_amount: Decimal
    commission_rate: Decimal
    commission_rate_version: int
    currency: str
    provider_txn_id: Optional[str] = None
    redirect_url: Optional[str] = None
    escrow_at: Optional[datetime] = None
    validated_at: Optional[datetime] = None
    validation_note: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    refund_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None
    receipt_ref: Optional[str] = None
    amount_received: Optional[Decimal] = None
    cash_received_by: Optional[CashReceiver] = None
    commission_collected: bool
    commission_collection_note: Optional[str] = None
    created_at: datetime
