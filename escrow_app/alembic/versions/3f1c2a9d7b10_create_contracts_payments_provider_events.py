"""create contracts, payments and provider events

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-02-02 09:14:27.418305

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


TRANSACTION_TYPE = sa.Enum(
    "RESIDENTIAL_LEASE", "COMMERCIAL_LEASE", "LAND_SALE", "PROPERTY_SALE",
    name="transactiontype", native_enum=False,
)
CONTRACT_STATUS = sa.Enum(
    "DRAFT", "PENDING_TENANT_SIGNATURE", "PENDING_LANDLORD_SIGNATURE", "ACTIVE",
    "IN_NOTICE_PERIOD", "TERMINATED", "CANCELLED", "DISPUTED",
    name="contractstatus", native_enum=False,
)
PAYMENT_METHOD = sa.Enum(
    "ORANGE_MONEY", "MTN_MOMO", "BANK_TRANSFER", "CASH", "CHECK",
    name="paymentmethod", native_enum=False,
)
PAYMENT_STATUS = sa.Enum(
    "PENDING", "PROCESSING", "ESCROW", "CONFIRMED", "DISPUTED", "REFUNDED", "FAILED",
    name="paymentstatus", native_enum=False,
)
PAYMENT_KIND = sa.Enum("INITIAL", "RENT", name="paymentkind", native_enum=False)
CASH_RECEIVER = sa.Enum("LANDLORD", "PLATFORM", name="cashreceiver", native_enum=False)


def _party_columns(prefix):
    return [
        sa.Column(f"{prefix}_signed_at", sa.DateTime(), nullable=True),
        sa.Column(f"{prefix}_signature_ip", sa.String(length=64), nullable=True),
        sa.Column(f"{prefix}_signature_device", sa.String(length=255), nullable=True),
        sa.Column(f"{prefix}_signature_hash", sa.String(length=64), nullable=True),
        sa.Column(f"{prefix}_otp_hash", sa.String(length=128), nullable=True),
        sa.Column(f"{prefix}_otp_expires_at", sa.DateTime(), nullable=True),
        sa.Column(f"{prefix}_otp_attempts", sa.Integer(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "contracts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("reference", sa.String(length=32), nullable=False),
        sa.Column("listing_id", sa.Uuid(), nullable=True),
        sa.Column("landlord_id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), nullable=True),
        sa.Column("landlord_phone", sa.String(length=20), nullable=True),
        sa.Column("tenant_phone", sa.String(length=20), nullable=True),
        sa.Column("transaction_type", TRANSACTION_TYPE, nullable=False),
        sa.Column("monthly_rent", sa.Numeric(14, 2), nullable=False),
        sa.Column("deposit_months", sa.Integer(), nullable=False),
        sa.Column("advance_months", sa.Integer(), nullable=False),
        sa.Column("deposit_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("advance_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("duration_months", sa.Integer(), nullable=False),
        sa.Column("is_indefinite", sa.Boolean(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("clauses", sa.JSON(), nullable=False),
        sa.Column("special_clauses", sa.Text(), nullable=True),
        *_party_columns("landlord"),
        *_party_columns("tenant"),
        sa.Column("tenant_signing_token_hash", sa.String(length=64), nullable=True),
        sa.Column("tenant_signing_token_expires_at", sa.DateTime(), nullable=True),
        sa.Column("document_ref", sa.String(length=255), nullable=True),
        sa.Column("document_disk", sa.String(length=32), nullable=True),
        sa.Column("document_hash", sa.String(length=64), nullable=True),
        sa.Column("document_encrypted", sa.Boolean(), nullable=False),
        sa.Column("is_locked", sa.Boolean(), nullable=False),
        sa.Column("locked_at", sa.DateTime(), nullable=True),
        sa.Column("seal_hash", sa.String(length=64), nullable=True),
        sa.Column("sealed_at", sa.DateTime(), nullable=True),
        sa.Column("seal_job_token", sa.String(length=64), nullable=True),
        sa.Column("status", CONTRACT_STATUS, nullable=False),
        sa.Column("activated_at", sa.DateTime(), nullable=True),
        sa.Column("retraction_expires_at", sa.DateTime(), nullable=True),
        sa.Column("retraction_reminder_sent_at", sa.DateTime(), nullable=True),
        sa.Column("retraction_closed_at", sa.DateTime(), nullable=True),
        sa.Column("retracted_at", sa.DateTime(), nullable=True),
        sa.Column("retraction_reason", sa.Text(), nullable=True),
        sa.Column("terminated_at", sa.DateTime(), nullable=True),
        sa.Column("disputed_at", sa.DateTime(), nullable=True),
        sa.Column("termination_requested_at", sa.DateTime(), nullable=True),
        sa.Column("termination_requested_by", sa.Uuid(), nullable=True),
        sa.Column("termination_motive", sa.String(length=500), nullable=True),
        sa.Column("termination_effective_date", sa.Date(), nullable=True),
        sa.Column("notice_months", sa.Integer(), nullable=True),
        sa.Column("termination_confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("termination_confirmed_by", sa.Uuid(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_contracts_reference", "contracts", ["reference"], unique=True)
    op.create_index("ix_contracts_landlord_id", "contracts", ["landlord_id"])
    op.create_index("ix_contracts_tenant_id", "contracts", ["tenant_id"])
    op.create_index("ix_contracts_status", "contracts", ["status"])
    op.create_index(
        "ix_contracts_tenant_signing_token_hash",
        "contracts",
        ["tenant_signing_token_hash"],
        unique=True,
    )
    op.create_index("ix_contracts_listing_tenant", "contracts", ["listing_id", "tenant_id"])
    op.create_index(
        "ix_contracts_status_effective", "contracts", ["status", "termination_effective_date"]
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("reference", sa.String(length=40), nullable=False),
        sa.Column("contract_id", sa.Uuid(), nullable=False),
        sa.Column("payer_id", sa.Uuid(), nullable=False),
        sa.Column("beneficiary_id", sa.Uuid(), nullable=False),
        sa.Column("payer_phone", sa.String(length=20), nullable=True),
        sa.Column("kind", PAYMENT_KIND, nullable=False),
        sa.Column("rent_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("deposit_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("commission_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("commission_rate", sa.Numeric(6, 4), nullable=False),
        sa.Column("commission_rate_version", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=10), nullable=False),
        sa.Column("method", PAYMENT_METHOD, nullable=False),
        sa.Column("provider_txn_id", sa.String(length=255), nullable=True),
        sa.Column("redirect_url", sa.String(length=512), nullable=True),
        sa.Column("failure_reason", sa.String(length=500), nullable=True),
        sa.Column("status", PAYMENT_STATUS, nullable=False),
        sa.Column("escrow_at", sa.DateTime(), nullable=True),
        sa.Column("validated_at", sa.DateTime(), nullable=True),
        sa.Column("validated_by", sa.Uuid(), nullable=True),
        sa.Column("validation_note", sa.Text(), nullable=True),
        sa.Column("refund_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("refund_reason", sa.Text(), nullable=True),
        sa.Column("refunded_at", sa.DateTime(), nullable=True),
        sa.Column("refunded_by", sa.Uuid(), nullable=True),
        sa.Column("receipt_ref", sa.String(length=255), nullable=True),
        sa.Column("amount_received", sa.Numeric(14, 2), nullable=True),
        sa.Column("cash_received_by", CASH_RECEIVER, nullable=True),
        sa.Column("commission_collected", sa.Boolean(), nullable=False),
        sa.Column("commission_collection_note", sa.String(length=255), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["contract_id"], ["contracts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payments_reference", "payments", ["reference"], unique=True)
    op.create_index("ix_payments_contract_id", "payments", ["contract_id"])
    op.create_index("ix_payments_payer_id", "payments", ["payer_id"])
    op.create_index("ix_payments_beneficiary_id", "payments", ["beneficiary_id"])
    op.create_index("ix_payments_status", "payments", ["status"])
    op.create_index(
        "ix_payments_provider_txn_id", "payments", ["provider_txn_id"], unique=True
    )
    op.create_index(
        "ix_payments_contract_payer_status", "payments", ["contract_id", "payer_id", "status"]
    )

    op.create_table(
        "provider_events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("provider", PAYMENT_METHOD, nullable=False),
        sa.Column("external_txn_id", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("payment_id", sa.Uuid(), nullable=True),
        sa.Column("payload_digest", sa.String(length=64), nullable=False),
        sa.Column("received_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "provider", "external_txn_id", "status", name="uq_provider_event_txn_status"
        ),
    )


def downgrade():
    op.drop_table("provider_events")
    op.drop_index("ix_payments_contract_payer_status", table_name="payments")
    op.drop_index("ix_payments_provider_txn_id", table_name="payments")
    op.drop_index("ix_payments_status", table_name="payments")
    op.drop_index("ix_payments_beneficiary_id", table_name="payments")
    op.drop_index("ix_payments_payer_id", table_name="payments")
    op.drop_index("ix_payments_contract_id", table_name="payments")
    op.drop_index("ix_payments_reference", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_contracts_status_effective", table_name="contracts")
    op.drop_index("ix_contracts_listing_tenant", table_name="contracts")
    op.drop_index("ix_contracts_tenant_signing_token_hash", table_name="contracts")
    op.drop_index("ix_contracts_status", table_name="contracts")
    op.drop_index("ix_contracts_tenant_id", table_name="contracts")
    op.drop_index("ix_contracts_landlord_id", table_name="contracts")
    op.drop_index("ix_contracts_reference", table_name="contracts")
    op.drop_table("contracts")
