from enum import Enum


class UserRole(str, Enum):
    TENANT = "Tenant"
    LANDLORD = "Landlord"
    ADMIN = "Admin"


class Party(str, Enum):
    LANDLORD = "Landlord"
    TENANT = "Tenant"

    @property
    def other(self) -> "Party":
        return Party.TENANT if self is Party.LANDLORD else Party.LANDLORD


class TransactionType(str, Enum):
    RESIDENTIAL_LEASE = "Residential_Lease"
    COMMERCIAL_LEASE = "Commercial_Lease"
    LAND_SALE = "Land_Sale"
    PROPERTY_SALE = "Property_Sale"

    @property
    def is_lease(self) -> bool:
        return self in {TransactionType.RESIDENTIAL_LEASE, TransactionType.COMMERCIAL_LEASE}


class ContractStatus(str, Enum):
    DRAFT = "Draft"
    PENDING_TENANT_SIGNATURE = "Pending_Tenant_Signature"
    PENDING_LANDLORD_SIGNATURE = "Pending_Landlord_Signature"
    ACTIVE = "Active"
    IN_NOTICE_PERIOD = "In_Notice_Period"
    TERMINATED = "Terminated"
    CANCELLED = "Cancelled"
    DISPUTED = "Disputed"


PENDING_SIGNATURE_STATUSES = frozenset(
    {
        ContractStatus.PENDING_TENANT_SIGNATURE,
        ContractStatus.PENDING_LANDLORD_SIGNATURE,
    }
)

PAYABLE_CONTRACT_STATUSES = frozenset(
    {ContractStatus.ACTIVE, ContractStatus.IN_NOTICE_PERIOD}
)


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    ESCROW = "Escrow"
    CONFIRMED = "Confirmed"
    DISPUTED = "Disputed"
    REFUNDED = "Refunded"
    FAILED = "Failed"


UNRESOLVED_PAYMENT_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.PROCESSING})
REFUNDABLE_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.ESCROW, PaymentStatus.CONFIRMED, PaymentStatus.DISPUTED}
)


class PaymentMethod(str, Enum):
    ORANGE_MONEY = "Orange_Money"
    MTN_MOMO = "MTN_MoMo"
    BANK_TRANSFER = "Bank_Transfer"
    CASH = "Cash"
    CHECK = "Check"

    @property
    def is_provider_backed(self) -> bool:
        return self in {PaymentMethod.ORANGE_MONEY, PaymentMethod.MTN_MOMO}


class PaymentKind(str, Enum):
    INITIAL = "Initial"
    RENT = "Rent"


class CashReceiver(str, Enum):
    LANDLORD = "Landlord"
    PLATFORM = "Platform"


class ProviderOutcome(str, Enum):
    SUCCESS = "Success"
    FAILED = "Failed"
    PENDING = "Pending"


class IngestResult(str, Enum):
    APPLIED = "Applied"
    DUPLICATE = "Duplicate"
    IGNORED = "Ignored"
