"""Platform fee breakdowns.

Amounts are whole currency units (GNF has no minor unit) quantized with
ROUND_HALF_EVEN, so 500000.5 becomes 500000 and 500001.5 becomes 500002.
Rates live in immutable, versioned tables; a payment stores the version it was
priced with so that it can be re-displayed after rates change.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from types import MappingProxyType
from typing import Mapping

from core.errors import ValidationFailed
from models.enums import TransactionType

UNIT = Decimal("1")


def round_amount(value: Decimal) -> Decimal:
    return Decimal(value).quantize(UNIT, rounding=ROUND_HALF_EVEN)


@dataclass(frozen=True)
class RateTable:
    version: int
    effective_from: date
    rates: Mapping[TransactionType, Decimal]
    minimum_commission: Decimal

    def rate_for(self, transaction_type: TransactionType) -> Decimal:
        return self.rates[transaction_type]


@dataclass(frozen=True)
class LineItem:
    label: str
    amount: Decimal


@dataclass(frozen=True)
class Breakdown:
    transaction_type: TransactionType
    base_amount: Decimal
    deposit_amount: Decimal
    advance_amount: Decimal
    commission_amount: Decimal
    total_amount: Decimal
    commission_rate: Decimal
    rate_version: int
    line_items: tuple[LineItem, ...] = field(default_factory=tuple)

    @property
    def landlord_share(self) -> Decimal:
        return self.total_amount - self.commission_amount

    @property
    def rent_portion(self) -> Decimal:
        return self.total_amount - self.deposit_amount - self.commission_amount

    def as_dict(self) -> dict:
        return {
            "transaction_type": self.transaction_type.value,
            "base_amount": self.base_amount,
            "deposit_amount": self.deposit_amount,
            "advance_amount": self.advance_amount,
            "commission_amount": self.commission_amount,
            "total_amount": self.total_amount,
            "commission_rate": self.commission_rate,
            "rate_version": self.rate_version,
            "rent_amount": self.rent_portion,
            "landlord_share": self.landlord_share,
            "line_items": [
                {"label": item.label, "amount": item.amount} for item in self.line_items
            ],
        }


RATE_TABLES: tuple[RateTable, ...] = (
    RateTable(
        version=1,
        effective_from=date(2025, 1, 1),
        rates=MappingProxyType(
            {
                TransactionType.RESIDENTIAL_LEASE: Decimal("0.50"),
                TransactionType.COMMERCIAL_LEASE: Decimal("0.50"),
                TransactionType.LAND_SALE: Decimal("0.01"),
                TransactionType.PROPERTY_SALE: Decimal("0.02"),
            }
        ),
        minimum_commission=Decimal("100000"),
    ),
)


class CommissionCalculator:
    def __init__(self, tables: tuple[RateTable, ...] = RATE_TABLES):
        self.tables = tuple(sorted(tables, key=lambda t: t.effective_from))

    def rate_table_for(self, at: date | datetime | None = None) -> RateTable:
        if at is None:
            return self.tables[-1]
        day = at.date() if isinstance(at, datetime) else at
        active = [t for t in self.tables if t.effective_from <= day]
        return active[-1] if active else self.tables[0]

    def rate_table_version(self, version: int) -> RateTable:
        for table in self.tables:
            if table.version == version:
                return table
        raise ValidationFailed(
            f"Unknown commission rate version {version}.", code="UNKNOWN_RATE_VERSION"
        )

    @staticmethod
    def _positive_amount(value) -> Decimal:
        try:
            amount = Decimal(value)
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationFailed("Amount must be a number.", code="INVALID_AMOUNT")
        if not amount.is_finite() or amount <= 0:
            raise ValidationFailed(
                "Amount must be greater than zero.", code="INVALID_AMOUNT"
            )
        return round_amount(amount)

    def compute_breakdown(
        self,
        transaction_type: TransactionType,
        base_amount,
        *,
        deposit_months: int = 2,
        advance_months: int = 1,
        at: date | datetime | None = None,
        table: RateTable | None = None,
    ) -> Breakdown:
        base = self._positive_amount(base_amount)
        if deposit_months < 0 or advance_months < 0:
            raise ValidationFailed(
                "Deposit and advance months cannot be negative.", code="INVALID_TERMS"
            )

        table = table or self.rate_table_for(at)
        rate = table.rate_for(transaction_type)
        commission = max(round_amount(base * rate), table.minimum_commission)

        if transaction_type.is_lease:
            deposit = round_amount(base * deposit_months)
            advance = round_amount(base * advance_months)
            items = (
                LineItem(f"Deposit ({deposit_months} months)", deposit),
                LineItem(f"Rent advance ({advance_months} months)", advance),
                LineItem("Platform commission", commission),
            )
            total = deposit + advance + commission
        else:
            deposit = advance = Decimal("0")
            items = (
                LineItem("Sale price", base),
                LineItem("Platform commission", commission),
            )
            total = base + commission

        return Breakdown(
            transaction_type=transaction_type,
            base_amount=base,
            deposit_amount=deposit,
            advance_amount=advance,
            commission_amount=commission,
            total_amount=total,
            commission_rate=rate,
            rate_version=table.version,
            line_items=items,
        )

    def rent_breakdown(self, transaction_type: TransactionType, monthly_rent) -> Breakdown:
        """One month of rent: the commission is only charged on the initial payment."""
        rent = self._positive_amount(monthly_rent)
        table = self.rate_table_for()
        return Breakdown(
            transaction_type=transaction_type,
            base_amount=rent,
            deposit_amount=Decimal("0"),
            advance_amount=rent,
            commission_amount=Decimal("0"),
            total_amount=rent,
            commission_rate=Decimal("0"),
            rate_version=table.version,
            line_items=(LineItem("Monthly rent", rent),),
        )

    def rates_info(self) -> dict:
        table = self.rate_table_for()
        return {
            "version": table.version,
            "effective_from": table.effective_from.isoformat(),
            "minimum_commission": table.minimum_commission,
            "rates": {kind.value: rate for kind, rate in table.rates.items()},
            "commission_refundable": False,
        }


commission_calculator = CommissionCalculator()
