"""Portable column types.

PostgreSQL stores money as NUMERIC(38, 18). SQLite (tests, local tooling)
has no exact decimal storage, so Money falls back to a canonical decimal
string there instead of REAL.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import JSON, DateTime, Numeric, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator

from deal_engine.domain.money import MONEY_DECIMALS, to_decimal

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Money(TypeDecorator):
    """Exact decimal amount with 18 fractional digits."""

    impl = Numeric(38, MONEY_DECIMALS)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Numeric(38, MONEY_DECIMALS, asdecimal=True))
        return dialect.type_descriptor(String(80))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        amount = to_decimal(value)
        if dialect.name == "postgresql":
            return amount
        # Fixed-point text, never exponent notation
        return format(amount, "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value if isinstance(value, Decimal) else Decimal(value)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime, normalized to UTC on every dialect."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
