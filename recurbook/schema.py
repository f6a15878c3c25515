"""Pydantic schema models for recurring rules, ledger entries and settings."""

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from . import constants
from .types import Frequency, Kind


def _coerce_date(value: Any) -> Any:
    """Normalize a sheet cell into something pydantic parses as a date.

    Sheets hand back either ``YYYY-MM-DD`` or a full ISO timestamp; only the
    calendar part is meaningful for rule dates. Empty cells mean "not set".
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        if "T" in value:
            return value.split("T", 1)[0]
    return value


def _coerce_text(value: Any) -> Any:
    return "" if value is None else value


class RecurringRule(BaseModel):
    """A user-declared repeating transaction template."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Opaque identifier assigned on creation")
    payee: str = Field("", description="Payee copied into materialized entries")
    category: str = Field("", description="Category copied into materialized entries")
    account: str = Field("", description="Account copied into materialized entries")
    notes: str = Field("", description="Free-form notes, prefixed onto entry notes")
    amount: Decimal = Field(..., description="Non-negative magnitude")
    kind: Kind = Field(..., alias="type", description="Expense or Income")
    frequency: Frequency = Field(..., description="Recurrence frequency")
    start_date: date = Field(..., alias="startDate", description="First eligible occurrence")
    end_date: Optional[date] = Field(
        None, alias="endDate", description="Inclusive last day (null = ongoing)"
    )
    next_due: Optional[date] = Field(
        None, alias="nextDue", description="Next occurrence to materialize (null = retired)"
    )
    last_processed: Optional[datetime] = Field(
        None, alias="lastProcessed", description="Timestamp of the last materialization"
    )

    @field_validator("id", mode="before")
    @classmethod
    def validate_id(cls, v: Any) -> str:
        """Sheets may return numeric ids; keep them as opaque strings."""
        if v is None or not str(v).strip():
            raise ValueError("id cannot be empty")
        return str(v).strip()

    @field_validator("payee", "category", "account", "notes", mode="before")
    @classmethod
    def validate_text(cls, v: Any) -> Any:
        return _coerce_text(v)

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        """Ensure amount is non-negative; direction lives in kind."""
        if v < 0:
            raise ValueError("amount must be non-negative")
        return v

    @field_validator("kind", mode="before")
    @classmethod
    def validate_kind(cls, v: Any) -> Kind:
        return Kind.parse(v)

    @field_validator("frequency", mode="before")
    @classmethod
    def validate_frequency(cls, v: Any) -> Frequency:
        return Frequency.parse(v)

    @field_validator("start_date", "end_date", "next_due", mode="before")
    @classmethod
    def validate_dates(cls, v: Any) -> Any:
        return _coerce_date(v)

    @field_validator("last_processed", mode="before")
    @classmethod
    def validate_last_processed(cls, v: Any) -> Any:
        """Accept empty cells and bare dates as well as ISO timestamps."""
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        if isinstance(v, date) and not isinstance(v, datetime):
            return datetime.combine(v, time.min)
        if isinstance(v, str) and len(v.strip()) == len("YYYY-MM-DD"):
            return datetime.combine(date.fromisoformat(v.strip()), time.min)
        return v

    @field_serializer("amount", when_used="json")
    def serialize_amount(self, v: Decimal) -> float:
        """Amount cells are numeric on the sheet."""
        return float(v)

    @property
    def is_retired(self) -> bool:
        return self.next_due is None

    def to_wire(self) -> dict[str, Any]:
        """Serialize with the sheet's camelCase column names."""
        return self.model_dump(by_alias=True, mode="json")


class LedgerEntry(BaseModel):
    """A single transaction row of the ledger sheet."""

    model_config = ConfigDict(populate_by_name=True)

    entry_date: date = Field(..., alias="date", description="Transaction date")
    day_of_week: str = Field("", alias="dayOfWeek", description="Weekday name of the date")
    kind: Kind = Field(..., alias="type", description="Expense or Income")
    amount: Decimal = Field(..., description="Transaction amount")
    category: str = Field("", description="Category")
    account: str = Field("", description="Account")
    payee: str = Field("", description="Payee")
    notes: str = Field("", description="Notes")
    row_index: Optional[int] = Field(
        None,
        alias="rowIndex",
        exclude=True,
        description="1-based sheet position (populated when read back, not written)",
    )

    @field_validator("entry_date", mode="before")
    @classmethod
    def validate_date(cls, v: Any) -> Any:
        return _coerce_date(v)

    @field_validator("kind", mode="before")
    @classmethod
    def validate_kind(cls, v: Any) -> Kind:
        return Kind.parse(v)

    @field_validator("category", "account", "payee", "notes", "day_of_week", mode="before")
    @classmethod
    def validate_text(cls, v: Any) -> Any:
        return _coerce_text(v)

    @field_serializer("amount", when_used="json")
    def serialize_amount(self, v: Decimal) -> float:
        return float(v)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with the sheet's column names (without rowIndex)."""
        return self.model_dump(by_alias=True, mode="json")


class Settings(BaseModel):
    """Runtime configuration for recurbook."""

    query_timeout: float = Field(
        constants.DEFAULT_QUERY_TIMEOUT_SECONDS, description="Read timeout in seconds"
    )
    cache_ttl: float = Field(
        constants.DEFAULT_CACHE_TTL_SECONDS, description="Lifetime of cached datasets in seconds"
    )
    refresh_delay: float = Field(
        constants.DEFAULT_REFRESH_DELAY_SECONDS,
        description="Delay before the post-batch forced reload",
    )
    advance_delay: float = Field(
        constants.DEFAULT_ADVANCE_DELAY_SECONDS,
        description="Pause between writing an entry and advancing its rule",
    )

    @field_validator("query_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Ensure query_timeout is positive."""
        if v <= 0:
            raise ValueError("query_timeout must be positive")
        return v

    @field_validator("cache_ttl", "refresh_delay", "advance_delay")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        """Ensure delays and TTL are not negative."""
        if v < 0:
            raise ValueError("delays and cache_ttl must be non-negative")
        return v


class Workbook(BaseModel):
    """Root structure of a workbook file: rules, ledger rows and settings."""

    model_config = ConfigDict(populate_by_name=True)

    config: Settings = Field(default_factory=Settings, description="Runtime settings")
    recurring: list[RecurringRule] = Field(
        default_factory=list, alias=constants.DATASET_RECURRING, description="Recurring rules"
    )
    transactions: list[LedgerEntry] = Field(
        default_factory=list, alias=constants.DATASET_TRANSACTIONS, description="Ledger rows"
    )
