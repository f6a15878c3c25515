"""Type definitions and enums for recurbook."""

from enum import Enum


class Frequency(str, Enum):
    """Recurrence frequency of a rule."""

    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @classmethod
    def parse(cls, value: "str | Frequency") -> "Frequency":
        """Parse a wire value, accepting any case and the ``bi-weekly`` spelling.

        Raises:
            ValueError: If the value is not a known frequency.
        """
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "").replace("_", "")
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"unknown frequency: {value!r}") from None

    @property
    def label(self) -> str:
        """Human-readable label, as shown in the recurring list."""
        return FREQUENCY_LABELS[self]


FREQUENCY_LABELS = {
    Frequency.DAILY: "Daily",
    Frequency.WEEKLY: "Weekly",
    Frequency.BIWEEKLY: "Bi-weekly",
    Frequency.MONTHLY: "Monthly",
    Frequency.QUARTERLY: "Quarterly",
    Frequency.YEARLY: "Yearly",
}


class Kind(str, Enum):
    """Direction of money for a rule or ledger entry."""

    EXPENSE = "Expense"
    INCOME = "Income"

    @classmethod
    def parse(cls, value: "str | Kind") -> "Kind":
        """Parse a wire value case-insensitively."""
        if isinstance(value, cls):
            return value
        for member in cls:
            if member.value.lower() == str(value).strip().lower():
                return member
        raise ValueError(f"unknown transaction type: {value!r}")


class RuleStatus(str, Enum):
    """Lifecycle status of a rule on a given day."""

    INACTIVE = "inactive"
    OVERDUE = "overdue"
    DUE = "due"
    ACTIVE = "active"


class Operation(str, Enum):
    """Discriminator of a write command sent to the backend."""

    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"
    ADD_RECURRING = "addRecurring"
    UPDATE_RECURRING = "updateRecurring"
    DELETE_RECURRING = "deleteRecurring"


class QueryAction(str, Enum):
    """Read actions understood by the backend."""

    GET_RECURRING = "getRecurringTransactions"
    GET_TRANSACTIONS = "getTransactions"
