"""
Global constants for recurbook.

This module centralizes dataset names, wire keys and default values
so the gateway, the processor and the CLI agree on them.
"""

# ============================================================================
# Workbook Discovery
# ============================================================================

DEFAULT_WORKBOOK_FILE = "recurbook.yaml"
ENV_WORKBOOK_FILE = "RECURBOOK_WORKBOOK"

# ============================================================================
# Datasets (cache keys and response keys)
# ============================================================================

DATASET_TRANSACTIONS = "transactions"
DATASET_RECURRING = "recurringTransactions"
CONFIG_SECTION = "config"

# ============================================================================
# Default Configuration Values
# ============================================================================

DEFAULT_QUERY_TIMEOUT_SECONDS = 10.0
DEFAULT_CACHE_TTL_SECONDS = 300.0
DEFAULT_REFRESH_DELAY_SECONDS = 1.5
DEFAULT_ADVANCE_DELAY_SECONDS = 0.5

# ============================================================================
# Materialized Entries
# ============================================================================

RECURRING_NOTE_PREFIX = "Recurring"
NOTES_SEPARATOR = " - "

# Not locale dependent, the sheet stores English names
WEEKDAY_NAMES = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)

# ============================================================================
# Display/Formatting Constants
# ============================================================================

MAX_TABLE_COLUMN_WIDTH = 30
MAX_PREVIEW_OCCURRENCES = 1000
