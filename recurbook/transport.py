"""Transport capabilities used to reach the spreadsheet backend.

The backend exposes two things only:

1. Query
   - A read selected by an ``action`` name, answering with a JSON object
   - Subject to a timeout; a timeout is a failure like any other

2. Command
   - A fire-and-forget write carrying an ``operation`` discriminator
   - No response body, no delivery confirmation

Because a command can only tell us that the request left without a
transport error, writes are reported as :class:`DispatchResult` rather than
as "saved". Callers must treat a dispatched write as provisional.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from .types import Operation, QueryAction

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Raised when a query or command cannot be delivered."""


class QueryTransport(Protocol):
    """Read capability of the backend."""

    async def query(self, action: QueryAction) -> Any:
        """Run a read action and return the decoded response."""
        ...


class CommandTransport(Protocol):
    """Write capability of the backend."""

    async def send(self, payload: dict[str, Any]) -> None:
        """Send a write command; returns once the request has been sent."""
        ...


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of a fire-and-forget write.

    ``dispatched`` only means the request was sent without a transport
    error. It never means the backend applied it.
    """

    operation: Operation
    dispatched: bool
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.dispatched


async def run_query(transport: QueryTransport, action: QueryAction, timeout: float) -> Any:
    """
    Run a query with a timeout, normalizing every failure to TransportError.

    Raises:
        TransportError: On transport failure or timeout
    """
    try:
        return await asyncio.wait_for(transport.query(action), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise TransportError(f"{action.value} timed out after {timeout}s") from e
    except TransportError:
        raise
    except OSError as e:
        raise TransportError(f"{action.value} failed: {e}") from e


async def dispatch(
    transport: CommandTransport,
    operation: Operation,
    fields: dict[str, Any],
) -> DispatchResult:
    """
    Send a write command and report whether it left without a transport error.

    Args:
        transport: Command capability
        operation: Operation discriminator
        fields: Operation-specific payload fields

    Returns:
        DispatchResult; never raises for transport failures
    """
    payload = {"operation": operation.value, **fields}
    try:
        await transport.send(payload)
    except (TransportError, OSError) as e:
        logger.error("Failed to dispatch %s: %s", operation.value, e)
        return DispatchResult(operation=operation, dispatched=False, error=str(e))
    logger.debug("Dispatched %s", operation.value)
    return DispatchResult(operation=operation, dispatched=True)
