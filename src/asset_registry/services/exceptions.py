"""Service error hierarchy for chain reading, event normalization and persistence.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, node limits, store hiccups)
- PermanentError: Non-retryable errors (bad event data, ABI mismatch)
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Node connection refused or timed out
    - Node-imposed log range limits
    - Database write failures
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Log missing expected topics or data
    - Integer field outside the storable range
    """

    pass


# Chain errors
class NodeUnavailable(TransientError):
    """Blockchain node could not be reached or did not answer in time."""

    pass


class RangeTooLarge(TransientError):
    """Node rejected an eth_getLogs request because the block range is too wide."""

    def __init__(self, from_block: int, to_block: int, message: str = ""):
        self.from_block = from_block
        self.to_block = to_block
        super().__init__(
            message or f"Block range {from_block}-{to_block} rejected by node as too large"
        )


# Event errors (per record)
class MalformedEvent(PermanentError):
    """Raw log is missing fields or cannot be ABI-decoded."""

    pass


class ValueOverflow(PermanentError):
    """Integer field does not fit the store's BIGINT column."""

    def __init__(self, field: str, value: int):
        self.field = field
        self.value = value
        super().__init__(f"{field}={value} exceeds the storable integer range")


# Store errors
class StoreWriteFailure(TransientError):
    """Ledger write failed; the current cycle must be retried in full."""

    pass
