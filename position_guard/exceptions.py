"""Error taxonomy for the position engine.

Every public engine operation either succeeds or raises one of these. The
store transaction wrapping the call discards staged writes on the way out, so
callers never observe a partial mutation.
"""
from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine failures."""

    retryable = False


class ValidationError(EngineError):
    """Input rejected before any state was touched."""


class AuthorizationError(EngineError):
    """Caller could not prove the identity the operation requires."""


class StateError(EngineError):
    """Operation not allowed in the record's current state."""


class RecordNotFoundError(StateError):
    """Lookup of an unknown loan or order id."""


class ArchivedEntryError(StateError):
    """The entry's lease lapsed and it must be restored before use."""


class NotTriggeredError(StateError):
    """A trigger-gated operation was called while the trigger does not hold."""


class OracleError(EngineError):
    """Price data missing or unusable. Resubmitting later may succeed."""

    retryable = True


class PriceUnavailableError(OracleError):
    """The gateway returned no data for the asset."""


class StalePriceError(OracleError):
    """The newest quote is older than the allowed age."""


class OracleNotConfiguredError(OracleError):
    """No gateway is configured for the asset class."""

    retryable = False


class EngineArithmeticError(EngineError, ArithmeticError):
    """Division by a zero-valued denominator."""
