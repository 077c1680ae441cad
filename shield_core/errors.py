"""
Exception hierarchy for the shielded wallet core.

Every concrete error also derives from the builtin exception that callers
would otherwise expect (``ValueError``, ``KeyError``, ``RuntimeError``), so
``except ValueError`` style handling keeps working.

Validation errors are raised before any call reaches the engine, which means
a raised validation error always leaves wallet state untouched.
"""

from __future__ import annotations


class ShieldError(Exception):
    """Base class for all shielded wallet errors."""


class InvalidConfiguration(ShieldError, ValueError):
    """Wallet constructed with missing or conflicting key material."""


class AuthorityMismatch(ShieldError, ValueError):
    """A spending key or snapshot does not belong to the bound viewing key."""


class OrderingViolation(ShieldError, ValueError):
    """Blocks were not supplied in strictly increasing height order."""


class ViewOnlyViolation(ShieldError, RuntimeError):
    """A spending operation was attempted without a spending key."""


class ChangeTypeMismatch(ShieldError, ValueError):
    """Change destination type does not match the type of inputs spent."""


class UnknownTransaction(ShieldError, KeyError):
    """A txid is not tracked by the pending overlay."""

    def __init__(self, txid: str):
        super().__init__(txid)
        self.txid = txid

    def __str__(self) -> str:
        return f"Transaction {self.txid} is not pending"


class DiversifierRegression(ShieldError, ValueError):
    """A new diversifier index would move backwards (address reuse)."""


class SnapshotError(ShieldError, ValueError):
    """A snapshot record is malformed or from an unsupported version."""


class EngineFailure(ShieldError, RuntimeError):
    """The cryptographic engine rejected (or never answered) a call."""

    def __init__(self, operation: str, reason: object = None):
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} failed: {reason}")


class EngineTimeout(EngineFailure):
    """No reply arrived before the bridge's call timeout."""


class EngineDisconnected(EngineFailure):
    """The transport to the engine closed with the call still outstanding."""
