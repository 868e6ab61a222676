"""
Bridge exceptions.

Every precondition failure of the counterparty operations is one of these.
They are expected outcomes of a multi-party protocol, raised before any
ledger mutation and surfaced to the caller.
"""


class BridgeError(Exception):
    """Base exception for the bridge."""
    status_code = 400

    @property
    def name(self) -> str:
        return type(self).__name__


class DuplicateKey(BridgeError):
    """Transfer id is already known to the ledger."""
    status_code = 409


class NotFound(BridgeError):
    """Transfer id is not in the requested bucket."""
    status_code = 404


class InvalidSecret(BridgeError):
    """Pre-image does not hash to the stored hash lock."""
    status_code = 400


class Unauthorized(BridgeError):
    """Caller is not allowed to perform the operation."""
    status_code = 403


class TooEarly(BridgeError):
    """Time lock has not expired yet."""
    status_code = 425


class InvalidParameter(BridgeError):
    """Malformed operation argument."""
    status_code = 422


class ConfigMismatch(BridgeError):
    """Stored bridge configuration differs from the requested one."""
    status_code = 500


class MintingError(BridgeError):
    """Minting authority call failed."""
    status_code = 502


class PersistenceError(BridgeError):
    """Ledger was updated in memory but could not be written to disk."""
    status_code = 500
