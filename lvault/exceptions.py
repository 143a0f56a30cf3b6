"""Exception taxonomy for Ledger Vault."""
from __future__ import annotations

from typing import Optional


class LVError(Exception):
    """Base class for all Ledger Vault errors."""
    pass


class NotFound(LVError):
    """A referenced entity does not exist in current state.

    ``search_key`` carries what was looked up, for diagnostics.
    """

    def __init__(self, message: str, search_key: Optional[str] = None):
        super().__init__(message)
        self.search_key = search_key


class IncorrectEncryptionKey(LVError):
    """Decryption failed with the currently loaded key set."""

    def __init__(self, cause: Optional[BaseException] = None):
        message = "Incorrect encryption key"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.cause = cause


class BadRequest(LVError):
    """A precondition failed before (or while) applying an action."""
    pass


class ContractError(BadRequest):
    """The ledger rejected a transaction."""
    pass


class Unauthorized(LVError):
    """The active identity may not perform the action."""
    pass


class GatewayError(LVError):
    """Opaque failure from a ledger or storage transport."""
    pass


class UploadCancelled(LVError):
    """A transfer stopped because its cancel hook fired."""
    pass
