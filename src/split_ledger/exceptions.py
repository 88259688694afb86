"""Custom exceptions for Split Ledger."""


class SplitLedgerError(Exception):
    """Base exception for all Split Ledger errors."""

    pass


class ConfigurationError(SplitLedgerError):
    """Raised when configuration is invalid or missing."""

    pass


class ValidationError(SplitLedgerError):
    """Raised when an operation would put the ledger into an invalid state.

    Always raised before anything is persisted, so a rejected operation
    leaves the ledger untouched.
    """

    def __init__(self, reason: str, field: str | None = None):
        self.reason = reason
        self.field = field
        super().__init__(f"{field}: {reason}" if field else reason)


class NotFoundError(SplitLedgerError):
    """Raised when a member, group, expense or settlement id does not exist."""

    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id} not found")


class StorageError(SplitLedgerError):
    """Raised when the key-value store fails to read or write."""

    pass


class CorruptValueError(StorageError):
    """Raised when a stored value cannot be decoded."""

    def __init__(self, message: str, raw: str | None = None):
        self.raw = raw
        super().__init__(message)


class ConflictError(StorageError):
    """Raised when the stored ledger changed since it was loaded."""

    def __init__(self, expected_revision: int, stored_revision: int):
        self.expected_revision = expected_revision
        self.stored_revision = stored_revision
        super().__init__(
            f"Ledger was modified elsewhere (expected revision "
            f"{expected_revision}, found {stored_revision}). Reload and retry."
        )


class SchemaVersionError(SplitLedgerError):
    """Raised when stored state has a schema version with no migration path."""

    def __init__(self, version: str, message: str | None = None):
        self.version = version
        super().__init__(
            message or f"No migration path from schema version {version!r}"
        )
