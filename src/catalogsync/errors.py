"""Error taxonomy shared by the store, index, synchronizer, and search layers."""


class CatalogSyncError(Exception):
    """Base exception for catalogsync errors."""


class ConfigurationError(CatalogSyncError):
    """Raised when settings are invalid or an optional client package is missing."""


class ValidationError(CatalogSyncError):
    """Raised when a record is missing required fields or carries invalid values."""


class NotFoundError(CatalogSyncError):
    """Raised when a record does not exist in the store."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Record '{record_id}' not found.")
        self.record_id = record_id


class TransientStoreError(CatalogSyncError):
    """Raised when the record store times out or is temporarily unreachable."""


class TransientIndexError(CatalogSyncError):
    """Raised when an index call fails in a way that is worth retrying."""


class IndexUnavailableError(TransientIndexError):
    """Raised when the search index cannot be reached at all."""


class IndexWriteError(CatalogSyncError):
    """Raised when the index rejects a write for a non-transient reason."""


class MalformedQueryError(CatalogSyncError):
    """Raised when a query tree references unknown fields or is structurally invalid."""
