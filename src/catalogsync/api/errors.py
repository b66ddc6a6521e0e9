"""Mapping from catalogsync errors to HTTP responses."""

from __future__ import annotations

import logging

from fastapi import HTTPException

from catalogsync.errors import (
    CatalogSyncError,
    MalformedQueryError,
    NotFoundError,
    TransientIndexError,
    TransientStoreError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_STATUS_MAP: list[tuple[type[CatalogSyncError], int]] = [
    (ValidationError, 422),
    (NotFoundError, 404),
    (TransientStoreError, 503),
    (TransientIndexError, 503),
]


def to_http_exception(error: CatalogSyncError) -> HTTPException:
    """Return the HTTPException matching ``error``'s place in the taxonomy."""
    for error_type, status_code in _STATUS_MAP:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    if isinstance(error, MalformedQueryError):
        logger.error("Malformed query: %s", error, exc_info=error)
    else:
        logger.error("Unhandled catalogsync error: %s", error, exc_info=error)
    return HTTPException(status_code=500, detail=str(error))
