"""
Catalog Sync Exception Hierarchy

Structured exception classes for the provider sync engine. All exceptions
carry code, message, and details so failed runs can record a short,
machine-readable error alongside their counters.

Exception Hierarchy:
    CatalogSyncError
    ├── ProviderError
    │   ├── TransientNetworkError
    │   │   └── RateLimitExceeded
    │   ├── ClientContractError
    │   └── ProviderDecodeError
    ├── PersistenceError
    │   ├── PersistenceConstraintError
    │   └── ChunkUpsertError
    └── SyncCancelledError

Ambiguous, conflicting and out-of-scope matches are NOT exceptions; they are
reported outcomes on MatchResult.
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class CatalogSyncError(Exception):
    """
    Base exception for all catalog sync errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        severity: P0-P3 severity level
    """

    default_code: str = "CATALOG_SYNC_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# PROVIDER ERRORS
# =============================================================================

class ProviderError(CatalogSyncError):
    """Base exception for remote catalog API failures."""
    default_code = "PROVIDER_ERROR"
    default_severity = "P1"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "status_code": status_code,
            "url": url,
        })
        self.status_code = status_code
        super().__init__(message, details=details, **kwargs)


class TransientNetworkError(ProviderError):
    """Timeout, connection reset, 5xx or 429 that outlived the retry budget."""
    default_code = "PROVIDER_TRANSIENT_EXHAUSTED"


class ClientContractError(ProviderError):
    """4xx other than 429 - the request itself is wrong, never retried."""
    default_code = "PROVIDER_CLIENT_CONTRACT"
    default_severity = "P1"


class ProviderDecodeError(ProviderError):
    """Response body did not match any known envelope shape."""
    default_code = "PROVIDER_DECODE_FAILED"


class RateLimitExceeded(TransientNetworkError):
    """429 responses outlasted the retry budget."""
    default_code = "PROVIDER_RATE_LIMITED"
    default_severity = "P2"

    def __init__(self, host: str, wait_time: float, **kwargs):
        self.host = host
        self.wait_time = wait_time
        details = kwargs.pop("details", {})
        details["retry_after_seconds"] = wait_time
        super().__init__(
            f"Rate limited by {host} for {wait_time:.0f}s",
            status_code=429,
            details=details,
            **kwargs
        )


# =============================================================================
# PERSISTENCE ERRORS
# =============================================================================

class PersistenceError(CatalogSyncError):
    """Base exception for local storage failures."""
    default_code = "PERSISTENCE_ERROR"
    default_severity = "P1"


class PersistenceConstraintError(PersistenceError):
    """Unique-key violation on write."""
    default_code = "PERSISTENCE_CONSTRAINT_VIOLATION"

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        constraint: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "entity_type": entity_type,
            "constraint": constraint,
        })
        super().__init__(message, details=details, **kwargs)


class ChunkUpsertError(PersistenceError):
    """One chunk of a batch upsert failed."""
    default_code = "PERSISTENCE_CHUNK_FAILED"

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        chunk_index: Optional[int] = None,
        chunk_size: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "entity_type": entity_type,
            "chunk_index": chunk_index,
            "chunk_size": chunk_size,
        })
        self.chunk_index = chunk_index
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# RUN LIFECYCLE
# =============================================================================

class SyncCancelledError(CatalogSyncError):
    """Run was cancelled; raised at the next page boundary."""
    default_code = "SYNC_CANCELLED"
    default_severity = "P3"
