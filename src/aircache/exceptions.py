"""
Aircache exception hierarchy.

All domain-specific exceptions inherit from AircacheError, so callers can
catch any cache error with a single base class while still telling
per-item problems apart from infrastructure faults.

Hierarchy::

    AircacheError
    ├── ConfigurationError          - config loading, parsing, validation
    ├── StoreError                  - a record or attachment row could not be written
    │   └── StoreUnavailableError   - the backing store itself is unreachable
    ├── LockError                   - lock backend failure (never raised for contention)
    ├── SourceError                 - remote API failures
    │   └── SourceRequestError      - non-2xx response, carries the status
    ├── AttachmentDownloadError     - a single attachment could not be fetched
    ├── WebhookValidationError      - bad signature, stale timestamp, bad body
    └── UnknownMessageError         - worker received a message outside its protocol
"""

from __future__ import annotations


class AircacheError(Exception):
    """Base exception for all Aircache errors."""

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# --- Configuration -----------------------------------------------------------


class ConfigurationError(AircacheError):
    """Raised when configuration loading, parsing, or validation fails."""


# --- Storage -----------------------------------------------------------------


class StoreError(AircacheError):
    """Raised when a single record, attachment or mapping cannot be stored.

    Pipelines count these per item and keep going.
    """


class StoreUnavailableError(StoreError):
    """Raised when the store cannot be reached at all.

    Pipelines must not swallow this one: a refresh that hits it aborts
    without flipping.
    """


# --- Locks -------------------------------------------------------------------


class LockError(AircacheError):
    """Raised when the lock backend fails. Contention returns None instead."""


# --- Remote source -----------------------------------------------------------


class SourceError(AircacheError):
    """Raised when talking to the remote API fails."""


class SourceRequestError(SourceError):
    """Raised on a non-2xx response from the remote API."""

    def __init__(self, message: str, *, status: int, url: str | None = None) -> None:
        super().__init__(message, details={"status": status, "url": url})
        self.status = status
        self.url = url

    @property
    def retryable(self) -> bool:
        return self.status == 429 or self.status >= 500


class AttachmentDownloadError(AircacheError):
    """Raised when one attachment cannot be downloaded."""

    def __init__(self, message: str, *, attachment_id: str, url: str | None = None) -> None:
        super().__init__(message, details={"attachment_id": attachment_id, "url": url})
        self.attachment_id = attachment_id
        self.url = url


# --- Webhooks ----------------------------------------------------------------


class WebhookValidationError(AircacheError):
    """Raised when an incoming webhook notification fails validation."""


# --- Worker ------------------------------------------------------------------


class UnknownMessageError(AircacheError):
    """Raised when the refresh worker receives a message it does not handle."""

    def __init__(self, message: object) -> None:
        super().__init__(
            f"Unknown worker message: {type(message).__name__}",
            details={"type": type(message).__name__},
        )
        self.received = message
