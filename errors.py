"""Exception types shared by the listing, enrichment and CLI layers."""

from __future__ import annotations


class TfteamError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(TfteamError):
    """Required configuration (usually the API token) is missing or invalid."""


class RemoteError(TfteamError):
    """A call to the remote API failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RecoverableError(RemoteError):
    """Transient or per-record failure: network, rate limit, 403/404."""


class FatalError(RemoteError):
    """Failure that no retry or partial result can work around (bad credentials)."""


class ListingError(TfteamError):
    """A paginated listing that is a precondition for the run failed."""


class EnrichmentError(TfteamError):
    """The per-record lookup failed; the record is dropped from the results."""


class MutationError(TfteamError):
    """A state-changing call failed; the record keeps its prior status."""
