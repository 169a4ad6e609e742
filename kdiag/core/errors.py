"""Error taxonomy shared by providers, the gatherer and the watch controller."""

from __future__ import annotations

from typing import Optional


class KDiagError(Exception):
    """Base class for all kdiag errors."""


class ProviderError(KDiagError):
    """A read call against the cluster failed (transport, server error, bad response)."""

    def __init__(self, message: str, *, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ResourceNotFoundError(ProviderError):
    """The requested object does not exist (HTTP 404)."""


class AccessDeniedError(ProviderError):
    """The caller is not allowed to read the requested object (HTTP 401/403)."""


class TargetUnreachableError(KDiagError):
    """
    The primary resource could not be fetched.

    This is the only fatal gather condition: no snapshot and no report are produced.
    """

    def __init__(self, target: str, cause: Exception):
        super().__init__(f"target {target} unreachable: {cause}")
        self.target = target
        self.cause = cause


class WatchStreamError(KDiagError):
    """The live event stream failed; distinct from a clean termination on DELETED."""
