"""Exception hierarchy for capc.

Everything raised on purpose inherits from CapcError. The reconcilers
classify these at their boundary: ProviderError is transient, NotFoundError
is terminal (or success while deleting), InvalidSpecError stops retries until
the resource generation changes.
"""

from __future__ import annotations


class CapcError(Exception):
    """Base exception for all capc errors."""


class ConfigurationError(CapcError):
    """Raised for invalid configuration or missing required settings."""


class ProviderError(CapcError):
    """Raised when the compute provider API call fails.

    ``status`` is the HTTP status code, or 0 for transport failures.
    """

    def __init__(self, message: str, status: int = 0) -> None:
        self.status = status
        super().__init__(message)


class NotFoundError(ProviderError):
    """Raised when a provider resource does not exist."""

    def __init__(self, kind: str, identifier: object) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found", status=404)


class InstanceNotFoundError(NotFoundError):
    """Raised when a compute instance does not exist (or was cancelled)."""

    def __init__(self, instance_id: int) -> None:
        self.instance_id = instance_id
        super().__init__("instance", instance_id)


class InvalidSpecError(CapcError):
    """Raised for spec errors that retrying cannot fix."""

    def __init__(self, reason: str, message: str) -> None:
        self.reason = reason
        super().__init__(message)


class ConflictError(CapcError):
    """Raised when a write loses an optimistic concurrency race."""

    def __init__(self, kind: str, key: object) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} {key} was modified concurrently")


class ObjectNotFoundError(CapcError):
    """Raised when an object is missing from the object store."""

    def __init__(self, kind: str, key: object) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} {key} not found")


class InvariantError(CapcError):
    """Raised when capc's own bookkeeping is inconsistent."""
