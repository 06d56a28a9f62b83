"""
Error types raised by the reconciliation core.

Configuration problems are permanent until the Service (or the controller
configuration) changes; everything else is temporary and is retried with
backoff by the work queue.
"""

import kopf


class ConfigurationError(kopf.PermanentError):
    """Invalid annotations, rejected scheme, unresolvable subnets, bad actions."""


class DependencyMissingError(kopf.TemporaryError):
    """A referenced object or value (service port, node port, action) is missing."""


class NotFoundError(DependencyMissingError):
    """No object matching key in the local store."""

    def __init__(self, key: str):
        super().__init__(f"no object matching key {key!r} in local store")
        self.key = key


class CloudAPIError(kopf.TemporaryError):
    """An AWS API call failed."""

    def __init__(self, operation: str, code: str, message: str):
        super().__init__(f"{operation} failed: {code}: {message}")
        self.operation = operation
        self.code = code


class ReconcileCancelled(kopf.TemporaryError):
    """The reconcile deadline passed or the operator is stopping."""
