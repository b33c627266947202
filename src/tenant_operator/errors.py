"""Error taxonomy for tenant reconciliation.

Every error raised by the reconciliation core is retryable: the operator
layer turns it into a delayed re-invocation of the same tenant key. The
``delay`` attribute is a hint for that delay; backoff beyond it is left to
the hosting framework.
"""

from typing import Optional

from . import constants as C


class ReconcileError(Exception):
    """Base class for reconciliation failures."""

    def __init__(self, message: str, delay: Optional[float] = None):
        super().__init__(message)
        self.delay = C.RETRY_BACKOFF if delay is None else delay


class NotFoundError(ReconcileError):
    """The requested object does not exist in the resource store."""


class ConflictError(ReconcileError):
    """A write was rejected because the object changed since it was read."""

    def __init__(self, message: str, delay: Optional[float] = None):
        super().__init__(message, C.REQUEUE_DELAY if delay is None else delay)


class TransientError(ReconcileError):
    """Temporary unavailability of the store or of a prerequisite."""


class DeadlineExceeded(TransientError):
    """The invocation ran out of time and was abandoned."""


class StoreError(ReconcileError):
    """Any other failure reported by the resource store."""

    def __init__(self, message: str, status: Optional[int] = None, delay: Optional[float] = None):
        super().__init__(message, delay)
        self.status = status


class IdentityServiceError(ReconcileError):
    """The identity service was unreachable or answered with an error."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body
