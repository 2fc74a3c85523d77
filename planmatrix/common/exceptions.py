"""
Custom Exception Classes for planmatrix

Hierarchical exception structure for error handling across services.
"""


class PlanMatrixError(Exception):
    """Base exception for all planmatrix errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(PlanMatrixError):
    """Runtime settings errors (config file, environment)"""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(f"Config Error: {message}", recoverable)


class SyncError(PlanMatrixError):
    """Remote configuration retrieval errors"""

    def __init__(self, message: str, operation: str | None = None):
        self.operation = operation
        super().__init__(f"Sync Error: {message}", recoverable=True)


class FetchError(SyncError):
    """Network/HTTP failure while fetching the plans matrix"""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
    ):
        self.url = url
        self.status_code = status_code
        super().__init__(message, operation="fetch")


class DocumentDecodeError(SyncError):
    """Payload could not be decoded into a ConfigDocument"""

    def __init__(self, message: str):
        super().__init__(message, operation="decode")


class StoreError(PlanMatrixError):
    """Persisted cache could not be written"""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(f"Store Error: {message}", recoverable=True)


class ResolutionError(PlanMatrixError):
    """Unexpected failure while resolving features for a selection"""

    def __init__(self, message: str, selection=None):
        self.selection = selection
        super().__init__(f"Resolution Error: {message}", recoverable=False)


class SubscriptionClosed(PlanMatrixError):
    """Result subscription was closed and has no buffered results left"""

    def __init__(self, message: str = "Subscription closed"):
        super().__init__(message, recoverable=False)
