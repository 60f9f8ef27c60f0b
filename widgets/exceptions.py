class WidgetPostsError(Exception):
    """Base class for widget instance storage errors."""


class AllocationError(WidgetPostsError):
    """Raised when the durable widget number counter could not be advanced.

    The caller must re-read the counter and recompute before trying again;
    the number computed for the failed attempt must not be reused.
    """


class ValidationError(WidgetPostsError):
    """Raised when a sanitized instance cannot be accepted for storage."""


class SerializationError(WidgetPostsError):
    """Raised when an instance does not survive a JSON round-trip unchanged."""


class UnrecognizedCategoryError(WidgetPostsError):
    """Raised for an id_base that no registered widget type declares."""


class NotFoundError(WidgetPostsError):
    """Raised when an instance that is expected to exist is missing."""


class WidgetNumberRequestError(WidgetPostsError):
    """Rejected widget number request, carrying an HTTP-like status code."""

    def __init__(self, message: str, code: int = 500):
        super().__init__(message)
        self.code = code
