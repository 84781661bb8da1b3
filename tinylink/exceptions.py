"""Error taxonomy for link operations.

Every failure a caller can observe is one of these classes. Each carries a
message that is safe to show to a client and the HTTP status it maps to;
routes translate them into ``HTTPException`` responses.

Hierarchy
=========
::
    LinkError
    ├─ ValidationError        400
    │  ├─ InvalidURL
    │  └─ InvalidCodeFormat
    ├─ ConflictError          409
    │  ├─ CodeConflict        (allocator pre-check)
    │  └─ DuplicateCode       (unique constraint on insert)
    ├─ NotFoundError          404
    └─ StorageError           500
       └─ AllocationExhausted 503
"""

__all__ = [
    "LinkError",
    "ValidationError",
    "InvalidURL",
    "InvalidCodeFormat",
    "ConflictError",
    "CodeConflict",
    "DuplicateCode",
    "NotFoundError",
    "StorageError",
    "AllocationExhausted",
]


class LinkError(Exception):
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        self.message = message or self.default_message
        self.code = code
        super().__init__(self.message)


class ValidationError(LinkError):
    status_code = 400
    default_message = "Invalid request"


class InvalidURL(ValidationError):
    default_message = "Invalid URL"


class InvalidCodeFormat(ValidationError):
    default_message = "Code must be 6-8 characters, letters/numbers only"


class ConflictError(LinkError):
    status_code = 409
    default_message = "Code already exists"


class CodeConflict(ConflictError):
    """Raised when the allocator's existence check finds the code taken."""


class DuplicateCode(ConflictError):
    """Raised when the insert itself hits the unique constraint."""


class NotFoundError(LinkError):
    status_code = 404
    default_message = "Link not found"


class StorageError(LinkError):
    """Connectivity, timeout or unclassified database failure.

    The message is always generic; the underlying cause is chained and logged.
    """


class AllocationExhausted(StorageError):
    status_code = 503
    default_message = "Could not allocate a free code, try again"
