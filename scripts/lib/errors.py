"""
Custom error classes for the Deals Dashboard.
Structured error handling with error codes across all modules.

Hierarchy:
    HubError
    └── DataError
        ├── DataFetchError
        └── FormatError
"""


class HubError(Exception):
    """Base exception for all Deals Dashboard errors."""

    def __init__(self, message: str, code: str = "UNKNOWN", details: dict = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code}] {message}")


# --- Data Errors ---

class DataError(HubError):
    """Base class for data processing errors."""
    pass


class DataFetchError(DataError):
    """Failed to fetch or load data from storage."""

    def __init__(self, message: str, source: str = None):
        super().__init__(
            message, code="DATA_FETCH_FAILED", details={"source": source},
        )


class FormatError(DataError):
    """Uploaded file is malformed or in an unsupported format.

    The message is user-facing: upload handlers surface it verbatim.
    """

    def __init__(self, message: str, source: str = None, source_format: str = None):
        super().__init__(
            message, code="FORMAT_INVALID",
            details={"source": source, "format": source_format},
        )
