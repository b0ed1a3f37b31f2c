"""
Error taxonomy for the context memory engine.

Store and retention operations raise these to their caller; the tool
layer turns them into apology strings, while extraction and insight
code logs them and carries on.
"""

from typing import Optional


class ContextMemoryError(Exception):
    """Base exception for context memory errors."""
    pass


class SaveFailed(ContextMemoryError):
    """Persisting an item failed."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause


class FetchFailed(ContextMemoryError):
    """Reading from the backend failed."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause


class DeleteFailed(ContextMemoryError):
    """Removing an item failed."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause


class NotFound(ContextMemoryError):
    """No item exists for the (category, key) identity."""

    def __init__(self, key: str, category: str):
        super().__init__(f"No context item '{key}' in category '{category}'")
        self.key = key
        self.category = category


class InvalidData(ContextMemoryError):
    """Input was rejected before touching the backend."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
