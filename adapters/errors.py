"""
Adapter failures.
"""
from typing import Optional


class AdapterError(Exception):
    """An external service call failed."""

    def __init__(self, provider: str, message: str, status: Optional[int] = None):
        if status is not None:
            super().__init__(f"{provider}: {status} {message}")
        else:
            super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message
        self.status = status


class SchemaValidationError(AdapterError):
    """The service answered, but the payload does not match the expected schema."""
