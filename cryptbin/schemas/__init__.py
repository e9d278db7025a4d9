"""
Pydantic schemas for API responses.
"""

from cryptbin.schemas.paste import (
    CommentCreatedResponse,
    ErrorResponse,
    PasteCreatedResponse,
    PasteDeletedResponse,
    PasteResponse,
)

__all__ = [
    "ErrorResponse",
    "PasteCreatedResponse",
    "CommentCreatedResponse",
    "PasteDeletedResponse",
    "PasteResponse",
]
