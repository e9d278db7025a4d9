"""
Schemas for the paste endpoints.

Request bodies are not modelled here: envelopes are checked key by key by
the format validator, so they are accepted as raw JSON.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Every failure: status 1 plus a client-safe message."""

    status: int = 1
    message: str


class PasteCreatedResponse(BaseModel):
    status: int = 0
    id: str
    url: str
    deletetoken: str = Field(..., description="Token required to delete the paste")


class CommentCreatedResponse(BaseModel):
    status: int = 0
    id: str
    url: str


class PasteDeletedResponse(BaseModel):
    status: int = 0
    id: str
    message: str = "Paste was properly deleted."


class PasteResponse(BaseModel):
    """A stored paste with its discussion. Legacy v1 fields pass through as extras."""

    model_config = ConfigDict(extra="allow")

    status: int = 0
    id: str
    v: int | None = None
    adata: list[Any] | None = None
    ct: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)
    comments: list[dict[str, Any]] = Field(default_factory=list)
    comment_count: int = 0
    comment_offset: int = 0
