"""
API Request/Response Schemas.

Pydantic models for the batch and merge endpoints.

Example Request (POST /v1/batch):
    {
        "items": [
            {"id": "1", "text": "Gündem maddesi bir.", "language": "tr"},
            {"id": "2", "text": "Gündem maddesi iki."},
            {"id": "3"}
        ],
        "saved_ids": ["3"],
        "language": "tr",
        "format": "mp3"
    }

``items`` fixes the output order. Items listed in ``saved_ids`` are loaded
from storage; the rest are synthesized unless ``needed_ids`` narrows them
down explicitly.
"""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

MAX_TEXT_CHARS = 10000


class BatchItem(BaseModel):
    """One content item. ``text`` may be empty for saved items."""
    id: str = Field(..., min_length=1, max_length=128)
    text: str = Field("", max_length=MAX_TEXT_CHARS)
    language: Optional[str] = Field(None, description="Overrides the request language")


class BatchRequest(BaseModel):
    items: List[BatchItem] = Field(..., description="All items in output order")
    needed_ids: Optional[List[str]] = Field(
        None, description="Items to synthesize (default: every item not in saved_ids)"
    )
    saved_ids: List[str] = Field(default_factory=list, description="Items loaded from storage")
    language: Optional[str] = Field(None, description="Language for every synthesized item")
    format: str = Field("mp3", description="mp3, m4a or aac")


class BatchAccepted(BaseModel):
    """202 body for a batch handed off to a background merge."""
    ok: bool = True
    kind: str = "merge"
    correlation_id: str
    item_ids: List[str]


class MergeStatusResponse(BaseModel):
    correlation_id: str
    state: str
    items: int
    fmt: str
    attempts: int
    output_path: Optional[str] = None
    error: Optional[str] = None
    created_at: float
    finished_at: Optional[float] = None
