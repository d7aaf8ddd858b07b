"""Keyset pagination for name-ordered listings."""

import base64
from collections.abc import Callable
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError

T = TypeVar("T")


class NameCursor(BaseModel):
    """Position after the last row of a page ordered by (name, id)."""

    name: str
    id: UUID


def encode_cursor(name: str, id_value: UUID) -> str:
    """Encode the (name, id) of the last row returned into an opaque cursor."""
    raw = NameCursor(name=name, id=id_value).model_dump_json().encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def decode_cursor(cursor: str) -> NameCursor:
    """Decode a cursor produced by encode_cursor.

    Raises:
        ValueError: If the cursor is not one we issued
    """
    padded = cursor + "=" * (-len(cursor) % 4)
    try:
        return NameCursor.model_validate_json(base64.urlsafe_b64decode(padded))
    except (ValueError, ValidationError) as e:
        raise ValueError("Invalid cursor") from e


class CursorPage(BaseModel, Generic[T]):
    """A page of results with cursor pagination."""

    items: list[T] = Field(..., description="The items in this page")
    next_cursor: str | None = Field(
        None, description="Cursor for the next page, null if no more results"
    )
    has_more: bool = Field(..., description="Whether there are more results")


def paginate(
    rows: list[T],
    limit: int,
    position: Callable[[T], tuple[str, UUID]],
) -> CursorPage[T]:
    """Build a page from rows fetched with limit + 1.

    Args:
        rows: Rows in (name, id) order, at most limit + 1 of them
        limit: Requested page size
        position: Returns the (name, id) ordering key of a row
    """
    has_more = len(rows) > limit
    items = rows[:limit]
    next_cursor = encode_cursor(*position(items[-1])) if has_more and items else None
    return CursorPage(items=items, next_cursor=next_cursor, has_more=has_more)
