"""
Opaque seek-pagination cursors over (created_at, id) pairs.
"""

import base64
import binascii
import json
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from .errors import ValidationError


class CursorData(NamedTuple):
    created_at: str
    id: str


def encode_cursor(created_at: str, entity_id: str) -> str:
    """Encode the sort key of the last row on a page as a base64url token."""
    payload = json.dumps({"createdAt": created_at, "id": entity_id}, separators=(",", ":"))
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(token: str) -> CursorData:
    """
    Decode a token produced by encode_cursor.

    Raises:
        ValidationError: If the token is not valid base64url JSON or lacks
            either field
    """
    try:
        padded = token + "=" * (-len(token) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError):
        raise ValidationError("Invalid cursor")

    if not isinstance(data, dict):
        raise ValidationError("Invalid cursor")
    created_at = data.get("createdAt")
    entity_id = data.get("id")
    if not isinstance(created_at, str) or not isinstance(entity_id, str) or not created_at or not entity_id:
        raise ValidationError("Invalid cursor")
    return CursorData(created_at, entity_id)


def resolve_limit(limit: Optional[int], default: int, maximum: int) -> int:
    """Apply the default page size and reject out-of-range limits."""
    if limit is None:
        return default
    if limit < 1 or limit > maximum:
        raise ValidationError(f"limit must be between 1 and {maximum}")
    return limit


def split_page(rows: List[Dict[str, Any]], limit: int, id_column: str) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """
    Trim a `limit + 1` row fetch to one page.

    Returns the page rows and a cursor for the next page, or None when the
    extra row was not found.
    """
    if len(rows) <= limit:
        return rows, None
    page = rows[:limit]
    last = page[-1]
    return page, encode_cursor(last["created_at"], last[id_column])
