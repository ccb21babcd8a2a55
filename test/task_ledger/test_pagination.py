"""
Tests for cursor encoding and page assembly.
"""

import base64

import pytest

from task_ledger.errors import ValidationError
from task_ledger.pagination import CursorData, decode_cursor, encode_cursor, resolve_limit, split_page


class TestCursorCodec:

    def test_round_trip(self):
        token = encode_cursor("2024-05-01T12:00:00.000000Z", "abc-123")
        assert decode_cursor(token) == CursorData("2024-05-01T12:00:00.000000Z", "abc-123")

    def test_token_is_url_safe_without_padding(self):
        token = encode_cursor("2024-05-01T12:00:00.000000Z", "?>?>?>")
        assert "=" not in token
        assert "+" not in token and "/" not in token

    def test_truncated_token_is_rejected(self):
        token = encode_cursor("2024-05-01T12:00:00.000000Z", "abc-123")
        with pytest.raises(ValidationError, match="Invalid cursor"):
            decode_cursor(token[:-6])

    @pytest.mark.parametrize("token", ["", "!!!!", "not-base64-at-all*"])
    def test_garbage_is_rejected(self, token):
        with pytest.raises(ValidationError, match="Invalid cursor"):
            decode_cursor(token)

    def test_missing_field_is_rejected(self):
        token = base64.urlsafe_b64encode(b'{"createdAt":"2024-01-01"}').decode().rstrip("=")
        with pytest.raises(ValidationError):
            decode_cursor(token)

    def test_non_object_is_rejected(self):
        token = base64.urlsafe_b64encode(b"[1, 2]").decode().rstrip("=")
        with pytest.raises(ValidationError):
            decode_cursor(token)


class TestPageHelpers:

    def test_resolve_limit_defaults_and_bounds(self):
        assert resolve_limit(None, 50, 200) == 50
        assert resolve_limit(10, 50, 200) == 10
        with pytest.raises(ValidationError):
            resolve_limit(0, 50, 200)
        with pytest.raises(ValidationError):
            resolve_limit(201, 50, 200)

    def test_split_page_emits_cursor_only_when_more_rows_exist(self):
        rows = [{"created_at": f"t{i}", "item_id": f"id{i}"} for i in range(3)]

        page, cursor = split_page(rows, 3, "item_id")
        assert page == rows and cursor is None

        page, cursor = split_page(rows, 2, "item_id")
        assert page == rows[:2]
        assert decode_cursor(cursor) == CursorData("t1", "id1")
