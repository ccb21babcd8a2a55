"""
Tests for project key derivation and display id generation/parsing.
"""

import pytest

from task_ledger.errors import ValidationError
from task_ledger.ids import (
    CHARSET,
    DisplayId,
    generate_hash,
    generate_key,
    key_candidates,
    new_document_id,
    new_task_id,
    parse_display_id,
    validate_key,
)


class TestGenerateKey:
    """Project keys come from the first alphabetic characters of a name."""

    def test_takes_first_four_letters(self):
        assert generate_key("Auth Service") == "AUTH"
        assert generate_key("Authentication") == "AUTH"

    def test_skips_non_alphabetic(self):
        assert generate_key("3D Print-Farm") == "DPRI"
        assert generate_key("a-b") == "AB"

    def test_short_names_keep_what_they_have(self):
        assert generate_key("Go") == "GO"
        assert generate_key("ops") == "OPS"

    def test_rejects_fewer_than_two_letters(self):
        with pytest.raises(ValidationError, match="need at least 2 alpha characters"):
            generate_key("X 123")
        with pytest.raises(ValidationError):
            generate_key("")


class TestValidateKey:

    @pytest.mark.parametrize("key", ["AB", "AUTH", "AUTH2", "X9Y"])
    def test_accepts_valid_keys(self, key):
        validate_key(key)

    @pytest.mark.parametrize("key", ["A", "TOOLONG"])
    def test_rejects_bad_length(self, key):
        with pytest.raises(ValidationError, match="must be 2-5 characters"):
            validate_key(key)

    @pytest.mark.parametrize("key", ["auth", "AU-T", "AÜ"])
    def test_rejects_bad_characters(self, key):
        with pytest.raises(ValidationError, match="uppercase alphanumeric"):
            validate_key(key)


class TestKeyCandidates:

    def test_fallbacks_use_four_character_prefix(self):
        candidates = list(key_candidates("AUTH"))
        assert candidates[0] == "AUTH"
        assert candidates[1:] == [f"AUTH{d}" for d in range(2, 10)]

    def test_five_character_key_is_truncated(self):
        assert list(key_candidates("ABCDE"))[1] == "ABCD2"


class TestDisplayIds:
    """Display ids round-trip through the parser."""

    def test_hash_uses_unambiguous_alphabet(self):
        for _ in range(50):
            value = generate_hash()
            assert len(value) == 5
            assert all(ch in CHARSET for ch in value)
        for ambiguous in "0O1IL":
            assert ambiguous not in CHARSET
        assert len(CHARSET) == 31

    def test_task_and_document_ids_round_trip(self):
        task_id = new_task_id("AUTH")
        parsed = parse_display_id(task_id)
        assert parsed.key == "AUTH"
        assert parsed.entity_type == "task"
        assert f"{parsed.key}-T{parsed.hash}" == task_id

        doc_id = new_document_id("AB2")
        assert parse_display_id(doc_id).entity_type == "document"

    def test_bare_key_is_a_project(self):
        assert parse_display_id("AUTH") == DisplayId("AUTH", "project", "")

    def test_rejects_wrong_suffix_length(self):
        with pytest.raises(ValidationError, match="suffix must be 6 chars"):
            parse_display_id("AUTH-TABC")

    def test_rejects_unknown_type(self):
        with pytest.raises(ValidationError, match="unknown type indicator"):
            parse_display_id("AUTH-XABCDE")

    def test_rejects_characters_outside_alphabet(self):
        with pytest.raises(ValidationError, match="invalid character"):
            parse_display_id("AUTH-TAB0DE")

    def test_rejects_invalid_key_part(self):
        with pytest.raises(ValidationError):
            parse_display_id("auth-TABCDE")
