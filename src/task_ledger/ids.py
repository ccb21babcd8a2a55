"""
Human-readable identifiers for projects, tasks and documents.

Project keys are short uppercase tags derived from the project name ("AUTH").
Tasks and documents get display ids of the form ``<KEY>-T<hash>`` and
``<KEY>-D<hash>`` where the hash avoids visually ambiguous characters.
"""

import re
import secrets
from typing import Iterator, NamedTuple

from .errors import ValidationError

# No 0, O, 1, I or L
CHARSET = "23456789ABCDEFGHJKMNPQRSTUVWXYZ"
HASH_LENGTH = 5
MAX_DISPLAY_ID_ATTEMPTS = 10

TYPE_CHARS = {"T": "task", "D": "document"}

_KEY_PATTERN = re.compile(r"^[A-Z0-9]+$")


class DisplayId(NamedTuple):
    """Parsed form of a display id."""

    key: str
    entity_type: str
    hash: str


def generate_hash() -> str:
    """Return a random hash drawn from CHARSET."""
    return "".join(secrets.choice(CHARSET) for _ in range(HASH_LENGTH))


def generate_key(name: str) -> str:
    """
    Derive a project key from the first 2-4 alphabetic characters of a name.

    Raises:
        ValidationError: If the name has fewer than 2 alphabetic characters
    """
    letters = []
    for ch in name:
        if ch.isascii() and ch.isalpha():
            letters.append(ch.upper())
        if len(letters) == 4:
            break
    if len(letters) < 2:
        raise ValidationError(
            f'cannot auto-generate key from "{name}": need at least 2 alpha characters'
        )
    return "".join(letters)


def validate_key(key: str) -> None:
    """Check that an explicit project key is 2-5 uppercase alphanumerics."""
    if len(key) < 2 or len(key) > 5:
        raise ValidationError(f'invalid key "{key}": must be 2-5 characters')
    if not _KEY_PATTERN.match(key):
        raise ValidationError(f'invalid key "{key}": must be uppercase alphanumeric (no dashes)')


def key_candidates(key: str) -> Iterator[str]:
    """Yield the key itself, then its digit-suffixed fallbacks 2..9."""
    yield key
    for digit in range(2, 10):
        yield key[:4] + str(digit)


def new_task_id(project_key: str) -> str:
    validate_key(project_key)
    return f"{project_key}-T{generate_hash()}"


def new_document_id(project_key: str) -> str:
    validate_key(project_key)
    return f"{project_key}-D{generate_hash()}"


def parse_display_id(display_id: str) -> DisplayId:
    """
    Split a display id into project key, entity type and hash.

    A bare project key parses as entity type "project" with an empty hash.

    Raises:
        ValidationError: For a bad key part, suffix length, type indicator
            or hash character
    """
    idx = display_id.rfind("-")
    if idx < 0:
        validate_key(display_id)
        return DisplayId(display_id, "project", "")

    key = display_id[:idx]
    suffix = display_id[idx + 1:]
    validate_key(key)

    if len(suffix) != HASH_LENGTH + 1:
        raise ValidationError(
            f'invalid id "{display_id}": suffix must be {HASH_LENGTH + 1} chars'
        )

    type_char, hash_part = suffix[0], suffix[1:]
    entity_type = TYPE_CHARS.get(type_char)
    if entity_type is None:
        raise ValidationError(
            f'invalid id "{display_id}": unknown type indicator "{type_char}"'
        )

    for ch in hash_part:
        if ch not in CHARSET:
            raise ValidationError(
                f'invalid id "{display_id}": invalid character "{ch}" in hash'
            )

    return DisplayId(key, entity_type, hash_part)
