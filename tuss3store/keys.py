"""Helpers for upload identifiers, object keys and metadata values."""

from __future__ import annotations

import re

__all__ = [
    "key_with_prefix",
    "metadata_key_with_prefix",
    "sanitize_metadata_value",
    "split_ids",
]

# Every character that is not valid in a header value according to RFC 2616.
_NON_PRINTABLE = re.compile(r"[^\x09\x20-\x7E]")


def split_ids(upload_id: str) -> tuple[str, str]:
    """Split a combined id into the object id and the multipart upload id.

    Returns two empty strings if the id holds no ``+`` separator.
    """
    object_id, sep, multipart_id = upload_id.partition("+")
    if not sep:
        return "", ""
    return object_id, multipart_id


def _normalize_prefix(prefix: str) -> str:
    if prefix and not prefix.endswith("/"):
        return prefix + "/"
    return prefix


def key_with_prefix(prefix: str, key: str) -> str:
    """Prepend the object prefix, separated by a slash, to *key*."""
    return _normalize_prefix(prefix) + key


def metadata_key_with_prefix(metadata_prefix: str, object_prefix: str, key: str) -> str:
    """Prepend the metadata prefix, or the object prefix if it is empty, to *key*."""
    return _normalize_prefix(metadata_prefix or object_prefix) + key


def sanitize_metadata_value(value: str) -> str:
    """Replace every character not allowed in a header value with ``?``."""
    return _NON_PRINTABLE.sub("?", value)