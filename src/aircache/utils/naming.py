"""
Name normalisation and deterministic attachment paths.

Every function here is pure: the same input always yields the same output,
which is what lets the attachment pipeline find files it already fetched.
"""

import hashlib
import os
import re

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")

MAX_FILENAME_LENGTH = 100
URL_HASH_LENGTH = 8


def normalize_key(name: str) -> str:
    """Lowercase and drop everything but ASCII letters and digits.

    ``"Client Projects"`` -> ``"clientprojects"``.
    """
    return _NON_ALNUM.sub("", name.lower())


def sanitize_filename(filename: str) -> str:
    """Replace unsafe characters with ``_`` and cap the length at 100.

    A name made only of dots (``.``, ``..``) becomes ``_`` so it can never
    name the current or parent directory.
    """
    safe = _UNSAFE_FILENAME_CHARS.sub("_", filename)[:MAX_FILENAME_LENGTH]
    if safe and not safe.strip("."):
        return "_"
    return safe


def url_hash(url: str) -> str:
    """First 8 hex chars of the SHA-256 of a URL."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:URL_HASH_LENGTH]


def attachment_filename(filename: str | None, url: str, attachment_id: str) -> str:
    """
    Build the on-disk filename for an attachment.

    The URL hash goes in front of the extension so two files with the same
    name in one field do not collide: ``report.pdf`` -> ``report_1a2b3c4d.pdf``.
    An empty filename falls back to ``attachment_{id}``.
    """
    safe = sanitize_filename(filename or "")
    if not safe:
        safe = sanitize_filename(f"attachment_{attachment_id}")
    stem, ext = os.path.splitext(safe)
    if not stem:
        # dotfile such as ".env": treat the whole thing as the stem
        stem, ext = safe, ""
    return f"{stem}_{url_hash(url)}{ext}"


def attachment_relative_path(
    table_name: str,
    record_id: str,
    field_name: str,
    filename: str | None,
    url: str,
    attachment_id: str,
) -> str:
    """``table/record/field/<sanitised name>_<urlhash8><ext>``, always with ``/``."""
    return "/".join(
        [
            sanitize_filename(table_name),
            sanitize_filename(record_id),
            sanitize_filename(field_name) or "field",
            attachment_filename(filename, url, attachment_id),
        ]
    )
