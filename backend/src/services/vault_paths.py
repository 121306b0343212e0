"""Vault path normalization shared by direct vault operations."""

from __future__ import annotations

import posixpath


def normalize_vault_path(path: str) -> str:
    """Normalize a user-supplied vault path.

    Trims whitespace, converts backslashes, drops a trailing slash and adds
    ``.md`` when the last segment has no extension. Paths given with a
    trailing slash are folders and never get an extension.
    """
    cleaned = (path or "").strip().replace("\\", "/")
    if not cleaned:
        return cleaned
    is_folder = cleaned.endswith("/")
    cleaned = cleaned.rstrip("/")
    if not cleaned or is_folder:
        return cleaned
    if not posixpath.splitext(posixpath.basename(cleaned))[1]:
        cleaned = f"{cleaned}.md"
    return cleaned


__all__ = ["normalize_vault_path"]
