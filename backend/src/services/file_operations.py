"""Best-effort detection of a file change described in assistant text.

This is a heuristic over free-form model output and will miss paraphrases.
Patterns are tried in order and the first match wins.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional, Tuple

from ..models.conversation import FileOperation, FileOperationAction

_TARGET = r"\s+(?:the\s+)?(?:file|note)\s+['\"]?([^'\"\n]+)['\"]?"

FILE_OPERATION_PATTERNS: Tuple[Tuple[re.Pattern[str], FileOperationAction], ...] = (
    (re.compile(r"(?:created|made|established)" + _TARGET, re.IGNORECASE), FileOperationAction.CREATED),
    (re.compile(r"(?:modified|updated|edited|changed)" + _TARGET, re.IGNORECASE), FileOperationAction.MODIFIED),
    (
        re.compile(r"(?:appended|added)\s+(?:to\s+)?(?:the\s+)?(?:file|note)\s+['\"]?([^'\"\n]+)['\"]?", re.IGNORECASE),
        FileOperationAction.APPENDED,
    ),
    (re.compile(r"(?:deleted|removed|erased)" + _TARGET, re.IGNORECASE), FileOperationAction.DELETED),
    (re.compile(r"(?:moved|relocated|transferred)" + _TARGET, re.IGNORECASE), FileOperationAction.MOVED),
)


def match_file_operation(text: str) -> Optional[Tuple[FileOperationAction, str]]:
    """Return (action, path) for the first matching pattern, if any."""
    if not text or not text.strip():
        return None
    for pattern, action in FILE_OPERATION_PATTERNS:
        match = pattern.search(text)
        if match:
            path = match.group(1).strip()
            if path:
                return action, path
    return None


def extract_file_operation(text: str, now: Optional[datetime] = None) -> Optional[FileOperation]:
    matched = match_file_operation(text)
    if matched is None:
        return None
    action, path = matched
    return FileOperation(action=action, file_path=path, timestamp=now or datetime.now(timezone.utc))


__all__ = ["FILE_OPERATION_PATTERNS", "match_file_operation", "extract_file_operation"]
