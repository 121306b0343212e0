"""In-process store of tool calls paused until the user confirms them."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from ..models.reflection import ActionCardPayload, ReflectionVerdict
from ..models.tools import ToolArguments

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingConfirmation:
    """Everything needed to resume a paused tool call exactly as requested."""

    tool_name: str
    arguments: ToolArguments
    verdict: ReflectionVerdict
    action_card: Optional[ActionCardPayload] = None


class PendingConfirmationStore:
    """Thread-safe token -> PendingConfirmation map with optional expiry.

    Entries older than ``ttl_seconds`` are treated as absent and purged on the
    next access. A ttl of 0 keeps entries until they are consumed.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[PendingConfirmation, float]] = {}
        self._lock = threading.Lock()

    def _purge_locked(self) -> None:
        if not self._ttl:
            return
        now = self._clock()
        stale = [
            token
            for token, (_, stored_at) in self._entries.items()
            if now - stored_at >= self._ttl
        ]
        for token in stale:
            del self._entries[token]
        if stale:
            logger.info(f"Expired {len(stale)} pending confirmation(s)")

    def set(self, token: str, entry: PendingConfirmation) -> None:
        with self._lock:
            self._purge_locked()
            self._entries[token] = (entry, self._clock())

    def get(self, token: str) -> Optional[PendingConfirmation]:
        with self._lock:
            self._purge_locked()
            stored = self._entries.get(token)
            return stored[0] if stored else None

    def pop(self, token: str) -> Optional[PendingConfirmation]:
        """Remove and return an entry; at most one caller ever receives it."""
        with self._lock:
            self._purge_locked()
            stored = self._entries.pop(token, None)
            return stored[0] if stored else None

    def remove(self, token: str) -> bool:
        return self.pop(token) is not None

    def __len__(self) -> int:
        with self._lock:
            self._purge_locked()
            return len(self._entries)

    def __contains__(self, token: object) -> bool:
        with self._lock:
            self._purge_locked()
            return token in self._entries


__all__ = ["PendingConfirmation", "PendingConfirmationStore"]
