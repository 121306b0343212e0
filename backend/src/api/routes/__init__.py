"""HTTP API route handlers."""

from . import action_cards, chat, conversations, system, vault

__all__ = ["chat", "vault", "action_cards", "conversations", "system"]
