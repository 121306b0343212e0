"""Jinja2-based prompt template loader for the vault assistant.

Templates ship in backend/prompts/ and are rendered with context variables on
every call, so prompts can be edited without restarting the server. Inline
copies of the shipped templates are used when the directory or a file is missing.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import jinja2

logger = logging.getLogger(__name__)

# backend/src/services/prompt_loader.py -> backend/prompts/
DEFAULT_PROMPTS_DIR = Path(__file__).resolve().parent.parent.parent / "prompts"

ASSISTANT_SYSTEM_PROMPT = "assistant/system.md"
REFLECTION_PROMPT = "reflection/validate.md"

_INLINE_PROMPTS: Dict[str, str] = {
    ASSISTANT_SYSTEM_PROMPT: """You are a helpful assistant that manages an Obsidian vault.

## Resolving files and folders

1. Call obsidian_list_files_in_vault() whenever a file or folder name must be resolved.
2. Compare names loosely: ignore emojis, case, surrounding whitespace and inner spaces,
   and assume a .md extension for files.
3. Once matched, pass the exact vault path (emojis included) to every tool call.
   Folder paths are passed without a trailing slash.
4. When several paths match, list up to five and ask which one is meant.
5. When nothing matches, say that the file or folder does not exist.

## Conduct

- Interpret the user's intent generously, including synonyms and typos.
- Present listings and file contents as Markdown lists or code blocks.
- After each action, state briefly what was done.
- If a tool fails, explain why and suggest a next step.

## Changing the vault

When asked to append to, create, delete, move or patch a file, resolve the file
and call the tool immediately. Do not ask for confirmation in text: the system
asks the user to confirm destructive operations and tells you when an operation
was rejected or is awaiting confirmation.

{% if vault_name %}Current vault: {{ vault_name }}
{% endif %}""",
    REFLECTION_PROMPT: """You are validating a file operation for safety in an Obsidian vault management system.

Operation: {{ tool_name }}
Arguments: {{ arguments_json }}

Validation criteria:
1. The file path is exact and unambiguous (no wildcards, one clear target)
2. The operation is reversible or the user has confirmed it through the UI
3. Minimal data loss risk (no bulk deletes, no overwriting without a backup)
4. Path safety (no system directories or dangerous paths)

A 'confirm' field in the arguments is part of the tool schema. It is NOT a user confirmation.

Operation-specific rules:
{% for name in always_confirm %}- {{ name }}: ALWAYS set needsUserConfirmation=true
{% endfor %}- obsidian_append_content: generally safe, low risk
- read, list and search tools: safe, read-only

Respond with JSON only, in exactly this shape:
{
  "shouldReject": true/false,
  "needsUserConfirmation": true/false,
  "reason": "brief explanation of the decision",
  "actionDescription": "human-readable description of what will happen",
  "safetyChecks": ["check1", "check2"],
  "warnings": ["warning1"]
}

Guidelines:
- When in doubt, request confirmation
- Reject operations that are clearly dangerous or malformed
- Keep reason and actionDescription short
- List the safety checks you performed
- Add warnings for issues that do not block the operation
""",
}


class PromptLoaderError(Exception):
    """Raised when a prompt cannot be loaded."""

    pass


class PromptLoader:
    """Load and render Jinja2 prompt templates.

    Example:
        >>> loader = PromptLoader()
        >>> system_prompt = loader.load("assistant/system.md", {"vault_name": "Notes"})
    """

    def __init__(self, prompts_dir: Optional[Path] = None) -> None:
        self.prompts_dir = prompts_dir or DEFAULT_PROMPTS_DIR

        if self.prompts_dir.is_dir():
            self.env = jinja2.Environment(
                loader=jinja2.FileSystemLoader(str(self.prompts_dir)),
                autoescape=False,  # Prompts are markdown, not HTML
                auto_reload=True,
                keep_trailing_newline=True,
            )
            logger.debug(
                "PromptLoader initialized with filesystem templates",
                extra={"prompts_dir": str(self.prompts_dir)},
            )
        else:
            self.env = None
            logger.info(
                "Prompts directory not found, using inline prompts",
                extra={"prompts_dir": str(self.prompts_dir)},
            )

    def load(self, path: str, context: Optional[Dict[str, Any]] = None) -> str:
        """Render a prompt template, preferring the filesystem over inline prompts.

        Raises:
            PromptLoaderError: If the template is unknown or fails to render.
        """
        context = context or {}

        if self.env is not None:
            try:
                return self.env.get_template(path).render(**context)
            except jinja2.TemplateNotFound:
                logger.debug(
                    "Template not found in filesystem, trying inline fallback",
                    extra={"path": path},
                )
            except jinja2.TemplateError as e:
                logger.error("Failed to render template", extra={"path": path, "error": str(e)})
                raise PromptLoaderError(f"Failed to render template {path}: {e}") from e

        return self._render_inline(path, context)

    def _render_inline(self, path: str, context: Dict[str, Any]) -> str:
        template_str = _INLINE_PROMPTS.get(path)
        if template_str is None:
            logger.warning(
                "No inline fallback for prompt path",
                extra={"path": path, "available": list(_INLINE_PROMPTS)},
            )
            raise PromptLoaderError(
                f"Prompt not found: {path}. Available inline prompts: {list(_INLINE_PROMPTS)}"
            )

        try:
            return jinja2.Template(template_str).render(**context)
        except jinja2.TemplateError as e:
            logger.error("Failed to render inline template", extra={"path": path, "error": str(e)})
            raise PromptLoaderError(f"Failed to render inline template {path}: {e}") from e

    def list_available(self) -> Dict[str, list[str]]:
        """List template paths found on disk and available inline."""
        result: Dict[str, list[str]] = {"filesystem": [], "inline": sorted(_INLINE_PROMPTS)}
        if self.prompts_dir.is_dir():
            for md_file in self.prompts_dir.rglob("*.md"):
                result["filesystem"].append(md_file.relative_to(self.prompts_dir).as_posix())
        return result


__all__ = [
    "PromptLoader",
    "PromptLoaderError",
    "DEFAULT_PROMPTS_DIR",
    "ASSISTANT_SYSTEM_PROMPT",
    "REFLECTION_PROMPT",
]
