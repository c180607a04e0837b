"""Prompt loading and rendering from YAML/Jinja2 templates.

Every prompt the agent sends lives as a YAML file with Jinja2 templates in
the bundled ``prompts/`` directory. A bare name resolves to that directory;
anything with a ``.yaml`` suffix is treated as a path, so hosts can
override a prompt with their own file.

YAML format::

    name: chain_analysis
    version: "1.0"
    description: Chain-of-Thought step 1, problem analysis
    messages:
      - role: user
        content: |
          GOAL: {{ goal }}
          {% for name in tool_names %}- {{ name }}
          {% endfor %}

Usage::

    from llm_agent.prompts import render_prompt

    messages = render_prompt("chain_analysis", goal=goal, context=ctx, tool_names=names)
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from jinja2 import BaseLoader, Environment, StrictUndefined, TemplateNotFound

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"
"""Directory of bundled prompt templates."""


class _YAMLInlineLoader(BaseLoader):
    """Jinja2 loader for inline strings (no filesystem template inheritance)."""

    def get_source(
        self, environment: Environment, template: str
    ) -> tuple[str, str | None, None]:
        raise TemplateNotFound(template)


# Single shared environment; StrictUndefined so missing vars fail loud.
_env = Environment(loader=_YAMLInlineLoader(), undefined=StrictUndefined)


def resolve_prompt_path(template: str | Path) -> Path:
    path = Path(template)
    if path.suffix not in (".yaml", ".yml"):
        return PROMPTS_DIR / f"{path.name}.yaml"
    if not path.is_absolute():
        path = Path.cwd() / path
    return path


@lru_cache(maxsize=64)
def _load_messages(path: Path) -> tuple[tuple[str, str], ...]:
    if not path.exists():
        raise FileNotFoundError(f"Prompt template not found: {path}")

    raw = yaml.safe_load(path.read_text(encoding="utf-8"))

    if not isinstance(raw, dict):
        raise ValueError(f"Prompt YAML must be a mapping, got {type(raw).__name__}: {path}")

    messages_raw = raw.get("messages")
    if not messages_raw:
        raise ValueError(f"Prompt YAML missing 'messages' key: {path}")

    if not isinstance(messages_raw, list):
        raise ValueError(f"'messages' must be a list, got {type(messages_raw).__name__}: {path}")

    out: list[tuple[str, str]] = []
    for i, msg in enumerate(messages_raw):
        if not isinstance(msg, dict) or "role" not in msg or "content" not in msg:
            raise ValueError(f"Message {i} must have 'role' and 'content' keys: {path}")
        out.append((str(msg["role"]), str(msg["content"])))
    return tuple(out)


def render_prompt(
    template: str | Path,
    **context: Any,
) -> list[dict[str, str]]:
    """Load a YAML prompt template and render Jinja2 placeholders.

    Args:
        template: Bundled prompt name (``"tree_root"``) or path to a YAML file.
        **context: Variables to substitute into Jinja2 templates.

    Returns:
        List of message dicts (OpenAI chat format): [{"role": ..., "content": ...}]

    Raises:
        FileNotFoundError: If the template doesn't exist.
        yaml.YAMLError: If YAML is malformed.
        jinja2.UndefinedError: If a template variable is missing from context.
        ValueError: If YAML structure is invalid (no messages key, bad format).
    """
    path = resolve_prompt_path(template)
    messages = [
        {"role": role, "content": _env.from_string(content).render(**context).strip()}
        for role, content in _load_messages(path)
    ]

    logger.debug(
        "Rendered prompt %s (%d messages, %d total chars)",
        path.name,
        len(messages),
        sum(len(m["content"]) for m in messages),
    )
    return messages


def render_text(template: str | Path, **context: Any) -> str:
    """Content of the first rendered message, for single-message prompts."""
    return render_prompt(template, **context)[0]["content"]


__all__ = ["PROMPTS_DIR", "render_prompt", "render_text", "resolve_prompt_path"]
