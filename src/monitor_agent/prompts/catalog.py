"""Prompt catalog: single source of truth for every AI prompt.

Loads prompts from ``templates.yaml`` (next to this module).  A user
override file at ``~/.monitor_agent/prompt_overrides.yaml`` and an optional
project file are deep-merged on top of the built-in defaults.

Templates use ``$name`` placeholders so code and JSON braces in the
prompt text need no escaping.
"""

from __future__ import annotations

import logging
from pathlib import Path
from string import Template
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_BUILTIN_YAML = Path(__file__).resolve().parent / "templates.yaml"
_USER_OVERRIDE = Path.home() / ".monitor_agent" / "prompt_overrides.yaml"


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning an empty dict on failure."""
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Failed to load %s: %s", path, exc)
        return {}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base* (override wins)."""
    merged = dict(base)
    for k, v in override.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


class PromptCatalog:
    """Loads and serves prompts from the YAML catalog.

    Usage::

        catalog = PromptCatalog()
        system = catalog.system("plan")
        prompt = catalog.render("plan", title="Add CSV export", description="...")
    """

    def __init__(self, extra_path: Path | None = None, *, user_override: Path | None = None) -> None:
        self._extra_path = extra_path
        self._user_override = _USER_OVERRIDE if user_override is None else user_override
        self._data: dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        """Load built-in templates, then merge user and project overrides."""
        self._data = _load_yaml(_BUILTIN_YAML)
        for path, label in ((self._user_override, "prompt overrides"), (self._extra_path, "extra prompts")):
            if path and path.exists():
                overrides = _load_yaml(path)
                if overrides:
                    self._data = _deep_merge(self._data, overrides)
                    logger.info("Loaded %s from %s", label, path)

    def _entry(self, key: str) -> dict[str, Any]:
        entry = self._data.get("prompts", {}).get(key)
        if not isinstance(entry, dict):
            raise KeyError(f"Unknown prompt '{key}'")
        return entry

    def system(self, key: str) -> str:
        """Return the system prompt for *key* (plan, codegen, review, ...)."""
        return str(self._entry(key).get("system") or "").strip()

    def render(self, key: str, **values: Any) -> str:
        """Fill the user prompt for *key*; unknown placeholders are left as-is."""
        template = str(self._entry(key).get("user") or "").strip()
        return Template(template).safe_substitute({k: str(v) for k, v in values.items()})

    def keys(self) -> list[str]:
        return list(self._data.get("prompts", {}).keys())

    @property
    def raw(self) -> dict[str, Any]:
        """Direct access to the full parsed data."""
        return self._data
