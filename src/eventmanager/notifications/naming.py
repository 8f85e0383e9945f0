"""
Template naming helpers for EventManager notifications.

Templates carry their module inside the persisted name as ``base::module``.
These helpers split and compose that composite name and normalize the
loosely typed state flag found on template rows.
"""

from dataclasses import dataclass
from typing import Any, Optional

from ..core.models import TemplateState

TEMPLATE_NAME_SEPARATOR = "::"

DEFAULT_MODULE = "General"


@dataclass(frozen=True)
class TemplateName:
    """A template's base name and module tag (None when unresolved)."""

    base: str
    module: Optional[str] = None

    def resolved_module(self, default: str = DEFAULT_MODULE) -> str:
        return self.module or default

    def compose(self) -> str:
        return compose_template_name(self.base, self.module or "")


def split_template_name(raw: Any) -> TemplateName:
    """
    Split a stored name on the last separator.

    Args:
        raw: Persisted composite name

    Returns:
        TemplateName; module is None when no separator is present or the
        base part would be empty
    """
    if not isinstance(raw, str):
        return TemplateName("", None)

    value = raw.strip()
    if not value:
        return TemplateName("", None)

    index = value.rfind(TEMPLATE_NAME_SEPARATOR)
    if index == -1:
        return TemplateName(value, None)

    base = value[:index].strip()
    module = value[index + len(TEMPLATE_NAME_SEPARATOR):].strip()

    if not base:
        return TemplateName(value, None)

    return TemplateName(base, module or None)


def compose_template_name(base: str = "", module: str = "") -> str:
    """
    Build the persisted name from a base name and module.

    Any module already embedded in ``base`` is dropped first. An empty module
    yields the bare base name.
    """
    trimmed_base = split_template_name(base or "").base.strip()
    trimmed_module = (module or "").strip()

    if not trimmed_base:
        return ""
    if not trimmed_module:
        return trimmed_base

    return f"{trimmed_base}{TEMPLATE_NAME_SEPARATOR}{trimmed_module}"


def normalize_state(value: Any) -> Optional[TemplateState]:
    """Map a boolean, number or free-text flag onto Activo/Inactivo."""
    if isinstance(value, TemplateState):
        return value
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return TemplateState.ACTIVE if value else TemplateState.INACTIVE
    if isinstance(value, (int, float)):
        return TemplateState.ACTIVE if value > 0 else TemplateState.INACTIVE
    if isinstance(value, str):
        lowered = value.strip().lower()
        if not lowered:
            return None
        if lowered.startswith("inac") or lowered in ("inactive", "false", "0"):
            return TemplateState.INACTIVE
        return TemplateState.ACTIVE
    return None


def is_active(value: Any) -> bool:
    return normalize_state(value) == TemplateState.ACTIVE
