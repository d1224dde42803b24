"""
Placeholder interpolation for notification texts.

WHAT: Replaces #{object.path} placeholders (e.g. #{ticket.title},
#{ticket.customer.firstname}, #{article.from}) with snapshot values.

WHY: Trigger texts are written by administrators, so evaluation runs
in a Jinja2 sandbox and only accepts dotted attribute paths. Paths that
do not resolve render as settings.NOTIFICATION_UNKNOWN_VALUE instead of
failing the notification.
"""

import functools
import logging
import re
from enum import Enum
from typing import Any, Mapping, Optional

from jinja2 import ChainableUndefined, Undefined
from jinja2.sandbox import SandboxedEnvironment

from helpdesk.core.config import settings

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"#\{\s*([^}]*?)\s*\}")
ATTRIBUTE_PATH = re.compile(r"[A-Za-z][A-Za-z0-9_]*(\.[A-Za-z][A-Za-z0-9_]*)*")

# Template spelling → attribute name
SEGMENT_ALIASES = {"from": "from_"}

# Compiled paths kept per interpolator
COMPILED_CACHE_SIZE = 512


class UnknownValue(ChainableUndefined):
    """Renders unresolvable paths as the configured placeholder."""

    def __str__(self) -> str:
        return settings.NOTIFICATION_UNKNOWN_VALUE


class TemplateInterpolator:
    """
    Evaluates placeholder paths against a mapping of snapshot objects.
    """

    def __init__(self, cache_size: int = COMPILED_CACHE_SIZE):
        self._env = SandboxedEnvironment(undefined=UnknownValue)
        self._compile = functools.lru_cache(maxsize=cache_size)(self._compile_path)

    def _compile_path(self, path: str):
        return self._env.compile_expression(path, undefined_to_none=False)

    def resolve(self, path: str, objects: Mapping[str, Any]) -> Optional[Any]:
        """
        Value at a dotted path, or None if it does not resolve.
        """
        if not ATTRIBUTE_PATH.fullmatch(path):
            return None
        segments = [SEGMENT_ALIASES.get(segment, segment) for segment in path.split(".")]
        if any(segment.startswith("model_") for segment in segments):
            return None

        value = self._compile(".".join(segments))(**objects)
        if isinstance(value, Undefined) or callable(value):
            return None
        return value

    def render(self, template: Optional[str], objects: Mapping[str, Any]) -> str:
        """
        Replace every #{path} placeholder in template.

        Args:
            template: Text with placeholders (None renders as "")
            objects: Name → snapshot, e.g. {"ticket": ..., "article": ...}

        Returns:
            Rendered text
        """
        if not template:
            return ""

        def replace(match: "re.Match[str]") -> str:
            value = self.resolve(match.group(1), objects)
            if value is None:
                logger.debug(f"Placeholder '{match.group(1)}' did not resolve")
                return settings.NOTIFICATION_UNKNOWN_VALUE
            if isinstance(value, Enum):
                value = value.value
            return str(value)

        return PLACEHOLDER.sub(replace, template)


interpolator = TemplateInterpolator()
