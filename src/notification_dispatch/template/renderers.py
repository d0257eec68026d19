"""Template renderers.

Both renderers are pure: the same template and data always produce the same
message, and a placeholder with no value raises ``MissingPlaceholderError``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ..domain.values import RenderedMessage
from ..primitives.exceptions import MissingPlaceholderError

if TYPE_CHECKING:
    from ..domain.template import NotificationTemplate


# {{ key }} or {{ key | default }}; keys may be dotted paths.
_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][\w.]*)\s*(?:\|\s*(.*?)\s*)?\}\}")
_MISSING = object()


@runtime_checkable
class ITemplateRenderer(Protocol):
    def render(
        self, template: NotificationTemplate, data: Mapping[str, Any]
    ) -> RenderedMessage: ...


def _lookup(data: Mapping[str, Any], path: str) -> Any:
    current: Any = data
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


class PlaceholderRenderer(ITemplateRenderer):
    """
    Substitutes ``{{key}}`` tokens. No external dependencies.

    Dotted keys (``{{order.id}}``) walk nested mappings. ``{{key|text}}``
    falls back to *text* when the key is absent. Keys in *data* that no
    token references are ignored.
    """

    def _render_text(self, text: str, data: Mapping[str, Any], name: str) -> str:
        def _substitute(match: re.Match[str]) -> str:
            key, default = match.group(1), match.group(2)
            value = _lookup(data, key)
            if value is _MISSING:
                if default is None:
                    raise MissingPlaceholderError(key, name)
                return default
            return "" if value is None else str(value)

        return _PLACEHOLDER.sub(_substitute, text)

    def render(
        self, template: NotificationTemplate, data: Mapping[str, Any]
    ) -> RenderedMessage:
        subject = None
        if template.subject_template:
            subject = self._render_text(template.subject_template, data, template.name)
        body = self._render_text(template.body_template, data, template.name)
        return RenderedMessage(subject=subject, body=body)


class JinjaTemplateRenderer(ITemplateRenderer):
    """
    Renders templates with Jinja2 under ``StrictUndefined``.

    Install with the ``jinja2`` extra.
    """

    def __init__(self) -> None:
        try:
            import jinja2
        except ImportError as e:
            raise ImportError(
                "Jinja2 is required. Install with: "
                "pip install 'notification-dispatch[jinja2]'"
            ) from e
        self._jinja2 = jinja2
        self._env = jinja2.Environment(  # noqa: S701 - plain-text notifications
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
        )

    def _render_text(self, text: str, data: Mapping[str, Any], name: str) -> str:
        try:
            return self._env.from_string(text).render(**data)
        except self._jinja2.UndefinedError as exc:
            match = re.search(r"'([^']+)' is undefined", str(exc))
            placeholder = match.group(1) if match else str(exc)
            raise MissingPlaceholderError(placeholder, name) from exc

    def render(
        self, template: NotificationTemplate, data: Mapping[str, Any]
    ) -> RenderedMessage:
        subject = None
        if template.subject_template:
            subject = self._render_text(template.subject_template, data, template.name)
        body = self._render_text(template.body_template, data, template.name)
        return RenderedMessage(subject=subject, body=body)
