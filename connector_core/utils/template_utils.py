"""
``{{name}}`` template compilation and rendering.

A template string is parsed once into a tuple of literal and reference
segments (cached per distinct source string), then rendered against the
resolved parameter values on every call.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Union

from ..exceptions import ConfigError, missing_required
from .json_utils import dumps

TOKEN_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_.-]*)\s*\}\}")


class _Omit:
    """Marker for a value whose optional reference was not supplied."""

    def __repr__(self) -> str:
        return "OMIT"


OMIT = _Omit()


@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class Reference:
    name: str


Segment = Union[Literal, Reference]


@dataclass(frozen=True)
class CompiledTemplate:
    source: str
    segments: Tuple[Segment, ...]

    @property
    def references(self) -> Tuple[str, ...]:
        return tuple(s.name for s in self.segments if isinstance(s, Reference))

    @property
    def is_literal(self) -> bool:
        return not self.references

    @property
    def is_pure_reference(self) -> bool:
        return len(self.segments) == 1 and isinstance(self.segments[0], Reference)


@lru_cache(maxsize=2048)
def compile_template(source: str) -> CompiledTemplate:
    """
    Parse ``source`` into literal/reference segments.

    Raises:
        ConfigError: unbalanced braces or an invalid reference name
    """
    segments = []
    position = 0
    for match in TOKEN_PATTERN.finditer(source):
        literal = source[position : match.start()]
        _check_literal(source, literal)
        if literal:
            segments.append(Literal(literal))
        segments.append(Reference(match.group(1)))
        position = match.end()

    tail = source[position:]
    _check_literal(source, tail)
    if tail:
        segments.append(Literal(tail))

    return CompiledTemplate(source=source, segments=tuple(segments))


def _check_literal(source: str, literal: str) -> None:
    if "{{" in literal or "}}" in literal:
        raise ConfigError(f"Malformed template: {source!r}", template=source)


def compile_structure(value: Any) -> None:
    """Compile every template string inside a nested dict/list, failing fast on bad ones."""
    if isinstance(value, str):
        compile_template(value)
    elif isinstance(value, dict):
        for item in value.values():
            compile_structure(item)
    elif isinstance(value, list):
        for item in value:
            compile_structure(item)


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return dumps(value)


class TemplateRenderer:
    """
    Renders compiled templates against resolved values.

    Args:
        values: Caller parameters merged over schema defaults
        required: Names whose absence is a hard error; absent optional
            names make the enclosing key disappear
    """

    def __init__(self, values: Dict[str, Any], required: Iterable[str] = ()):
        self.values = values
        self.required = set(required)

    def _lookup(self, name: str, required: bool) -> Any:
        if name in self.values:
            return self.values[name]
        if required or name in self.required:
            raise missing_required(name)
        return OMIT

    def render_text(
        self,
        source: str,
        quote: Optional[Callable[[str], str]] = None,
        all_required: bool = False,
    ) -> Any:
        """Render a template into a string, or OMIT if an optional reference is missing."""
        template = compile_template(source)
        if template.is_literal:
            return source

        parts = []
        for segment in template.segments:
            if isinstance(segment, Literal):
                parts.append(segment.text)
                continue
            value = self._lookup(segment.name, all_required)
            if value is OMIT:
                return OMIT
            text = _as_text(value)
            parts.append(quote(text) if quote else text)
        return "".join(parts)

    def render_value(self, value: Any, native: bool) -> Any:
        """
        Render a nested template structure.

        Args:
            value: Literal or template string, dict or list
            native: Keep the raw type of a value substituted for a template
                that is a single reference (JSON bodies). Otherwise the
                value is JSON-encoded into text (query params, headers).
        """
        if isinstance(value, str):
            template = compile_template(value)
            if template.is_literal:
                return value
            if template.is_pure_reference:
                raw = self._lookup(template.references[0], False)
                if raw is OMIT or native:
                    return raw
                return _as_text(raw)
            return self.render_text(value)

        if isinstance(value, dict):
            rendered = {}
            for key, item in value.items():
                result = self.render_value(item, native)
                if result is not OMIT:
                    rendered[key] = result
            return rendered

        if isinstance(value, list):
            return [
                result
                for result in (self.render_value(item, native) for item in value)
                if result is not OMIT
            ]

        return value

    def render_map(self, mapping: Optional[Dict[str, Any]], native: bool) -> Dict[str, Any]:
        """Render a params/headers/body map, dropping keys with missing optional references."""
        if not mapping:
            return {}
        return self.render_value(mapping, native)
