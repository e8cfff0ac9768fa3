"""JSON sink applying a mapping table to raw records."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from datetime import datetime
from typing import IO, TYPE_CHECKING, Any

from ddjson.models import STANDARD_FIELDS, WILDCARD, safe_repr

if TYPE_CHECKING:
    from ddjson.models import RawRecord, TransformSpec

__all__ = ["JsonDevice", "deep_merge", "expand_dotted"]


# Containers nested deeper than this are rendered with repr.
_MAX_DEPTH = 64


class JsonDevice:
    """Render :class:`RawRecord` instances as Datadog-shaped JSON documents.

    Mapping keys naming a standard record field (``time``, ``severity``,
    ``progname``, ``pid``, ``message``) read that field; every other key
    consumes the attribute with the same name. Attributes left over are copied
    to the top level only when the mapping holds the wildcard.
    """

    def __init__(
        self,
        mapping: Mapping[str, TransformSpec],
        stream: IO[str] | None = None,
        *,
        pretty: bool = False,
    ) -> None:
        self._mapping = mapping
        self._pass_through = any(
            isinstance(spec, str) and spec == WILDCARD for spec in mapping.values()
        )
        self.stream = stream
        self.pretty = pretty

    @property
    def mapping(self) -> Mapping[str, TransformSpec]:
        """Return the mapping table applied to every record."""
        return self._mapping

    def as_dict(self, record: RawRecord) -> dict[str, Any]:
        """Build the output document for ``record``."""
        document: dict[str, Any] = {}
        remaining = dict(record.attributes)

        for name, spec in self._mapping.items():
            if isinstance(spec, str) and spec == WILDCARD:
                continue
            if name in STANDARD_FIELDS:
                value = _standard_value(record, name)
                if value is None and name != "message":
                    continue
            elif name in remaining:
                value = remaining.pop(name)
            else:
                continue
            _apply(document, spec, value)

        if self._pass_through:
            for name, value in remaining.items():
                deep_merge(document, expand_dotted(name, value), overwrite=False)

        return document

    def render(self, record: RawRecord) -> str:
        """Serialise ``record`` to JSON text without a trailing newline."""
        document = self.as_dict(record)
        indent = 2 if self.pretty else None
        try:
            return _dumps(document, indent)
        except (TypeError, ValueError, RecursionError):
            # Some attribute value still cannot be encoded as strict JSON.
            safe = {key: _json_safe(value) for key, value in document.items()}
            return _dumps(safe, indent)

    def write(self, record: RawRecord) -> None:
        """Write one rendered record followed by a newline to the stream."""
        if self.stream is None:
            message = "JsonDevice has no output stream"
            raise RuntimeError(message)
        self.stream.write(self.render(record) + "\n")


def expand_dotted(name: str, value: Any) -> dict[str, Any]:
    """Turn ``"a.b"`` into ``{"a": {"b": value}}``."""
    parts = [part for part in name.split(".") if part] or [name]
    return _nest(parts, value)


def deep_merge(
    target: dict[str, Any],
    fragment: Mapping[str, Any],
    *,
    overwrite: bool = True,
) -> None:
    """Merge ``fragment`` into ``target`` in place, combining nested mappings."""
    for key, value in fragment.items():
        key_text = key if isinstance(key, str) else str(key)
        current = target.get(key_text)
        if isinstance(current, dict) and isinstance(value, Mapping):
            deep_merge(current, value, overwrite=overwrite)
        elif overwrite or key_text not in target:
            target[key_text] = _copy(value)


def _apply(document: dict[str, Any], spec: TransformSpec, value: Any) -> None:
    if isinstance(spec, str):
        deep_merge(document, {spec: value})
    elif callable(spec):
        try:
            fragment = spec(value)
        except Exception:  # noqa: BLE001 - a failing transform skips only its own field
            return
        if isinstance(fragment, Mapping):
            deep_merge(document, fragment)
    else:
        deep_merge(document, _nest(list(spec), value))


def _nest(path: list[str], value: Any) -> dict[str, Any]:
    nested: Any = value
    for part in reversed(path):
        nested = {part: nested}
    return nested


def _copy(value: Any, ancestors: frozenset[int] = frozenset(), depth: int = 0) -> Any:
    """Copy nested mappings and lists into JSON-ready containers.

    Non-finite floats become ``None``; a container that refers back to one of
    its ancestors, or sits deeper than ``_MAX_DEPTH``, is replaced by its repr.
    """
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if not isinstance(value, Mapping | list | tuple):
        return value
    if id(value) in ancestors or depth >= _MAX_DEPTH:
        return safe_repr(value)
    inner = ancestors | {id(value)}
    if isinstance(value, Mapping):
        return {
            key if isinstance(key, str) else str(key): _copy(item, inner, depth + 1)
            for key, item in value.items()
        }
    return [_copy(item, inner, depth + 1) for item in value]


def _standard_value(record: RawRecord, name: str) -> Any:
    value = record.get(name)
    if name == "time" and isinstance(value, datetime):
        return value.isoformat(timespec="microseconds")
    return value


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, set | frozenset):
        return list(value)
    try:
        return str(value)
    except Exception:  # noqa: BLE001
        return safe_repr(value)


def _dumps(document: Mapping[str, Any], indent: int | None) -> str:
    return json.dumps(
        document,
        default=_json_default,
        ensure_ascii=False,
        allow_nan=False,
        indent=indent,
    )


def _json_safe(value: Any) -> Any:
    if isinstance(value, float) and not math.isfinite(value):
        return None
    try:
        json.dumps(value, default=_json_default, allow_nan=False)
    except (TypeError, ValueError, RecursionError):
        return safe_repr(value)
    return value
