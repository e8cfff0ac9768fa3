"""Core record types shared by the Datadog JSON transformation pipeline."""
from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from datetime import datetime

__all__ = [
    "STANDARD_FIELDS",
    "WILDCARD",
    "ErrorDecomposition",
    "Fragment",
    "RawRecord",
    "TaggedMessage",
    "TransformFunction",
    "TransformSpec",
    "safe_repr",
]


WILDCARD = "*"

# Record fields that are read from ``RawRecord`` itself rather than from its attributes.
STANDARD_FIELDS: frozenset[str] = frozenset(
    {"time", "severity", "progname", "pid", "message"},
)


Fragment = Mapping[str, Any]
TransformFunction = Callable[[Any], Fragment]
TransformSpec = str | Sequence[str] | TransformFunction


class ErrorDecomposition(TypedDict):
    """Structured representation of an exception for the ``error.*`` attributes."""

    kind: str
    message: str
    stack: NotRequired[list[str]]


def _empty_attributes() -> dict[str, Any]:
    return {}


@dataclass(slots=True)
class RawRecord:
    """One log event as supplied by the upstream logging facility."""

    time: datetime
    severity: str
    progname: str | None
    pid: int | str | None
    message: Any
    attributes: dict[str, Any] = field(default_factory=_empty_attributes)

    def get(self, name: str) -> Any:
        """Return one of the standard record fields by name."""
        return getattr(self, name)


@dataclass(frozen=True, slots=True)
class TaggedMessage:
    """A display message carrying extra attributes to merge into the record."""

    message: str
    attributes: Mapping[str, Any] = field(default_factory=_empty_attributes)


def safe_repr(value: Any) -> str:
    """Return ``repr(value)``, or a placeholder when ``__repr__`` itself fails."""
    try:
        return repr(value)
    except Exception:  # noqa: BLE001 - a broken __repr__ must not drop the record
        return f"<unrepresentable {type(value).__qualname__}>"
