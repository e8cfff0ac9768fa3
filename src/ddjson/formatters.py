"""Type-dispatch registries applied to log messages and attribute values."""

from __future__ import annotations

import traceback
from collections.abc import Callable, Iterable, Sequence
from typing import TYPE_CHECKING, Any, Protocol

from ddjson.models import ErrorDecomposition, TaggedMessage, safe_repr

if TYPE_CHECKING:
    from types import TracebackType

__all__ = [
    "BacktraceCleaner",
    "FormatterRegistry",
    "build_attribute_formatter",
    "build_message_formatter",
    "exception_attribute_formatter",
    "format_backtrace",
    "message_exception_formatter",
]


Handler = Callable[[Any], Any]


class BacktraceCleaner(Protocol):
    """Object able to filter or rewrite backtrace lines."""

    def clean(self, lines: Sequence[str]) -> Sequence[str]:
        """Return the cleaned backtrace."""
        ...


class FormatterRegistry:
    """Map value types to handlers, resolved through the value's MRO.

    The most specific registered class wins, so a handler registered for
    ``KeyError`` takes precedence over one registered for ``Exception``.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, Handler] = {}

    def add(self, types: type | Iterable[type], handler: Handler) -> FormatterRegistry:
        """Register ``handler`` for one class or an iterable of classes."""
        targets = (types,) if isinstance(types, type) else tuple(types)
        for target in targets:
            if not isinstance(target, type):
                message = f"Formatters can only be registered for classes, got {target!r}"
                raise TypeError(message)
            self._handlers[target] = handler
        return self

    def remove(self, types: type | Iterable[type]) -> FormatterRegistry:
        """Unregister the handlers bound to the given classes."""
        targets = (types,) if isinstance(types, type) else tuple(types)
        for target in targets:
            self._handlers.pop(target, None)
        return self

    def resolve(self, value: Any) -> Handler | None:
        """Return the handler for ``value`` or ``None`` when nothing matches."""
        if not self._handlers:
            return None
        for klass in type(value).__mro__:
            handler = self._handlers.get(klass)
            if handler is not None:
                return handler
        return None

    def format(self, value: Any) -> Any:
        """Apply the matching handler, returning ``value`` unchanged when none applies."""
        handler = self.resolve(value)
        if handler is None:
            return value
        try:
            return handler(value)
        except Exception:  # noqa: BLE001 - a failing handler must not drop the record
            return safe_repr(value)

    def __contains__(self, klass: object) -> bool:
        return klass in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


def format_backtrace(tb: TracebackType | None) -> list[str] | None:
    """Render a traceback as ``file:line:in function`` lines, outermost call first."""
    if tb is None:
        return None
    return [
        f"{frame.filename}:{frame.lineno}:in {frame.name}"
        for frame in traceback.extract_tb(tb)
    ]


def message_exception_formatter(error: BaseException) -> TaggedMessage:
    """Replace an exception logged as the message with its repr and an ``error`` attribute."""
    return TaggedMessage(safe_repr(error), {"error": error})


def exception_attribute_formatter(
    cleaner: BacktraceCleaner | None = None,
) -> Callable[[BaseException], ErrorDecomposition]:
    """Return a handler splitting an exception into ``kind``, ``message`` and ``stack``."""

    def decompose(error: BaseException) -> ErrorDecomposition:
        attributes: ErrorDecomposition = {
            "kind": type(error).__name__,
            "message": str(error),
        }
        trace = format_backtrace(error.__traceback__)
        if trace is not None:
            if cleaner is not None:
                trace = list(cleaner.clean(trace))
            attributes["stack"] = trace
        return attributes

    return decompose


def build_message_formatter() -> FormatterRegistry:
    """Create the registry applied to the primary log message."""
    return FormatterRegistry().add(BaseException, message_exception_formatter)


def build_attribute_formatter(cleaner: BacktraceCleaner | None = None) -> FormatterRegistry:
    """Create the registry applied to every attribute value."""
    return FormatterRegistry().add(BaseException, exception_attribute_formatter(cleaner))

