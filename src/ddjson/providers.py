"""Lazily evaluated values for the thread name and process id tags.

Providers are stored in the formatter's tag set and called once per record
while the record is being formatted, so they always describe the thread and
process that emitted the log call.
"""
from __future__ import annotations

import os
import re
import socket
import threading
from typing import Any, Protocol, runtime_checkable

__all__ = [
    "GlobalPidProvider",
    "GlobalThreadIdProvider",
    "ThreadNameProvider",
    "ValueProvider",
    "global_pid",
    "global_thread_id",
    "hostname",
    "thread_name",
]


_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


@runtime_checkable
class ValueProvider(Protocol):
    """Zero-argument producer resolved at emission time."""

    def __call__(self) -> Any:
        """Return the value for the record currently being formatted."""
        ...


def hostname() -> str | None:
    """Return the local host name, or ``None`` when it cannot be determined."""
    try:
        name = socket.gethostname()
    except OSError:
        return None
    return name or None


def thread_name(thread: threading.Thread | None = None) -> str:
    """Return the name of ``thread`` (the current thread by default)."""
    current = thread or threading.current_thread()
    if current.name:
        return current.name
    return format(current.ident or id(current), "x")


def global_pid(pid: int | None = None) -> str:
    """Return a process identifier that is unique across hosts."""
    process_id = os.getpid() if pid is None else pid
    host = hostname()
    if host:
        return f"{host}-{process_id}"
    return str(process_id)


def global_thread_id(thread: threading.Thread | None = None) -> str:
    """Return a thread identifier that is unique across hosts and processes."""
    slug = _SLUG_PATTERN.sub("-", thread_name(thread).lower()).strip("-")
    return f"{global_pid()}-{slug}"


class ThreadNameProvider:
    """Provide the local name of the calling thread."""

    def __call__(self) -> str:
        """Return the current thread's name."""
        return thread_name()

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class GlobalThreadIdProvider:
    """Provide the cross-process identifier of the calling thread."""

    def __call__(self) -> str:
        """Return the current thread's global identifier."""
        return global_thread_id()

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class GlobalPidProvider:
    """Provide the cross-host identifier of the calling process."""

    def __call__(self) -> str:
        """Return the current process's global identifier."""
        return global_pid()

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
