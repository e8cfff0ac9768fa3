"""End-to-end checks of Datadog JSON output produced through ``setup``."""

from __future__ import annotations

import io
import json
import os
import threading
from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any

import pytest

from ddjson.formatters import format_backtrace
from ddjson.logging import setup
from ddjson.providers import global_pid, global_thread_id

if TYPE_CHECKING:
    import logging
    from collections.abc import Callable

    from ddjson.config import Config


class _ReverseCleaner:
    """Backtrace cleaner used to make cleaned stacks recognisable."""

    def clean(self, lines: Sequence[str]) -> list[str]:
        return [line.upper() for line in reversed(lines)]


@pytest.fixture
def stream() -> io.StringIO:
    """Collect the JSON lines written by the logger under test."""
    return io.StringIO()


@pytest.fixture
def make_logger(
    stream: io.StringIO, request: pytest.FixtureRequest,
) -> Callable[..., logging.Logger]:
    """Build a logger unique to the current test writing to ``stream``."""

    def factory(configure: Callable[[Config], None] | None = None) -> logging.Logger:
        return setup(stream, configure, name=f"e2e.{request.node.name}")

    return factory


def _last_entry(stream: io.StringIO) -> dict[str, Any]:
    return json.loads(stream.getvalue().splitlines()[-1])


def _raise_runtime_error(message: str) -> RuntimeError:
    try:
        raise RuntimeError(message)
    except RuntimeError as exc:
        return exc


def test_logs_time_as_timestamp(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """The record time is an ISO-8601 timestamp with a UTC offset."""
    make_logger().info("Test message")

    timestamp = datetime.fromisoformat(_last_entry(stream)["timestamp"])

    assert timestamp.tzinfo is not None


def test_logs_severity_as_status(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """The level name is reported as ``status``."""
    make_logger().info("Test message")

    assert _last_entry(stream)["status"] == "INFO"


def test_logs_progname_as_logger_name(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """The logger name is reported under ``logger.name``."""
    logger = make_logger()
    logger.info("Test message")

    assert _last_entry(stream)["logger"]["name"] == logger.name


def test_logs_pid(make_logger: Callable[..., logging.Logger], stream: io.StringIO) -> None:
    """The OS process id is reported by default."""
    make_logger().info("Test message")

    assert _last_entry(stream)["pid"] == os.getpid()


def test_logs_global_pid(make_logger: Callable[..., logging.Logger], stream: io.StringIO) -> None:
    """The global pid replaces the OS pid in global mode."""

    def configure(config: Config) -> None:
        config.pid = "global"

    make_logger(configure).info("Test message")

    assert _last_entry(stream)["pid"] == global_pid()


def test_can_remove_pid(make_logger: Callable[..., logging.Logger], stream: io.StringIO) -> None:
    """No pid is reported when disabled."""

    def configure(config: Config) -> None:
        config.pid = False

    make_logger(configure).info("Test message")

    assert "pid" not in _last_entry(stream)


def test_no_thread_name_by_default(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """The thread name is off unless requested."""
    make_logger().info("Test message")

    assert "thread_name" not in _last_entry(stream)["logger"]


def test_logs_thread_name(make_logger: Callable[..., logging.Logger], stream: io.StringIO) -> None:
    """The local thread name is reported under ``logger.thread_name``."""

    def configure(config: Config) -> None:
        config.thread_name = True

    make_logger(configure).info("Test message")

    assert _last_entry(stream)["logger"]["thread_name"] == threading.current_thread().name


def test_logs_global_thread_id(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """The global thread id is reported in global mode."""

    def configure(config: Config) -> None:
        config.thread_name = "global"

    make_logger(configure).info("Test message")

    assert _last_entry(stream)["logger"]["thread_name"] == global_thread_id()


def test_passes_through_attributes(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """Extra attributes are shown by default."""
    make_logger().info("Test message", extra={"test": "value"})

    assert _last_entry(stream)["test"] == "value"


def test_can_disable_attribute_pass_through(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """Unmapped attributes are dropped when pass-through is disabled."""

    def configure(config: Config) -> None:
        config.allow_all_attributes = False

    make_logger(configure).info("Test message", extra={"test": "value"})

    assert "test" not in _last_entry(stream)


def test_tags_require_attribute_pass_through(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """Thread name and global pid tags are dropped along with other attributes."""

    def configure(config: Config) -> None:
        config.allow_all_attributes = False
        config.thread_name = True
        config.pid = "global"

    make_logger(configure).info("Test message")

    entry = _last_entry(stream)
    assert "pid" not in entry
    assert "thread_name" not in entry["logger"]
    assert entry["message"] == "Test message"


def test_non_finite_floats_produce_strict_json(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """NaN and infinity attributes are logged as null so strict parsers accept the line."""

    def reject(name: str) -> Any:
        message = f"invalid JSON constant {name}"
        raise ValueError(message)

    make_logger().info("Test message", extra={"x": float("nan"), "y": float("-inf")})

    entry = json.loads(stream.getvalue().splitlines()[-1], parse_constant=reject)
    assert entry["x"] is None
    assert entry["y"] is None


def test_can_remap_attributes(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """A remapped attribute appears under its new key."""

    def configure(config: Config) -> None:
        config.remap_attributes({"test": "foo"})

    make_logger(configure).info("Test message", extra={"test": "value"})

    entry = _last_entry(stream)
    assert entry["foo"] == "value"
    assert "test" not in entry


def test_can_remap_attributes_with_function(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """A function remapping merges its fragment into the document."""

    def configure(config: Config) -> None:
        config.remap_attributes({"test": lambda value: {"test": f"formatted_{value}"}})

    make_logger(configure).info("Test message", extra={"test": "value"})

    assert _last_entry(stream)["test"] == "formatted_value"


@pytest.mark.parametrize(
    ("key", "expected"),
    [
        ("duration", 1_100_000_000),
        ("duration_ms", 1_100_000),
        ("duration_micros", 1_100),
        ("duration_ns", 1),
    ],
)
def test_transforms_duration_to_nanoseconds(
    make_logger: Callable[..., logging.Logger],
    stream: io.StringIO,
    key: str,
    expected: int,
) -> None:
    """Every duration unit is reported as nanoseconds under ``duration``."""
    make_logger().info("Test message", extra={key: 1.1})

    assert _last_entry(stream)["duration"] == expected


def test_non_numeric_duration_is_null(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """A duration that is not a number is reported as null."""
    make_logger().info("Test message", extra={"duration": "slow"})

    assert _last_entry(stream)["duration"] is None


def test_logs_exceptions_under_error(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """An ``error`` attribute is split into kind, message and stack."""
    error = _raise_runtime_error("Test exception")

    make_logger().error("An error occurred", extra={"error": error})

    entry = _last_entry(stream)
    assert entry["error"]["kind"] == "RuntimeError"
    assert entry["error"]["message"] == "Test exception"
    assert entry["error"]["stack"] == format_backtrace(error.__traceback__)


def test_formats_exceptions_in_any_attribute(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """Exceptions in other attributes are decomposed as well."""
    error = _raise_runtime_error("Test exception")

    make_logger().error("An error occurred", extra={"exception": error})

    entry = _last_entry(stream)
    assert entry["exception"]["kind"] == "RuntimeError"
    assert entry["exception"]["message"] == "Test exception"
    assert entry["exception"]["stack"] == format_backtrace(error.__traceback__)


def test_logs_exception_as_message(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """An exception logged as the message yields its repr and an ``error`` attribute."""
    error = _raise_runtime_error("Test exception")

    make_logger().error(error)

    entry = _last_entry(stream)
    assert entry["message"] == "RuntimeError('Test exception')"
    assert entry["error"]["kind"] == "RuntimeError"
    assert entry["error"]["message"] == "Test exception"
    assert entry["error"]["stack"] == format_backtrace(error.__traceback__)


def test_logger_exception_reports_error(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """``logger.exception`` decomposes the exception being handled."""
    logger = make_logger()
    try:
        message = "Test exception"
        raise KeyError(message)
    except KeyError:
        logger.exception("Lookup failed")

    entry = _last_entry(stream)
    assert entry["message"] == "Lookup failed"
    assert entry["status"] == "ERROR"
    assert entry["error"]["kind"] == "KeyError"


def test_backtrace_cleaner_is_applied(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """The stack equals the cleaner's output for the original trace."""
    cleaner = _ReverseCleaner()

    def configure(config: Config) -> None:
        config.backtrace_cleaner = cleaner

    error = _raise_runtime_error("Test exception")
    make_logger(configure).error("An error occurred", extra={"error": error})

    original = format_backtrace(error.__traceback__)
    assert original is not None
    assert _last_entry(stream)["error"]["stack"] == cleaner.clean(original)


def test_truncates_long_messages(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """Messages longer than the maximum are cut."""

    def configure(config: Config) -> None:
        config.max_message_length = 10

    make_logger(configure).info("012345678901234567890")

    assert _last_entry(stream)["message"] == "0123456789"


def test_does_not_truncate_without_max_length(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """No maximum length leaves messages intact."""

    def configure(config: Config) -> None:
        config.max_message_length = None

    make_logger(configure).info("012345678901234567890")

    assert _last_entry(stream)["message"] == "012345678901234567890"


def test_logs_pretty_json(make_logger: Callable[..., logging.Logger], stream: io.StringIO) -> None:
    """Pretty output spans several lines per record."""

    def configure(config: Config) -> None:
        config.pretty = True

    make_logger(configure).info("Test message")

    assert len(stream.getvalue().split("\n")) > 3
    assert json.loads(stream.getvalue())["message"] == "Test message"


def test_logs_compact_json_by_default(
    make_logger: Callable[..., logging.Logger], stream: io.StringIO,
) -> None:
    """Compact output is exactly one line per record."""
    logger = make_logger()
    logger.info("first")
    logger.info("second")

    assert len(stream.getvalue().splitlines()) == 2
