"""Render standard library log records in Datadog's JSON log format."""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Mapping
from datetime import datetime
from logging.config import dictConfig
from typing import IO, Any

from ddjson.config import Config, DataDogSettings, PidMode, ThreadNameMode
from ddjson.device import JsonDevice
from ddjson.formatters import build_attribute_formatter, build_message_formatter
from ddjson.mapping import build_mapping
from ddjson.models import RawRecord, TaggedMessage
from ddjson.providers import (
    GlobalPidProvider,
    GlobalThreadIdProvider,
    ThreadNameProvider,
    ValueProvider,
)

__all__ = ["DataDogFormatter", "configure_logging", "setup"]


_LOGGER = logging.getLogger(__name__)

ConfigureCallback = Callable[[Config], None]


_STANDARD_RECORD_FIELDS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "message",
    "asctime",
}


def build_settings(configure: ConfigureCallback | None = None) -> DataDogSettings:
    """Run the setup callback over a fresh :class:`Config` and validate it."""
    config = Config()
    if configure is not None:
        configure(config)
    return config.validate()


def build_tags(settings: DataDogSettings) -> dict[str, ValueProvider]:
    """Return the lazily evaluated tags implied by the thread name and pid modes."""
    tags: dict[str, ValueProvider] = {}
    if settings.thread_name is ThreadNameMode.GLOBAL:
        tags["logger.thread_name"] = GlobalThreadIdProvider()
    elif settings.thread_name is ThreadNameMode.ON:
        tags["logger.thread_name"] = ThreadNameProvider()
    if settings.pid is PidMode.GLOBAL:
        tags["pid"] = GlobalPidProvider()
    return tags


class DataDogFormatter(logging.Formatter):
    """Format log records as JSON documents in Datadog's standard attribute layout."""

    def __init__(
        self,
        settings: DataDogSettings | None = None,
        *,
        configure: ConfigureCallback | None = None,
    ) -> None:
        """Build the mapping table, registries and tags once for ``settings``."""
        super().__init__()
        if settings is None:
            settings = build_settings(configure)
        self.settings = settings
        self.mapping = build_mapping(settings)
        self.device = JsonDevice(self.mapping, pretty=settings.pretty)
        self.message_formatter = build_message_formatter()
        self.attribute_formatter = build_attribute_formatter(settings.backtrace_cleaner)
        self.tags: Mapping[str, Any] = build_tags(settings)

    def format(self, record: logging.LogRecord) -> str:
        """Convert a record to its Datadog JSON representation."""
        return self.device.render(self.to_raw_record(record))

    def to_raw_record(self, record: logging.LogRecord) -> RawRecord:
        """Run the message and attribute formatters over ``record``."""
        attributes = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_RECORD_FIELDS and not key.startswith("_")
        }

        message = self.message_formatter.format(self._raw_message(record))
        if isinstance(message, TaggedMessage):
            for key, value in message.attributes.items():
                attributes.setdefault(key, value)
            message = message.message

        if record.exc_info and record.exc_info[1] is not None:
            attributes.setdefault("error", record.exc_info[1])

        for key, provider in self.tags.items():
            attributes[key] = _resolve(provider)

        formatted = {
            key: self.attribute_formatter.format(value)
            for key, value in attributes.items()
        }

        return RawRecord(
            time=datetime.fromtimestamp(record.created).astimezone(),
            severity=record.levelname,
            progname=record.name,
            pid=record.process,
            message=message,
            attributes=formatted,
        )

    @staticmethod
    def _raw_message(record: logging.LogRecord) -> Any:
        """Return the message object, interpolating ``%`` arguments when present."""
        if not record.args:
            return record.msg
        try:
            return record.getMessage()
        except (TypeError, ValueError):
            return f"{record.msg} {record.args!r}"


def _resolve(provider: Any) -> Any:
    if not callable(provider):
        return provider
    try:
        return provider()
    except Exception:  # noqa: BLE001 - a failing provider must not drop the record
        return None


def setup(
    stream: IO[str] | None = None,
    configure: ConfigureCallback | None = None,
    *,
    name: str = "ddjson",
    level: int | str = logging.INFO,
    propagate: bool = False,
) -> logging.Logger:
    """Return a logger writing Datadog JSON lines to ``stream``.

    ``configure`` receives a :class:`Config` to adjust before it is validated;
    a :class:`ConfigurationError` aborts setup before the logger is touched.

    The ``logger.thread_name`` tag and the global ``pid`` tag are emitted as
    attributes, so they only appear in the output while
    ``allow_all_attributes`` is enabled.
    """
    formatter = DataDogFormatter(build_settings(configure))

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setFormatter(formatter)

    logger = logging.getLogger(name)
    for existing in list(logger.handlers):
        if isinstance(existing.formatter, DataDogFormatter):
            logger.removeHandler(existing)
            existing.close()
    logger.addHandler(handler)
    logger.setLevel(_numeric_level(level))
    logger.propagate = propagate

    _LOGGER.debug("Configured Datadog JSON logging for %r", name)
    return logger


def configure_logging(
    level: int | str,
    configure: ConfigureCallback | None = None,
    stream: IO[str] | None = None,
) -> None:
    """Initialise the root logger with Datadog JSON output."""
    numeric_level = _numeric_level(level)
    settings = build_settings(configure)

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "datadog": {
                    "()": DataDogFormatter,
                    "settings": settings,
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "level": numeric_level,
                    "formatter": "datadog",
                    "stream": stream if stream is not None else "ext://sys.stdout",
                },
            },
            "root": {
                "level": numeric_level,
                "handlers": ["console"],
            },
        },
    )


def _numeric_level(level: int | str) -> int:
    if isinstance(level, str):
        mapping = logging.getLevelNamesMapping()
        return mapping.get(level.upper(), logging.INFO)
    return int(level)
