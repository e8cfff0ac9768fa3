"""Setup-time configuration for the Datadog JSON formatter."""
from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from enum import StrEnum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    ValidationError,
    field_validator,
)

__all__ = [
    "Config",
    "ConfigurationError",
    "DataDogSettings",
    "PidMode",
    "ThreadNameMode",
]


class ConfigurationError(ValueError):
    """Raised when the setup callback leaves the configuration in an invalid state."""


class ThreadNameMode(StrEnum):
    """How the name of the logging thread is reported under ``logger.thread_name``."""

    OFF = "off"
    ON = "on"
    GLOBAL = "global"


class PidMode(StrEnum):
    """How the process id is reported under ``pid``."""

    OFF = "off"
    ON = "on"
    GLOBAL = "global"


def _coerce_mode(value: object) -> object:
    """Accept booleans as shorthands for the ``on`` and ``off`` modes."""
    if value is True:
        return "on"
    if value is False or value is None:
        return "off"
    return value


class DataDogSettings(BaseModel):
    """Validated, immutable snapshot of a :class:`Config`."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, extra="forbid")

    max_message_length: int | None = None
    backtrace_cleaner: Any = None
    thread_name: ThreadNameMode = ThreadNameMode.OFF
    pid: PidMode = PidMode.ON
    allow_all_attributes: StrictBool = True
    attribute_mapping: dict[str, Any] = Field(default_factory=dict)
    pretty: StrictBool = False

    @field_validator("max_message_length", mode="before")
    @classmethod
    def validate_max_message_length(cls, value: object) -> object:
        """Require a positive integer when a maximum length is configured."""
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            message = "max_message_length must be a positive integer"
            raise ValueError(message)
        return value

    @field_validator("backtrace_cleaner")
    @classmethod
    def validate_backtrace_cleaner(cls, value: object) -> object:
        """Require the cleaner to expose a callable ``clean`` method."""
        if value is None:
            return None
        if not callable(getattr(value, "clean", None)):
            message = "backtrace_cleaner must respond to clean()"
            raise ValueError(message)
        return value

    @field_validator("thread_name", "pid", mode="before")
    @classmethod
    def coerce_mode(cls, value: object) -> object:
        """Translate ``True``/``False`` into the matching mode."""
        return _coerce_mode(value)

    @field_validator("attribute_mapping")
    @classmethod
    def validate_attribute_mapping(cls, value: dict[str, Any]) -> dict[str, Any]:
        """Ensure every remapping is a key, a key path, a function or the wildcard."""
        normalised: dict[str, Any] = {}
        for name, spec in value.items():
            if isinstance(spec, str) or callable(spec):
                normalised[name] = spec
            elif (
                isinstance(spec, list | tuple)
                and spec
                and all(isinstance(part, str) for part in spec)
            ):
                normalised[name] = tuple(spec)
            else:
                message = (
                    f"attribute mapping for {name!r} must be a key, a key path "
                    f"or a function, got {spec!r}"
                )
                raise ValueError(message)
        return normalised

    @property
    def pass_through_all_attributes(self) -> bool:
        """Return whether unmapped attributes are copied to the document."""
        return self.allow_all_attributes


def _empty_mapping() -> dict[str, Any]:
    return {}


@dataclass(slots=True)
class Config:
    """Mutable builder handed to the setup callback.

    Assign the public attributes and call :meth:`remap_attributes` inside the
    callback; :meth:`validate` then produces the frozen :class:`DataDogSettings`
    used by the formatter.
    """

    max_message_length: int | None = None
    backtrace_cleaner: Any = None
    thread_name: ThreadNameMode | bool | str = ThreadNameMode.OFF
    pid: PidMode | bool | str = PidMode.ON
    allow_all_attributes: bool = True
    attribute_mapping: dict[str, Any] = field(default_factory=_empty_mapping)
    pretty: bool = False

    def remap_attributes(
        self,
        attribute_mapping: Mapping[
            str, str | list[str] | tuple[str, ...] | Callable[[Any], Any]
        ],
    ) -> None:
        """Merge ``attribute_mapping`` into the current remappings.

        Later calls win when the same attribute name is remapped twice. The
        ``time``, ``severity``, ``progname`` and ``pid`` entries are always
        overridden by the standard Datadog mapping.
        """
        merged = dict(self.attribute_mapping)
        merged.update({str(name): spec for name, spec in attribute_mapping.items()})
        self.attribute_mapping = merged

    def validate(self) -> DataDogSettings:
        """Validate the collected options and return the frozen settings."""
        values = {option.name: getattr(self, option.name) for option in fields(self)}
        values["attribute_mapping"] = dict(self.attribute_mapping)
        try:
            return DataDogSettings(**values)
        except ValidationError as exc:
            raise ConfigurationError(_describe(exc)) from exc


def _describe(exc: ValidationError) -> str:
    """Flatten pydantic errors into a single readable message."""
    problems: list[str] = []
    for error in exc.errors():
        context = error.get("ctx") or {}
        if "error" in context:
            problems.append(str(context["error"]))
            continue
        location = ".".join(str(part) for part in error.get("loc", ()))
        problems.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(problems)
