"""Resolve the field mapping applied to every record."""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import TYPE_CHECKING

from ddjson.config import PidMode
from ddjson.models import WILDCARD
from ddjson.transforms import (
    DURATION_MULTIPLIERS,
    duration_nanosecond_transformer,
    truncate_message_transformer,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ddjson.config import DataDogSettings
    from ddjson.models import TransformSpec

__all__ = ["ATTRIBUTES_KEY", "STANDARD_ATTRIBUTE_MAPPING", "build_mapping"]


_LOGGER = logging.getLogger(__name__)

ATTRIBUTES_KEY = "attributes"

STANDARD_ATTRIBUTE_MAPPING: Mapping[str, TransformSpec] = MappingProxyType(
    {
        "time": "timestamp",
        "severity": "status",
        "progname": ("logger", "name"),
        "pid": "pid",
    },
)


def build_mapping(settings: DataDogSettings) -> Mapping[str, TransformSpec]:
    """Return the read-only mapping table for ``settings``.

    User remappings are applied first and the standard Datadog fields are
    merged on top, so ``time``, ``severity``, ``progname`` and ``pid`` cannot
    be remapped through :meth:`Config.remap_attributes`.
    """
    mapping: dict[str, TransformSpec] = dict(settings.attribute_mapping)
    overridden = sorted(set(mapping) & set(STANDARD_ATTRIBUTE_MAPPING))
    if overridden:
        _LOGGER.debug("Ignoring remapping of standard fields: %s", ", ".join(overridden))
    mapping.update(STANDARD_ATTRIBUTE_MAPPING)

    if settings.pid in (PidMode.OFF, PidMode.GLOBAL):
        del mapping["pid"]

    if settings.pass_through_all_attributes:
        mapping[ATTRIBUTES_KEY] = WILDCARD

    mapping["message"] = truncate_message_transformer(settings.max_message_length)

    for name, multiplier in DURATION_MULTIPLIERS.items():
        mapping[name] = duration_nanosecond_transformer(multiplier)

    return MappingProxyType(mapping)
