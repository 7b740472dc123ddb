from __future__ import annotations

import datetime
import decimal
import enum
import inspect
import pathlib
import uuid
from dataclasses import dataclass
from typing import Any

from graphwire._internal.type_checks import is_protocol_class, is_runtime_class


@dataclass(frozen=True, slots=True)
class ConcreteTypeDiscoveryPolicy:
    """Internal policy deciding which classes can become class components."""

    ignored_base_types: tuple[type[Any], ...] = (
        pathlib.PurePath,
        datetime.datetime,
        datetime.date,
        datetime.time,
        datetime.timedelta,
        uuid.UUID,
        decimal.Decimal,
        enum.Enum,
    )

    def rejection_reason(self, candidate: object) -> str | None:
        """Return why a candidate cannot be instantiated, or ``None`` when it can.

        Args:
            candidate: Raw class (generic origin) of the type being registered.

        """
        if not is_runtime_class(candidate):
            return "is not a class"
        if candidate.__module__ == "builtins":
            return "is a builtin type"
        if is_protocol_class(candidate):
            return "is a protocol"
        if inspect.isabstract(candidate):
            return "is abstract"
        if issubclass(candidate, type):
            return "is a metaclass"
        if issubclass(candidate, self.ignored_base_types):
            return "is a value type that cannot be constructed from dependencies"
        return None
