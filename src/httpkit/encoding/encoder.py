"""
Response body encoders.

An encoder turns a Python value into bytes for one MIME type. Encoders
are looked up by MIME type in an EncoderRegistry after content
negotiation.
"""

import dataclasses
import datetime
import decimal
import enum
import json
import uuid
from abc import ABC, abstractmethod
from typing import Any

from ..errors import EncodingError


class Encoder(ABC):
    """Serializer for one MIME type."""

    @property
    @abstractmethod
    def mime_type(self) -> str:
        """MIME type produced, e.g. "application/json"."""

    @abstractmethod
    def encode(self, data: Any) -> bytes:
        """
        Serialize data.

        Raises:
            EncodingError: data cannot be represented in this format.
        """

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.mime_type!r})"


def _to_serializable(value: Any) -> Any:
    """json.dumps fallback for values the json module does not know."""
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, (uuid.UUID, decimal.Decimal)):
        return str(value)
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class JSONEncoder(Encoder):
    """
    application/json

    Compact separators and a trailing newline, so the same value always
    produces the same bytes.
    """

    mime_type = "application/json"

    def encode(self, data: Any) -> bytes:
        try:
            text = json.dumps(
                data,
                default=_to_serializable,
                separators=(",", ":"),
                ensure_ascii=False,
                allow_nan=False,
            )
        except (TypeError, ValueError) as e:
            raise EncodingError(self.mime_type, e) from e
        return text.encode("utf-8") + b"\n"
