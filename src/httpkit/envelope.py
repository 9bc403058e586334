"""
Error envelope value types.

    single error      {"error": {"code": 404, "message": "..."}}
    validation        {"errors": [{"name": ..., "in": ..., "message": ...}, ...]}

Empty fields of a ValidatorError are left out of the wire format;
"message" is always present.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class ErrorMessage:
    code: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ErrorResponse:
    error: ErrorMessage

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error.to_dict()}


@dataclass(frozen=True)
class ValidatorError:
    """One field-level validation failure."""

    message: str
    code: int = 0
    name: str = ""
    in_: str = ""
    value: Any = None
    values: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.code:
            out["code"] = self.code
        if self.name:
            out["name"] = self.name
        if self.in_:
            out["in"] = self.in_
        if self.value is not None and self.value != "":
            out["value"] = self.value
        out["message"] = self.message
        if self.values:
            out["values"] = list(self.values)
        return out


@dataclass(frozen=True)
class ErrorsResponse:
    errors: List[ValidatorError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"errors": [e.to_dict() for e in self.errors]}
