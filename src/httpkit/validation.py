"""
=============================================================================
REQUEST VALIDATION
=============================================================================

Named schemas for request payloads. A schema is either a pydantic model
or a JSON Schema document:

    class User(BaseModel):
        model_config = ConfigDict(extra="forbid")

        id: int = 0
        name: str = Field(min_length=2, pattern=r"^[A-Za-z\\-]+$")
        email: str

    validator = Validator()
    validator.add_schema("user", User)
    validator.add_schema_from_file("order", "schemas/order.yaml")

    result = validator.validate("user", request.json)
    if not result.is_valid:
        failure_from_validator(w, r, result)   # 400 {"errors": [...]}
        return

The validator only produces a ValidationResult; turning it into an
error envelope is the job of failure_from_validator().

=============================================================================
SCHEMA DOCUMENTS
=============================================================================

    ┌──────────────────────────────────┬──────────────────────────────────┐
    │ Method                           │ Source                           │
    ├──────────────────────────────────┼──────────────────────────────────┤
    │ add_schema(name, dict)           │ parsed JSON Schema               │
    │ add_schema_from_json(name, text) │ JSON text                        │
    │ add_schema_from_yaml(name, text) │ YAML text                        │
    │ add_schema_from_reader(name,     │ file-like object, format "json", │
    │     format, reader)              │ "yml" or "yaml"                  │
    │ add_schema_from_file(name, path) │ format from the file extension   │
    └──────────────────────────────────┴──────────────────────────────────┘

Any other format raises SchemaFileFormatNotSupportedError. A document
that is not a valid JSON Schema raises jsonschema's SchemaError when it
is added, never at request time.

=============================================================================
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import IO, Any, Dict, List, Mapping, Optional, Sequence, Type, Union

import yaml
from jsonschema import validators as jsonschema_validators
from jsonschema.exceptions import ValidationError as SchemaViolation
from pydantic import BaseModel, ValidationError

from .errors import SchemaFileFormatNotSupportedError, SchemaNotFoundError


logger = logging.getLogger(__name__)


class ValidationIssue(Exception):
    """One field-level validation failure."""

    def __init__(
        self,
        message: str,
        name: str = "",
        in_: str = "body",
        value: Any = None,
        values: Sequence[Any] = (),
        code: int = 0,
    ):
        super().__init__(message)
        self.message = message
        self.name = name
        self.in_ = in_
        self.value = value
        self.values = list(values)
        self.code = code

    @classmethod
    def from_pydantic(cls, error: Dict[str, Any]) -> "ValidationIssue":
        """Build an issue from one entry of ValidationError.errors()."""
        name = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "invalid value")
        # "missing" reports the whole enclosing object as input
        value = None if error.get("type") == "missing" else error.get("input")
        return cls(
            message=f"{name} in body: {message}" if name else message,
            name=name,
            value=value,
            code=422,
        )

    @classmethod
    def from_jsonschema(cls, error: SchemaViolation) -> "ValidationIssue":
        """
        Build an issue from a jsonschema error.

        A "required" error is reported against the missing property, the
        others against the location of the offending value.
        """
        path = [str(part) for part in error.absolute_path]
        value = error.instance
        values: Sequence[Any] = ()

        if error.validator == "required":
            missing = _missing_property(error)
            if missing:
                path.append(missing)
            value = None
        elif error.validator == "enum":
            values = error.validator_value

        name = ".".join(path)
        return cls(
            message=f"{name} in body: {error.message}" if name else error.message,
            name=name,
            value=value,
            values=values,
            code=422,
        )


def _missing_property(error: SchemaViolation) -> str:
    # "'email' is a required property"
    if isinstance(error.instance, Mapping):
        for prop in error.validator_value:
            if prop not in error.instance and repr(prop) in error.message:
                return str(prop)
    return ""


@dataclass
class ValidationResult:
    errors: List[Exception] = field(default_factory=list)
    value: Optional[Any] = None
    """The validated model instance (pydantic) or payload (JSON Schema)."""

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add_errors(self, *errors: Exception) -> None:
        self.errors.extend(errors)


class Validator:
    """Registry of named schemas."""

    def __init__(self):
        self._models: Dict[str, Type[BaseModel]] = {}
        self._documents: Dict[str, Any] = {}

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def add_schema(self, name: str, schema: Union[Type[BaseModel], Mapping[str, Any]]) -> None:
        """
        Register a pydantic model class or a JSON Schema document.

        Raises:
            TypeError: schema is neither.
            jsonschema.exceptions.SchemaError: the document is not a valid
                JSON Schema.
        """
        if isinstance(schema, type) and issubclass(schema, BaseModel):
            self._documents.pop(name, None)
            self._models[name] = schema
            return

        if not isinstance(schema, Mapping):
            raise TypeError(f"schema {name} must be a pydantic model class or a JSON Schema object")

        document = dict(schema)
        cls = jsonschema_validators.validator_for(document)
        cls.check_schema(document)

        self._models.pop(name, None)
        self._documents[name] = cls(document, format_checker=cls.FORMAT_CHECKER)

    def add_schema_from_object(self, model: Type[BaseModel]) -> None:
        """Register a model under its class name."""
        self.add_schema(model.__name__, model)

    def add_schema_from_json(self, name: str, content: Union[str, bytes]) -> None:
        self.add_schema(name, json.loads(content))

    def add_schema_from_yaml(self, name: str, content: Union[str, bytes]) -> None:
        self.add_schema(name, yaml.safe_load(content))

    def add_schema_from_reader(self, name: str, format: str, reader: IO) -> None:
        """
        Register a schema document read from a file-like object.

        Raises:
            SchemaFileFormatNotSupportedError: format is not json, yml or yaml.
        """
        format = format.lower()
        if format == "json":
            self.add_schema_from_json(name, reader.read())
        elif format in ("yml", "yaml"):
            self.add_schema_from_yaml(name, reader.read())
        else:
            raise SchemaFileFormatNotSupportedError(format)

    def add_schema_from_file(self, name: str, filename: Union[str, "os.PathLike[str]"]) -> None:
        """Register a .json, .yml or .yaml schema document."""
        ext = os.path.splitext(os.fspath(filename))[1].lstrip(".")
        if ext.lower() not in ("json", "yml", "yaml"):
            raise SchemaFileFormatNotSupportedError(ext)

        with open(filename, "rb") as f:
            self.add_schema_from_reader(name, ext, f)
        logger.debug(f"Loaded schema {name} from {filename}")

    def has_schema(self, name: str) -> bool:
        return name in self._models or name in self._documents

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def validate(self, name: str, data: Any) -> ValidationResult:
        result = ValidationResult()

        model = self._models.get(name)
        if model is not None:
            try:
                result.value = model.model_validate(data)
            except ValidationError as e:
                logger.debug(f"validation against {name} failed with {e.error_count()} errors")
                result.add_errors(*(ValidationIssue.from_pydantic(err) for err in e.errors()))
            return result

        document = self._documents.get(name)
        if document is None:
            result.add_errors(SchemaNotFoundError(name))
            return result

        violations = sorted(document.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path])
        if violations:
            logger.debug(f"validation against {name} failed with {len(violations)} errors")
            result.add_errors(*(ValidationIssue.from_jsonschema(v) for v in violations))
        else:
            result.value = data

        return result
