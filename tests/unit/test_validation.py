"""
Unit tests for the schema validator.
"""

import io
import json

import pytest
from jsonschema.exceptions import SchemaError
from pydantic import BaseModel, ConfigDict, Field

from httpkit.errors import SchemaFileFormatNotSupportedError, SchemaNotFoundError
from httpkit.validation import ValidationIssue, Validator


class User(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: int = 0
    name: str = Field(min_length=2)
    email: str


@pytest.fixture
def validator() -> Validator:
    v = Validator()
    v.add_schema("user", User)
    return v


class TestValidator:

    def test_valid(self, validator):
        result = validator.validate("user", {"name": "john", "email": "john@example.com"})

        assert result.is_valid
        assert result.errors == []
        assert isinstance(result.value, User)
        assert result.value.name == "john"

    def test_invalid_fields(self, validator):
        result = validator.validate("user", {"name": "j", "extra": 1})

        assert not result.is_valid
        names = sorted(err.name for err in result.errors)
        assert names == ["email", "extra", "name"]
        assert all(isinstance(err, ValidationIssue) for err in result.errors)
        assert all(err.code == 422 for err in result.errors)

    def test_issue_details(self, validator):
        result = validator.validate("user", {"name": "j", "email": "a@b.c"})

        [issue] = result.errors
        assert issue.name == "name"
        assert issue.in_ == "body"
        assert issue.value == "j"
        assert issue.message.startswith("name in body:")

    def test_missing_field_has_no_value(self, validator):
        result = validator.validate("user", {"name": "john"})

        [issue] = result.errors
        assert issue.name == "email"
        assert issue.value is None

    def test_unknown_schema(self, validator):
        result = validator.validate("address", {})

        assert not result.is_valid
        assert isinstance(result.errors[0], SchemaNotFoundError)
        assert str(result.errors[0]) == 'schema "address" not found'

    def test_non_object_payload(self, validator):
        result = validator.validate("user", None)

        assert not result.is_valid

    def test_add_schema_from_object(self):
        v = Validator()
        v.add_schema_from_object(User)

        assert v.has_schema("User")

    def test_add_schema_rejects_non_models(self):
        with pytest.raises(TypeError):
            Validator().add_schema("bad", dict)


ORDER_SCHEMA = {
    "type": "object",
    "properties": {
        "sku": {"type": "string", "minLength": 3},
        "quantity": {"type": "integer", "minimum": 1},
        "shipping": {"enum": ["standard", "express"]},
        "address": {
            "type": "object",
            "properties": {"city": {"type": "string"}},
            "required": ["city"],
        },
    },
    "required": ["sku", "quantity"],
    "additionalProperties": False,
}

ORDER_YAML = """
type: object
properties:
  sku:
    type: string
    minLength: 3
  quantity:
    type: integer
    minimum: 1
required: [sku, quantity]
"""


class TestSchemaDocuments:

    @pytest.fixture
    def validator(self) -> Validator:
        v = Validator()
        v.add_schema("order", ORDER_SCHEMA)
        return v

    def test_valid_document(self, validator):
        data = {"sku": "abc-1", "quantity": 2}

        result = validator.validate("order", data)

        assert result.is_valid
        assert result.value == data

    def test_issues_from_document(self, validator):
        result = validator.validate("order", {"sku": "ab", "quantity": 0, "shipping": "drone"})

        assert not result.is_valid
        by_name = {err.name: err for err in result.errors}
        assert sorted(by_name) == ["quantity", "shipping", "sku"]
        assert by_name["sku"].value == "ab"
        assert by_name["sku"].message.startswith("sku in body:")
        assert by_name["shipping"].values == ["standard", "express"]
        assert all(err.code == 422 and err.in_ == "body" for err in result.errors)

    def test_missing_properties_named(self, validator):
        result = validator.validate("order", {"address": {}})

        names = sorted(err.name for err in result.errors)
        assert names == ["address.city", "quantity", "sku"]
        assert all(err.value is None for err in result.errors)

    def test_additional_property(self, validator):
        result = validator.validate("order", {"sku": "abc", "quantity": 1, "coupon": "x"})

        [issue] = result.errors
        assert issue.name == ""
        assert "coupon" in issue.message

    def test_invalid_document_rejected_when_added(self):
        with pytest.raises(SchemaError):
            Validator().add_schema("bad", {"type": "no-such-type"})

    def test_add_schema_from_json(self):
        v = Validator()
        v.add_schema_from_json("order", json.dumps(ORDER_SCHEMA))

        assert v.has_schema("order")
        assert not v.validate("order", {"sku": "abc"}).is_valid

    def test_add_schema_from_yaml(self):
        v = Validator()
        v.add_schema_from_yaml("order", ORDER_YAML)

        assert v.validate("order", {"sku": "abc", "quantity": 1}).is_valid
        assert not v.validate("order", {"sku": "abc", "quantity": "1"}).is_valid

    @pytest.mark.parametrize("format", ["yml", "yaml", "YAML"])
    def test_add_schema_from_reader(self, format):
        v = Validator()
        v.add_schema_from_reader("order", format, io.StringIO(ORDER_YAML))

        assert v.has_schema("order")

    def test_reader_unsupported_format(self):
        with pytest.raises(SchemaFileFormatNotSupportedError, match="xml file schema is not supported"):
            Validator().add_schema_from_reader("order", "xml", io.StringIO("<schema/>"))

    def test_add_schema_from_file(self, tmp_path):
        json_file = tmp_path / "order.json"
        json_file.write_text(json.dumps(ORDER_SCHEMA))
        yaml_file = tmp_path / "order.yml"
        yaml_file.write_text(ORDER_YAML)

        v = Validator()
        v.add_schema_from_file("order-json", json_file)
        v.add_schema_from_file("order-yaml", str(yaml_file))

        assert v.validate("order-json", {"sku": "abc", "quantity": 1}).is_valid
        assert v.validate("order-yaml", {"sku": "abc", "quantity": 1}).is_valid

    def test_file_unsupported_extension(self, tmp_path):
        schema_file = tmp_path / "order.toml"
        schema_file.write_text("type = 'object'")

        with pytest.raises(SchemaFileFormatNotSupportedError) as exc:
            Validator().add_schema_from_file("order", schema_file)

        assert exc.value.ext == "toml"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Validator().add_schema_from_file("order", tmp_path / "nope.json")

    def test_model_replaces_document(self, validator):
        validator.add_schema("order", User)

        result = validator.validate("order", {"name": "john", "email": "j@x.io"})

        assert isinstance(result.value, User)
