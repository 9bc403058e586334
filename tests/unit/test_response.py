"""
Unit tests for response helpers and error envelopes.
"""

import json
from datetime import timedelta

import pytest

from httpkit.envelope import ErrorMessage, ErrorsResponse, ValidatorError
from httpkit.errors import SchemaNotFoundError
from httpkit.http.request import Request
from httpkit.http.response import (
    encode,
    failure,
    failure_from_error,
    failure_from_validator,
    internal_server_failure,
    method_not_allowed_failure,
    not_found_failure,
    service_unavailable_failure,
)
from httpkit.http.writer import ResponseWriter
from httpkit.validation import ValidationIssue, ValidationResult


def make_request(method: str = "GET", path: str = "/users") -> Request:
    return Request.from_target(method, path)


def body_json(w: ResponseWriter):
    return json.loads(w.body)


class TestEncode:

    def test_encode_success(self, writer):
        encode(writer, make_request(), 200, {"id": 1, "name": "john"})

        assert writer.status == 200
        assert body_json(writer) == {"id": 1, "name": "john"}

    def test_envelope_headers(self, writer):
        not_found_failure(writer, make_request())

        assert writer.get_header("Content-Type") == "application/json; charset=utf-8"
        assert writer.get_header("X-Content-Type-Options") == "nosniff"


class TestFailures:

    def test_failure(self, writer):
        failure(writer, make_request(), 409, ErrorMessage(code=409, message="conflict"))

        assert writer.status == 409
        assert body_json(writer) == {"error": {"code": 409, "message": "conflict"}}

    def test_failure_from_error(self, writer):
        failure_from_error(writer, make_request(), 400, ValueError("bad input"))

        assert writer.status == 400
        assert body_json(writer) == {"error": {"code": 400, "message": "bad input"}}

    def test_not_found(self, writer):
        not_found_failure(writer, make_request("GET", "/missing"))

        assert writer.status == 404
        assert body_json(writer) == {
            "error": {"code": 404, "message": 'No route found for "GET /missing"'}
        }

    def test_method_not_allowed(self, writer):
        method_not_allowed_failure(writer, make_request("POST", "/users"))

        assert writer.status == 405
        assert body_json(writer) == {
            "error": {"code": 405, "message": 'Method "POST" not allowed for "/users"'}
        }

    def test_internal_server_failure(self, writer):
        internal_server_failure(writer, make_request())

        assert writer.status == 500
        assert body_json(writer) == {"error": {"code": 500, "message": "Internal Server Error"}}

    @pytest.mark.parametrize("retry,expected", [
        (30, "30"),
        (1.9, "1"),
        (timedelta(minutes=2), "120"),
    ])
    def test_service_unavailable(self, writer, retry, expected):
        service_unavailable_failure(writer, make_request(), retry)

        assert writer.status == 503
        assert writer.get_header("Retry-After") == expected
        assert body_json(writer)["error"] == {"code": 503, "message": "Service Unavailable"}


class TestValidationEnvelope:

    def test_failure_from_validator(self, writer):
        result = ValidationResult()
        result.add_errors(
            ValidationIssue("name in body: too short", name="name", value="j", code=422),
            SchemaNotFoundError("address"),
        )

        failure_from_validator(writer, make_request("POST"), result)

        assert writer.status == 400
        assert body_json(writer) == {
            "errors": [
                {"code": 422, "name": "name", "in": "body", "value": "j",
                 "message": "name in body: too short"},
                {"message": 'schema "address" not found'},
            ]
        }

    def test_validator_error_omits_empty_fields(self):
        assert ValidatorError(message="only message").to_dict() == {"message": "only message"}

    def test_validator_error_values(self):
        err = ValidatorError(message="bad", name="color", in_="query", values=["red", "blue"])

        assert err.to_dict() == {
            "name": "color",
            "in": "query",
            "message": "bad",
            "values": ["red", "blue"],
        }

    def test_errors_response_empty(self):
        assert ErrorsResponse().to_dict() == {"errors": []}
