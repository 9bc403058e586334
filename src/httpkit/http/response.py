"""
=============================================================================
RESPONSE HELPERS
=============================================================================

Everything a handler needs to answer with data or with an error
envelope. All helpers go through the writer's EncoderRegistry, so error
bodies are negotiated exactly like success bodies and always carry:

    Content-Type: <negotiated mime>; charset=utf-8
    X-Content-Type-Options: nosniff

=============================================================================
ENVELOPES
=============================================================================

    encode(w, r, 201, user)                  {"id":1,"name":"john"}

    not_found_failure(w, r)                  404 {"error":{"code":404,
                                                 "message":"No route found for \"GET /x\""}}

    method_not_allowed_failure(w, r)         405 {"error":{"code":405,
                                                 "message":"Method \"POST\" not allowed for \"/users\""}}

    internal_server_failure(w, r)            500 Internal Server Error

    service_unavailable_failure(w, r, 30)    503 Service Unavailable
                                             + Retry-After: 30

    failure_from_error(w, r, 400, err)       400 message = str(err)

    failure_from_validator(w, r, result)     400 {"errors":[{...}, ...]}

=============================================================================
"""

from datetime import timedelta
from typing import Any, Union

from ..envelope import ErrorMessage, ErrorResponse, ErrorsResponse, ValidatorError
from ..validation import ValidationIssue, ValidationResult
from .request import Request
from .writer import ResponseWriter


def encode(w: ResponseWriter, r: Request, status: int, data: Any) -> None:
    """Write data in the representation negotiated from the Accept header."""
    w.encoders.encode(w, r, status, data)


def failure(w: ResponseWriter, r: Request, status: int, error: ErrorMessage) -> None:
    encode(w, r, status, ErrorResponse(error))


def failure_from_error(w: ResponseWriter, r: Request, status: int, err: BaseException) -> None:
    failure(w, r, status, ErrorMessage(code=status, message=str(err)))


def not_found_failure(w: ResponseWriter, r: Request) -> None:
    failure(w, r, 404, ErrorMessage(
        code=404,
        message=f'No route found for "{r.method} {r.path}"',
    ))


def method_not_allowed_failure(w: ResponseWriter, r: Request) -> None:
    failure(w, r, 405, ErrorMessage(
        code=405,
        message=f'Method "{r.method}" not allowed for "{r.path}"',
    ))


def internal_server_failure(w: ResponseWriter, r: Request) -> None:
    failure(w, r, 500, ErrorMessage(code=500, message="Internal Server Error"))


def service_unavailable_failure(
    w: ResponseWriter,
    r: Request,
    retry: Union[int, float, timedelta],
) -> None:
    """503 with a Retry-After header in whole seconds."""
    if isinstance(retry, timedelta):
        retry = retry.total_seconds()
    w.set_header("Retry-After", str(int(retry)))
    failure(w, r, 503, ErrorMessage(code=503, message="Service Unavailable"))


def failure_from_validator(w: ResponseWriter, r: Request, result: ValidationResult) -> None:
    """400 with one entry per validation error."""
    errors = []
    for err in result.errors:
        if isinstance(err, ValidationIssue):
            errors.append(ValidatorError(
                code=err.code,
                name=err.name,
                in_=err.in_,
                value=err.value,
                message=err.message,
                values=list(err.values),
            ))
        else:
            errors.append(ValidatorError(message=str(err)))

    encode(w, r, 400, ErrorsResponse(errors))
