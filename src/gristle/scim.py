"""SCIM v2 bulk operations (RFC 7644, section 3.7) run against ``/api/scim/v2``.

The executor validates the request envelope, then runs each operation in
order through the transport. Malformed operations are answered locally with
a 400 instead of being sent. Per-operation failures never abort the batch
unless ``failOnErrors`` is reached.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .transport import Transport

_LOGGER = logging.getLogger(__name__)

BULK_REQUEST_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:BulkRequest"
BULK_RESPONSE_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:BulkResponse"
ERROR_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:Error"

SCIM_PREFIX = "scim/v2"
BULK_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
LOCATION_METHODS = frozenset({"POST", "PUT"})

HTTP_OK = 200
HTTP_BAD_REQUEST = 400


@dataclass(frozen=True)
class ScimError:
    detail: str
    status: str
    scim_type: Optional[str] = None
    schemas: List[str] = field(default_factory=lambda: [ERROR_SCHEMA])

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"schemas": list(self.schemas), "detail": self.detail, "status": self.status}
        if self.scim_type:
            payload["scimType"] = self.scim_type
        return payload


@dataclass(frozen=True)
class ScimBulkOperation:
    """One unit of work in a bulk request.

    ``data`` is any JSON-serialisable payload and is forwarded as is;
    ``version`` is advisory and never sent.
    """

    method: str
    path: str
    bulk_id: str = ""
    version: str = ""
    data: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScimBulkOperation":
        if not isinstance(data, Mapping):
            raise TypeError("A bulk operation must be a JSON object")
        return cls(
            method=_string_member(data, "method"),
            path=_string_member(data, "path"),
            bulk_id=_string_member(data, "bulkId"),
            version=_string_member(data, "version"),
            data=data.get("data"),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"method": self.method, "path": self.path}
        if self.bulk_id:
            payload["bulkId"] = self.bulk_id
        if self.version:
            payload["version"] = self.version
        if self.data is not None:
            payload["data"] = self.data
        return payload


@dataclass(frozen=True)
class ScimBulkRequest:
    operations: List[ScimBulkOperation] = field(default_factory=list)
    schemas: List[str] = field(default_factory=lambda: [BULK_REQUEST_SCHEMA])
    fail_on_errors: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScimBulkRequest":
        if not isinstance(data, Mapping):
            raise TypeError("A bulk request must be a JSON object")
        schemas = data.get("schemas") or []
        operations = data.get("Operations") or []
        fail_on_errors = data.get("failOnErrors") or 0
        if not isinstance(schemas, list) or not all(isinstance(item, str) for item in schemas):
            raise TypeError("'schemas' must be a list of strings")
        if not isinstance(operations, list):
            raise TypeError("'Operations' must be a list")
        if not isinstance(fail_on_errors, int) or isinstance(fail_on_errors, bool):
            raise TypeError("'failOnErrors' must be an integer")
        return cls(
            operations=[ScimBulkOperation.from_dict(item) for item in operations],
            schemas=list(schemas),
            fail_on_errors=fail_on_errors,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"schemas": list(self.schemas)}
        if self.fail_on_errors:
            payload["failOnErrors"] = self.fail_on_errors
        payload["Operations"] = [operation.to_dict() for operation in self.operations]
        return payload


@dataclass(frozen=True)
class ScimBulkOperationResponse:
    status: str
    method: str = ""
    bulk_id: str = ""
    version: str = ""
    location: str = ""
    response: Any = None

    @property
    def status_code(self) -> int:
        try:
            return int(self.status)
        except ValueError:
            return 0

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"method": self.method}
        if self.bulk_id:
            payload["bulkId"] = self.bulk_id
        if self.version:
            payload["version"] = self.version
        if self.location:
            payload["location"] = self.location
        payload["status"] = self.status
        if self.response is not None:
            payload["response"] = self.response.to_dict() if isinstance(self.response, ScimError) else self.response
        return payload


@dataclass(frozen=True)
class ScimBulkResponse:
    operations: List[ScimBulkOperationResponse] = field(default_factory=list)
    schemas: List[str] = field(default_factory=lambda: [BULK_RESPONSE_SCHEMA])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schemas": list(self.schemas),
            "Operations": [operation.to_dict() for operation in self.operations],
        }


def _string_member(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"'{key}' must be a string")
    return value


def _invalid(operation: ScimBulkOperation, detail: str) -> ScimBulkOperationResponse:
    status = str(HTTP_BAD_REQUEST)
    return ScimBulkOperationResponse(
        status=status,
        method=operation.method,
        bulk_id=operation.bulk_id,
        response=ScimError(detail=detail, status=status, scim_type="invalidSyntax"),
    )


def _decode_body(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


def execute_operation(
    transport: Transport,
    operation: ScimBulkOperation,
    *,
    cancel: Optional[threading.Event] = None,
) -> ScimBulkOperationResponse:
    """Run a single bulk operation and describe its outcome."""

    if operation.method not in BULK_METHODS:
        return _invalid(operation, f"Invalid method: {operation.method}")
    if not operation.path:
        return _invalid(operation, "Path is required")

    body = ""
    if operation.data is not None:
        try:
            body = json.dumps(operation.data)
        except (TypeError, ValueError) as exc:
            _LOGGER.debug("Bulk operation %s has unserialisable data: %s", operation.bulk_id, exc)
            return _invalid(operation, "Invalid request data")

    text, status = transport.send(operation.method, f"{SCIM_PREFIX}{operation.path}", body, cancel=cancel)
    decoded = _decode_body(text)

    location = ""
    if 200 <= status < 300 and operation.method in LOCATION_METHODS and isinstance(decoded, dict):
        if "id" in decoded:
            location = f"{transport.config.api_url}/{SCIM_PREFIX}{operation.path}/{decoded['id']}"

    return ScimBulkOperationResponse(
        status=str(status),
        method=operation.method,
        bulk_id=operation.bulk_id,
        location=location,
        response=decoded,
    )


def run_scim_bulk(
    transport: Transport,
    request: ScimBulkRequest,
    *,
    cancel: Optional[threading.Event] = None,
) -> Tuple[ScimBulkResponse, int]:
    """Execute a bulk request and return ``(response, overall_status)``.

    The overall status is 400 only when the envelope lacks the bulk-request
    schema; individual failures are reported inside the response.
    """

    if BULK_REQUEST_SCHEMA not in request.schemas:
        _LOGGER.warning("Rejecting bulk request without schema %s", BULK_REQUEST_SCHEMA)
        return ScimBulkResponse(), HTTP_BAD_REQUEST

    results: List[ScimBulkOperationResponse] = []
    error_count = 0
    for operation in request.operations:
        result = execute_operation(transport, operation, cancel=cancel)
        results.append(result)
        if result.status_code >= HTTP_BAD_REQUEST:
            error_count += 1
            if 0 < request.fail_on_errors <= error_count:
                _LOGGER.info("Stopping bulk request after %d errors", error_count)
                break

    return ScimBulkResponse(operations=results), HTTP_OK


def run_scim_bulk_from_json(
    transport: Transport,
    text: str,
    *,
    cancel: Optional[threading.Event] = None,
) -> Tuple[ScimBulkResponse, int]:
    """Parse a JSON bulk request and execute it."""

    try:
        request = ScimBulkRequest.from_dict(json.loads(text))
    except (TypeError, ValueError) as exc:
        _LOGGER.debug("Invalid bulk request body: %s", exc)
        status = str(HTTP_BAD_REQUEST)
        error = ScimBulkOperationResponse(
            status=status,
            response=ScimError(detail="Invalid JSON in request body", status=status, scim_type="invalidSyntax"),
        )
        return ScimBulkResponse(operations=[error]), HTTP_BAD_REQUEST

    return run_scim_bulk(transport, request, cancel=cancel)


__all__ = [
    "BULK_REQUEST_SCHEMA",
    "BULK_RESPONSE_SCHEMA",
    "ERROR_SCHEMA",
    "ScimBulkOperation",
    "ScimBulkOperationResponse",
    "ScimBulkRequest",
    "ScimBulkResponse",
    "ScimError",
    "execute_operation",
    "run_scim_bulk",
    "run_scim_bulk_from_json",
]
