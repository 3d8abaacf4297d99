"""Request and response shaping for ``/docs/{docId}/tables/{tableId}/records``.

Every function returns a ``(result, status)`` pair. ``status`` is the HTTP
status of the call, ``STATUS_ENCODING_ERROR`` when the request body could not
be shaped or serialised (no request is sent), or one of the negative transport
statuses. Non-2xx responses are handed back untouched.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .models import (
    AddRecordsOptions,
    Record,
    RecordQueryOptions,
    RecordWithRequire,
    UpdateRecordsOptions,
    UpsertRecordsOptions,
)
from .query import build_query
from .transport import STATUS_ENCODING_ERROR, Transport

_LOGGER = logging.getLogger(__name__)

HTTP_OK = 200


def records_path(doc_id: str, table_id: str, suffix: str = "") -> str:
    return f"docs/{doc_id}/tables/{table_id}/records{suffix}"


def _encode(build: Callable[[], Any]) -> Optional[str]:
    """Shape and serialise a request body; ``None`` when either step fails."""

    try:
        return json.dumps(build())
    except (AttributeError, TypeError, ValueError) as exc:
        _LOGGER.error("Unable to build request body: %s", exc)
        return None


def _decode_object(text: str) -> Dict[str, Any]:
    try:
        data = json.loads(text)
    except ValueError:
        _LOGGER.debug("Response body is not valid JSON: %.200s", text)
        return {}
    return data if isinstance(data, dict) else {}


def _flag(enabled: bool) -> str:
    return "true" if enabled else ""


def fetch_records(
    transport: Transport,
    doc_id: str,
    table_id: str,
    options: Optional[RecordQueryOptions] = None,
) -> Tuple[List[Record], int]:
    """GET the records of a table, decoding the body only on HTTP 200."""

    params: Dict[str, str] = {}
    if options is not None:
        if options.filter is not None:
            encoded_filter = _encode(lambda: dict(options.filter))
            if encoded_filter is None:
                return [], STATUS_ENCODING_ERROR
            params["filter"] = encoded_filter
        params["sort"] = options.sort
        if options.limit > 0:
            params["limit"] = str(options.limit)
        params["hidden"] = _flag(options.hidden)

    response, status = transport.send("GET", records_path(doc_id, table_id, build_query(params)))
    if status != HTTP_OK:
        return [], status

    raw_records = _decode_object(response).get("records") or []
    records = [Record.from_dict(item) for item in raw_records if isinstance(item, dict)]
    return records, status


def add_records(
    transport: Transport,
    doc_id: str,
    table_id: str,
    records: Sequence[Mapping[str, Any]],
    options: Optional[AddRecordsOptions] = None,
) -> Tuple[List[int], int]:
    """POST new rows and return the ids assigned by the server."""

    params = {"noparse": _flag(bool(options and options.no_parse))}
    body = _encode(lambda: {"records": [{"fields": dict(fields)} for fields in records]})
    if body is None:
        return [], STATUS_ENCODING_ERROR

    response, status = transport.send("POST", records_path(doc_id, table_id, build_query(params)), body)
    if status != HTTP_OK:
        return [], status

    raw_records = _decode_object(response).get("records") or []
    ids = [Record.from_dict(item).id for item in raw_records if isinstance(item, dict) and "id" in item]
    return ids, status


def update_records(
    transport: Transport,
    doc_id: str,
    table_id: str,
    records: Sequence[Record],
    options: Optional[UpdateRecordsOptions] = None,
) -> Tuple[str, int]:
    """PATCH existing rows identified by their ``id``."""

    params = {"noparse": _flag(bool(options and options.no_parse))}
    body = _encode(lambda: {"records": [record.to_dict() for record in records]})
    if body is None:
        return "", STATUS_ENCODING_ERROR

    return transport.send("PATCH", records_path(doc_id, table_id, build_query(params)), body)


def upsert_records(
    transport: Transport,
    doc_id: str,
    table_id: str,
    records: Sequence[RecordWithRequire],
    options: Optional[UpsertRecordsOptions] = None,
) -> Tuple[str, int]:
    """PUT rows matched by their ``require`` values, adding those that do not exist."""

    params: Dict[str, str] = {}
    if options is not None:
        params = {
            "onmany": options.on_many,
            "noadd": _flag(options.no_add),
            "noupdate": _flag(options.no_update),
            "allow_empty_require": _flag(options.allow_empty_require),
            "noparse": _flag(options.no_parse),
        }
    body = _encode(lambda: {"records": [record.to_dict() for record in records]})
    if body is None:
        return "", STATUS_ENCODING_ERROR

    return transport.send("PUT", records_path(doc_id, table_id, build_query(params)), body)


def delete_records(
    transport: Transport,
    doc_id: str,
    table_id: str,
    record_ids: Sequence[int],
) -> Tuple[str, int]:
    """POST the ids to remove; duplicates are sent as given."""

    body = _encode(lambda: list(record_ids))
    if body is None:
        return "", STATUS_ENCODING_ERROR

    return transport.send("POST", records_path(doc_id, table_id, "/delete"), body)


__all__ = [
    "add_records",
    "delete_records",
    "fetch_records",
    "records_path",
    "update_records",
    "upsert_records",
]
