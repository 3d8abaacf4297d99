"""Grist REST API client and command line tools."""

from .client import GristClient
from .config import GristConfig, load_config
from .models import (
    AddRecordsOptions,
    Record,
    RecordQueryOptions,
    RecordWithRequire,
    UpdateRecordsOptions,
    UpsertRecordsOptions,
)
from .query import build_query
from .records import add_records, delete_records, fetch_records, update_records, upsert_records
from .scim import ScimBulkOperation, ScimBulkRequest, ScimBulkResponse, run_scim_bulk, run_scim_bulk_from_json
from .transport import Transport

__all__ = [
    "AddRecordsOptions",
    "GristClient",
    "GristConfig",
    "Record",
    "RecordQueryOptions",
    "RecordWithRequire",
    "ScimBulkOperation",
    "ScimBulkRequest",
    "ScimBulkResponse",
    "Transport",
    "UpdateRecordsOptions",
    "UpsertRecordsOptions",
    "add_records",
    "build_query",
    "delete_records",
    "fetch_records",
    "load_config",
    "run_scim_bulk",
    "run_scim_bulk_from_json",
    "update_records",
    "upsert_records",
]
