"""Grist REST API client."""

from __future__ import annotations

import json
import logging
import threading
from contextlib import ExitStack
from pathlib import Path
from typing import IO, Any, Iterable, List, Mapping, Optional, Sequence, Tuple

import requests

from . import records as records_api
from . import scim
from .config import GristConfig
from .models import (
    AddRecordsOptions,
    AttachmentMetadata,
    AttachmentQueryOptions,
    Doc,
    EntityAccess,
    Org,
    OrgUsage,
    Record,
    RecordQueryOptions,
    RecordWithRequire,
    RestoreResult,
    UpdateRecordsOptions,
    UpsertRecordsOptions,
    UserRole,
    Webhook,
    WebhookFields,
    Workspace,
)
from .query import build_query
from .transport import STATUS_ENCODING_ERROR, Transport

_LOGGER = logging.getLogger(__name__)

HTTP_OK = 200
HTTP_BAD_REQUEST = 400

EXPORT_FORMATS = {"grist": "download", "xlsx": "download/xlsx"}


class GristClient:
    """Client for interacting with a Grist server.

    Every call returns the HTTP status next to its result; typed results are
    only decoded from 200 responses and are empty otherwise.
    """

    def __init__(
        self,
        config: GristConfig,
        *,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config
        self.transport = Transport(config, timeout=timeout, session=session)

    def _get_json(self, path: str) -> Tuple[Any, int]:
        text, status = self.transport.send("GET", path)
        if status != HTTP_OK:
            return None, status
        try:
            return json.loads(text), status
        except ValueError:
            _LOGGER.warning("Unexpected non-JSON response from %s", path)
            return None, status

    def _send_json(self, method: str, path: str, payload: Any) -> Tuple[str, int]:
        try:
            body = json.dumps(payload)
        except (TypeError, ValueError) as exc:
            _LOGGER.error("Unable to serialise request body for %s: %s", path, exc)
            return "", STATUS_ENCODING_ERROR
        return self.transport.send(method, path, body)

    def _create(self, path: str, payload: Mapping[str, Any]) -> Tuple[int, int]:
        text, status = self._send_json("POST", path, payload)
        if status != HTTP_OK:
            _LOGGER.warning("Creation through %s failed with status %s: %s", path, status, text)
            return 0, status
        try:
            return int(text), status
        except ValueError:
            return 0, status

    def test_connection(self) -> bool:
        _, status = self.transport.send("GET", "orgs")
        return status == HTTP_OK

    # Organizations

    def list_orgs(self) -> Tuple[List[Org], int]:
        data, status = self._get_json("orgs")
        return [Org.from_dict(item) for item in data or [] if isinstance(item, dict)], status

    def get_org(self, org_id: int | str) -> Tuple[Optional[Org], int]:
        data, status = self._get_json(f"orgs/{org_id}")
        return (Org.from_dict(data) if isinstance(data, dict) else None), status

    def get_org_access(self, org_id: int | str) -> Tuple[EntityAccess, int]:
        data, status = self._get_json(f"orgs/{org_id}/access")
        return EntityAccess.from_dict(data if isinstance(data, dict) else {}), status

    def get_org_usage(self, org_id: int | str) -> Tuple[OrgUsage, int]:
        data, status = self._get_json(f"orgs/{org_id}/usage")
        return OrgUsage.from_dict(data if isinstance(data, dict) else {}), status

    def create_org(self, name: str, domain: str) -> int:
        """Create an organization and return its id, or 0 on failure."""

        org_id, _ = self._create("orgs", {"name": name, "domain": domain})
        return org_id

    def delete_org(self, org_id: int, name: str) -> Tuple[str, int]:
        return self.transport.send("DELETE", f"orgs/{org_id}/{name}")

    # Workspaces

    def list_workspaces(self, org_id: int | str) -> Tuple[List[Workspace], int]:
        data, status = self._get_json(f"orgs/{org_id}/workspaces")
        return [Workspace.from_dict(item) for item in data or [] if isinstance(item, dict)], status

    def get_workspace(self, workspace_id: int) -> Tuple[Optional[Workspace], int]:
        data, status = self._get_json(f"workspaces/{workspace_id}")
        return (Workspace.from_dict(data) if isinstance(data, dict) else None), status

    def get_workspace_access(self, workspace_id: int) -> Tuple[EntityAccess, int]:
        data, status = self._get_json(f"workspaces/{workspace_id}/access")
        return EntityAccess.from_dict(data if isinstance(data, dict) else {}), status

    def create_workspace(self, org_id: int, name: str) -> int:
        """Create a workspace and return its id, or 0 on failure."""

        workspace_id, _ = self._create(f"orgs/{org_id}/workspaces", {"name": name})
        return workspace_id

    def delete_workspace(self, workspace_id: int) -> Tuple[str, int]:
        return self.transport.send("DELETE", f"workspaces/{workspace_id}")

    def import_users(self, org_id: int, workspace_name: str, users: Sequence[UserRole]) -> Tuple[str, int]:
        """Grant roles in the workspace named ``workspace_name``, creating it when missing.

        A ``None`` role removes the user from the workspace.
        """

        workspaces, status = self.list_workspaces(org_id)
        if status != HTTP_OK:
            return "", status
        # The last workspace with the name wins when several share it.
        workspace_id = next((ws.id for ws in reversed(workspaces) if ws.name == workspace_name), 0)
        if not workspace_id:
            workspace_id, status = self._create(f"orgs/{org_id}/workspaces", {"name": workspace_name})
            if not workspace_id:
                return f"Unable to create workspace {workspace_name}", status

        delta = {"delta": {"users": {user.email: user.role for user in users}}}
        return self._send_json("PATCH", f"workspaces/{workspace_id}/access", delta)

    # Documents and tables

    def get_doc(self, doc_id: str) -> Tuple[Optional[Doc], int]:
        data, status = self._get_json(f"docs/{doc_id}")
        return (Doc.from_dict(data) if isinstance(data, dict) else None), status

    def get_doc_access(self, doc_id: str) -> Tuple[EntityAccess, int]:
        data, status = self._get_json(f"docs/{doc_id}/access")
        return EntityAccess.from_dict(data if isinstance(data, dict) else {}), status

    def delete_doc(self, doc_id: str) -> Tuple[str, int]:
        return self.transport.send("DELETE", f"docs/{doc_id}")

    def move_doc(self, doc_id: str, workspace_id: int) -> Tuple[str, int]:
        return self._send_json("PATCH", f"docs/{doc_id}/move", {"workspace": workspace_id})

    def move_all_docs(self, from_workspace_id: int, to_workspace_id: int) -> Tuple[List[Tuple[str, int]], int]:
        """Move every document of a workspace; returns one ``(doc_id, status)`` per document."""

        source, status = self.get_workspace(from_workspace_id)
        if source is None:
            return [], status
        target, status = self.get_workspace(to_workspace_id)
        if target is None:
            return [], status

        moved: List[Tuple[str, int]] = []
        for doc in source.docs:
            _, doc_status = self.move_doc(doc.id, target.id)
            moved.append((doc.id, doc_status))
        return moved, HTTP_OK

    def purge_doc(self, doc_id: str, keep: int = 3) -> Tuple[str, int]:
        """Remove the document history, keeping the ``keep`` latest states."""

        return self._send_json("POST", f"docs/{doc_id}/states/remove", {"keep": keep})

    def export_doc(self, doc_id: str, fmt: str = "grist") -> Tuple[bytes, int]:
        if fmt not in EXPORT_FORMATS:
            raise ValueError(f"Unknown export format {fmt!r}; expected one of {sorted(EXPORT_FORMATS)}")
        content, _, status = self.transport.download(f"docs/{doc_id}/{EXPORT_FORMATS[fmt]}")
        return content, status

    def get_table_csv(self, doc_id: str, table_id: str) -> Tuple[str, int]:
        content, _, status = self.transport.download(f"docs/{doc_id}/download/csv?tableId={table_id}")
        return content.decode("utf-8", errors="replace"), status

    def list_tables(self, doc_id: str) -> Tuple[List[str], int]:
        data, status = self._get_json(f"docs/{doc_id}/tables")
        tables = data.get("tables") or [] if isinstance(data, dict) else []
        return [str(table["id"]) for table in tables if isinstance(table, dict) and "id" in table], status

    def list_columns(self, doc_id: str, table_id: str) -> Tuple[List[str], int]:
        data, status = self._get_json(f"docs/{doc_id}/tables/{table_id}/columns")
        columns = data.get("columns") or [] if isinstance(data, dict) else []
        return [str(column["id"]) for column in columns if isinstance(column, dict) and "id" in column], status

    def delete_user(self, user_id: int) -> Tuple[str, int]:
        return self._send_json("DELETE", f"users/{user_id}", {"name": ""})

    # Records

    def fetch_records(
        self, doc_id: str, table_id: str, options: Optional[RecordQueryOptions] = None
    ) -> Tuple[List[Record], int]:
        return records_api.fetch_records(self.transport, doc_id, table_id, options)

    def add_records(
        self,
        doc_id: str,
        table_id: str,
        records: Sequence[Mapping[str, Any]],
        options: Optional[AddRecordsOptions] = None,
    ) -> Tuple[List[int], int]:
        return records_api.add_records(self.transport, doc_id, table_id, records, options)

    def update_records(
        self,
        doc_id: str,
        table_id: str,
        records: Sequence[Record],
        options: Optional[UpdateRecordsOptions] = None,
    ) -> Tuple[str, int]:
        return records_api.update_records(self.transport, doc_id, table_id, records, options)

    def upsert_records(
        self,
        doc_id: str,
        table_id: str,
        records: Sequence[RecordWithRequire],
        options: Optional[UpsertRecordsOptions] = None,
    ) -> Tuple[str, int]:
        return records_api.upsert_records(self.transport, doc_id, table_id, records, options)

    def delete_records(self, doc_id: str, table_id: str, record_ids: Sequence[int]) -> Tuple[str, int]:
        return records_api.delete_records(self.transport, doc_id, table_id, record_ids)

    # SCIM

    def run_scim_bulk(
        self, request: scim.ScimBulkRequest, *, cancel: Optional[threading.Event] = None
    ) -> Tuple[scim.ScimBulkResponse, int]:
        return scim.run_scim_bulk(self.transport, request, cancel=cancel)

    def run_scim_bulk_from_json(
        self, text: str, *, cancel: Optional[threading.Event] = None
    ) -> Tuple[scim.ScimBulkResponse, int]:
        return scim.run_scim_bulk_from_json(self.transport, text, cancel=cancel)

    # Webhooks

    def list_webhooks(self, doc_id: str) -> Tuple[List[Webhook], int]:
        data, status = self._get_json(f"docs/{doc_id}/webhooks")
        items = data.get("webhooks") or [] if isinstance(data, dict) else []
        return [Webhook.from_dict(item) for item in items if isinstance(item, dict)], status

    def create_webhooks(self, doc_id: str, webhooks: Iterable[WebhookFields]) -> Tuple[List[str], int]:
        """Create webhooks and return their ids."""

        payload = {"webhooks": [{"fields": fields.to_dict()} for fields in webhooks]}
        text, status = self._send_json("POST", f"docs/{doc_id}/webhooks", payload)
        if status != HTTP_OK:
            return [], status
        try:
            data = json.loads(text)
        except ValueError:
            return [], status
        items = data.get("webhooks") or [] if isinstance(data, dict) else []
        return [str(item["id"]) for item in items if isinstance(item, dict) and "id" in item], status

    def update_webhook(self, doc_id: str, webhook_id: str, fields: WebhookFields) -> Tuple[str, int]:
        return self._send_json("PATCH", f"docs/{doc_id}/webhooks/{webhook_id}", fields.to_dict())

    def delete_webhook(self, doc_id: str, webhook_id: str) -> Tuple[bool, int]:
        text, status = self.transport.send("DELETE", f"docs/{doc_id}/webhooks/{webhook_id}")
        if status != HTTP_OK:
            return False, status
        try:
            data = json.loads(text)
        except ValueError:
            return False, status
        return bool(isinstance(data, dict) and data.get("success")), status

    def clear_webhook_queue(self, doc_id: str) -> Tuple[str, int]:
        return self.transport.send("DELETE", f"docs/{doc_id}/webhooks/queue")

    # Attachments

    def list_attachments(
        self, doc_id: str, options: Optional[AttachmentQueryOptions] = None
    ) -> Tuple[List[AttachmentMetadata], int]:
        params = {}
        if options is not None:
            if options.filter is not None:
                try:
                    params["filter"] = json.dumps(dict(options.filter))
                except (TypeError, ValueError):
                    return [], STATUS_ENCODING_ERROR
            params["sort"] = options.sort
            if options.limit > 0:
                params["limit"] = str(options.limit)
        data, status = self._get_json(f"docs/{doc_id}/attachments{build_query(params)}")
        items = data.get("records") or [] if isinstance(data, dict) else []
        return [AttachmentMetadata.from_dict(item) for item in items if isinstance(item, dict)], status

    def _decode_ids(self, text: str, status: int) -> Tuple[List[int], int]:
        if status != HTTP_OK:
            return [], status
        try:
            data = json.loads(text)
        except ValueError:
            return [], status
        return [int(item) for item in data if isinstance(item, int)] if isinstance(data, list) else [], status

    def upload_attachments(self, doc_id: str, paths: Sequence[Path | str]) -> Tuple[List[int], int]:
        """Upload files and return the new attachment ids."""

        if not paths:
            return [], HTTP_BAD_REQUEST
        with ExitStack() as stack:
            files = [
                ("upload", (Path(path).name, stack.enter_context(open(path, "rb"))))
                for path in paths
            ]
            text, status = self.transport.upload(f"docs/{doc_id}/attachments", files)
        return self._decode_ids(text, status)

    def upload_attachment_stream(self, doc_id: str, filename: str, stream: IO[bytes]) -> Tuple[List[int], int]:
        text, status = self.transport.upload(f"docs/{doc_id}/attachments", [("upload", (filename, stream))])
        return self._decode_ids(text, status)

    def get_attachment(self, doc_id: str, attachment_id: int) -> Tuple[Optional[AttachmentMetadata], int]:
        data, status = self._get_json(f"docs/{doc_id}/attachments/{attachment_id}")
        if not isinstance(data, dict):
            return None, status
        return AttachmentMetadata.from_dict({"id": attachment_id, **data}), status

    def download_attachment(self, doc_id: str, attachment_id: int) -> Tuple[bytes, str, int]:
        return self.transport.download(f"docs/{doc_id}/attachments/{attachment_id}/download")

    def download_attachment_to_file(self, doc_id: str, attachment_id: int, destination: Path | str) -> Path:
        content, _, status = self.download_attachment(doc_id, attachment_id)
        if status != HTTP_OK:
            raise RuntimeError(
                f"Download of attachment {attachment_id} failed with status {status}: "
                f"{content.decode('utf-8', errors='ignore')}"
            )
        target = Path(destination)
        target.write_bytes(content)
        return target

    def restore_attachments(self, doc_id: str, archive: Path | str) -> Tuple[RestoreResult, int]:
        """Restore missing attachment files from a ``.tar`` archive."""

        with open(archive, "rb") as stream:
            return self.restore_attachments_stream(doc_id, Path(archive).name, stream)

    def restore_attachments_stream(self, doc_id: str, filename: str, stream: IO[bytes]) -> Tuple[RestoreResult, int]:
        text, status = self.transport.upload(f"docs/{doc_id}/attachments/archive", [("upload", (filename, stream))])
        if status != HTTP_OK:
            return RestoreResult(), status
        try:
            data = json.loads(text)
        except ValueError:
            return RestoreResult(), status
        return RestoreResult.from_dict(data if isinstance(data, dict) else {}), status

    def delete_unused_attachments(self, doc_id: str) -> Tuple[str, int]:
        return self.transport.send("POST", f"docs/{doc_id}/attachments/removeUnused")


__all__ = ["EXPORT_FORMATS", "GristClient"]
