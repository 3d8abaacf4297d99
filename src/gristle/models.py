"""Data structures exchanged with the Grist REST API."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

ON_MANY_CHOICES = ("first", "none", "all")


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_str(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass(frozen=True)
class User:
    """A user as listed in an access description."""

    id: int
    name: str = ""
    email: str = ""
    access: Optional[str] = None
    parent_access: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "User":
        return cls(
            id=_as_int(data.get("id")),
            name=_as_str(data.get("name")),
            email=_as_str(data.get("email")),
            access=data.get("access"),
            parent_access=data.get("parentAccess"),
        )


@dataclass(frozen=True)
class EntityAccess:
    """Users allowed on an org, workspace or document."""

    max_inherited_role: Optional[str] = None
    users: List[User] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EntityAccess":
        return cls(
            max_inherited_role=data.get("maxInheritedRole"),
            users=[User.from_dict(item) for item in data.get("users") or [] if isinstance(item, dict)],
        )


@dataclass(frozen=True)
class Org:
    id: int
    name: str = ""
    domain: Optional[str] = None
    created_at: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Org":
        return cls(
            id=_as_int(data.get("id")),
            name=_as_str(data.get("name")),
            domain=data.get("domain"),
            created_at=_as_str(data.get("createdAt")),
        )


@dataclass(frozen=True)
class Doc:
    id: str
    name: str = ""
    is_pinned: bool = False
    workspace: Optional["Workspace"] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Doc":
        workspace = data.get("workspace")
        return cls(
            id=_as_str(data.get("id")),
            name=_as_str(data.get("name")),
            is_pinned=bool(data.get("isPinned", False)),
            workspace=Workspace.from_dict(workspace) if isinstance(workspace, dict) else None,
        )


@dataclass(frozen=True)
class Workspace:
    id: int
    name: str = ""
    created_at: str = ""
    docs: List[Doc] = field(default_factory=list)
    org_domain: Optional[str] = None
    org: Optional[Org] = None
    access: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Workspace":
        org = data.get("org")
        return cls(
            id=_as_int(data.get("id")),
            name=_as_str(data.get("name")),
            created_at=_as_str(data.get("createdAt")),
            docs=[Doc.from_dict(item) for item in data.get("docs") or [] if isinstance(item, dict)],
            org_domain=data.get("orgDomain"),
            org=Org.from_dict(org) if isinstance(org, dict) else None,
            access=data.get("access"),
        )


@dataclass(frozen=True)
class OrgUsage:
    """Usage summary of an organization."""

    counts_by_data_limit_status: Dict[str, int] = field(default_factory=dict)
    attachments_total_bytes: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OrgUsage":
        counts = data.get("countsByDataLimitStatus") or data.get("CountsByDataLimitStatus") or {}
        attachments = data.get("attachments") or {}
        return cls(
            counts_by_data_limit_status={str(key): _as_int(value) for key, value in counts.items()},
            attachments_total_bytes=_as_int(attachments.get("totalBytes")),
        )


@dataclass(frozen=True)
class UserRole:
    email: str
    role: Optional[str] = None


@dataclass(frozen=True)
class Record:
    """One row of a table.

    ``fields`` maps column ids to arbitrary JSON values; column names are
    never checked against the table schema.
    """

    id: int = 0
    fields: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Record":
        fields = data.get("fields")
        return cls(id=_as_int(data.get("id")), fields=dict(fields) if isinstance(fields, dict) else {})

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if self.id:
            payload["id"] = self.id
        payload["fields"] = self.fields
        return payload


@dataclass(frozen=True)
class RecordWithRequire:
    """An upsert entry: ``require`` selects the rows, ``fields`` holds the new values.

    Values in ``require`` are passed through untouched, including
    operator-shaped values such as ``{"$gt": 5}``.
    """

    require: Dict[str, Any]
    fields: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RecordWithRequire":
        fields = data.get("fields")
        require = data.get("require")
        return cls(
            require=dict(require) if isinstance(require, dict) else {},
            fields=dict(fields) if isinstance(fields, dict) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"require": self.require}
        if self.fields:
            payload["fields"] = self.fields
        return payload


@dataclass(frozen=True)
class RecordQueryOptions:
    """Options for fetching records; unset values leave the server default."""

    filter: Optional[Mapping[str, List[Any]]] = None
    sort: str = ""
    limit: int = 0
    hidden: bool = False


@dataclass(frozen=True)
class AddRecordsOptions:
    no_parse: bool = False


@dataclass(frozen=True)
class UpdateRecordsOptions:
    no_parse: bool = False


@dataclass(frozen=True)
class UpsertRecordsOptions:
    on_many: str = ""
    no_add: bool = False
    no_update: bool = False
    allow_empty_require: bool = False
    no_parse: bool = False


@dataclass(frozen=True)
class WebhookFields:
    """Webhook settings. ``None`` values are left out of requests."""

    name: Optional[str] = None
    memo: Optional[str] = None
    url: Optional[str] = None
    enabled: Optional[bool] = None
    event_types: Optional[List[str]] = None
    is_ready_column: Optional[str] = None
    table_id: Optional[str] = None
    unsubscribe_key: Optional[str] = None

    _WIRE_NAMES = {
        "name": "name",
        "memo": "memo",
        "url": "url",
        "enabled": "enabled",
        "event_types": "eventTypes",
        "is_ready_column": "isReadyColumn",
        "table_id": "tableId",
        "unsubscribe_key": "unsubscribeKey",
    }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WebhookFields":
        return cls(**{attr: data.get(wire) for attr, wire in cls._WIRE_NAMES.items()})

    def to_dict(self) -> Dict[str, Any]:
        # The unsubscribe key is assigned by the server and never sent back.
        return {
            wire: getattr(self, attr)
            for attr, wire in self._WIRE_NAMES.items()
            if attr != "unsubscribe_key" and getattr(self, attr) is not None
        }


@dataclass(frozen=True)
class WebhookBatchStatus:
    size: int = 0
    errored_at: Optional[int] = None
    status: str = ""
    attempts: int = 0


@dataclass(frozen=True)
class WebhookUsage:
    num_waiting: int = 0
    status: str = ""
    updated_time: Optional[int] = None
    last_success_time: Optional[int] = None
    last_failure_time: Optional[int] = None
    last_error_message: Optional[str] = None
    last_http_status: Optional[int] = None
    last_event_batch: Optional[WebhookBatchStatus] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WebhookUsage":
        batch = data.get("lastEventBatch")
        return cls(
            num_waiting=_as_int(data.get("numWaiting")),
            status=_as_str(data.get("status")),
            updated_time=data.get("updatedTime"),
            last_success_time=data.get("lastSuccessTime"),
            last_failure_time=data.get("lastFailureTime"),
            last_error_message=data.get("lastErrorMessage"),
            last_http_status=data.get("lastHttpStatus"),
            last_event_batch=WebhookBatchStatus(
                size=_as_int(batch.get("size")),
                errored_at=batch.get("erroredAt"),
                status=_as_str(batch.get("status")),
                attempts=_as_int(batch.get("attempts")),
            )
            if isinstance(batch, dict)
            else None,
        )


@dataclass(frozen=True)
class Webhook:
    id: str
    fields: WebhookFields = field(default_factory=WebhookFields)
    usage: Optional[WebhookUsage] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Webhook":
        usage = data.get("usage")
        return cls(
            id=_as_str(data.get("id")),
            fields=WebhookFields.from_dict(data.get("fields") or {}),
            usage=WebhookUsage.from_dict(usage) if isinstance(usage, dict) else None,
        )


@dataclass(frozen=True)
class AttachmentMetadata:
    id: int
    file_name: str = ""
    file_size: int = 0
    time_uploaded: str = ""
    image_height: int = 0
    image_width: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AttachmentMetadata":
        # Listings nest the metadata under "fields"; single lookups do not.
        fields = data.get("fields") if isinstance(data.get("fields"), dict) else data
        return cls(
            id=_as_int(data.get("id")),
            file_name=_as_str(fields.get("fileName")),
            file_size=_as_int(fields.get("fileSize")),
            time_uploaded=_as_str(fields.get("timeUploaded")),
            image_height=_as_int(fields.get("imageHeight")),
            image_width=_as_int(fields.get("imageWidth")),
        )


@dataclass(frozen=True)
class AttachmentQueryOptions:
    filter: Optional[Mapping[str, List[Any]]] = None
    sort: str = ""
    limit: int = 0


@dataclass(frozen=True)
class RestoreResult:
    """Outcome of restoring attachments from a ``.tar`` archive."""

    added: int = 0
    errored: int = 0
    unused: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RestoreResult":
        return cls(
            added=_as_int(data.get("added")),
            errored=_as_int(data.get("errored")),
            unused=_as_int(data.get("unused")),
        )


__all__ = [
    "AddRecordsOptions",
    "AttachmentMetadata",
    "AttachmentQueryOptions",
    "Doc",
    "EntityAccess",
    "ON_MANY_CHOICES",
    "Org",
    "OrgUsage",
    "Record",
    "RecordQueryOptions",
    "RecordWithRequire",
    "RestoreResult",
    "UpdateRecordsOptions",
    "UpsertRecordsOptions",
    "User",
    "UserRole",
    "Webhook",
    "WebhookBatchStatus",
    "WebhookFields",
    "WebhookUsage",
    "Workspace",
]
