"""Command line interface for interacting with a Grist server."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from .client import EXPORT_FORMATS, GristClient
from .config import GristConfig, load_config, save_config
from .models import (
    ON_MANY_CHOICES,
    AddRecordsOptions,
    AttachmentQueryOptions,
    Record,
    RecordQueryOptions,
    RecordWithRequire,
    UpdateRecordsOptions,
    UpsertRecordsOptions,
    UserRole,
)
from .output import OUTPUT_FORMATS, render
from .transport import describe_status, is_success

_LOGGER = logging.getLogger(__name__)


def _load_json_argument(value: str) -> Any:
    """Parse inline JSON, ``@path`` to read a file, or ``-`` for stdin."""

    if value == "-":
        text = sys.stdin.read()
    elif value.startswith("@"):
        text = Path(value[1:]).read_text(encoding="utf-8")
    else:
        text = value
    return json.loads(text)


def _load_objects(value: str) -> Optional[List[Dict[str, Any]]]:
    """Load a JSON object or list of objects; ``None`` when an item is not an object."""

    data = _load_json_argument(value)
    items = data if isinstance(data, list) else [data]
    if not all(isinstance(item, dict) for item in items):
        return None
    return items


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gristle", description="Interact with a Grist server")
    parser.add_argument("-o", "--output", choices=OUTPUT_FORMATS, default="table", help="Output format")
    parser.add_argument("--json", action="store_const", const="json", dest="output", help="Shorthand for -o json")
    parser.add_argument("--timeout", type=float, default=30.0, help="Request timeout in seconds")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log HTTP requests")
    commands = parser.add_subparsers(dest="command", required=True)

    config = commands.add_parser("config", help="Save the Grist URL and token to ~/.gristle")
    config.add_argument("--url", required=True)
    config.add_argument("--token", required=True)
    config.add_argument("--file", help="Configuration file to write")

    org = commands.add_parser("org", help="List organizations or show one")
    org.add_argument("org_id", nargs="?")
    org.add_argument("detail", nargs="?", choices=("access", "usage", "workspaces"))

    create = commands.add_parser("create", help="Create resources")
    create_commands = create.add_subparsers(dest="action", required=True)
    create_org = create_commands.add_parser("org", help="Create an organization")
    create_org.add_argument("name")
    create_org.add_argument("domain")

    import_parser = commands.add_parser("import", help="Import resources")
    import_commands = import_parser.add_subparsers(dest="action", required=True)
    import_users = import_commands.add_parser("users", help="Grant workspace roles, creating the workspace if needed")
    import_users.add_argument("org_id", type=int)
    import_users.add_argument("workspace_name")
    import_users.add_argument("data", help='JSON list such as [{"email": "a@x.org", "role": "editors"}], @file or -')

    workspace = commands.add_parser("workspace", help="Show a workspace")
    workspace.add_argument("workspace_id", type=int)
    workspace.add_argument("detail", nargs="?", choices=("access",))

    doc = commands.add_parser("doc", help="Show a document")
    doc.add_argument("doc_id")
    doc.add_argument("detail", nargs="?", choices=("access", "tables", "webhooks"))

    export = commands.add_parser("export", help="Download a document")
    export.add_argument("doc_id")
    export.add_argument("format", choices=sorted(EXPORT_FORMATS))
    export.add_argument("-f", "--file", help="Destination file")

    table = commands.add_parser("table", help="Print a table as CSV")
    table.add_argument("doc_id")
    table.add_argument("table_id")

    records = commands.add_parser("records", help="Read and write table records")
    record_commands = records.add_subparsers(dest="action", required=True)
    for action in ("list", "add", "update", "upsert", "delete"):
        sub = record_commands.add_parser(action)
        sub.add_argument("doc_id")
        sub.add_argument("table_id")
        if action == "list":
            sub.add_argument("--filter", help='JSON object such as {"name": ["Alice"]}')
            sub.add_argument("--sort", default="", help="Columns to sort by; prefix '-' for descending, as --sort=-age")
            sub.add_argument("--limit", type=int, default=0)
            sub.add_argument("--hidden", action="store_true", help="Include hidden columns")
        elif action == "delete":
            sub.add_argument("ids", nargs="+", type=int)
        else:
            sub.add_argument("data", help="JSON list of records, @file or -")
            sub.add_argument("--noparse", action="store_true", help="Store strings as given")
        if action == "upsert":
            sub.add_argument("--on-many", choices=ON_MANY_CHOICES, default="")
            sub.add_argument("--no-add", action="store_true")
            sub.add_argument("--no-update", action="store_true")
            sub.add_argument("--allow-empty-require", action="store_true")

    scim_parser = commands.add_parser("scim", help="SCIM bulk operations")
    scim_commands = scim_parser.add_subparsers(dest="action", required=True)
    bulk = scim_commands.add_parser("bulk")
    bulk.add_argument("request", help="Bulk request JSON file, or - for stdin")

    webhooks = commands.add_parser("webhooks", help="Manage document webhooks")
    webhooks.add_argument("action", choices=("list", "clear"))
    webhooks.add_argument("doc_id")

    attachments = commands.add_parser("attachments", help="Manage document attachments")
    attachment_commands = attachments.add_subparsers(dest="action", required=True)
    att_list = attachment_commands.add_parser("list")
    att_list.add_argument("doc_id")
    att_list.add_argument("--sort", default="", help="Prefix '-' for descending, as --sort=-fileSize")
    att_list.add_argument("--limit", type=int, default=0)
    att_upload = attachment_commands.add_parser("upload")
    att_upload.add_argument("doc_id")
    att_upload.add_argument("files", nargs="+")
    att_download = attachment_commands.add_parser("download")
    att_download.add_argument("doc_id")
    att_download.add_argument("attachment_id", type=int)
    att_download.add_argument("destination")
    att_restore = attachment_commands.add_parser("restore")
    att_restore.add_argument("doc_id")
    att_restore.add_argument("archive")
    att_purge = attachment_commands.add_parser("purge", help="Delete unused attachments")
    att_purge.add_argument("doc_id")

    move = commands.add_parser("move", help="Move a document, or all documents of a workspace")
    move.add_argument("source", help="Document id, or workspace id with --all")
    move.add_argument("workspace_id", type=int)
    move.add_argument("--all", action="store_true", help="Move every document of the source workspace")

    purge = commands.add_parser("purge", help="Purge a document's history")
    purge.add_argument("doc_id")
    purge.add_argument("--keep", type=int, default=3)

    delete = commands.add_parser("delete", help="Delete an organization, workspace, document or user")
    delete.add_argument("kind", choices=("org", "workspace", "doc", "user"))
    delete.add_argument("identifier")
    delete.add_argument("name", nargs="?", help="Organization name, required for 'org'")

    return parser


class _Command:
    """Runs one parsed command and writes its result."""

    def __init__(self, client: GristClient, args: argparse.Namespace) -> None:
        self.client = client
        self.args = args

    def emit(self, rows: Sequence[Any]) -> None:
        text = render(rows, self.args.output)
        sys.stdout.write(text)
        if text and not text.endswith("\n"):
            sys.stdout.write("\n")

    def emit_raw(self, body: str, status: int) -> int:
        if not is_success(status):
            return self.fail(status, body)
        if body:
            sys.stdout.write(body if body.endswith("\n") else body + "\n")
        return 0

    @staticmethod
    def fail(status: int, body: str = "") -> int:
        message = f"Request failed ({describe_status(status)})"
        if body:
            message += f": {body}"
        sys.stderr.write(message + "\n")
        return 1

    def org(self) -> int:
        args = self.args
        if not args.org_id:
            orgs, status = self.client.list_orgs()
            rows: List[Any] = orgs
        elif args.detail == "access":
            access, status = self.client.get_org_access(args.org_id)
            rows = access.users
        elif args.detail == "usage":
            usage, status = self.client.get_org_usage(args.org_id)
            rows = [usage]
        elif args.detail == "workspaces":
            workspaces, status = self.client.list_workspaces(args.org_id)
            rows = [{"id": ws.id, "name": ws.name, "docs": len(ws.docs)} for ws in workspaces]
        else:
            org, status = self.client.get_org(args.org_id)
            rows = [org] if org else []
        if status != 200:
            return self.fail(status)
        self.emit(rows)
        return 0

    def create(self) -> int:
        org_id = self.client.create_org(self.args.name, self.args.domain)
        if not org_id:
            sys.stderr.write(f"Unable to create organization {self.args.name}\n")
            return 1
        self.emit([{"id": org_id, "name": self.args.name, "domain": self.args.domain}])
        return 0

    def import_(self) -> int:
        args = self.args
        items = _load_objects(args.data)
        if items is None or not all(isinstance(item.get("email"), str) for item in items):
            sys.stderr.write('Users must be JSON objects with an "email" and a "role"\n')
            return 1
        users = [UserRole(email=item["email"], role=item.get("role")) for item in items]
        body, status = self.client.import_users(args.org_id, args.workspace_name, users)
        if not is_success(status):
            return self.fail(status, body)
        sys.stdout.write(f"Imported {len(users)} users into workspace {args.workspace_name}\n")
        return 0

    def workspace(self) -> int:
        if self.args.detail == "access":
            access, status = self.client.get_workspace_access(self.args.workspace_id)
            rows: List[Any] = access.users
        else:
            workspace, status = self.client.get_workspace(self.args.workspace_id)
            rows = [{"id": doc.id, "name": doc.name, "pinned": doc.is_pinned} for doc in workspace.docs] if workspace else []
        if status != 200:
            return self.fail(status)
        self.emit(rows)
        return 0

    def doc(self) -> int:
        args = self.args
        if args.detail == "access":
            access, status = self.client.get_doc_access(args.doc_id)
            rows: List[Any] = access.users
        elif args.detail == "tables":
            tables, status = self.client.list_tables(args.doc_id)
            rows = [{"table": table_id} for table_id in tables]
        elif args.detail == "webhooks":
            webhooks, status = self.client.list_webhooks(args.doc_id)
            rows = webhooks
        else:
            doc, status = self.client.get_doc(args.doc_id)
            rows = [{"id": doc.id, "name": doc.name, "pinned": doc.is_pinned}] if doc else []
        if status != 200:
            return self.fail(status)
        self.emit(rows)
        return 0

    def export(self) -> int:
        args = self.args
        content, status = self.client.export_doc(args.doc_id, args.format)
        if status != 200:
            return self.fail(status, content.decode("utf-8", errors="ignore"))
        suffix = ".xlsx" if args.format == "xlsx" else ".grist"
        destination = Path(args.file or f"{args.doc_id}{suffix}")
        destination.write_bytes(content)
        sys.stdout.write(f"Document {args.doc_id} exported to {destination}\n")
        return 0

    def table(self) -> int:
        return self.emit_raw(*self.client.get_table_csv(self.args.doc_id, self.args.table_id))

    def records(self) -> int:
        args = self.args
        if args.action == "list":
            options = RecordQueryOptions(
                filter=_load_json_argument(args.filter) if args.filter else None,
                sort=args.sort,
                limit=args.limit,
                hidden=args.hidden,
            )
            records, status = self.client.fetch_records(args.doc_id, args.table_id, options)
            if status != 200:
                return self.fail(status)
            self.emit(records)
            return 0

        if args.action == "delete":
            return self.emit_raw(*self.client.delete_records(args.doc_id, args.table_id, args.ids))

        if args.action == "add":
            data = _load_json_argument(args.data)
            ids, status = self.client.add_records(
                args.doc_id,
                args.table_id,
                data if isinstance(data, list) else [data],
                AddRecordsOptions(no_parse=args.noparse),
            )
            if status != 200:
                return self.fail(status)
            self.emit([{"id": record_id} for record_id in ids])
            return 0

        data = _load_objects(args.data)
        if data is None:
            sys.stderr.write("Records must be JSON objects\n")
            return 1
        if args.action == "update":
            return self.emit_raw(
                *self.client.update_records(
                    args.doc_id,
                    args.table_id,
                    [Record.from_dict(item) for item in data],
                    UpdateRecordsOptions(no_parse=args.noparse),
                )
            )
        options = UpsertRecordsOptions(
            on_many=args.on_many,
            no_add=args.no_add,
            no_update=args.no_update,
            allow_empty_require=args.allow_empty_require,
            no_parse=args.noparse,
        )
        return self.emit_raw(
            *self.client.upsert_records(
                args.doc_id, args.table_id, [RecordWithRequire.from_dict(item) for item in data], options
            )
        )

    def scim(self) -> int:
        source = self.args.request
        text = sys.stdin.read() if source == "-" else Path(source).read_text(encoding="utf-8")
        response, status = self.client.run_scim_bulk_from_json(text)
        sys.stdout.write(json.dumps(response.to_dict(), indent=2, ensure_ascii=False) + "\n")
        return 0 if status == 200 else 1

    def webhooks(self) -> int:
        if self.args.action == "clear":
            return self.emit_raw(*self.client.clear_webhook_queue(self.args.doc_id))
        webhooks, status = self.client.list_webhooks(self.args.doc_id)
        if status != 200:
            return self.fail(status)
        self.emit(webhooks)
        return 0

    def attachments(self) -> int:
        args = self.args
        if args.action == "list":
            items, status = self.client.list_attachments(
                args.doc_id, AttachmentQueryOptions(sort=args.sort, limit=args.limit)
            )
            rows: List[Any] = items
        elif args.action == "upload":
            ids, status = self.client.upload_attachments(args.doc_id, args.files)
            rows = [{"id": attachment_id} for attachment_id in ids]
        elif args.action == "restore":
            result, status = self.client.restore_attachments(args.doc_id, args.archive)
            rows = [result]
        elif args.action == "download":
            try:
                target = self.client.download_attachment_to_file(args.doc_id, args.attachment_id, args.destination)
            except RuntimeError as exc:
                sys.stderr.write(f"{exc}\n")
                return 1
            sys.stdout.write(f"Attachment {args.attachment_id} saved to {target}\n")
            return 0
        else:
            return self.emit_raw(*self.client.delete_unused_attachments(args.doc_id))
        if status != 200:
            return self.fail(status)
        self.emit(rows)
        return 0

    def move(self) -> int:
        args = self.args
        if not args.all:
            return self.emit_raw(*self.client.move_doc(args.source, args.workspace_id))
        try:
            source_id = int(args.source)
        except ValueError:
            sys.stderr.write(f"Invalid workspace id: {args.source}\n")
            return 1
        moved, status = self.client.move_all_docs(source_id, args.workspace_id)
        if status != 200:
            return self.fail(status)
        self.emit([{"doc": doc_id, "status": doc_status} for doc_id, doc_status in moved])
        return 0 if all(is_success(doc_status) for _, doc_status in moved) else 1

    def purge(self) -> int:
        return self.emit_raw(*self.client.purge_doc(self.args.doc_id, self.args.keep))

    def delete(self) -> int:
        args = self.args
        if args.kind == "doc":
            return self.emit_raw(*self.client.delete_doc(args.identifier))
        try:
            identifier = int(args.identifier)
        except ValueError:
            sys.stderr.write(f"Invalid {args.kind} id: {args.identifier}\n")
            return 1
        if args.kind == "org":
            if not args.name:
                sys.stderr.write("The organization name is required to delete it\n")
                return 1
            return self.emit_raw(*self.client.delete_org(identifier, args.name))
        if args.kind == "workspace":
            return self.emit_raw(*self.client.delete_workspace(identifier))
        return self.emit_raw(*self.client.delete_user(identifier))


def main(
    argv: list[str] | None = None,
    *,
    client_factory: Optional[Callable[[GristConfig, float], GristClient]] = None,
) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "config":
        path = save_config(GristConfig(url=args.url, token=args.token), args.file)
        sys.stdout.write(f"Configuration saved to {path}\n")
        return 0

    try:
        config = load_config()
    except RuntimeError as exc:
        parser.exit(2, f"{exc}\n")

    factory = client_factory or (lambda cfg, timeout: GristClient(cfg, timeout=timeout))
    command = _Command(factory(config, args.timeout), args)
    handlers: Dict[str, Callable[[], int]] = {
        "create": command.create,
        "import": command.import_,
        "org": command.org,
        "workspace": command.workspace,
        "doc": command.doc,
        "export": command.export,
        "table": command.table,
        "records": command.records,
        "scim": command.scim,
        "webhooks": command.webhooks,
        "attachments": command.attachments,
        "move": command.move,
        "purge": command.purge,
        "delete": command.delete,
    }
    try:
        return handlers[args.command]()
    except (OSError, json.JSONDecodeError) as exc:
        _LOGGER.debug("Command %s failed", args.command, exc_info=True)
        parser.exit(2, f"{exc}\n")
    return 1


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
