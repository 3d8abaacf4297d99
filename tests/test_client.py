from __future__ import annotations

import io
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from gristle.client import GristClient
from gristle.models import AttachmentQueryOptions, Record, UserRole, WebhookFields
from gristle.scim import ScimBulkOperation, ScimBulkRequest

from conftest import FakeResponse, FakeSession


def test_connection_check(client: GristClient, session: FakeSession) -> None:
    session.queue(FakeResponse(200, []))
    assert client.test_connection()

    session.queue(FakeResponse(401, {"error": "bad token"}))
    assert not client.test_connection()


def test_list_orgs(client: GristClient, session: FakeSession) -> None:
    session.queue(
        FakeResponse(200, [{"id": 1, "name": "Personal", "domain": "docs-1", "createdAt": "2024-01-01"}])
    )

    orgs, status = client.list_orgs()

    assert status == 200
    assert orgs[0].id == 1
    assert orgs[0].domain == "docs-1"
    assert session.calls[0].path == "/api/orgs"


def test_get_org_failure_gives_nothing(client: GristClient, session: FakeSession) -> None:
    session.queue(FakeResponse(404, {"error": "not found"}))

    assert client.get_org(9) == (None, 404)


def test_get_org_usage(client: GristClient, session: FakeSession) -> None:
    session.queue(
        FakeResponse(
            200,
            {"countsByDataLimitStatus": {"approachingLimit": 1, "gracePeriod": 0}, "attachments": {"totalBytes": 42}},
        )
    )

    usage, _ = client.get_org_usage(1)

    assert usage.counts_by_data_limit_status == {"approachingLimit": 1, "gracePeriod": 0}
    assert usage.attachments_total_bytes == 42


def test_create_org_returns_id(client: GristClient, session: FakeSession) -> None:
    session.queue(FakeResponse(200, "12"))

    assert client.create_org("Team", "team") == 12
    assert session.calls[0].json_body() == {"name": "Team", "domain": "team"}


def test_create_workspace_failure_returns_zero(client: GristClient, session: FakeSession) -> None:
    session.queue(FakeResponse(403, {"error": "forbidden"}))

    assert client.create_workspace(1, "Projects") == 0


def test_delete_org_uses_name_in_path(client: GristClient, session: FakeSession) -> None:
    client.delete_org(3, "team")

    assert session.calls[0].method == "DELETE"
    assert session.calls[0].path == "/api/orgs/3/team"


def test_get_workspace_with_docs(client: GristClient, session: FakeSession) -> None:
    session.queue(
        FakeResponse(
            200,
            {
                "id": 5,
                "name": "Projects",
                "docs": [{"id": "abc", "name": "Budget", "isPinned": True}],
                "org": {"id": 1, "name": "Personal"},
            },
        )
    )

    workspace, _ = client.get_workspace(5)

    assert workspace is not None
    assert workspace.docs[0].id == "abc"
    assert workspace.docs[0].is_pinned
    assert workspace.org is not None and workspace.org.name == "Personal"


def test_get_doc_access_users(client: GristClient, session: FakeSession) -> None:
    session.queue(
        FakeResponse(
            200,
            {"maxInheritedRole": "owners", "users": [{"id": 2, "name": "Ana", "email": "ana@x.test", "access": "editors"}]},
        )
    )

    access, _ = client.get_doc_access("abc")

    assert access.max_inherited_role == "owners"
    assert access.users[0].email == "ana@x.test"
    assert access.users[0].access == "editors"


def test_import_users_into_existing_workspace(client: GristClient, session: FakeSession) -> None:
    session.queue(
        FakeResponse(200, [{"id": 7, "name": "Team"}, {"id": 8, "name": "Other"}]),
        FakeResponse(200, ""),
    )

    _, status = client.import_users(1, "Team", [UserRole("a@x.test", "editors"), UserRole("b@x.test", None)])

    assert status == 200
    patch = session.calls[1]
    assert patch.method == "PATCH"
    assert patch.path == "/api/workspaces/7/access"
    assert patch.json_body() == {"delta": {"users": {"a@x.test": "editors", "b@x.test": None}}}


def test_import_users_picks_last_workspace_with_the_name(client: GristClient, session: FakeSession) -> None:
    session.queue(
        FakeResponse(200, [{"id": 7, "name": "Team"}, {"id": 9, "name": "Team"}]),
        FakeResponse(200, ""),
    )

    client.import_users(1, "Team", [UserRole("a@x.test", "owners")])

    assert session.calls[1].path == "/api/workspaces/9/access"


def test_user_role_defaults_to_removal() -> None:
    assert UserRole("a@x.test").role is None


def test_import_users_creates_missing_workspace(client: GristClient, session: FakeSession) -> None:
    session.queue(
        FakeResponse(200, []),
        FakeResponse(200, "21"),
        FakeResponse(200, ""),
    )

    client.import_users(1, "New", [UserRole("a@x.test", "viewers")])

    assert [call.method for call in session.calls] == ["GET", "POST", "PATCH"]
    assert session.calls[1].json_body() == {"name": "New"}
    assert session.calls[2].path == "/api/workspaces/21/access"


def test_move_all_docs_reports_each_document(client: GristClient, session: FakeSession) -> None:
    session.queue(
        FakeResponse(200, {"id": 1, "name": "From", "docs": [{"id": "d1"}, {"id": "d2"}]}),
        FakeResponse(200, {"id": 2, "name": "To", "docs": []}),
        FakeResponse(200, ""),
        FakeResponse(403, "no"),
    )

    moved, status = client.move_all_docs(1, 2)

    assert status == 200
    assert moved == [("d1", 200), ("d2", 403)]
    assert session.calls[2].path == "/api/docs/d1/move"
    assert session.calls[2].json_body() == {"workspace": 2}


def test_move_all_docs_with_missing_source(client: GristClient, session: FakeSession) -> None:
    session.queue(FakeResponse(404, {"error": "no workspace"}))

    assert client.move_all_docs(1, 2) == ([], 404)
    assert len(session.calls) == 1


def test_purge_doc_keeps_latest_states(client: GristClient, session: FakeSession) -> None:
    client.purge_doc("abc", keep=5)

    assert session.calls[0].path == "/api/docs/abc/states/remove"
    assert session.calls[0].json_body() == {"keep": 5}


@pytest.mark.parametrize("fmt, path", [("grist", "/api/docs/abc/download"), ("xlsx", "/api/docs/abc/download/xlsx")])
def test_export_doc(client: GristClient, session: FakeSession, fmt: str, path: str) -> None:
    session.queue(FakeResponse(200, b"binary"))

    assert client.export_doc("abc", fmt) == (b"binary", 200)
    assert session.calls[0].path == path


def test_export_doc_rejects_unknown_format(client: GristClient) -> None:
    with pytest.raises(ValueError):
        client.export_doc("abc", "pdf")


def test_get_table_csv(client: GristClient, session: FakeSession) -> None:
    session.queue(FakeResponse(200, "id,name\n1,Alice\n", headers={"Content-Type": "text/csv"}))

    text, status = client.get_table_csv("abc", "People")

    assert (text, status) == ("id,name\n1,Alice\n", 200)
    assert session.calls[0].query == {"tableId": "People"}


def test_list_tables_and_columns(client: GristClient, session: FakeSession) -> None:
    session.queue(FakeResponse(200, {"tables": [{"id": "People"}, {"id": "Orders"}]}))
    assert client.list_tables("abc") == (["People", "Orders"], 200)

    session.queue(FakeResponse(200, {"columns": [{"id": "name", "fields": {}}, {"id": "age"}]}))
    assert client.list_columns("abc", "People") == (["name", "age"], 200)
    assert session.calls[1].path == "/api/docs/abc/tables/People/columns"


def test_delete_user(client: GristClient, session: FakeSession) -> None:
    client.delete_user(4)

    assert session.calls[0].method == "DELETE"
    assert session.calls[0].json_body() == {"name": ""}


def test_records_delegate_to_transport(client: GristClient, session: FakeSession) -> None:
    session.queue(FakeResponse(200, {"records": [{"id": 3}]}))

    assert client.add_records("abc", "People", [{"name": "Carla"}]) == ([3], 200)
    assert session.calls[0].path == "/api/docs/abc/tables/People/records"


def test_list_webhooks(client: GristClient, session: FakeSession) -> None:
    session.queue(
        FakeResponse(
            200,
            {
                "webhooks": [
                    {
                        "id": "wh1",
                        "fields": {
                            "name": "notify",
                            "url": "https://hooks.example.test",
                            "eventTypes": ["add"],
                            "tableId": "People",
                            "enabled": True,
                            "unsubscribeKey": "key",
                        },
                        "usage": {"numWaiting": 2, "status": "idle", "lastEventBatch": {"size": 3, "attempts": 1}},
                    }
                ]
            },
        )
    )

    webhooks, _ = client.list_webhooks("abc")

    webhook = webhooks[0]
    assert webhook.id == "wh1"
    assert webhook.fields.event_types == ["add"]
    assert webhook.fields.unsubscribe_key == "key"
    assert webhook.usage is not None and webhook.usage.num_waiting == 2
    assert webhook.usage.last_event_batch is not None and webhook.usage.last_event_batch.size == 3


def test_create_webhooks_sends_wire_names(client: GristClient, session: FakeSession) -> None:
    session.queue(FakeResponse(200, {"webhooks": [{"id": "wh9"}]}))
    fields = WebhookFields(url="https://hooks.example.test", event_types=["add", "update"], table_id="People")

    assert client.create_webhooks("abc", [fields]) == (["wh9"], 200)
    assert session.calls[0].json_body() == {
        "webhooks": [
            {"fields": {"url": "https://hooks.example.test", "eventTypes": ["add", "update"], "tableId": "People"}}
        ]
    }


def test_update_webhook_never_sends_unsubscribe_key(client: GristClient, session: FakeSession) -> None:
    client.update_webhook("abc", "wh1", WebhookFields(enabled=False, unsubscribe_key="key"))

    assert session.calls[0].method == "PATCH"
    assert session.calls[0].json_body() == {"enabled": False}


def test_delete_webhook(client: GristClient, session: FakeSession) -> None:
    session.queue(FakeResponse(200, {"success": True}))

    assert client.delete_webhook("abc", "wh1") == (True, 200)
    assert session.calls[0].path == "/api/docs/abc/webhooks/wh1"


def test_clear_webhook_queue(client: GristClient, session: FakeSession) -> None:
    client.clear_webhook_queue("abc")

    assert session.calls[0].method == "DELETE"
    assert session.calls[0].path == "/api/docs/abc/webhooks/queue"


def test_list_attachments_with_options(client: GristClient, session: FakeSession) -> None:
    session.queue(
        FakeResponse(
            200,
            {"records": [{"id": 1, "fields": {"fileName": "photo.png", "fileSize": 2048, "imageWidth": 64}}]},
        )
    )

    items, _ = client.list_attachments("abc", AttachmentQueryOptions(sort="-fileSize", limit=5))

    assert items[0].file_name == "photo.png"
    assert items[0].file_size == 2048
    assert items[0].image_width == 64
    assert session.calls[0].query == {"sort": "-fileSize", "limit": "5"}


def test_get_attachment_reads_flat_metadata(client: GristClient, session: FakeSession) -> None:
    session.queue(FakeResponse(200, {"fileName": "notes.txt", "fileSize": 10, "timeUploaded": "2024-03-01"}))

    item, _ = client.get_attachment("abc", 4)

    assert item is not None
    assert (item.id, item.file_name, item.time_uploaded) == (4, "notes.txt", "2024-03-01")


def test_upload_attachments(client: GristClient, session: FakeSession, tmp_path: Path) -> None:
    first = tmp_path / "a.txt"
    second = tmp_path / "b.txt"
    first.write_bytes(b"one")
    second.write_bytes(b"two")
    session.queue(FakeResponse(200, [11, 12]))

    assert client.upload_attachments("abc", [first, second]) == ([11, 12], 200)
    files = session.calls[0].kwargs["files"]
    assert [(field, name) for field, (name, _) in files] == [("upload", "a.txt"), ("upload", "b.txt")]
    assert all(stream.closed for _, (_, stream) in files)


def test_upload_attachments_without_files(client: GristClient, session: FakeSession) -> None:
    assert client.upload_attachments("abc", []) == ([], 400)
    assert session.calls == []


def test_upload_attachment_stream(client: GristClient, session: FakeSession) -> None:
    session.queue(FakeResponse(200, [3]))

    assert client.upload_attachment_stream("abc", "memo.txt", io.BytesIO(b"hi")) == ([3], 200)


def test_download_attachment_to_file(client: GristClient, session: FakeSession, tmp_path: Path) -> None:
    session.queue(FakeResponse(200, b"file-bytes", headers={"Content-Type": "text/plain"}))
    destination = tmp_path / "out.txt"

    assert client.download_attachment_to_file("abc", 4, destination) == destination
    assert destination.read_bytes() == b"file-bytes"
    assert session.calls[0].path == "/api/docs/abc/attachments/4/download"


def test_download_attachment_failure_raises(client: GristClient, session: FakeSession, tmp_path: Path) -> None:
    session.queue(FakeResponse(404, "missing"))

    with pytest.raises(RuntimeError, match="404"):
        client.download_attachment_to_file("abc", 4, tmp_path / "out.txt")

    assert not (tmp_path / "out.txt").exists()


def test_restore_attachments(client: GristClient, session: FakeSession, tmp_path: Path) -> None:
    archive = tmp_path / "attachments.tar"
    archive.write_bytes(b"tar")
    session.queue(FakeResponse(200, {"added": 2, "errored": 0, "unused": 1}))

    result, status = client.restore_attachments("abc", archive)

    assert status == 200
    assert (result.added, result.errored, result.unused) == (2, 0, 1)
    assert session.calls[0].path == "/api/docs/abc/attachments/archive"


def test_delete_unused_attachments(client: GristClient, session: FakeSession) -> None:
    client.delete_unused_attachments("abc")

    assert session.calls[0].method == "POST"
    assert session.calls[0].path == "/api/docs/abc/attachments/removeUnused"


def test_update_records_is_delegated(client: GristClient) -> None:
    client.transport.send = MagicMock(return_value=("", 200))  # type: ignore[assignment]

    body, status = client.update_records("abc", "People", [Record(id=2, fields={"age": 31})])

    assert (body, status) == ("", 200)
    client.transport.send.assert_called_once_with(  # type: ignore[attr-defined]
        "PATCH", "docs/abc/tables/People/records", '{"records": [{"id": 2, "fields": {"age": 31}}]}'
    )


def test_scim_bulk_is_delegated(client: GristClient) -> None:
    client.transport.send = MagicMock(return_value=('{"id": "u1"}', 201))  # type: ignore[assignment]
    request = ScimBulkRequest(operations=[ScimBulkOperation(method="POST", path="/Users", data={"userName": "u"})])

    response, status = client.run_scim_bulk(request)

    assert status == 200
    assert response.operations[0].location == "https://grist.example.test/api/scim/v2/Users/u1"
    assert client.transport.send.call_args.args[:2] == ("POST", "scim/v2/Users")  # type: ignore[attr-defined]


def test_typed_get_skips_decoding_on_error(client: GristClient) -> None:
    client.transport.send = MagicMock(return_value=('{"id": 1, "name": "x"}', 500))  # type: ignore[assignment]

    assert client.get_workspace(1) == (None, 500)
