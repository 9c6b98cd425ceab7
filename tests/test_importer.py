"""End-to-end tests for archive import."""

import json
import sqlite3
import zipfile
from pathlib import Path

import pytest

import chatvault.importer as importer_mod
from chatvault.config import ChatVaultConfig
from chatvault.errors import ArchiveError, StoreInitError
from chatvault.importer import import_archive
from chatvault.ledger import read_ledger_tail
from chatvault.store import check_search_index, connect, search_conversation_ids


def _q(db_path: Path, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    try:
        return conn.execute(sql, params).fetchall()
    finally:
        conn.close()


@pytest.fixture
def export_zip(make_archive, make_node, make_conversation, make_image_part, branched_conversation, png_bytes):
    image_conv = make_conversation(
        "conv-images",
        [
            make_node("root", None, has_message=False),
            make_node(
                "u1",
                "root",
                content_type="multimodal_text",
                parts=[
                    make_image_part("file-service://file-present", width=640),
                    make_image_part("sediment://file_0000missing"),
                    "what animal is in these pictures?",
                ],
            ),
            make_node("a1", "u1", role="assistant", text="a capybara"),
        ],
        head="a1",
        title="Pictures",
    )
    cyclic = make_conversation(
        "conv-cyclic",
        [make_node("x", "y"), make_node("y", "x")],
        head="x",
    )
    headless = make_conversation("conv-headless", [make_node("u1", None)], head="missing")
    empty = make_conversation(
        "conv-empty",
        [make_node("root", None, has_message=False)],
        head="root",
        title="Nothing",
    )
    return make_archive(
        [branched_conversation, image_conv, cyclic, headless, empty],
        {"file-present-cat.png": png_bytes(12, 9)},
    )


def test_import_summary_counts(export_zip, import_config):
    summary = import_archive(export_zip, import_config)

    assert summary.conversations_total == 5
    assert summary.conversations_imported == 3
    assert summary.conversations_skipped == 2
    assert {s.conversation_id for s in summary.skipped} == {"conv-cyclic", "conv-headless"}
    assert summary.messages_written == 5
    assert summary.assets_written == 2
    assert summary.assets_missing == 1
    assert summary.empty_conversations == ["conv-empty"]


def test_import_writes_linear_thread(export_zip, import_config):
    import_archive(export_zip, import_config)

    rows = _q(
        import_config.db_path,
        "SELECT id, parent_id, message_order FROM messages WHERE conversation_id = ? ORDER BY message_order",
        ("conv-branched",),
    )
    assert [(r["id"], r["parent_id"], r["message_order"]) for r in rows] == [
        ("root", None, 0),
        ("A", "root", 1),
        ("C", "A", 2),
    ]


def test_cyclic_conversation_contributes_no_rows(export_zip, import_config):
    import_archive(export_zip, import_config)

    assert _q(import_config.db_path, "SELECT id FROM conversations WHERE id = ?", ("conv-cyclic",)) == []
    assert _q(import_config.db_path, "SELECT id FROM messages WHERE conversation_id = ?", ("conv-cyclic",)) == []


def test_assets_belong_to_thread_messages(export_zip, import_config):
    import_archive(export_zip, import_config)

    assets = _q(
        import_config.db_path,
        """
        SELECT a.id, a.message_id, a.asset_order, a.width, a.height, a.size_bytes, a.mime_type,
               length(a.file_content) AS payload_len, m.conversation_id, m.has_assets
        FROM assets a
        LEFT JOIN messages m ON m.id = a.message_id
        ORDER BY a.asset_order
        """,
    )
    assert [a["id"] for a in assets] == ["present", "file_0000missing"]
    assert all(a["conversation_id"] == "conv-images" for a in assets)
    assert all(a["has_assets"] == 1 for a in assets)
    assert [a["asset_order"] for a in assets] == [0, 1]

    present, missing = assets
    assert (present["width"], present["height"]) == (640, 9)
    assert present["mime_type"] == "image/png"
    assert present["payload_len"] == present["size_bytes"]
    assert missing["payload_len"] == 0
    assert missing["mime_type"] is None


def test_search_returns_owning_conversation(export_zip, import_config):
    import_archive(export_zip, import_config)

    conn = connect(import_config.db_path)
    try:
        assert search_conversation_ids(conn, "capybara") == ["conv-images"]
        assert search_conversation_ids(conn, "zebras") == ["conv-branched"]
        assert search_conversation_ids(conn, "abandoned") == []
        assert check_search_index(conn) == {"orphaned": 0, "unindexed": 0}
    finally:
        conn.close()


def test_reimport_replaces_instead_of_failing(export_zip, import_config):
    import_archive(export_zip, import_config)
    summary = import_archive(export_zip, import_config)

    assert summary.conversations_imported == 3
    assert _q(import_config.db_path, "SELECT COUNT(*) AS c FROM messages")[0]["c"] == 5


def test_results_do_not_depend_on_worker_count(export_zip, tmp_path):
    def snapshot(workers: int):
        config = ChatVaultConfig(db_path=tmp_path / f"w{workers}.db", max_workers=workers, ledger_enabled=False)
        import_archive(export_zip, config)
        return [
            tuple(r)
            for r in _q(config.db_path, "SELECT conversation_id, id, message_order FROM messages ORDER BY conversation_id, message_order")
        ]

    assert snapshot(1) == snapshot(4)


def test_ledger_records_run(export_zip, import_config):
    import_archive(export_zip, import_config)

    events = read_ledger_tail(import_config.resolved_ledger_path, n=100)
    types = [e.event_type for e in events]
    assert types[0] == "IMPORT_RUN_STARTED"
    assert types[-1] == "IMPORT_RUN_COMPLETED"
    assert types.count("CONVERSATION_IMPORTED") == 3
    assert types.count("CONVERSATION_SKIPPED") == 2
    assert types.count("ASSET_MISSING") == 1
    assert len({e.run_id for e in events}) == 1


def test_unreadable_archive_is_fatal(tmp_path, import_config):
    bad = tmp_path / "bad.zip"
    bad.write_bytes(b"garbage")

    with pytest.raises(ArchiveError):
        import_archive(bad, import_config)

    events = read_ledger_tail(import_config.resolved_ledger_path)
    assert events[-1].event_type == "IMPORT_RUN_FAILED"


def test_store_init_failure_is_fatal(export_zip, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file", encoding="utf-8")
    config = ChatVaultConfig(db_path=blocker / "db.sqlite", ledger_enabled=False)

    with pytest.raises(StoreInitError):
        import_archive(export_zip, config)


def test_write_failure_skips_only_that_conversation(make_archive, make_node, make_conversation, import_config):
    first = make_conversation("c1", [make_node("shared-msg", None, text="first")], head="shared-msg")
    # Same message id in another conversation violates the messages primary key.
    second = make_conversation("c2", [make_node("shared-msg", None, text="second")], head="shared-msg")
    third = make_conversation("c3", [make_node("m3", None, text="third")], head="m3")
    zip_path = make_archive([first, second, third])

    summary = import_archive(zip_path, import_config)

    assert summary.conversations_imported == 2
    assert [s.conversation_id for s in summary.skipped] == ["c2"]
    ids = [r["id"] for r in _q(import_config.db_path, "SELECT id FROM conversations ORDER BY id")]
    assert ids == ["c1", "c3"]


def test_wrapped_export_document(tmp_path, make_node, make_conversation, import_config):
    conv = make_conversation("c1", [make_node("u1", None)], head="u1")
    zip_path = tmp_path / "wrapped.zip"

    with zipfile.ZipFile(zip_path, "w") as zf:
        zf.writestr("export/conversations.json", json.dumps({"conversations": [conv]}))

    summary = import_archive(zip_path, import_config)
    assert summary.conversations_imported == 1


def test_pointer_shared_across_conversations(
    make_archive, make_node, make_conversation, make_image_part, png_bytes, import_config
):
    def with_image(conv_id: str, message_id: str):
        node = make_node(
            message_id,
            None,
            content_type="multimodal_text",
            parts=[make_image_part("file-service://file-shared"), "same upload"],
        )
        return make_conversation(conv_id, [node], head=message_id)

    zip_path = make_archive(
        [with_image("c1", "m1"), with_image("c2", "m2")],
        {"file-shared-img.png": png_bytes()},
    )

    summary = import_archive(zip_path, import_config)

    assert summary.conversations_imported == 2
    assert summary.skipped == []
    rows = _q(import_config.db_path, "SELECT id, message_id, length(file_content) AS n FROM assets ORDER BY id")
    assert [(r["id"], r["message_id"]) for r in rows] == [("shared", "m1"), ("shared-m2-0", "m2")]
    assert all(r["n"] > 0 for r in rows)


def test_bad_message_payloads_do_not_abort_the_run(make_archive, make_node, make_conversation, import_config):
    good = make_conversation("c-good", [make_node("g1", None, text="fine")], head="g1")

    string_content = make_node("s1", None)
    string_content["message"]["content"] = "oops"
    no_id = make_conversation("ignored", [string_content], head="s1")
    del no_id["id"]

    string_author = make_node("a1", None)
    string_author["message"]["author"] = ["user"]
    bad_author = make_conversation("c-author", [string_author], head="a1")

    zip_path = make_archive([no_id, good, bad_author])

    summary = import_archive(zip_path, import_config)

    assert [s.conversation_id for s in summary.skipped] == ["c-author"]
    ids = {r["id"] for r in _q(import_config.db_path, "SELECT id FROM conversations")}
    assert "c-good" in ids
    assert summary.conversations_imported == 2
    assert _q(import_config.db_path, "SELECT id FROM messages WHERE conversation_id = 'c-good'")[0]["id"] == "g1"


def test_unexpected_parse_error_skips_conversation(
    make_archive, make_node, make_conversation, import_config, monkeypatch
):
    real_linearize = importer_mod.linearize

    def flaky_linearize(graph, conv_id, **kwargs):
        if conv_id == "c-bad":
            raise TypeError("unexpected payload")
        return real_linearize(graph, conv_id, **kwargs)

    monkeypatch.setattr(importer_mod, "linearize", flaky_linearize)
    zip_path = make_archive(
        [
            make_conversation("c-bad", [make_node("b1", None)], head="b1"),
            make_conversation("c-ok", [make_node("o1", None)], head="o1"),
        ]
    )

    summary = import_archive(zip_path, import_config)

    assert summary.conversations_imported == 1
    assert [s.conversation_id for s in summary.skipped] == ["c-bad"]
    assert "unexpected payload" in summary.skipped[0].reason
