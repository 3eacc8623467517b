from unittest.mock import MagicMock

import pytest

from conftest import PLAN
from data_class import Asset, ChatTurn, GamePlan, Session, SessionStatus
from errors import SessionBusyError, StorageError
from storage import LocalAssetStore, LocalSessionStore, SupabaseAssetStore, SupabaseSessionStore
from supabase_client import public_url


def sample_session(session_id=""):
    return Session(
        id=session_id,
        plan=GamePlan.from_dict(PLAN),
        html_code='<div id="a"></div>',
        css_code="#a {}",
        js_code="go();",
        assets=[Asset("ship", "https://x.supabase.co/storage/v1/object/public/game-assets/s1/ship.png")],
        chat_history=[ChatTurn("user", "hi"), ChatTurn("assistant", "hello")],
        error_log="boom",
        status=SessionStatus.CODING_COMPLETE,
        user_prompt="hi",
    )


class TestLocalSessionStore:
    def test_insert_assigns_an_id_and_round_trips(self, tmp_path):
        store = LocalSessionStore(tmp_path)
        saved = store.insert(sample_session())
        assert saved.id
        assert store.get(saved.id) == saved

    def test_unknown_and_invalid_ids(self, tmp_path):
        store = LocalSessionStore(tmp_path)
        assert store.get("missing") is None
        assert store.get("../etc/passwd") is None

    def test_update_missing_session(self, tmp_path):
        with pytest.raises(StorageError):
            LocalSessionStore(tmp_path).update(sample_session("nope"))

    def test_update_replaces_every_column(self, tmp_path):
        store = LocalSessionStore(tmp_path)
        saved = store.insert(sample_session())
        store.update(saved.with_changes(js_code="stop();", error_log=None, status=SessionStatus.ORCHESTRATING))
        loaded = store.get(saved.id)
        assert loaded.js_code == "stop();"
        assert loaded.error_log is None
        assert loaded.status is SessionStatus.ORCHESTRATING
        assert loaded.assets == saved.assets

    def test_update_with_stale_expected_status(self, tmp_path):
        store = LocalSessionStore(tmp_path)
        saved = store.insert(sample_session())
        with pytest.raises(SessionBusyError):
            store.update(saved.with_changes(js_code="stop();"), expected_status=SessionStatus.ORCHESTRATING)
        assert store.get(saved.id) == saved
        store.update(saved.with_changes(js_code="stop();"), expected_status=SessionStatus.CODING_COMPLETE)
        assert store.get(saved.id).js_code == "stop();"


def test_local_asset_store_writes_png(tmp_path):
    store = LocalAssetStore(tmp_path, "http://127.0.0.1:8000/assets/")
    url = store.upload("s1", "boss sprite", b"png")
    assert url == "http://127.0.0.1:8000/assets/s1/boss-sprite.png"
    assert (tmp_path / "assets" / "s1" / "boss-sprite.png").read_bytes() == b"png"


def test_asset_names_come_back_from_urls():
    assert Asset.from_url("https://cdn.test/s1/space%20ship.png") == Asset("space ship", "https://cdn.test/s1/space%20ship.png")


def test_public_url():
    assert public_url("https://x.supabase.co/", "game-assets", "/s1/ship.png") == (
        "https://x.supabase.co/storage/v1/object/public/game-assets/s1/ship.png"
    )


class TestSupabaseSessionStore:
    def test_get(self):
        client = MagicMock()
        row = sample_session("s1").to_row()
        client.table.return_value.select.return_value.eq.return_value.limit.return_value.execute.return_value.data = [row]
        session = SupabaseSessionStore(client).get("s1")
        client.table.assert_called_with("game_sessions")
        assert session == sample_session("s1")

    def test_get_missing(self):
        client = MagicMock()
        client.table.return_value.select.return_value.eq.return_value.limit.return_value.execute.return_value.data = []
        assert SupabaseSessionStore(client).get("s1") is None

    def test_get_invalid_uuid(self):
        client = MagicMock()
        err = Exception("invalid input syntax for type uuid")
        err.code = "22P02"
        client.table.return_value.select.return_value.eq.return_value.limit.return_value.execute.side_effect = err
        assert SupabaseSessionStore(client).get("not-a-uuid") is None

    def test_get_failure(self):
        client = MagicMock()
        client.table.return_value.select.return_value.eq.return_value.limit.return_value.execute.side_effect = (
            ConnectionError("refused")
        )
        with pytest.raises(StorageError) as exc:
            SupabaseSessionStore(client).get("s1")
        assert exc.value.status_code == 502

    def test_insert_lets_the_database_assign_the_id(self):
        client = MagicMock()
        client.table.return_value.insert.return_value.execute.return_value.data = [sample_session("new-id").to_row()]
        saved = SupabaseSessionStore(client, "sessions").insert(sample_session())
        sent = client.table.return_value.insert.call_args[0][0]
        assert "id" not in sent
        assert sent["asset_urls"] == [a.url for a in sample_session().assets]
        assert saved.id == "new-id"

    def test_update_writes_one_row(self):
        client = MagicMock()
        SupabaseSessionStore(client).update(sample_session("s1"))
        update = client.table.return_value.update
        assert update.call_count == 1
        sent = update.call_args[0][0]
        assert "id" not in sent
        assert sent["status"] == "coding_complete"
        update.return_value.eq.assert_called_with("id", "s1")

    def test_insert_leaves_updated_at_to_the_database(self):
        client = MagicMock()
        client.table.return_value.insert.return_value.execute.return_value.data = [sample_session("new-id").to_row()]
        SupabaseSessionStore(client).insert(sample_session())
        assert "updated_at" not in client.table.return_value.insert.call_args[0][0]

    def test_conditional_update_filters_on_status(self):
        client = MagicMock()
        by_status = client.table.return_value.update.return_value.eq.return_value.eq
        by_status.return_value.execute.return_value.data = [sample_session("s1").to_row()]
        SupabaseSessionStore(client).update(sample_session("s1"), expected_status=SessionStatus.ORCHESTRATING)
        by_status.assert_called_with("status", "orchestrating")

    def test_conditional_update_that_matches_nothing(self):
        client = MagicMock()
        by_status = client.table.return_value.update.return_value.eq.return_value.eq
        by_status.return_value.execute.return_value.data = []
        with pytest.raises(SessionBusyError) as exc:
            SupabaseSessionStore(client).update(sample_session("s1"), expected_status=SessionStatus.ORCHESTRATING)
        assert exc.value.status_code == 409


def test_supabase_asset_upload():
    client = MagicMock()
    url = SupabaseAssetStore(client, "https://x.supabase.co").upload("s1", "ship", b"png")
    client.storage.from_.assert_called_with("game-assets")
    kwargs = client.storage.from_.return_value.upload.call_args.kwargs
    assert kwargs["path"] == "s1/ship.png"
    assert kwargs["file_options"]["upsert"] == "true"
    assert url == "https://x.supabase.co/storage/v1/object/public/game-assets/s1/ship.png"
