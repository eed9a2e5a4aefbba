"""
Unit tests for the SQLite catalog storage layer.

Covers schema setup, transactions, the asset index with its full-text rows,
re-homing, tags, folders and the audit history.
"""

import pytest
import tempfile
import shutil
from pathlib import Path

from core.models.assets import Asset, AssetMetadata, MediaType
from core.models.history import HistoryAction
from core.storage.database import CatalogDatabase, SchemaMigrationError, SCHEMA_VERSION, is_fts5_available
from core.storage.assets import AssetIndexStore
from core.storage.tags import TagStore
from core.storage.history import HistoryLog
from core.storage.folders import FolderStore
from core.storage.utils import (
    generate_asset_id, path_based_asset_id, to_relative_path, is_within_root, ASSET_ID_LENGTH
)


ROOT = "/media/projects"


def make_asset(asset_id: str, path: str, root: str = ROOT, **kwargs) -> Asset:
    return Asset(
        id=asset_id,
        root_path=root,
        path=path,
        type=kwargs.pop("type", MediaType.IMAGE),
        created_at=kwargs.pop("created_at", 1000),
        updated_at=kwargs.pop("updated_at", 1000),
        **kwargs
    )


@pytest.fixture
def db():
    database = CatalogDatabase(":memory:")
    yield database
    database.close()


@pytest.fixture
def store(db):
    return AssetIndexStore(db)


@pytest.fixture
def tags(db):
    return TagStore(db)


@pytest.fixture
def history(db):
    return HistoryLog(db)


class TestCatalogDatabase:
    """Test schema creation and transactions"""

    def test_schema_version(self, db):
        assert db.schema_version == SCHEMA_VERSION
        assert is_fts5_available(db.connection)

        tables = {row["name"] for row in db.fetchall("SELECT name FROM sqlite_master WHERE type IN ('table', 'trigger')")}
        assert {"assets", "assets_fts", "tags", "asset_tags", "asset_history", "folders", "tag_aliases", "assets_fts_delete"} <= tables

    def test_reopen_file_database(self, tmp_path):
        path = tmp_path / "nested" / "catalog.db"
        with CatalogDatabase(path) as first:
            first.execute("INSERT INTO tags (id, name) VALUES ('t1', 'hero')")

        with CatalogDatabase(path) as second:
            assert second.schema_version == SCHEMA_VERSION
            assert second.scalar("SELECT name FROM tags WHERE id = 't1'") == "hero"

    def test_unopenable_database_raises(self, tmp_path):
        with pytest.raises(SchemaMigrationError):
            CatalogDatabase(tmp_path)

    def test_transaction_rolls_back(self, db):
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                conn.execute("INSERT INTO tags (id, name) VALUES ('t1', 'hero')")
                raise RuntimeError("boom")

        assert db.scalar("SELECT COUNT(*) FROM tags") == 0
        assert not db.in_transaction

    def test_nested_transaction_joins_outer(self, db):
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                conn.execute("INSERT INTO tags (id, name) VALUES ('t1', 'hero')")
                with db.transaction() as inner:
                    inner.execute("INSERT INTO tags (id, name) VALUES ('t2', 'villain')")
                    assert db.in_transaction
                raise RuntimeError("boom")

        assert db.scalar("SELECT COUNT(*) FROM tags") == 0

    def test_nested_commit(self, db):
        with db.transaction() as conn:
            conn.execute("INSERT INTO tags (id, name) VALUES ('t1', 'hero')")
            with db.transaction() as inner:
                inner.execute("INSERT INTO tags (id, name) VALUES ('t2', 'villain')")

        assert db.scalar("SELECT COUNT(*) FROM tags") == 2


class TestAssetIndexStore:
    """Test asset reads, writes and full-text parity"""

    def test_upsert_and_get(self, store):
        store.upsert_asset(make_asset("a1", "shots/forest.png", metadata=AssetMetadata(prompt="dark forest")))

        asset = store.get_asset("a1")
        assert asset is not None
        assert asset.path == "shots/forest.png"
        assert asset.metadata.prompt == "dark forest"
        assert store.check_index_parity(ROOT) == []

    def test_update_keeps_single_index_row(self, store):
        store.upsert_asset(make_asset("a1", "x.png"))
        store.upsert_asset(make_asset("a1", "y.png", metadata=AssetMetadata(prompt="moved")))

        assert store.count_assets(ROOT) == 1
        assert store.count_index_rows(ROOT) == 1
        assert store.get_asset("a1").path == "y.png"
        assert store.check_index_parity() == []

    def test_path_collision_adopts_new_id(self, store, tags):
        store.upsert_asset(make_asset("old-id", "x.png"))
        tag, _ = tags.create_tag("hero")
        tags.add_tag_to_asset("old-id", tag.id)

        store.upsert_asset(make_asset("new-id", "x.png", metadata=AssetMetadata(prompt="edited")))

        assert store.get_asset("old-id") is None
        migrated = store.get_asset("new-id")
        assert migrated.path == "x.png"
        assert [t.name for t in migrated.tags] == ["hero"]
        assert store.count_assets() == 1
        assert store.check_index_parity() == []

    def test_move_onto_stale_path_replaces_it(self, store):
        store.upsert_asset(make_asset("a1", "a.png"))
        store.upsert_asset(make_asset("stale", "b.png"))

        store.upsert_asset(make_asset("a1", "b.png"))

        assert store.get_asset("stale") is None
        assert store.get_asset("a1").path == "b.png"
        assert store.check_index_parity() == []

    def test_index_parity_after_many_operations(self, store):
        for i in range(5):
            store.upsert_asset(make_asset(f"a{i}", f"dir/{i}.png"))
        store.update_status("a1", "approved")
        store.update_metadata("a2", AssetMetadata(prompt="updated", embedding=[0.5, 0.5]))
        store.upsert_asset(make_asset("a3", "dir/moved.png"))
        store.purge_asset("a4")
        store.rehome_assets("/media")

        assert store.check_index_parity() == []
        assert store.count_index_rows() == store.count_assets() == 4

    def test_index_text_omits_embedding(self, store, db):
        store.upsert_asset(make_asset("a1", "x.png", metadata=AssetMetadata(prompt="p", embedding=[0.25] * 4)))

        indexed = db.scalar("SELECT metadata FROM assets_fts WHERE id = 'a1'")
        assert "embedding" not in indexed
        assert "0.25" not in indexed

    def test_parity_detects_drift(self, store, db):
        store.upsert_asset(make_asset("a1", "x.png"))
        db.execute("DELETE FROM assets_fts")

        problems = store.check_index_parity()
        assert any("row count mismatch" in p for p in problems)
        assert any("missing index row" in p for p in problems)

    def test_get_assets_order_and_root(self, store):
        store.upsert_asset(make_asset("old", "a.png", created_at=1))
        store.upsert_asset(make_asset("new", "b.png", created_at=2))
        store.upsert_asset(make_asset("other", "c.png", root="/elsewhere"))

        assert [a.id for a in store.get_assets(ROOT)] == ["new", "old"]

    def test_soft_delete_and_restore(self, store):
        store.upsert_asset(make_asset("a1", "x.png"))

        assert store.delete_asset("a1") is True
        assert store.delete_asset("a1") is False
        assert store.get_asset("a1") is None
        assert store.get_asset("a1", include_deleted=True).deleted_at is not None
        assert store.get_assets(ROOT) == []
        assert len(store.get_assets(ROOT, include_deleted=True)) == 1
        assert store.get_asset_by_path(ROOT, "x.png") is not None

        assert store.restore_asset("a1") is True
        assert store.get_asset("a1") is not None

    def test_purge_removes_index_row_and_tags(self, store, tags, db):
        store.upsert_asset(make_asset("a1", "x.png"))
        tag, _ = tags.create_tag("hero")
        tags.add_tag_to_asset("a1", tag.id)

        assert store.purge_asset("a1") is True

        assert store.count_index_rows() == 0
        assert tags.count_asset_tags() == 0

    def test_update_status_unknown(self, store):
        assert store.update_status("missing", "approved") is False

    def test_metadata_options(self, store):
        store.upsert_asset(make_asset("a1", "1.png", metadata=AssetMetadata(project="beta", author_id="bob")))
        store.upsert_asset(make_asset("a2", "2.png", metadata=AssetMetadata(project="alpha", model="sdxl")))

        options = store.get_metadata_options()

        assert options["projects"] == ["alpha", "beta"]
        assert options["authors"] == ["bob"]
        assert options["models"] == ["sdxl"]
        assert options["scenes"] == []


class TestRehome:
    """Test re-attaching assets to a new root"""

    def test_rehome_moves_nested_assets(self, store):
        store.upsert_asset(make_asset("a1", "x.png", root="/media/projects/film"))

        moved = store.rehome_assets("/media/projects")

        assert moved == 1
        asset = store.get_asset("a1")
        assert asset.root_path == "/media/projects"
        assert asset.path == "film/x.png"
        assert store.check_index_parity() == []

    def test_rehome_conflict_deletes_shadowed_row(self, store):
        store.upsert_asset(make_asset("A", "film/x.png", root="/media"))
        store.upsert_asset(make_asset("B", "x.png", root="/media/film"))

        moved = store.rehome_assets("/media/film")

        assert moved == 1
        assert store.get_asset("B") is None
        relocated = store.get_asset("A")
        assert (relocated.root_path, relocated.path) == ("/media/film", "x.png")
        assert store.check_index_parity() == []

    def test_rehome_ignores_unrelated_roots(self, store):
        store.upsert_asset(make_asset("a1", "x.png", root="/other"))
        store.upsert_asset(make_asset("a2", "x.png", root="/media/projectsX"))

        assert store.rehome_assets("/media/projects") == 0
        assert store.get_asset("a1").root_path == "/other"
        assert store.get_asset("a2").root_path == "/media/projectsX"

    def test_rehome_is_idempotent(self, store):
        store.upsert_asset(make_asset("a1", "x.png", root="/media/projects/film"))
        store.rehome_assets("/media/projects")
        assert store.rehome_assets("/media/projects") == 0

    def test_rehome_counts_rows_that_survive(self, store):
        # Two rows for the same file; the later move replaces the earlier one
        store.upsert_asset(make_asset("A", "film/x.png", root="/media"))
        store.upsert_asset(make_asset("B", "media/film/x.png", root="/"))

        moved = store.rehome_assets("/media/film")

        assert moved == 1
        remaining = store.get_assets("/media/film")
        assert [(a.path, a.root_path) for a in remaining] == [("x.png", "/media/film")]
        assert store.check_index_parity() == []

    def test_failed_rehome_changes_nothing(self, store, db):
        store.upsert_asset(make_asset("a1", "x.png", root="/media/projects/film"))
        store.upsert_asset(make_asset("a2", "y.png", root="/media/projects/film"))
        store.upsert_asset(make_asset("stale", "film/x.png", root="/media/projects"))
        db.execute(
            "CREATE TRIGGER fail_move BEFORE UPDATE OF root_path ON assets "
            "WHEN NEW.id = 'a2' BEGIN SELECT RAISE(ABORT, 'disk full'); END"
        )

        assert store.rehome_assets("/media/projects") == 0

        first = store.get_asset("a1")
        assert (first.root_path, first.path) == ("/media/projects/film", "x.png")
        assert store.get_asset("a2").root_path == "/media/projects/film"
        assert store.get_asset("stale") is not None
        assert store.check_index_parity() == []


class TestTagStore:
    """Test tags and tag links"""

    def test_create_and_list(self, tags):
        beta, created = tags.create_tag("beta", "#00f")
        alpha, _ = tags.create_tag("alpha")

        assert created
        assert [t.name for t in tags.get_tags()] == ["alpha", "beta"]
        assert tags.get_tag(beta.id).color == "#00f"
        assert tags.get_tag_by_name("alpha").id == alpha.id

    def test_duplicate_name_returns_existing(self, tags):
        first, _ = tags.create_tag("hero")
        second, created = tags.create_tag("hero", tag_id="other-id")

        assert created is False
        assert second.id == first.id
        assert len(tags.get_tags()) == 1

    def test_explicit_id(self, tags):
        tag, created = tags.create_tag("hero", tag_id="fixed")
        assert created and tag.id == "fixed"

    def test_alias_resolves_until_tag_is_deleted(self, tags):
        tag, _ = tags.create_tag("hero")
        tags.add_alias("elsewhere", tag.id)
        tags.add_alias(tag.id, tag.id)

        assert tags.resolve_tag_id("elsewhere") == tag.id
        assert tags.resolve_tag_id(tag.id) == tag.id
        assert tags.resolve_tag_id("unknown") == "unknown"

        tags.delete_tag(tag.id)
        assert tags.resolve_tag_id("elsewhere") == "elsewhere"

    def test_link_is_idempotent(self, store, tags):
        store.upsert_asset(make_asset("a1", "x.png"))
        tag, _ = tags.create_tag("hero")

        assert tags.add_tag_to_asset("a1", tag.id) is True
        assert tags.add_tag_to_asset("a1", tag.id) is False
        assert [t.name for t in tags.get_asset_tags("a1")] == ["hero"]

    def test_link_to_unknown_asset(self, tags):
        tag, _ = tags.create_tag("hero")
        assert tags.add_tag_to_asset("missing", tag.id) is False

    def test_delete_tag_cascades_links(self, store, tags):
        store.upsert_asset(make_asset("a1", "x.png"))
        tag, _ = tags.create_tag("hero")
        tags.add_tag_to_asset("a1", tag.id)

        assert tags.delete_tag(tag.id) is True
        assert tags.count_asset_tags() == 0
        assert tags.delete_tag(tag.id) is False

    def test_remove_link(self, store, tags):
        store.upsert_asset(make_asset("a1", "x.png"))
        tag, _ = tags.create_tag("hero")
        tags.add_tag_to_asset("a1", tag.id)

        assert tags.remove_tag_from_asset("a1", tag.id) is True
        assert tags.remove_tag_from_asset("a1", tag.id) is False


class TestHistoryLog:
    """Test the audit log"""

    def test_log_and_read(self, history):
        history.log_event("a1", HistoryAction.CREATE)
        history.log_event("a1", HistoryAction.UPDATE, "status", "unsorted", "approved", "user_1")

        events = history.get_asset_history("a1")

        assert [e.action for e in events] == [HistoryAction.UPDATE, HistoryAction.CREATE]
        assert events[0].new_value == "approved"
        assert events[0].user_id == "user_1"

    def test_invalid_action_is_not_raised(self, history):
        assert history.log_event("a1", "explode") is False
        assert history.count_events() == 0

    def test_non_string_values_serialized(self, history):
        history.log_event("a1", HistoryAction.UPDATE, "inputs", None, ["b", "c"])
        assert history.get_asset_history("a1")[0].new_value == '["b", "c"]'

    def test_history_survives_purge(self, store, history):
        store.upsert_asset(make_asset("a1", "x.png"))
        history.log_event("a1", HistoryAction.CREATE)

        store.purge_asset("a1")

        assert len(history.get_asset_history("a1")) == 1

    def test_recent_activity_limit(self, history):
        for i in range(5):
            history.log_event(f"a{i}", HistoryAction.CREATE)
        assert len(history.get_recent_activity(limit=3)) == 3

    def test_stats(self, store, history):
        store.upsert_asset(make_asset("a1", "1.png", metadata=AssetMetadata(author_id="alice")))
        store.upsert_asset(make_asset("a2", "2.mp4", type=MediaType.VIDEO, status="approved"))
        store.upsert_asset(make_asset("a3", "3.png"))
        store.delete_asset("a3")
        history.log_event("a1", HistoryAction.CREATE)

        stats = history.get_stats()

        assert stats.total_assets == 2
        assert stats.assets_by_status == {"unsorted": 1, "approved": 1}
        assert stats.assets_by_type == {"image": 1, "video": 1}
        assert stats.assets_by_author == {"alice": 1, "Unknown": 1}
        assert sum(point.count for point in stats.ingress_over_time) == 1

    def test_backfill_only_when_empty(self, store, history):
        store.upsert_asset(make_asset("a1", "1.png"))
        store.upsert_asset(make_asset("a2", "2.png"))

        assert history.backfill_history() == 2
        assert history.backfill_history() == 0


class TestFolderStore:
    """Test folder listing and colors"""

    def test_folders_include_ancestors(self, db, store):
        folders = FolderStore(db)
        store.upsert_asset(make_asset("a1", "film/seq01/shot010/a.png"))
        store.upsert_asset(make_asset("a2", "film/seq02/b.png"))
        store.upsert_asset(make_asset("a3", "top.png"))

        assert folders.get_folders(ROOT) == [
            "film", "film/seq01", "film/seq01/shot010", "film/seq02"
        ]

    def test_colors(self, db):
        folders = FolderStore(db)
        folders.set_folder_color("film/seq01/", "#f00")
        folders.set_folder_color("film", "#0f0")
        folders.set_folder_color("film", "#00f")

        assert folders.get_folder_colors() == {"film/seq01": "#f00", "film": "#00f"}

        folders.set_folder_color("film", None)
        assert folders.get_folder_colors() == {"film/seq01": "#f00"}


class TestStorageUtils:
    """Test id and path helpers"""

    @pytest.fixture
    def temp_root(self):
        temp_dir = Path(tempfile.mkdtemp())
        yield temp_dir
        shutil.rmtree(temp_dir, ignore_errors=True)

    def test_content_id_is_stable_across_renames(self, temp_root):
        first = temp_root / "a.png"
        first.write_bytes(b"pixels" * 100)
        original_id = generate_asset_id(first, str(temp_root))

        renamed = temp_root / "b.png"
        first.rename(renamed)

        assert generate_asset_id(renamed, str(temp_root)) == original_id
        assert len(original_id) == ASSET_ID_LENGTH

    def test_content_id_depends_on_root_and_content(self, temp_root):
        file_path = temp_root / "a.png"
        file_path.write_bytes(b"pixels")

        assert generate_asset_id(file_path, "/r1") != generate_asset_id(file_path, "/r2")

        other = temp_root / "b.png"
        other.write_bytes(b"other pixels")
        assert generate_asset_id(file_path, "/r1") != generate_asset_id(other, "/r1")

    def test_unreadable_file_falls_back_to_path_id(self, temp_root):
        missing = temp_root / "missing.png"
        assert generate_asset_id(missing, str(temp_root)) == path_based_asset_id(str(missing), str(temp_root))

    def test_relative_path(self):
        assert to_relative_path(Path("/r/a/b.png"), Path("/r")) == "a/b.png"
        assert to_relative_path(Path("/other/b.png"), Path("/r")) is None

    def test_is_within_root(self):
        assert is_within_root("/r/a.png", "/r")
        assert is_within_root("/r", "/r")
        assert not is_within_root("/rx/a.png", "/r")
