"""
Tests for the media-catalog command-line interface.

Every command runs against a real temporary root and database; each
invocation opens and closes the catalog, as a user session would.
"""

import json
import shutil
import tempfile
from pathlib import Path

import pytest
from click.testing import CliRunner

from media_catalog import __version__
from media_catalog.cli import main


class TestCli:
    """Test CLI commands end to end"""

    @pytest.fixture
    def workspace(self, monkeypatch):
        temp_dir = Path(tempfile.mkdtemp()).resolve()
        root = temp_dir / "shots"
        (root / "env").mkdir(parents=True)
        (root / "env" / "forest.png").write_bytes(b"forest-pixels")
        (root / "clips").mkdir()
        (root / "clips" / "flyover.mp4").write_bytes(b"flyover-frames")

        monkeypatch.setenv("MEDIA_CATALOG_DATA_DIR", str(temp_dir / "data"))
        monkeypatch.setenv("MEDIA_CATALOG_LOG_LEVEL", "ERROR")
        monkeypatch.setenv("MEDIA_CATALOG_WATCH_ENABLED", "false")

        yield {"dir": temp_dir, "root": root, "db": temp_dir / "data" / "catalog.db"}
        shutil.rmtree(temp_dir, ignore_errors=True)

    @pytest.fixture
    def runner(self):
        return CliRunner()

    def invoke(self, runner, workspace, *args):
        return runner.invoke(
            main,
            ["--root", str(workspace["root"]), "--db", str(workspace["db"]), *args],
            catch_exceptions=False
        )

    def search_json(self, runner, workspace, *args):
        result = self.invoke(runner, workspace, "search", *args, "--json")
        assert result.exit_code == 0, result.output
        return json.loads(result.output)

    def test_help(self, runner):
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        for command in ("init", "index", "search", "lineage", "tag", "history", "ingest", "compact", "status"):
            assert command in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_init(self, runner, workspace):
        result = self.invoke(runner, workspace, "init")

        assert result.exit_code == 0
        assert "Initialized catalog 'shots'" in result.output

        app_dir = workspace["root"] / ".media-catalog"
        config = json.loads((app_dir / "config.json").read_text(encoding='utf-8'))
        assert config["name"] == "shots"
        assert (app_dir / "events").is_dir()
        assert (app_dir / "thumbnails").is_dir()

    def test_init_twice_needs_force(self, runner, workspace):
        self.invoke(runner, workspace, "init")

        again = self.invoke(runner, workspace, "init")
        assert "already initialized" in again.output

        forced = self.invoke(runner, workspace, "init", "--force", "--name", "renamed")
        assert forced.exit_code == 0
        config = json.loads((workspace["root"] / ".media-catalog" / "config.json").read_text(encoding='utf-8'))
        assert config["name"] == "renamed"

    def test_missing_root_is_rejected(self, runner, workspace):
        result = runner.invoke(main, ["--root", str(workspace["dir"] / "nope"), "status"])
        assert result.exit_code == 2

    def test_index(self, runner, workspace):
        result = self.invoke(runner, workspace, "index")

        assert result.exit_code == 0
        assert "Index Summary" in result.output
        assert "Indexing completed" in result.output
        assert workspace["db"].exists()

    def test_search(self, runner, workspace):
        everything = self.search_json(runner, workspace)
        assert {r["path"] for r in everything} == {"env/forest.png", "clips/flyover.mp4"}

        forest = self.search_json(runner, workspace, "forest")
        assert [r["path"] for r in forest] == ["env/forest.png"]

        videos = self.search_json(runner, workspace, "--type", "video")
        assert [r["path"] for r in videos] == ["clips/flyover.mp4"]

    def test_set_status_by_path(self, runner, workspace):
        result = self.invoke(runner, workspace, "set-status", "env/forest.png", "approved")
        assert result.exit_code == 0

        approved = self.search_json(runner, workspace, "--status", "approved")
        assert [r["path"] for r in approved] == ["env/forest.png"]
        assert approved[0]["status"] == "approved"

    def test_set_status_unknown_asset(self, runner, workspace):
        result = self.invoke(runner, workspace, "set-status", "missing.png", "approved")

        assert result.exit_code == 1
        assert "Asset not found" in result.output

    def test_tagging(self, runner, workspace):
        added = self.invoke(runner, workspace, "tag", "env/forest.png", "hero", "--color", "#00ff00")
        assert added.exit_code == 0
        assert "Added tag 'hero'" in added.output

        listed = self.invoke(runner, workspace, "tags")
        assert "hero" in listed.output

        tagged = self.search_json(runner, workspace, "--tag", "hero")
        assert [r["path"] for r in tagged] == ["env/forest.png"]
        assert [t["name"] for t in tagged[0]["tags"]] == ["hero"]

        removed = self.invoke(runner, workspace, "tag", "env/forest.png", "hero", "--remove")
        assert "Removed tag 'hero'" in removed.output
        assert self.search_json(runner, workspace, "--tag", "hero") == []

    def test_search_unknown_tag(self, runner, workspace):
        result = self.invoke(runner, workspace, "search", "--tag", "nope")

        assert result.exit_code == 0
        assert "Unknown tag" in result.output

    def test_lineage_and_history(self, runner, workspace):
        lineage = self.invoke(runner, workspace, "lineage", "env/forest.png")
        assert lineage.exit_code == 0
        assert "Lineage" in lineage.output

        history = self.invoke(runner, workspace, "history", "env/forest.png")
        assert history.exit_code == 0
        assert "History" in history.output

        missing = self.invoke(runner, workspace, "lineage", "nope.png")
        assert missing.exit_code == 1

    def test_ingest(self, runner, workspace):
        source = workspace["dir"] / "incoming.png"
        source.write_bytes(b"incoming-pixels")

        result = self.invoke(runner, workspace, "ingest", str(source), "--project", "alpha")
        assert result.exit_code == 0

        assert (workspace["root"] / "uploads" / "alpha" / "incoming.png").exists()
        paths = {r["path"] for r in self.search_json(runner, workspace)}
        assert "uploads/alpha/incoming.png" in paths

    def test_compact_below_threshold(self, runner, workspace):
        result = self.invoke(runner, workspace, "compact")

        assert result.exit_code == 0
        assert "Nothing to compact" in result.output

    def test_status_json(self, runner, workspace):
        self.invoke(runner, workspace, "set-status", "env/forest.png", "approved")

        result = self.invoke(runner, workspace, "status", "--json")
        assert result.exit_code == 0, result.output

        status = json.loads(result.output)
        assert status["name"] == "shots"
        assert status["root_path"] == str(workspace["root"])
        assert status["assets"] == 2
        assert status["index_problems"] == []
        assert status["sync"]["enabled"] is True
        assert status["activity"]["assets_by_status"]["approved"] == 1

    def test_status_table(self, runner, workspace):
        result = self.invoke(runner, workspace, "status")

        assert result.exit_code == 0
        assert "Media Catalog Status" in result.output
