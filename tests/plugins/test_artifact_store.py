"""
Tests for the Export Artifact Store
"""

import pytest

from sf_pg_migration.artifact_store import ArtifactStore, ExportArtifact


@pytest.fixture
def store(tmp_path):
    return ArtifactStore(tmp_path / "data")


class TestOpenWriter:
    """Test publishing and discarding artifacts."""

    def test_published_on_success(self, store):
        with store.open_writer("Account") as handle:
            handle.write("Id,Name\n")
            # Not visible until the block exits
            assert store.list_artifacts() == []

        artifacts = store.list_artifacts()
        assert artifacts == [ExportArtifact("Account", store.artifact_path("Account"))]
        assert artifacts[0].path.read_text(encoding="utf-8") == "Id,Name\n"

    def test_discarded_on_error(self, store):
        with pytest.raises(RuntimeError):
            with store.open_writer("Account") as handle:
                handle.write("Id,Name\n")
                raise RuntimeError("stream broke")

        assert store.list_artifacts() == []
        assert list(store.directory.iterdir()) == []

    def test_replaces_previous_artifact(self, store):
        with store.open_writer("Account") as handle:
            handle.write("old\n")
        with store.open_writer("Account") as handle:
            handle.write("new\n")

        assert store.artifact_path("Account").read_text(encoding="utf-8") == "new\n"


class TestListing:
    """Test enumeration, removal and purge."""

    def test_missing_directory_is_empty(self, store):
        assert store.list_artifacts() == []
        assert store.purge() == 0

    def test_sorted_by_file_name(self, store):
        for name in ("User", "Account", "Contact"):
            with store.open_writer(name) as handle:
                handle.write("Id\n")

        assert [a.table_name for a in store.list_artifacts()] == ["Account", "Contact", "User"]

    def test_remove(self, store):
        with store.open_writer("Account") as handle:
            handle.write("Id\n")
        store.remove(store.list_artifacts()[0])
        assert store.list_artifacts() == []

    def test_purge_removes_artifacts_and_partials(self, store):
        with store.open_writer("Account") as handle:
            handle.write("Id\n")
        (store.directory / "Contact.csv.partial").write_text("Id\n", encoding="utf-8")
        (store.directory / "notes.txt").write_text("keep", encoding="utf-8")

        assert store.purge() == 2
        assert [p.name for p in store.directory.iterdir()] == ["notes.txt"]
