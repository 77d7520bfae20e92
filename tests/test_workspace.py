import pytest

from snp_impute.workspace import WorkspaceError, create_workspace


class TestCreateWorkspace:
    def test_creates_run_directory_under_root(self, tmp_path):
        workspace = create_workspace(tmp_path / "Output", "run1")

        assert workspace.path == tmp_path.resolve() / "Output" / "run1"
        assert workspace.path.is_dir()
        assert workspace.file("run1.bed") == workspace.path / "run1.bed"
        assert workspace.history_dir == workspace.path / "run_history"

    def test_is_idempotent(self, tmp_path):
        first = create_workspace(tmp_path / "Output", "run1")
        (first.path / "data.bed").write_text("keep me")

        second = create_workspace(tmp_path / "Output", "run1")

        assert second == first
        assert second.path.samefile(first.path)
        assert (second.path / "data.bed").read_text() == "keep me"

    def test_distinct_runs_do_not_share_directories(self, tmp_path):
        one = create_workspace(tmp_path, "run1")
        two = create_workspace(tmp_path, "run2")

        assert one.path != two.path

    def test_file_in_the_way(self, tmp_path):
        (tmp_path / "run1").write_text("not a directory")

        with pytest.raises(WorkspaceError, match="file with that name"):
            create_workspace(tmp_path, "run1")

    def test_unwritable_root(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")

        with pytest.raises(WorkspaceError, match="Cannot create"):
            create_workspace(blocker / "Output", "run1")
