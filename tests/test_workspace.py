"""Tests for git worktree isolation."""

import shutil
import subprocess
from pathlib import Path

import pytest

from capability_eval.workspace import WorkspaceIsolator, run_git

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")

EXPERIMENT_ID = "0123456789abcdef"


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create a minimal git repo with one commit on main."""
    repo = tmp_path / "repo"
    repo.mkdir()
    subprocess.run(["git", "init", str(repo)], check=True, capture_output=True)
    subprocess.run(
        ["git", "config", "user.email", "test@test.com"],
        cwd=str(repo),
        check=True,
        capture_output=True,
    )
    subprocess.run(
        ["git", "config", "user.name", "Test"],
        cwd=str(repo),
        check=True,
        capture_output=True,
    )
    (repo / "README.md").write_text("test")
    subprocess.run(["git", "add", "README.md"], cwd=str(repo), check=True, capture_output=True)
    subprocess.run(["git", "commit", "-m", "init"], cwd=str(repo), check=True, capture_output=True)
    subprocess.run(["git", "branch", "-M", "main"], cwd=str(repo), check=True, capture_output=True)
    return repo.resolve()


class TestNaming:
    def test_branch_name_uses_id_prefix(self) -> None:
        assert WorkspaceIsolator.branch_name(EXPERIMENT_ID) == "capeval/eval-01234567"

    def test_worktree_path(self, tmp_path: Path) -> None:
        path = WorkspaceIsolator().worktree_path(tmp_path, EXPERIMENT_ID)
        assert path == tmp_path / ".capeval-worktrees" / "capeval-eval-01234567"


class TestSetup:
    def test_creates_worktree_on_branch(self, git_repo: Path) -> None:
        result = WorkspaceIsolator().setup(str(git_repo), EXPERIMENT_ID)

        assert result.success
        assert result.branch == "capeval/eval-01234567"
        assert Path(result.repo_root) == git_repo
        assert (Path(result.path) / "README.md").exists()
        assert run_git("rev-parse", "--abbrev-ref", "HEAD", cwd=result.path) == result.branch

    def test_reuses_existing_worktree(self, git_repo: Path) -> None:
        isolator = WorkspaceIsolator()
        first = isolator.setup(str(git_repo), EXPERIMENT_ID)
        second = isolator.setup(str(git_repo), EXPERIMENT_ID)
        assert second.success
        assert second.path == first.path

    def test_from_subdirectory(self, git_repo: Path) -> None:
        sub = git_repo / "src"
        sub.mkdir()
        result = WorkspaceIsolator().setup(str(sub), EXPERIMENT_ID)
        assert Path(result.repo_root) == git_repo

    def test_not_a_repo(self, tmp_path: Path) -> None:
        plain = tmp_path / "plain"
        plain.mkdir()
        if WorkspaceIsolator.repo_root(str(plain)) is not None:
            pytest.skip("tmp_path is inside a git repository")
        result = WorkspaceIsolator().setup(str(plain), EXPERIMENT_ID)
        assert not result.success
        assert result.error == "Not a git repo"


class TestTeardown:
    def test_removes_worktree_and_branch(self, git_repo: Path) -> None:
        isolator = WorkspaceIsolator()
        result = isolator.setup(str(git_repo), EXPERIMENT_ID)

        isolator.teardown(str(git_repo), EXPERIMENT_ID)

        assert not Path(result.path).exists()
        assert run_git("branch", "--list", result.branch, cwd=str(git_repo)) == ""

    def test_idempotent(self, git_repo: Path) -> None:
        isolator = WorkspaceIsolator()
        isolator.setup(str(git_repo), EXPERIMENT_ID)
        isolator.teardown(str(git_repo), EXPERIMENT_ID)
        isolator.teardown(str(git_repo), EXPERIMENT_ID)

    def test_never_set_up(self, git_repo: Path) -> None:
        WorkspaceIsolator().teardown(str(git_repo), EXPERIMENT_ID)

    def test_git_failures_are_swallowed(self, git_repo: Path, monkeypatch) -> None:
        isolator = WorkspaceIsolator()
        result = isolator.setup(str(git_repo), EXPERIMENT_ID)

        def hanging_git(*args: str, **kwargs) -> str:
            if args[0] == "rev-parse":
                return run_git(*args, **kwargs)
            raise subprocess.TimeoutExpired(["git", *args], 30)

        monkeypatch.setattr("capability_eval.workspace.run_git", hanging_git)
        isolator.teardown(str(git_repo), EXPERIMENT_ID)

        assert not Path(result.path).exists()
