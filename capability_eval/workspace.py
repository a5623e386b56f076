"""Git worktree isolation for evaluation runs.

Each experiment gets its own worktree on a throwaway branch so that agent
edits during runs never touch the user's checkout. Setup reports failure as
a value; teardown tolerates everything already being gone.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 30
BRANCH_PREFIX = "capeval"


def run_git(*args: str, cwd: str | None = None, check: bool = True) -> str:
    """Run a git command and return stripped stdout."""
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=check,
        timeout=GIT_TIMEOUT_SECONDS,
    )
    return result.stdout.strip()


def _git_error(e: Exception) -> str:
    if isinstance(e, subprocess.CalledProcessError):
        return (e.stderr or "").strip() or f"git exited with code {e.returncode}"
    return str(e)


@dataclass
class IsolationResult:
    success: bool
    path: str = ""
    repo_root: str = ""
    branch: str = ""
    error: str | None = None


class WorkspaceIsolator:
    """Creates and removes per-experiment git worktrees."""

    def __init__(self, worktree_dir: str = ".capeval-worktrees") -> None:
        self._worktree_dir = worktree_dir

    @staticmethod
    def branch_name(experiment_id: str) -> str:
        return f"{BRANCH_PREFIX}/eval-{experiment_id[:8]}"

    def worktree_path(self, repo_root: Path, experiment_id: str) -> Path:
        safe_name = self.branch_name(experiment_id).replace("/", "-")
        return repo_root / self._worktree_dir / safe_name

    @staticmethod
    def repo_root(workspace: str) -> Path | None:
        """Top-level directory of the repo containing ``workspace``, if any."""
        try:
            return Path(run_git("rev-parse", "--show-toplevel", cwd=workspace))
        except (subprocess.SubprocessError, OSError):
            return None

    def setup(self, workspace: str, experiment_id: str) -> IsolationResult:
        """Create (or reuse) the experiment's worktree."""
        root = self.repo_root(workspace)
        if root is None:
            return IsolationResult(success=False, error="Not a git repo")

        branch = self.branch_name(experiment_id)
        path = self.worktree_path(root, experiment_id)
        if path.is_dir():
            logger.debug("Reusing worktree %s", path)
            return IsolationResult(True, str(path), str(root), branch)

        try:
            base_branch = run_git("rev-parse", "--abbrev-ref", "HEAD", cwd=str(root)) or "main"
            path.parent.mkdir(parents=True, exist_ok=True)
            run_git("worktree", "add", "-b", branch, str(path), base_branch, cwd=str(root))
        except (subprocess.SubprocessError, OSError) as e:
            return IsolationResult(success=False, error=_git_error(e))

        logger.info("Created worktree %s on branch %s", path, branch)
        return IsolationResult(True, str(path), str(root), branch)

    def teardown(self, workspace: str, experiment_id: str) -> None:
        """Remove the experiment's worktree and branch. Never raises."""
        root = self.repo_root(workspace)
        if root is None:
            return

        branch = self.branch_name(experiment_id)
        path = self.worktree_path(root, experiment_id)
        try:
            run_git("worktree", "remove", str(path), "--force", cwd=str(root))
        except (subprocess.SubprocessError, OSError):
            shutil.rmtree(path, ignore_errors=True)
            try:
                run_git("worktree", "prune", cwd=str(root), check=False)
            except (subprocess.SubprocessError, OSError):
                logger.debug("git worktree prune failed in %s", root)

        try:
            run_git("branch", "-D", branch, cwd=str(root))
        except (subprocess.SubprocessError, OSError):
            logger.debug("Branch %s already gone", branch)
