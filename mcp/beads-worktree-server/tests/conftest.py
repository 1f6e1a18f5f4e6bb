"""
Shared fixtures: in-memory fakes for the git, gh and bd ports.

The fakes keep just enough state (branches, worktree directories, remote
heads) to drive every branch of the tool functions, and record each call so
tests can assert on what would have been run.
"""

import json
import shutil
import sys
from pathlib import Path
from typing import Optional

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from beads_worktree_server.commands import CommandResult


def _ok(stdout: str = "") -> CommandResult:
    return CommandResult(args=(), returncode=0, stdout=stdout)


def _fail(stderr: str, returncode: int = 1) -> CommandResult:
    return CommandResult(args=(), returncode=returncode, stderr=stderr)


def _make_linked_worktree(path: Path) -> None:
    """Directory shaped like `git worktree add` output: a .git file pointing home."""
    path.mkdir(parents=True, exist_ok=True)
    (path / ".git").write_text(f"gitdir: /src/.git/worktrees/{path.name}\n")


class FakeGit:
    def __init__(self):
        self.calls: list[tuple] = []
        self.branches = {"main"}
        self.remote_names = ["origin"]
        self.remote_heads: set[str] = set()
        self.dirty_paths: set[str] = set()
        self.counts: dict[tuple[str, str], str] = {}
        self.worktrees: dict[str, str] = {}
        self.fetch_failures: dict[str, str] = {}
        self.rebase_conflicts: set[str] = set()
        self.push_failures: dict[str, str] = {}
        # method name -> stderr; every call to that method fails
        self.failures: dict[str, str] = {}

    def _record(self, method: str, *args) -> Optional[CommandResult]:
        self.calls.append((method,) + tuple(str(a) if isinstance(a, Path) else a for a in args))
        if method in self.failures:
            return _fail(self.failures[method])
        return None

    def methods(self) -> list[str]:
        return [call[0] for call in self.calls]

    def add_worktree(self, repo: Path, task_id: str) -> Path:
        """Set up an existing bd-<task_id> worktree without recording a call."""
        path = repo / ".worktrees" / f"bd-{task_id}"
        _make_linked_worktree(path)
        self.branches.add(f"bd-{task_id}")
        self.worktrees[str(path)] = f"bd-{task_id}"
        return path

    def worktree_add_new_branch(self, repo, path, branch, base):
        failed = self._record("worktree_add_new_branch", repo, path, branch, base)
        if failed:
            return failed
        if branch in self.branches:
            return _fail(f"fatal: a branch named '{branch}' already exists")
        self.branches.add(branch)
        _make_linked_worktree(Path(path))
        self.worktrees[str(path)] = branch
        return _ok(f"Preparing worktree (new branch '{branch}')\n")

    def worktree_add_existing_branch(self, repo, path, branch):
        failed = self._record("worktree_add_existing_branch", repo, path, branch)
        if failed:
            return failed
        if branch not in self.branches:
            return _fail(f"fatal: invalid reference: {branch}")
        _make_linked_worktree(Path(path))
        self.worktrees[str(path)] = branch
        return _ok()

    def worktree_remove(self, repo, path, force=False):
        failed = self._record("worktree_remove", repo, path, force)
        if failed:
            return failed
        if str(path) in self.dirty_paths and not force:
            return _fail(
                f"fatal: '{path}' contains modified or untracked files, use --force to delete it"
            )
        shutil.rmtree(path)
        self.worktrees.pop(str(path), None)
        return _ok()

    def worktree_list(self, repo):
        failed = self._record("worktree_list", repo)
        if failed:
            return failed
        blocks = [f"worktree {repo}\nHEAD 1111111\nbranch refs/heads/main\n"]
        for path, branch in self.worktrees.items():
            blocks.append(f"worktree {path}\nHEAD 2222222\nbranch refs/heads/{branch}\n")
        return _ok("\n".join(blocks) + "\n")

    def branch_delete(self, repo, branch):
        failed = self._record("branch_delete", repo, branch)
        if failed:
            return failed
        if branch not in self.branches:
            return _fail(f"error: branch '{branch}' not found.")
        self.branches.discard(branch)
        return _ok()

    def branch_verify(self, repo, branch):
        failed = self._record("branch_verify", repo, branch)
        if failed:
            return failed
        if branch in self.branches:
            return _ok("3333333\n")
        return _fail("fatal: Needed a single revision")

    def rev_list_counts(self, repo, base, branch):
        failed = self._record("rev_list_counts", repo, base, branch)
        if failed:
            return failed
        if (base, branch) in self.counts:
            return _ok(self.counts[(base, branch)])
        return _fail(f"fatal: ambiguous argument '{base}...{branch}': unknown revision")

    def status_porcelain(self, path):
        failed = self._record("status_porcelain", path)
        if failed:
            return failed
        return _ok(" M README.md\n" if str(path) in self.dirty_paths else "")

    def remotes(self, repo):
        failed = self._record("remotes", repo)
        if failed:
            return failed
        return _ok("".join(f"{name}\n" for name in self.remote_names))

    def ls_remote_heads(self, repo, remote, branch):
        failed = self._record("ls_remote_heads", repo, remote, branch)
        if failed:
            return failed
        if branch in self.remote_heads:
            return _ok(f"4444444\trefs/heads/{branch}\n")
        return _ok()

    def fetch(self, cwd, remote):
        failed = self._record("fetch", cwd, remote)
        if failed:
            return failed
        if str(cwd) in self.fetch_failures:
            return _fail(self.fetch_failures[str(cwd)])
        return _ok()

    def rebase(self, cwd, onto):
        failed = self._record("rebase", cwd, onto)
        if failed:
            return failed
        if str(cwd) in self.rebase_conflicts:
            return _fail("CONFLICT (content): Merge conflict in app.py\nerror: could not apply 5555555")
        return _ok()

    def rebase_abort(self, cwd):
        self._record("rebase_abort", cwd)
        return _ok()

    def push_force_with_lease(self, cwd, remote, branch):
        failed = self._record("push_force_with_lease", cwd, remote, branch)
        if failed:
            return failed
        if branch in self.push_failures:
            return _fail(self.push_failures[branch])
        self.remote_heads.add(branch)
        return _ok()


class FakeGh:
    def __init__(self):
        self.calls: list[tuple] = []
        self.merged_prs: list[dict] = []
        self.pr: Optional[dict] = None
        self.created_url = "https://github.com/acme/widgets/pull/142"
        self.rate: Optional[dict] = {"limit": 5000, "remaining": 4823, "reset": 1700000000}
        self.failures: dict[str, str] = {}

    def _record(self, method: str, *args) -> Optional[CommandResult]:
        self.calls.append((method,) + tuple(str(a) if isinstance(a, Path) else a for a in args))
        if method in self.failures:
            return _fail(self.failures[method])
        return None

    def methods(self) -> list[str]:
        return [call[0] for call in self.calls]

    def list_merged_prs(self, repo, branch):
        return self._record("list_merged_prs", repo, branch) or _ok(json.dumps(self.merged_prs))

    def create_pr(self, repo, branch, title, body):
        return self._record("create_pr", repo, branch, title, body) or _ok(self.created_url + "\n")

    def view_pr(self, repo, branch):
        failed = self._record("view_pr", repo, branch)
        if failed:
            return failed
        if self.pr is None:
            return _fail(f"no pull requests found for branch \"{branch}\"")
        return _ok(json.dumps(self.pr))

    def merge_pr(self, repo, branch, merge_flag):
        return self._record("merge_pr", repo, branch, merge_flag) or _ok()

    def rate_limit(self, repo):
        failed = self._record("rate_limit", repo)
        if failed:
            return failed
        if self.rate is None:
            return _fail("HTTP 401: Bad credentials")
        return _ok(json.dumps(self.rate))


class FakeBeads:
    def __init__(self):
        self.calls: list[tuple] = []
        self.close_error: Optional[str] = None
        self.run_result = _ok("[]\n")

    def close(self, repo, task_id):
        self.calls.append(("close", str(repo), task_id))
        if self.close_error:
            return _fail(self.close_error)
        return _ok(f"Closed {task_id}\n")

    def run(self, args, cwd, timeout=None):
        self.calls.append(("run", tuple(args), str(cwd), timeout))
        return self.run_result


def write_issues(repo: Path, records: list) -> Path:
    """Write .beads/issues.jsonl; str entries are written verbatim."""
    issues = repo / ".beads" / "issues.jsonl"
    issues.parent.mkdir(parents=True, exist_ok=True)
    lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
    issues.write_text("\n".join(lines) + "\n")
    return issues


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep the developer's ~/.beads/worktree-config.yaml out of the tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setattr(Path, "home", lambda: home)
    return home


@pytest.fixture
def repo(tmp_path):
    path = tmp_path / "repo"
    path.mkdir()
    return path


@pytest.fixture
def fake_git():
    return FakeGit()


@pytest.fixture
def fake_gh():
    return FakeGh()


@pytest.fixture
def fake_beads():
    return FakeBeads()
