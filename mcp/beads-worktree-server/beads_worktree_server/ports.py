"""
Ports for the external command-line tools.

Tool functions never build git/gh/bd command lines themselves; they talk to a
GitPort, ReviewPort or IssuePort. The CLI adapters below are the production
implementations. Tests substitute in-memory fakes with the same methods.

Every method returns a CommandResult; interpreting exit codes and output is
left to the caller.
"""

from pathlib import Path
from typing import Optional, Protocol, Union

from .commands import CommandResult, run_command

PathLike = Union[str, Path]


class GitPort(Protocol):
    def worktree_add_new_branch(self, repo: PathLike, path: PathLike, branch: str, base: str) -> CommandResult: ...

    def worktree_add_existing_branch(self, repo: PathLike, path: PathLike, branch: str) -> CommandResult: ...

    def worktree_remove(self, repo: PathLike, path: PathLike, force: bool = False) -> CommandResult: ...

    def worktree_list(self, repo: PathLike) -> CommandResult: ...

    def branch_delete(self, repo: PathLike, branch: str) -> CommandResult: ...

    def branch_verify(self, repo: PathLike, branch: str) -> CommandResult: ...

    def rev_list_counts(self, repo: PathLike, base: str, branch: str) -> CommandResult: ...

    def status_porcelain(self, path: PathLike) -> CommandResult: ...

    def remotes(self, repo: PathLike) -> CommandResult: ...

    def ls_remote_heads(self, repo: PathLike, remote: str, branch: str) -> CommandResult: ...

    def fetch(self, cwd: PathLike, remote: str) -> CommandResult: ...

    def rebase(self, cwd: PathLike, onto: str) -> CommandResult: ...

    def rebase_abort(self, cwd: PathLike) -> CommandResult: ...

    def push_force_with_lease(self, cwd: PathLike, remote: str, branch: str) -> CommandResult: ...


class ReviewPort(Protocol):
    def list_merged_prs(self, repo: PathLike, branch: str) -> CommandResult: ...

    def create_pr(self, repo: PathLike, branch: str, title: str, body: str) -> CommandResult: ...

    def view_pr(self, repo: PathLike, branch: str) -> CommandResult: ...

    def merge_pr(self, repo: PathLike, branch: str, merge_flag: str) -> CommandResult: ...

    def rate_limit(self, repo: PathLike) -> CommandResult: ...


class IssuePort(Protocol):
    def close(self, repo: PathLike, task_id: str) -> CommandResult: ...

    def run(self, args: list[str], cwd: PathLike, timeout: Optional[float] = None) -> CommandResult: ...


# ============================================================================
# CLI adapters
# ============================================================================

class GitCli:
    """GitPort backed by the `git` executable."""

    def __init__(self, executable: str = "git"):
        self.executable = executable

    def _git(self, cwd: PathLike, *args: str) -> CommandResult:
        return run_command([self.executable, *args], cwd=cwd)

    def worktree_add_new_branch(self, repo, path, branch, base):
        return self._git(repo, "worktree", "add", str(path), "-b", branch, base)

    def worktree_add_existing_branch(self, repo, path, branch):
        return self._git(repo, "worktree", "add", str(path), branch)

    def worktree_remove(self, repo, path, force=False):
        if force:
            return self._git(repo, "worktree", "remove", "--force", str(path))
        return self._git(repo, "worktree", "remove", str(path))

    def worktree_list(self, repo):
        return self._git(repo, "worktree", "list", "--porcelain")

    def branch_delete(self, repo, branch):
        return self._git(repo, "branch", "-D", branch)

    def branch_verify(self, repo, branch):
        return self._git(repo, "rev-parse", "--verify", branch)

    def rev_list_counts(self, repo, base, branch):
        return self._git(repo, "rev-list", "--left-right", "--count", f"{base}...{branch}")

    def status_porcelain(self, path):
        return self._git(path, "status", "--porcelain")

    def remotes(self, repo):
        return self._git(repo, "remote")

    def ls_remote_heads(self, repo, remote, branch):
        return self._git(repo, "ls-remote", "--heads", remote, branch)

    def fetch(self, cwd, remote):
        return self._git(cwd, "fetch", remote)

    def rebase(self, cwd, onto):
        return self._git(cwd, "rebase", onto)

    def rebase_abort(self, cwd):
        return self._git(cwd, "rebase", "--abort")

    def push_force_with_lease(self, cwd, remote, branch):
        # Explicit branch name: sibling branches may have no upstream configured.
        return self._git(cwd, "push", remote, branch, "--force-with-lease")


class GhCli:
    """ReviewPort backed by the GitHub CLI."""

    def __init__(self, executable: str = "gh"):
        self.executable = executable

    def _gh(self, cwd: PathLike, *args: str) -> CommandResult:
        return run_command([self.executable, *args], cwd=cwd)

    def list_merged_prs(self, repo, branch):
        return self._gh(repo, "pr", "list", "--head", branch, "--state", "merged", "--json", "number,title")

    def create_pr(self, repo, branch, title, body):
        return self._gh(repo, "pr", "create", "--head", branch, "--title", title, "--body", body)

    def view_pr(self, repo, branch):
        return self._gh(repo, "pr", "view", branch, "--json", "number,url,state,mergeable,statusCheckRollup")

    def merge_pr(self, repo, branch, merge_flag):
        # No --delete-branch: the branch may still be checked out in a worktree.
        return self._gh(repo, "pr", "merge", branch, merge_flag)

    def rate_limit(self, repo):
        return self._gh(repo, "api", "rate_limit", "--jq", ".rate")


class BeadsCli:
    """IssuePort backed by the beads `bd` CLI."""

    def __init__(self, executable: str = "bd"):
        self.executable = executable

    def close(self, repo, task_id):
        return run_command([self.executable, "close", task_id], cwd=repo)

    def run(self, args, cwd, timeout=None):
        return run_command([self.executable, *args], cwd=cwd, timeout=timeout)
