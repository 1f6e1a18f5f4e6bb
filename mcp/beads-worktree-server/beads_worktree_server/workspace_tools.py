"""
Workspace Tools for Beads Worktree MCP Server

Each task gets one git worktree at <repo>/.worktrees/bd-<task_id> on branch
bd-<task_id>. The path is derived from the task id alone, and a workspace
exists exactly when its directory does; the branch may outlive or precede it.

Operations here are idempotent: creating an existing workspace and deleting a
missing one both succeed without running git.
"""

import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from filelock import FileLock

from .branch_tools import get_ahead_behind, is_dirty
from .config_tools import get_config
from .errors import (
    ATTACH_EXISTING_BRANCH,
    FORCE_REMOVE,
    ToolError,
    match_recovery,
)
from .ports import BeadsCli, GitCli, GitPort, IssuePort

logger = logging.getLogger(__name__)

WORKTREES_DIR = ".worktrees"
BRANCH_PREFIX = "bd-"
GITIGNORE_ENTRY = ".worktrees/"


@dataclass(frozen=True)
class Workspace:
    task_id: str
    branch: str
    path: Path

    @property
    def exists(self) -> bool:
        return self.path.is_dir()


@dataclass
class WorktreeEntry:
    path: str
    branch: str
    task_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if data["task_id"] is None:
            del data["task_id"]
        return data


# ============================================================================
# Registry
# ============================================================================

def branch_name_for(task_id: str) -> str:
    return f"{BRANCH_PREFIX}{task_id}"


def workspace_for(repo_path: Union[str, Path], task_id: str) -> Workspace:
    branch = branch_name_for(task_id)
    return Workspace(
        task_id=task_id,
        branch=branch,
        path=Path(repo_path) / WORKTREES_DIR / branch,
    )


def extract_task_id(branch: str) -> Optional[str]:
    """Task id encoded in a workspace branch name, e.g. "bd-BD-001" -> "BD-001"."""
    if branch.startswith(BRANCH_PREFIX):
        return branch[len(BRANCH_PREFIX):]
    return None


def _last_modified(path: Path) -> Optional[str]:
    try:
        mtime = path.stat().st_mtime
    except OSError:
        return None
    return datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat()


def ensure_gitignore_entry(repo_path: Union[str, Path]) -> bool:
    """Append .worktrees/ to the repo's .gitignore unless already mentioned.

    Returns True if the file was changed.
    """
    gitignore = Path(repo_path) / ".gitignore"
    lock_file = Path(repo_path) / WORKTREES_DIR / ".gitignore.lock"
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    with FileLock(str(lock_file), timeout=5):
        content = gitignore.read_text() if gitignore.exists() else ""
        if GITIGNORE_ENTRY in content or WORKTREES_DIR in content:
            return False
        with open(gitignore, "a") as f:
            f.write(f"\n# Git worktrees\n{GITIGNORE_ENTRY}\n")
    return True


# ============================================================================
# Lifecycle
# ============================================================================

def worktree_status(
    repo_path: Union[str, Path],
    task_id: str,
    git: Optional[GitPort] = None
) -> dict[str, Any]:
    """Report whether a task's workspace exists and, if so, its branch state.

    Args:
        repo_path: Repository root.
        task_id: Task identifier.
        git: GitPort to use. Defaults to the git CLI.

    Returns:
        {"exists": False} for a missing workspace, otherwise exists, path,
        branch, ahead, behind, dirty and last_modified.
    """
    git = git or GitCli()
    workspace = workspace_for(repo_path, task_id)
    if not workspace.exists:
        return {"exists": False}

    config = get_config(str(repo_path))
    ahead, behind = get_ahead_behind(
        repo_path, workspace.branch, git=git, base_branches=config["base_branches"]
    )

    status = {
        "exists": True,
        "worktree_path": str(workspace.path),
        "branch": workspace.branch,
        "ahead": ahead,
        "behind": behind,
        "dirty": is_dirty(workspace.path, git=git),
    }
    last_modified = _last_modified(workspace.path)
    if last_modified:
        status["last_modified"] = last_modified
    return status


def worktree_create(
    repo_path: Union[str, Path],
    task_id: str,
    base_branch: str = "main",
    git: Optional[GitPort] = None
) -> dict[str, Any]:
    """Create the workspace for a task, or report that it already exists.

    If the branch already exists without a workspace (e.g. the directory was
    removed by hand), the workspace is attached to that branch instead.

    Args:
        repo_path: Repository root.
        task_id: Task identifier.
        base_branch: Branch to start a new task branch from.
        git: GitPort to use. Defaults to the git CLI.

    Returns:
        {"success", "worktree_path", "branch", "already_existed"}

    Raises:
        ToolError: git refused to create the worktree.
    """
    git = git or GitCli()
    workspace = workspace_for(repo_path, task_id)

    def _result(already_existed: bool) -> dict[str, Any]:
        return {
            "success": True,
            "worktree_path": str(workspace.path),
            "branch": workspace.branch,
            "already_existed": already_existed,
        }

    if workspace.exists:
        return _result(True)

    config = get_config(str(repo_path))
    if config["gitignore"]["manage"]:
        try:
            ensure_gitignore_entry(repo_path)
        except Exception as e:
            logger.warning("Failed to update .gitignore: %s", e)

    try:
        workspace.path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ToolError(f"Failed to create {WORKTREES_DIR} directory: {e}")

    result = git.worktree_add_new_branch(repo_path, workspace.path, workspace.branch, base_branch)
    if result.ok:
        logger.info("Created worktree %s from %s", workspace.path, base_branch)
        return _result(False)

    if match_recovery(result.stderr) != ATTACH_EXISTING_BRANCH:
        raise ToolError(f"Failed to create worktree: {result.stderr}", stderr=result.stderr)

    logger.info("Branch %s already exists, attaching worktree to it", workspace.branch)
    retry = git.worktree_add_existing_branch(repo_path, workspace.path, workspace.branch)
    if not retry.ok:
        raise ToolError(f"Failed to create worktree: {retry.stderr}", stderr=retry.stderr)
    return _result(True)


def worktree_delete(
    repo_path: Union[str, Path],
    task_id: str,
    git: Optional[GitPort] = None,
    issues: Optional[IssuePort] = None
) -> dict[str, Any]:
    """Remove a task's workspace, then its branch, then close the task.

    Branch deletion and task closing are best-effort: their failures are
    logged and do not change the result.

    Raises:
        ToolError: git refused to remove the worktree, even with --force
            where that applies.
    """
    git = git or GitCli()
    workspace = workspace_for(repo_path, task_id)
    if not workspace.exists:
        return {"success": True}

    result = git.worktree_remove(repo_path, workspace.path)
    if not result.ok:
        if match_recovery(result.stderr) != FORCE_REMOVE:
            raise ToolError(f"Failed to remove worktree: {result.stderr}", stderr=result.stderr)
        logger.info("Worktree %s has local changes, forcing removal", workspace.path)
        forced = git.worktree_remove(repo_path, workspace.path, force=True)
        if not forced.ok:
            stderr = forced.stderr or result.stderr
            raise ToolError(f"Failed to remove worktree: {stderr}", stderr=stderr)

    branch_result = git.branch_delete(repo_path, workspace.branch)
    if not branch_result.ok:
        logger.warning("Could not delete branch %s: %s", workspace.branch, branch_result.stderr.strip())

    issues = issues or BeadsCli()
    close_result = issues.close(repo_path, task_id)
    if not close_result.ok:
        logger.warning("Could not close task %s: %s", task_id, close_result.stderr.strip())

    return {"success": True}


# ============================================================================
# Listing
# ============================================================================

def parse_worktree_list(output: str) -> list[WorktreeEntry]:
    """Parse `git worktree list --porcelain` into task workspace entries.

    Only worktrees under .worktrees/bd-* are kept; the primary checkout and
    detached worktrees (no branch line) are dropped.
    """
    entries = []
    current_path: Optional[str] = None
    current_branch: Optional[str] = None

    def _flush():
        if current_path and current_branch and f"{WORKTREES_DIR}/{BRANCH_PREFIX}" in current_path:
            entries.append(WorktreeEntry(
                path=current_path,
                branch=current_branch,
                task_id=extract_task_id(current_branch),
            ))

    for line in output.splitlines():
        if line.startswith("worktree "):
            _flush()
            current_path = line[len("worktree "):]
            current_branch = None
        elif line.startswith("branch "):
            ref = line[len("branch "):]
            current_branch = ref[len("refs/heads/"):] if ref.startswith("refs/heads/") else ref
    _flush()
    return entries


def scan_worktrees_dir(repo_path: Union[str, Path]) -> list[WorktreeEntry]:
    """List bd-* directories under .worktrees/ straight from the filesystem."""
    worktrees_dir = Path(repo_path) / WORKTREES_DIR
    if not worktrees_dir.is_dir():
        return []

    entries = []
    try:
        children = sorted(worktrees_dir.iterdir())
    except OSError as e:
        logger.warning("Cannot scan %s: %s", worktrees_dir, e)
        return []
    for child in children:
        if child.is_dir() and child.name.startswith(BRANCH_PREFIX):
            entries.append(WorktreeEntry(
                path=str(child),
                branch=child.name,
                task_id=extract_task_id(child.name),
            ))
    return entries


def merge_worktree_views(listed: list[WorktreeEntry], scanned: list[WorktreeEntry]) -> list[WorktreeEntry]:
    """Merge git's worktree list with the directory scan, keyed by path.

    git's entries come first and win. A scanned directory is appended only if
    no listed entry ends with its directory name, which recovers workspaces
    git has lost track of.
    """
    merged = list(listed)
    for entry in scanned:
        dir_name = os.path.basename(entry.path)
        if any(existing.path.rstrip("/").endswith(dir_name) for existing in merged):
            continue
        merged.append(entry)
    return merged


def list_workspaces(repo_path: Union[str, Path], git: Optional[GitPort] = None) -> list[WorktreeEntry]:
    git = git or GitCli()
    result = git.worktree_list(repo_path)
    if not result.ok:
        raise ToolError(f"Failed to list worktrees: {result.stderr}", stderr=result.stderr)
    return merge_worktree_views(parse_worktree_list(result.stdout), scan_worktrees_dir(repo_path))


def worktree_list(repo_path: Union[str, Path], git: Optional[GitPort] = None) -> dict[str, Any]:
    return {"worktrees": [entry.to_dict() for entry in list_workspaces(repo_path, git=git)]}
