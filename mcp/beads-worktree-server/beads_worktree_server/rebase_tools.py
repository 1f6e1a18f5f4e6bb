"""
Sibling Rebase Tools

After one task's PR merges, the other workspaces that are waiting in review
are rebased onto the updated base and force-pushed (with lease). Each sibling
is handled on its own: a conflict or push failure is recorded for that
sibling and the batch moves on.

Only tasks whose status is exactly "inreview" are touched. Open or in-progress
work is never rebased or force-pushed underneath whoever is working on it.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from .config_tools import get_config
from .errors import ToolError
from .issue_tools import REVIEW_STATUS, get_task_status
from .ports import GitCli, GitPort
from .workspace_tools import WorktreeEntry, branch_name_for, list_workspaces

logger = logging.getLogger(__name__)


@dataclass
class RebaseOutcome:
    task_id: str
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"task_id": self.task_id, "success": self.success}
        if self.error is not None:
            data["error"] = self.error
        return data


def select_siblings(entries: list[WorktreeEntry], exclude_task_id: str) -> list[WorktreeEntry]:
    """Drop the excluded task and entries with no task id (the primary checkout)."""
    return [e for e in entries if e.task_id is not None and e.task_id != exclude_task_id]


def rebase_worktree(
    worktree_path: Union[str, Path],
    task_id: str,
    git: GitPort,
    remote: str = "origin",
    rebase_target: str = "origin/main"
) -> RebaseOutcome:
    """Fetch, rebase and push one workspace. Never raises for git failures.

    A directory without its own .git entry is not a worktree: git would walk
    up to the primary checkout and rebase whatever branch is checked out there.
    """
    if not (Path(worktree_path) / ".git").exists():
        return RebaseOutcome(task_id, False, f"Not a git worktree: {worktree_path}")

    fetched = git.fetch(worktree_path, remote)
    if not fetched.ok:
        return RebaseOutcome(task_id, False, f"Failed to fetch: {fetched.stderr}")

    rebased = git.rebase(worktree_path, rebase_target)
    if not rebased.ok:
        aborted = git.rebase_abort(worktree_path)
        if not aborted.ok:
            logger.warning("rebase --abort failed in %s: %s", worktree_path, aborted.stderr.strip())
        return RebaseOutcome(task_id, False, f"Rebase conflict: {rebased.stderr}")

    pushed = git.push_force_with_lease(worktree_path, remote, branch_name_for(task_id))
    if not pushed.ok:
        return RebaseOutcome(task_id, False, f"Push failed: {pushed.stderr}")

    return RebaseOutcome(task_id, True)


def rebase_siblings(
    repo_path: Union[str, Path],
    exclude_task_id: str,
    git: Optional[GitPort] = None
) -> dict[str, Any]:
    """Rebase every sibling workspace that is in review onto the fresh base.

    Args:
        repo_path: Repository root.
        exclude_task_id: Task to leave alone, normally the one just merged.
        git: GitPort to use. Defaults to the git CLI.

    Returns:
        {"results": [...], "skipped": [...]} where results holds one outcome
        per attempted sibling and skipped lists the task ids not in review.

    Raises:
        ToolError: listing the worktrees or the initial fetch failed; no
            sibling has been touched in that case.
    """
    git = git or GitCli()
    config = get_config(str(repo_path))
    remote = config["remote"]
    rebase_target = config["rebase_target"]

    siblings = select_siblings(list_workspaces(repo_path, git=git), exclude_task_id)

    # Every sibling rebase relies on up-to-date remote refs.
    fetched = git.fetch(repo_path, remote)
    if not fetched.ok:
        raise ToolError(f"Failed to fetch from {remote}: {fetched.stderr}", stderr=fetched.stderr)

    results = []
    skipped = []
    for sibling in siblings:
        status = get_task_status(repo_path, sibling.task_id)
        if status != REVIEW_STATUS:
            logger.info("Skipping rebase for %s (status: %s)", sibling.task_id, status)
            skipped.append(sibling.task_id)
            continue

        outcome = rebase_worktree(sibling.path, sibling.task_id, git, remote=remote, rebase_target=rebase_target)
        if outcome.success:
            logger.info("Rebased %s onto %s", sibling.task_id, rebase_target)
        else:
            logger.warning("Rebase of %s failed: %s", sibling.task_id, outcome.error)
        results.append(outcome)

    return {
        "results": [outcome.to_dict() for outcome in results],
        "skipped": skipped,
    }
