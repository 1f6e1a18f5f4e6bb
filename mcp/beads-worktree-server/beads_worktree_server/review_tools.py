"""
Review Tools for Beads Worktree MCP Server

Pull request status, creation and merging for a task's branch through the
GitHub CLI. Nothing is cached: every call asks gh again.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from .branch_tools import has_remote, is_branch_pushed
from .config_tools import get_config
from .errors import ConflictError, ToolError
from .ports import GhCli, GitCli, GitPort, ReviewPort
from .workspace_tools import branch_name_for

logger = logging.getLogger(__name__)

MERGE_FLAGS = {
    "merge": "--merge",
    "squash": "--squash",
    "rebase": "--rebase",
}
DEFAULT_MERGE_METHOD = "squash"

PENDING_CHECK_STATES = {"QUEUED", "IN_PROGRESS"}
FAILED_CONCLUSIONS = {"FAILURE", "CANCELLED", "TIMED_OUT", "ACTION_REQUIRED"}
LEGACY_FAILED_CONCLUSIONS = {"FAILURE", "ERROR"}


@dataclass
class ChecksSummary:
    total: int = 0
    passed: int = 0
    failed: int = 0
    pending: int = 0

    @property
    def status(self) -> str:
        if self.failed > 0:
            return "failure"
        if self.pending > 0:
            return "pending"
        return "success"

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "pending": self.pending,
            "status": self.status,
        }


def parse_status_checks(rollup: Any) -> ChecksSummary:
    """Aggregate a statusCheckRollup array from `gh pr view`.

    Check runs report status QUEUED / IN_PROGRESS / COMPLETED with the outcome
    in `conclusion` once completed. Entries with any other status (legacy
    commit statuses) are judged on conclusion alone.
    """
    summary = ChecksSummary()
    if not isinstance(rollup, list):
        return summary

    for check in rollup:
        if not isinstance(check, dict):
            check = {}
        summary.total += 1
        status = check.get("status") or ""
        conclusion = check.get("conclusion") or ""

        if status in PENDING_CHECK_STATES:
            summary.pending += 1
        elif status == "COMPLETED":
            if conclusion == "SUCCESS":
                summary.passed += 1
            elif conclusion in FAILED_CONCLUSIONS:
                summary.failed += 1
            else:
                summary.pending += 1
        elif conclusion == "SUCCESS":
            summary.passed += 1
        elif conclusion in LEGACY_FAILED_CONCLUSIONS:
            summary.failed += 1
        else:
            summary.pending += 1
    return summary


def extract_pr_number(url: str) -> Optional[int]:
    """PR number from the last path segment of a PR URL."""
    last = url.strip().rsplit("/", 1)[-1]
    if not last.isascii():
        return None
    try:
        return int(last)
    except ValueError:
        return None


def get_rate_limit(repo_path: Union[str, Path], gh: Optional[ReviewPort] = None) -> dict[str, Any]:
    """Current GitHub API quota; remaining is -1 when it cannot be read."""
    gh = gh or GhCli()
    result = gh.rate_limit(repo_path)
    if result.ok:
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            try:
                return {
                    "remaining": int(data.get("remaining") or 0),
                    "limit": int(data.get("limit") or 5000),
                    "reset_at": datetime.fromtimestamp(int(data.get("reset") or 0), tz=timezone.utc).isoformat(),
                }
            except (TypeError, ValueError, OverflowError, OSError):
                logger.warning("Unexpected rate limit payload: %s", result.stdout.strip())

    return {"remaining": -1, "limit": 5000, "reset_at": ""}


def get_pr_info(
    repo_path: Union[str, Path],
    branch: str,
    gh: Optional[ReviewPort] = None
) -> Optional[dict[str, Any]]:
    gh = gh or GhCli()
    result = gh.view_pr(repo_path, branch)
    if not result.ok:
        return None
    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError:
        logger.warning("Unparsable gh pr view output for %s", branch)
        return None
    if not isinstance(data, dict):
        return None
    try:
        number = int(data.get("number") or 0)
    except (TypeError, ValueError):
        logger.warning("Unexpected PR number for %s: %r", branch, data.get("number"))
        return None

    return {
        "number": number,
        "url": data.get("url") or "",
        "state": str(data.get("state") or "UNKNOWN").lower(),
        "mergeable": data.get("mergeable") == "MERGEABLE",
        "checks": parse_status_checks(data.get("statusCheckRollup")).to_dict(),
    }


def pr_status(
    repo_path: Union[str, Path],
    task_id: str,
    git: Optional[GitPort] = None,
    gh: Optional[ReviewPort] = None
) -> dict[str, Any]:
    """Remote, push and pull request state for a task's branch.

    The rate limit is read before the PR lookup so a failing lookup does not
    skew the reported quota. The PR is looked up only once the branch is on
    the remote.

    Returns:
        {"has_remote", "branch_pushed", "rate_limit"} plus "pr" when a PR was
        found.
    """
    git = git or GitCli()
    gh = gh or GhCli()
    branch = branch_name_for(task_id)
    remote = get_config(str(repo_path))["remote"]

    remote_exists = has_remote(repo_path, git=git)
    pushed = is_branch_pushed(repo_path, branch, git=git, remote=remote) if remote_exists else False
    rate_limit = get_rate_limit(repo_path, gh=gh)

    status: dict[str, Any] = {
        "has_remote": remote_exists,
        "branch_pushed": pushed,
        "rate_limit": rate_limit,
    }
    if pushed:
        pr = get_pr_info(repo_path, branch, gh=gh)
        if pr is not None:
            status["pr"] = pr
    return status


def _find_merged_pr(repo_path: Union[str, Path], branch: str, gh: ReviewPort) -> Optional[dict]:
    result = gh.list_merged_prs(repo_path, branch)
    if not result.ok:
        # Lookup problems are not a reason to refuse creating the PR.
        logger.warning("Merged PR lookup failed for %s: %s", branch, result.stderr.strip())
        return None
    try:
        prs = json.loads(result.stdout or "[]")
    except json.JSONDecodeError:
        return None
    if isinstance(prs, list) and prs and isinstance(prs[0], dict):
        return prs[0]
    return None


def create_pr(
    repo_path: Union[str, Path],
    task_id: str,
    title: str,
    body: str,
    gh: Optional[ReviewPort] = None
) -> dict[str, Any]:
    """Open a pull request for a task's branch.

    Refuses when a merged PR for the same branch exists: that means the
    workspace was recreated without cleaning up after the earlier merge.

    Raises:
        ConflictError: a merged PR already exists for the branch.
        ToolError: gh failed to create the PR.
    """
    gh = gh or GhCli()
    branch = branch_name_for(task_id)

    merged = _find_merged_pr(repo_path, branch, gh)
    if merged is not None:
        raise ConflictError(
            f"A merged PR already exists for this branch: #{merged.get('number', 0)} "
            f"\"{merged.get('title', 'Unknown')}\". Clean up the worktree first."
        )

    result = gh.create_pr(repo_path, branch, title, body)
    if not result.ok:
        raise ToolError(result.stderr, stderr=result.stderr)

    pr_url = result.stdout.strip()
    logger.info("Created PR %s for %s", pr_url, branch)
    return {
        "success": True,
        "pr_number": extract_pr_number(pr_url),
        "pr_url": pr_url,
    }


def merge_pr(
    repo_path: Union[str, Path],
    task_id: str,
    merge_method: Optional[str] = None,
    gh: Optional[ReviewPort] = None
) -> dict[str, Any]:
    """Merge a task's pull request; unknown methods fall back to squash.

    The remote branch is left in place. Deleting it here would fail while the
    branch is still checked out in a workspace; worktree_delete cleans up.
    """
    gh = gh or GhCli()
    branch = branch_name_for(task_id)
    if not merge_method:
        merge_method = get_config(str(repo_path))["default_merge_method"]
    merge_flag = MERGE_FLAGS.get(merge_method, MERGE_FLAGS[DEFAULT_MERGE_METHOD])

    result = gh.merge_pr(repo_path, branch, merge_flag)
    if not result.ok:
        raise ToolError(result.stderr, stderr=result.stderr)
    return {"success": True, "merged": True}
