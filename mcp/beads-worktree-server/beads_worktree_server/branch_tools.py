"""
Branch and Remote Inspection Tools

Read-only probes of branch and remote state. None of them raise on a failed
git call: "could not determine" is reported as zero / False, the same as a
genuine zero / False.
"""

from pathlib import Path
from typing import Any, Optional, Sequence, Union

from .ports import GitCli, GitPort

DEFAULT_BASE_BRANCHES = ("main", "master")
DEFAULT_REMOTE = "origin"


def get_ahead_behind(
    repo_path: Union[str, Path],
    branch: str,
    git: Optional[GitPort] = None,
    base_branches: Optional[Sequence[str]] = None
) -> tuple[int, int]:
    """Count commits of `branch` ahead of / behind the first usable base branch.

    Base candidates are tried in order; the first comparison that succeeds and
    parses wins. Returns (0, 0) if none does.
    """
    git = git or GitCli()
    for base in base_branches or DEFAULT_BASE_BRANCHES:
        result = git.rev_list_counts(repo_path, base, branch)
        if not result.ok:
            continue
        parts = result.stdout.strip().split("\t")
        if len(parts) != 2:
            continue
        # Left side of base...branch is what base has that branch lacks.
        behind = _parse_count(parts[0])
        ahead = _parse_count(parts[1])
        return ahead, behind
    return 0, 0


def _parse_count(text: str) -> int:
    try:
        return int(text.strip())
    except ValueError:
        return 0


def is_dirty(path: Union[str, Path], git: Optional[GitPort] = None) -> bool:
    git = git or GitCli()
    result = git.status_porcelain(path)
    return result.ok and bool(result.stdout)


def has_remote(repo_path: Union[str, Path], git: Optional[GitPort] = None) -> bool:
    git = git or GitCli()
    result = git.remotes(repo_path)
    return result.ok and bool(result.stdout)


def is_branch_pushed(
    repo_path: Union[str, Path],
    branch: str,
    git: Optional[GitPort] = None,
    remote: str = DEFAULT_REMOTE
) -> bool:
    git = git or GitCli()
    result = git.ls_remote_heads(repo_path, remote, branch)
    return result.ok and bool(result.stdout.strip())


def branch_exists(repo_path: Union[str, Path], branch: str, git: Optional[GitPort] = None) -> bool:
    git = git or GitCli()
    return git.branch_verify(repo_path, branch).ok


def branch_status(
    repo_path: Union[str, Path],
    branch: str,
    git: Optional[GitPort] = None,
    base_branches: Optional[Sequence[str]] = None
) -> dict[str, Any]:
    """Existence, ahead/behind counts and dirty flag for a branch.

    Args:
        repo_path: Repository root.
        branch: Branch to inspect.
        git: GitPort to use. Defaults to the git CLI.
        base_branches: Ordered base-branch candidates for the comparison.

    Returns:
        {"exists", "ahead", "behind", "dirty"}; all zero / False when the
        branch does not exist.
    """
    git = git or GitCli()
    if not branch_exists(repo_path, branch, git=git):
        return {"exists": False, "ahead": 0, "behind": 0, "dirty": False}

    ahead, behind = get_ahead_behind(repo_path, branch, git=git, base_branches=base_branches)
    return {
        "exists": True,
        "ahead": ahead,
        "behind": behind,
        "dirty": is_dirty(repo_path, git=git),
    }
