"""
Error Types for Beads Worktree MCP Server

Every error raised by a tool carries the status code the tool surface reports
for it. Tool output that selects a recovery path (instead of failing) is
matched here and nowhere else, so a change in git's wording only needs an
update to RECOVERY_PATTERNS.
"""

from pathlib import Path
from typing import Optional


class WorktreeError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "status": self.status_code}


class PreconditionError(WorktreeError):
    """Bad or missing input detected before any subprocess runs."""
    status_code = 400


class ForbiddenError(WorktreeError):
    status_code = 403


class NotFoundError(WorktreeError):
    status_code = 404


class ConflictError(WorktreeError):
    status_code = 409


class ToolError(WorktreeError):
    """A git/gh/bd invocation failed with no defined fallback."""

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


class CommandTimeoutError(WorktreeError):
    status_code = 504


# ============================================================================
# Recovery table
# ============================================================================

ATTACH_EXISTING_BRANCH = "attach_existing_branch"
FORCE_REMOVE = "force_remove"

# (stderr substring, recovery action). First match wins.
RECOVERY_PATTERNS = [
    ("already exists", ATTACH_EXISTING_BRANCH),
    ("contains modified or untracked files", FORCE_REMOVE),
]


def match_recovery(stderr: str) -> Optional[str]:
    """Return the recovery action selected by a failed command's stderr."""
    for pattern, action in RECOVERY_PATTERNS:
        if pattern in stderr:
            return action
    return None


def validate_repo_path(repo_path: Optional[str]) -> Path:
    """Resolve the repository path or raise PreconditionError."""
    if not repo_path:
        raise PreconditionError("Missing required parameter: repo_path")
    path = Path(repo_path)
    if not path.exists():
        raise PreconditionError(f"Repository path does not exist: {repo_path}")
    if not path.is_dir():
        raise PreconditionError(f"Path is not a directory: {repo_path}")
    return path
