"""
Issue Tracker Tools

Read-only task status lookup from the beads issue store
(.beads/issues.jsonl) and whitelisted execution of `bd` subcommands.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

from .config_tools import DEFAULT_CONFIG
from .errors import ForbiddenError, PreconditionError, ToolError
from .ports import BeadsCli, IssuePort

logger = logging.getLogger(__name__)

ISSUES_FILE = Path(".beads") / "issues.jsonl"
UNKNOWN_STATUS = "unknown"
REVIEW_STATUS = "inreview"


def get_task_status(repo_path: Union[str, Path], task_id: str) -> str:
    """Return a task's status, or "unknown" if it cannot be read.

    Scans the line-delimited issue file and looks only at each record's id and
    status; blank and malformed lines are skipped.
    """
    issues_path = Path(repo_path) / ISSUES_FILE
    try:
        with open(issues_path) as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if not isinstance(record, dict):
                    continue
                if record.get("id") == task_id and isinstance(record.get("status"), str):
                    return record["status"]
    except (OSError, UnicodeDecodeError) as e:
        logger.debug("Cannot read %s: %s", issues_path, e)
    return UNKNOWN_STATUS


def bd_command(
    args: list[str],
    cwd: Optional[str] = None,
    issues: Optional[IssuePort] = None,
    allowed_commands: Optional[list[str]] = None,
    timeout_seconds: Optional[float] = None
) -> dict[str, Any]:
    """Run a whitelisted `bd` subcommand with a fixed timeout.

    Args:
        args: Arguments for bd; the first one is the subcommand.
        cwd: Working directory. Defaults to the current directory.
        issues: IssuePort to use. Defaults to the bd CLI.
        allowed_commands: Permitted subcommands.
        timeout_seconds: Upper bound on the call.

    Returns:
        {"stdout", "stderr", "code"} from the command, whatever its exit code.
    """
    bd_defaults = DEFAULT_CONFIG["bd"]
    allowed = allowed_commands if allowed_commands is not None else bd_defaults["allowed_commands"]
    timeout = timeout_seconds if timeout_seconds is not None else bd_defaults["timeout_seconds"]

    if not args:
        raise PreconditionError("No arguments provided. Expected a bd subcommand.")

    subcommand = args[0]
    if subcommand not in allowed:
        raise ForbiddenError(
            f"Command '{subcommand}' is not allowed. Allowed commands: {', '.join(allowed)}"
        )

    if cwd:
        work_dir = Path(cwd)
        if not work_dir.exists():
            raise PreconditionError(f"Working directory does not exist: {cwd}")
        if not work_dir.is_dir():
            raise PreconditionError(f"Path is not a directory: {cwd}")
    else:
        work_dir = Path.cwd()

    issues = issues or BeadsCli()
    result = issues.run(list(args), cwd=work_dir, timeout=timeout)
    if not result.spawned:
        raise ToolError(result.stderr, stderr=result.stderr)
    return {
        "stdout": result.stdout,
        "stderr": result.stderr,
        "code": result.returncode,
    }
