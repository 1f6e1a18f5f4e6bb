"""
MCP Resources for Beads Worktree Server

Provides URI-based access to workspace listings and configuration.

Resource URIs:
  - worktrees://list?repo_path={path}                      - Task workspaces of a repo
  - worktrees://status?repo_path={path}&task_id={id}       - One task's workspace status
  - config://effective                                     - Fully merged effective config
"""

import json
from typing import Any
from urllib.parse import parse_qs, urlparse

from .config_tools import config_get_effective
from .errors import PreconditionError, WorktreeError, validate_repo_path
from .workspace_tools import worktree_list, worktree_status


def _query_param(query: dict[str, list[str]], name: str) -> str:
    values = query.get(name)
    if not values or not values[0]:
        raise PreconditionError(f"Missing required parameter: {name}")
    return values[0]


def get_worktrees(repo_path: str) -> dict[str, Any]:
    repo = validate_repo_path(repo_path)
    listing = worktree_list(repo)
    listing["count"] = len(listing["worktrees"])
    listing["repo_path"] = str(repo)
    return listing


def get_worktree_status(repo_path: str, task_id: str) -> dict[str, Any]:
    repo = validate_repo_path(repo_path)
    return worktree_status(repo, task_id)


def resolve_resource(uri: str) -> str:
    if uri == "config://effective":
        return json.dumps(config_get_effective(), indent=2)

    parsed = urlparse(uri)
    if parsed.scheme == "worktrees":
        query = parse_qs(parsed.query)
        try:
            if parsed.netloc == "list":
                return json.dumps(get_worktrees(_query_param(query, "repo_path")), indent=2)
            if parsed.netloc == "status":
                return json.dumps(get_worktree_status(
                    _query_param(query, "repo_path"),
                    _query_param(query, "task_id"),
                ), indent=2)
        except WorktreeError as e:
            return json.dumps(e.to_dict(), indent=2)

    return json.dumps({"error": f"Unknown resource URI: {uri}"})


RESOURCE_DESCRIPTIONS = {
    "config://effective": {
        "name": "Effective configuration",
        "description": "Fully merged worktree server configuration from all sources",
        "mimeType": "application/json"
    }
}


RESOURCE_TEMPLATES = {
    "worktrees://list?repo_path={repo_path}": {
        "name": "Task workspaces",
        "description": "All bd-* worktrees of a repository, including ones git no longer lists",
        "mimeType": "application/json"
    },
    "worktrees://status?repo_path={repo_path}&task_id={task_id}": {
        "name": "Task workspace status",
        "description": "Existence, ahead/behind counts and dirty state of one task's worktree",
        "mimeType": "application/json"
    }
}
