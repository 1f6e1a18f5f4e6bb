#!/usr/bin/env python3
"""
Beads Worktree MCP Server

An MCP server that manages per-task git worktrees, their pull requests and
the rebasing of sibling worktrees after a merge, for repositories tracked with
beads.

Every tool answers with a JSON document. Failures carry an HTTP-style status
code: 400 bad input, 403 forbidden bd subcommand, 404 missing resource,
409 duplicate merged PR, 500 tool failure, 504 bd timeout.
"""

import asyncio
import json
import logging
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    Tool,
    TextContent,
    Resource,
    ResourceTemplate,
)

from .branch_tools import branch_status
from .config_tools import config_get_effective, get_config
from .errors import NotFoundError, PreconditionError, WorktreeError, validate_repo_path
from .issue_tools import bd_command
from .rebase_tools import rebase_siblings
from .resources import RESOURCE_DESCRIPTIONS, RESOURCE_TEMPLATES, resolve_resource
from .review_tools import MERGE_FLAGS, create_pr, merge_pr, pr_status
from .workspace_tools import (
    worktree_create,
    worktree_delete,
    worktree_list,
    worktree_status,
)

logger = logging.getLogger(__name__)

server = Server("beads-worktree-server")


def _schema(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


_REPO_PATH = {
    "type": "string",
    "description": "Absolute path to the git repository"
}
_TASK_ID = {
    "type": "string",
    "description": "Beads task identifier (e.g., 'BD-001'). The worktree lives at .worktrees/bd-<task_id>."
}


TOOLS = [
    Tool(
        name="worktree_status",
        description="Check whether a task's worktree exists and report its branch, ahead/behind counts vs main, dirty state and last modification time.",
        inputSchema=_schema({"repo_path": _REPO_PATH, "task_id": _TASK_ID}, ["repo_path", "task_id"])
    ),
    Tool(
        name="worktree_create",
        description="Create the worktree and bd-<task_id> branch for a task. Idempotent: reports already_existed when the worktree (or its branch) is already there.",
        inputSchema=_schema({
            "repo_path": _REPO_PATH,
            "task_id": _TASK_ID,
            "base_branch": {
                "type": "string",
                "description": "Branch to create the task branch from (default: main)"
            }
        }, ["repo_path", "task_id"])
    ),
    Tool(
        name="worktree_delete",
        description="Remove a task's worktree (forcing removal if it has local changes), then delete its branch and close the task. Succeeds if the worktree does not exist.",
        inputSchema=_schema({"repo_path": _REPO_PATH, "task_id": _TASK_ID}, ["repo_path", "task_id"])
    ),
    Tool(
        name="worktree_list",
        description="List all task worktrees of a repository, including .worktrees/bd-* directories git no longer tracks.",
        inputSchema=_schema({"repo_path": _REPO_PATH}, ["repo_path"])
    ),
    Tool(
        name="branch_status",
        description="Report whether a branch exists, how far it is ahead/behind main (or master), and whether the repository has uncommitted changes.",
        inputSchema=_schema({
            "repo_path": _REPO_PATH,
            "branch": {"type": "string", "description": "Branch name"}
        }, ["repo_path", "branch"])
    ),
    Tool(
        name="pr_status",
        description="Report remote/push state of a task's branch, its pull request (state, mergeable, CI checks) and the GitHub API rate limit.",
        inputSchema=_schema({"repo_path": _REPO_PATH, "task_id": _TASK_ID}, ["repo_path", "task_id"])
    ),
    Tool(
        name="pr_create",
        description="Open a pull request for a task's branch. Fails with status 409 if a merged PR for the branch already exists.",
        inputSchema=_schema({
            "repo_path": _REPO_PATH,
            "task_id": _TASK_ID,
            "title": {"type": "string", "description": "PR title"},
            "body": {"type": "string", "description": "PR body"}
        }, ["repo_path", "task_id", "title", "body"])
    ),
    Tool(
        name="pr_merge",
        description="Merge a task's pull request. The branch is not deleted; use worktree_delete for cleanup.",
        inputSchema=_schema({
            "repo_path": _REPO_PATH,
            "task_id": _TASK_ID,
            "merge_method": {
                "type": "string",
                "description": "Merge method (default from config: squash)",
                "enum": list(MERGE_FLAGS)
            }
        }, ["repo_path", "task_id"])
    ),
    Tool(
        name="rebase_siblings",
        description="After a merge, rebase every other task worktree whose task is 'inreview' onto origin/main and force-push with lease. Other tasks are skipped; one failure does not stop the rest.",
        inputSchema=_schema({
            "repo_path": _REPO_PATH,
            "exclude_task_id": {
                "type": "string",
                "description": "Task to leave alone, normally the one just merged"
            }
        }, ["repo_path", "exclude_task_id"])
    ),
    Tool(
        name="bd_command",
        description="Run a whitelisted bd subcommand (list, show, comment, update, close, create) with a 30 second timeout.",
        inputSchema=_schema({
            "args": {
                "type": "array",
                "items": {"type": "string"},
                "description": "bd arguments, starting with the subcommand"
            },
            "cwd": {"type": "string", "description": "Working directory"}
        }, ["args"])
    ),
    Tool(
        name="config_get_effective",
        description="Get the fully merged configuration (defaults, ~/.beads and <repo>/.beads worktree-config.yaml).",
        inputSchema=_schema({
            "project_dir": {"type": "string", "description": "Repository root (default: cwd)"}
        }, [])
    ),
]


_REPO_TOOLS = {
    "worktree_status",
    "worktree_create",
    "worktree_delete",
    "worktree_list",
    "branch_status",
    "pr_status",
    "pr_create",
    "pr_merge",
    "rebase_siblings",
}


def _required(arguments: dict[str, Any], name: str) -> Any:
    value = arguments.get(name)
    if value is None or value == "":
        raise PreconditionError(f"Missing required parameter: {name}")
    return value


def dispatch_tool(name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    """Run one tool call and return its JSON-ready result.

    Raises:
        WorktreeError: for any expected failure, with its status code.
    """
    if name == "config_get_effective":
        return config_get_effective(project_dir=arguments.get("project_dir"))

    if name == "bd_command":
        bd_config = get_config(arguments.get("cwd"))["bd"]
        return bd_command(
            args=_required(arguments, "args"),
            cwd=arguments.get("cwd"),
            allowed_commands=bd_config["allowed_commands"],
            timeout_seconds=bd_config["timeout_seconds"]
        )

    if name not in _REPO_TOOLS:
        raise NotFoundError(f"Unknown tool: {name}")

    repo = validate_repo_path(arguments.get("repo_path"))

    if name == "worktree_status":
        return worktree_status(repo, _required(arguments, "task_id"))
    elif name == "worktree_create":
        return worktree_create(
            repo,
            _required(arguments, "task_id"),
            base_branch=arguments.get("base_branch") or "main"
        )
    elif name == "worktree_delete":
        return worktree_delete(repo, _required(arguments, "task_id"))
    elif name == "worktree_list":
        return worktree_list(repo)
    elif name == "branch_status":
        return branch_status(
            repo,
            _required(arguments, "branch"),
            base_branches=get_config(str(repo))["base_branches"]
        )
    elif name == "pr_status":
        return pr_status(repo, _required(arguments, "task_id"))
    elif name == "pr_create":
        return create_pr(
            repo,
            _required(arguments, "task_id"),
            title=_required(arguments, "title"),
            body=arguments.get("body") or ""
        )
    elif name == "pr_merge":
        return merge_pr(
            repo,
            _required(arguments, "task_id"),
            merge_method=arguments.get("merge_method")
        )
    else:
        return rebase_siblings(repo, _required(arguments, "exclude_task_id"))


def run_tool(name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    """dispatch_tool, with errors turned into error payloads."""
    try:
        return dispatch_tool(name, arguments or {})
    except WorktreeError as e:
        logger.info("Tool %s failed (%d): %s", name, e.status_code, e.message)
        error = e.to_dict()
        error["tool"] = name
        return error
    except Exception as e:
        logger.exception(f"Error executing tool {name}")
        return {"error": str(e), "status": 500, "tool": name}


@server.list_tools()
async def list_tools() -> list[Tool]:
    return TOOLS


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    result = await asyncio.to_thread(run_tool, name, arguments)
    return [TextContent(type="text", text=json.dumps(result, indent=2))]


@server.list_resources()
async def list_resources() -> list[Resource]:
    return [
        Resource(uri=uri, **info)
        for uri, info in RESOURCE_DESCRIPTIONS.items()
    ]


@server.list_resource_templates()
async def list_resource_templates() -> list[ResourceTemplate]:
    return [
        ResourceTemplate(uriTemplate=template, **info)
        for template, info in RESOURCE_TEMPLATES.items()
    ]


@server.read_resource()
async def read_resource(uri: Any) -> str:
    return await asyncio.to_thread(resolve_resource, str(uri))


def configure_logging() -> None:
    level_name = str(get_config()["logging"]["level"]).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO))


async def async_main():
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options()
        )


def main():
    """Entry point for the MCP server."""
    configure_logging()
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
