"""
Worktree Resolution
===================

Maps a feature's branch to the git worktree checked out for it.

Features without a branch run in the project root. Features with a branch
run in that branch's worktree when one exists; otherwise they fall back to
the project root with a warning. Creating worktrees is outside this module.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

_logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 10.0
BRANCH_REF_PREFIX = "refs/heads/"


@dataclass
class WorktreeInfo:
    path: str
    head: Optional[str] = None
    branch: Optional[str] = None
    bare: bool = False
    detached: bool = False


def parse_worktree_list(output: str) -> list[WorktreeInfo]:
    """Parse `git worktree list --porcelain` output (blank-line separated records)."""
    worktrees: list[WorktreeInfo] = []
    current: Optional[WorktreeInfo] = None

    for line in output.splitlines():
        if line.startswith("worktree "):
            if current:
                worktrees.append(current)
            current = WorktreeInfo(path=line[len("worktree "):].strip())
        elif current is None:
            continue
        elif line.startswith("HEAD "):
            current.head = line[len("HEAD "):].strip()
        elif line.startswith("branch "):
            ref = line[len("branch "):].strip()
            current.branch = ref[len(BRANCH_REF_PREFIX):] if ref.startswith(BRANCH_REF_PREFIX) else ref
        elif line == "bare":
            current.bare = True
        elif line == "detached":
            current.detached = True
        elif line == "" and current:
            worktrees.append(current)
            current = None

    if current:
        worktrees.append(current)
    return worktrees


async def list_worktrees(project_path: str) -> list[WorktreeInfo]:
    """
    Run git in project_path and return its worktrees.

    Raises:
        RuntimeError: git failed or timed out
    """
    try:
        process = await asyncio.create_subprocess_exec(
            "git", "worktree", "list", "--porcelain",
            cwd=project_path,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=GIT_TIMEOUT_SECONDS)
    except (OSError, asyncio.TimeoutError) as e:
        raise RuntimeError(f"git worktree list failed: {e}") from e

    if process.returncode != 0:
        raise RuntimeError(
            f"git worktree list failed: {stderr.decode('utf-8', errors='replace').strip()}"
        )
    return parse_worktree_list(stdout.decode("utf-8", errors="replace"))


async def resolve_working_directory(project_path: str, branch_name: Optional[str]) -> str:
    """Return the directory a feature should run in."""
    if not branch_name:
        return project_path

    try:
        worktrees = await list_worktrees(project_path)
    except RuntimeError as e:
        _logger.warning(
            "Could not list worktrees for %s, using project root: %s", project_path, e
        )
        return project_path

    for worktree in worktrees:
        if worktree.branch == branch_name:
            _logger.debug("Branch %s is checked out at %s", branch_name, worktree.path)
            return worktree.path

    _logger.warning(
        "No worktree found for branch %s, running in project root %s", branch_name, project_path
    )
    return project_path
