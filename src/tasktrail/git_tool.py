"""
Git integration tool for tasktrail.

This module answers the two questions the completion detector asks about a
set of linked files: which of them are staged, and which of them are
committed. It also installs the git hooks that trigger detection.
"""

import logging
import os
import re
import stat
import subprocess
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .errors import GitProbeError

HOOK_MARKER = "# tasktrail hook"

# Keeps a single git invocation well under the OS argument limit.
_PATHS_PER_CALL = 200


class GitOperationResult:
    """Result of a Git operation."""

    def __init__(self, success: bool, output: str = "", error: str = "", data: Dict[str, Any] = None):
        self.success = success
        self.output = output
        self.error = error
        self.data = data or {}


class GitTool:
    """Git operations tool scoped to a project root."""

    def __init__(self, repo_path: Path = None, timeout: float = 5.0):
        self.repo_path = Path(repo_path) if repo_path else Path.cwd()
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    def _run_git_command(self, command: List[str], cwd: Path = None, strip: bool = True) -> GitOperationResult:
        """Run a Git command and return the result."""
        try:
            cwd = cwd or self.repo_path
            result = subprocess.run(
                ["git"] + command,
                cwd=cwd,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )

            output = result.stdout.strip() if strip else result.stdout
            if result.returncode == 0:
                return GitOperationResult(
                    success=True,
                    output=output,
                    data={"returncode": result.returncode}
                )
            else:
                return GitOperationResult(
                    success=False,
                    output=output,
                    error=result.stderr.strip(),
                    data={"returncode": result.returncode}
                )
        except subprocess.TimeoutExpired:
            return GitOperationResult(
                success=False,
                error=f"git {' '.join(command[:2])} timed out after {self.timeout}s",
                data={"timeout": True}
            )
        except (OSError, ValueError) as e:
            return GitOperationResult(
                success=False,
                error=str(e),
                data={"exception": str(e)}
            )

    def _probe(self, command: List[str]) -> List[str]:
        """Run a NUL-delimited listing command, raising GitProbeError on failure."""
        full_command = ["--literal-pathspecs"] + command
        result = self._run_git_command(full_command, strip=False)
        if not result.success:
            raise GitProbeError(
                f"git {command[0]} failed in {self.repo_path}: {result.error or 'unknown error'}",
                command=["git"] + full_command,
                stderr=result.error,
            )
        return [entry for entry in result.output.split("\0") if entry]

    def _probe_paths(self, command: List[str], paths: List[str]) -> set:
        listed = set()
        for start in range(0, len(paths), _PATHS_PER_CALL):
            chunk = paths[start:start + _PATHS_PER_CALL]
            listed.update(self._probe(command + ["--"] + chunk))
        return listed

    def is_git_repo(self) -> bool:
        """Check if the project root is inside a Git repository."""
        result = self._run_git_command(["rev-parse", "--git-dir"])
        return result.success

    def has_head(self) -> bool:
        """False for a repository with no commits yet."""
        result = self._run_git_command(["rev-parse", "--verify", "--quiet", "HEAD"])
        return result.success

    def staged_set(self, paths: Iterable[str]) -> set:
        """Return the subset of paths staged in the index relative to HEAD."""
        wanted = sorted(set(paths))
        if not wanted:
            return set()

        listed = self._probe_paths(["diff", "--cached", "--name-only", "--relative", "-z"], wanted)
        staged = {path for path in wanted if path in listed}
        self.logger.debug(f"{len(staged)}/{len(wanted)} paths staged in {self.repo_path}")
        return staged

    def committed_set(self, paths: Iterable[str]) -> set:
        """Return the subset of paths tracked in HEAD with no pending change."""
        wanted = sorted(set(paths))
        if not wanted:
            return set()
        if not self.has_head():
            return set()

        tracked = self._probe_paths(["ls-tree", "-r", "--name-only", "-z", "HEAD"], wanted)
        pending = self._probe_paths(["diff", "HEAD", "--name-only", "--relative", "-z"], wanted)
        committed = {path for path in wanted if path in tracked and path not in pending}
        self.logger.debug(f"{len(committed)}/{len(wanted)} paths committed in {self.repo_path}")
        return committed

    def get_repository_root(self) -> Optional[Path]:
        result = self._run_git_command(["rev-parse", "--show-toplevel"])
        if not result.success or not result.output:
            return None
        return Path(result.output)

    def get_remote_url(self, remote: str = "origin") -> Optional[str]:
        result = self._run_git_command(["remote", "get-url", remote])
        if not result.success or not result.output:
            return None
        return result.output

    def extract_project_name(self) -> str:
        """
        Derive a project name from the origin remote, the repository root,
        or the project directory, in that order.
        """
        remote_url = self.get_remote_url()
        if remote_url:
            name = re.sub(r"\.git$", "", remote_url.rstrip("/")).rsplit("/", 1)[-1]
            name = name.rsplit(":", 1)[-1]
            if name:
                return name

        root = self.get_repository_root()
        if root is not None and root.name:
            return root.name
        return self.repo_path.resolve().name

    def get_git_path(self, name: str) -> Optional[Path]:
        """Resolve a path inside the git directory (index, hooks)."""
        result = self._run_git_command(["rev-parse", "--git-path", name])
        if not result.success or not result.output:
            return None
        path = Path(result.output)
        if not path.is_absolute():
            path = self.repo_path / path
        return path

    def install_hook(self, name: str, body: str) -> GitOperationResult:
        """Install a git hook that runs ``body``, keeping any existing hook content."""
        if not self.is_git_repo():
            return GitOperationResult(success=False, error="Not a Git repository")

        hooks_dir = self.get_git_path("hooks")
        if hooks_dir is None:
            return GitOperationResult(success=False, error="Could not locate hooks directory")

        hooks_dir.mkdir(parents=True, exist_ok=True)
        hook_path = hooks_dir / name
        block = f"\n{HOOK_MARKER}\n{body.strip()}\n"

        if hook_path.exists():
            existing = hook_path.read_text()
            if HOOK_MARKER in existing:
                return GitOperationResult(
                    success=True,
                    output=f"{name} hook already installed",
                    data={"path": str(hook_path), "installed": False}
                )
            hook_path.write_text(existing.rstrip("\n") + "\n" + block)
        else:
            hook_path.write_text("#!/bin/sh\n" + block)

        mode = hook_path.stat().st_mode
        os.chmod(hook_path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        self.logger.info(f"Installed {name} hook at {hook_path}")
        return GitOperationResult(
            success=True,
            output=f"Installed {name} hook",
            data={"path": str(hook_path), "installed": True}
        )
