from __future__ import annotations

import logging
import shlex
import stat
import sys
from dataclasses import dataclass
from pathlib import Path

import httpx
import pydantic
from git import Repo
from git.exc import BadName, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from .config import ENV_EXAMPLE_FILE, ENV_LOCAL_FILE, TrackerSettings
from .scaffold import append_gitignore_block, render_template

logger = logging.getLogger(__name__)

HOOK_NAME = "post-commit"


class TrackerError(RuntimeError):
    pass


class TrackerConfigError(TrackerError):
    pass


@dataclass(frozen=True)
class CommitRecord:
    project_name: str
    commit_hash: str
    message: str
    author_name: str
    author_email: str
    committed_at: str
    files_changed: tuple[str, ...]
    lines_added: int = 0
    lines_deleted: int = 0

    def to_payload(self) -> dict:
        return {
            "p_project_name": self.project_name,
            "p_commit_hash": self.commit_hash,
            "p_commit_message": self.message,
            "p_author_name": self.author_name,
            "p_author_email": self.author_email,
            "p_committed_at": self.committed_at,
            "p_files_changed": list(self.files_changed),
            "p_lines_added": self.lines_added,
            "p_lines_deleted": self.lines_deleted,
        }


@dataclass(frozen=True)
class HookInstallReport:
    hook_path: Path
    project_name: str
    base_url: str
    env_example_created: bool
    gitignore_updated: bool


def _open_repo(repo_path: Path) -> Repo:
    try:
        return Repo(repo_path, search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError) as error:
        raise TrackerError(f"Not a git repository: {repo_path}") from error


def _split_nul(output: str) -> list[str]:
    return [item for item in output.split("\0") if item]


def sum_numstat(output: str) -> tuple[int, int]:
    """Sum added/deleted counts of `git diff --numstat` output.

    Binary files report `-` instead of numbers and contribute nothing.
    """
    added = 0
    deleted = 0
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        if parts[0].isdigit():
            added += int(parts[0])
        if parts[1].isdigit():
            deleted += int(parts[1])
    return added, deleted


def collect_commit(repo_path: Path, project_name: str, rev: str = "HEAD") -> CommitRecord:
    repo = _open_repo(repo_path)
    try:
        commit = repo.commit(rev)
        if commit.parents:
            parent = commit.parents[0].hexsha
            files = _split_nul(repo.git.diff("--name-only", "-z", parent, commit.hexsha))
            added, deleted = sum_numstat(repo.git.diff("--numstat", parent, commit.hexsha))
        else:
            # First commit: report everything that is tracked.
            files = _split_nul(repo.git.ls_files("-z"))
            added, deleted = 0, 0
    except (BadName, GitCommandError, ValueError) as error:
        raise TrackerError(f"Could not read commit {rev}: {error}") from error

    message = commit.message
    if isinstance(message, bytes):
        message = message.decode("utf-8", errors="replace")

    record = CommitRecord(
        project_name=project_name,
        commit_hash=commit.hexsha,
        message=message.rstrip("\n"),
        author_name=commit.author.name or "",
        author_email=commit.author.email or "",
        committed_at=commit.committed_datetime.isoformat(),
        files_changed=tuple(files),
        lines_added=added,
        lines_deleted=deleted,
    )
    logger.debug(
        "Collected commit %s: %d files, +%d -%d",
        record.commit_hash,
        len(record.files_changed),
        record.lines_added,
        record.lines_deleted,
    )
    return record


def load_settings() -> TrackerSettings:
    """Load tracker settings, reporting malformed values as a configuration error."""
    try:
        return TrackerSettings()
    except pydantic.ValidationError as error:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}" for item in error.errors()
        )
        raise TrackerConfigError(f"Invalid tracker configuration: {problems}") from error


def _require_api_key(settings: TrackerSettings) -> str:
    api_key = settings.api_key
    if not api_key:
        raise TrackerConfigError(
            f"SUPABASE_ANON_KEY is not set. Export it or add it to {ENV_LOCAL_FILE} "
            "so commits can be tracked."
        )
    return api_key


def submit_commit(record: CommitRecord, settings: TrackerSettings) -> int:
    """POST one commit to the tracking endpoint and return the HTTP status.

    The response body is ignored and failed requests are not retried.
    """
    api_key = _require_api_key(settings)
    headers = {
        "apikey": api_key,
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    url = settings.rpc_url
    logger.debug("Posting commit %s to %s", record.commit_hash, url)
    try:
        response = httpx.post(url, json=record.to_payload(), headers=headers, timeout=settings.timeout)
    except httpx.TimeoutException as error:
        raise TrackerError(f"Timed out after {settings.timeout:g}s posting to {url}") from error
    except httpx.HTTPError as error:
        raise TrackerError(f"Could not reach {url}: {error}") from error

    if not 200 <= response.status_code < 300:
        raise TrackerError(f"Tracking endpoint returned HTTP {response.status_code}")
    return response.status_code


def install_hook(repo_path: Path, project_name: str, settings: TrackerSettings) -> HookInstallReport:
    _require_api_key(settings)

    repo = _open_repo(repo_path)
    if repo.bare or repo.working_tree_dir is None:
        raise TrackerError(f"Cannot install hooks into a bare repository: {repo.git_dir}")
    root = Path(repo.working_tree_dir)

    hooks_dir = Path(repo.git_dir) / "hooks"
    hooks_dir.mkdir(parents=True, exist_ok=True)
    hook_path = hooks_dir / HOOK_NAME
    hook_path.write_text(
        render_template(
            "hooks/post-commit.j2",
            python=shlex.quote(sys.executable),
            project_name=shlex.quote(project_name),
        ),
        encoding="utf-8",
    )
    hook_path.chmod(hook_path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    logger.info("Installed %s hook at %s", HOOK_NAME, hook_path)

    env_example = root / ENV_EXAMPLE_FILE
    env_example_created = False
    if not env_example.exists():
        env_example.write_text(
            render_template("env.example.j2", base_url=settings.supabase_url, project_name=project_name),
            encoding="utf-8",
        )
        env_example_created = True

    gitignore_updated = append_gitignore_block(
        root / ".gitignore",
        marker=ENV_LOCAL_FILE,
        lines=("# Environment variables", ENV_LOCAL_FILE),
    )

    return HookInstallReport(
        hook_path=hook_path,
        project_name=project_name,
        base_url=settings.supabase_url,
        env_example_created=env_example_created,
        gitignore_updated=gitignore_updated,
    )
