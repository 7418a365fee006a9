import os
from datetime import datetime
from pathlib import Path
from unittest.mock import Mock, patch

import httpx
import pytest
from git import Actor, Repo

from rulekit.config import TrackerSettings
from rulekit.tracker import (
    CommitRecord,
    TrackerConfigError,
    TrackerError,
    collect_commit,
    install_hook,
    load_settings,
    submit_commit,
    sum_numstat,
)

AUTHOR = Actor("Ada Lovelace", "ada@example.com")


def _settings(api_key: str = "secret-key") -> TrackerSettings:
    return TrackerSettings(
        _env_file=None,
        supabase_url="https://example.supabase.co/",
        supabase_anon_key=api_key,
        RULEKIT_TIMEOUT=5,
    )


def _commit(repo: Repo, files: dict[str, str], message: str):
    root = Path(repo.working_tree_dir)
    for name, content in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    repo.index.add([str(root / name) for name in files])
    return repo.index.commit(message, author=AUTHOR, committer=AUTHOR)


def _record() -> CommitRecord:
    return CommitRecord(
        project_name="demo",
        commit_hash="a" * 40,
        message="feat: add thing\n\nLonger body",
        author_name="Ada Lovelace",
        author_email="ada@example.com",
        committed_at="2026-01-02T03:04:05+00:00",
        files_changed=("README.md", "src/app.py"),
        lines_added=7,
        lines_deleted=2,
    )


@pytest.fixture
def repo(tmp_path: Path) -> Repo:
    return Repo.init(tmp_path / "project")


def test_initial_commit_lists_tracked_files(repo: Repo):
    commit = _commit(repo, {"README.md": "a\nb\nc\n", "src/app.py": "print('hi')\n"}, "Initial commit")

    record = collect_commit(Path(repo.working_tree_dir), "demo")

    assert record.commit_hash == commit.hexsha
    assert len(record.commit_hash) == 40
    assert record.files_changed == ("README.md", "src/app.py")
    assert record.lines_added == 0
    assert record.lines_deleted == 0


def test_commit_with_parent_uses_diff(repo: Repo):
    _commit(repo, {"README.md": "a\nb\nc\n", "src/app.py": "print('hi')\n"}, "Initial commit")
    _commit(repo, {"README.md": "a\nB\nc\nd\n", "docs/guide.md": "x\ny\n"}, "docs: expand readme\n\nAdds a guide.")

    record = collect_commit(Path(repo.working_tree_dir), "demo")

    assert record.files_changed == ("README.md", "docs/guide.md")
    assert record.lines_added == 4
    assert record.lines_deleted == 1
    assert record.message == "docs: expand readme\n\nAdds a guide."
    assert record.author_name == "Ada Lovelace"
    assert record.author_email == "ada@example.com"
    assert datetime.fromisoformat(record.committed_at).tzinfo is not None


def test_collect_commit_outside_repository(tmp_path: Path):
    plain = tmp_path / "plain"
    plain.mkdir()

    with pytest.raises(TrackerError):
        collect_commit(plain, "demo")


def test_sum_numstat_skips_binary_entries():
    output = "3\t1\tsrc/app.py\n-\t-\tassets/logo.png\n10\t0\tREADME.md\n"

    assert sum_numstat(output) == (13, 1)
    assert sum_numstat("") == (0, 0)


def test_payload_field_names():
    payload = _record().to_payload()

    assert set(payload) == {
        "p_project_name",
        "p_commit_hash",
        "p_commit_message",
        "p_author_name",
        "p_author_email",
        "p_committed_at",
        "p_files_changed",
        "p_lines_added",
        "p_lines_deleted",
    }
    assert payload["p_files_changed"] == ["README.md", "src/app.py"]
    assert payload["p_lines_added"] == 7


@patch("rulekit.tracker.httpx.post")
def test_submit_commit_success(mock_post):
    mock_response = Mock()
    mock_response.status_code = 204
    mock_post.return_value = mock_response

    status = submit_commit(_record(), _settings())

    assert status == 204
    mock_post.assert_called_once()
    args, kwargs = mock_post.call_args
    assert args[0] == "https://example.supabase.co/rest/v1/rpc/track_git_commit"
    assert kwargs["headers"]["apikey"] == "secret-key"
    assert kwargs["headers"]["Authorization"] == "Bearer secret-key"
    assert kwargs["headers"]["Content-Type"] == "application/json"
    assert kwargs["json"]["p_commit_hash"] == "a" * 40
    assert kwargs["timeout"] == 5


@patch("rulekit.tracker.httpx.post")
def test_submit_commit_non_2xx(mock_post):
    mock_response = Mock()
    mock_response.status_code = 500
    mock_post.return_value = mock_response

    with pytest.raises(TrackerError, match="HTTP 500"):
        submit_commit(_record(), _settings())


@patch("rulekit.tracker.httpx.post")
def test_submit_commit_network_error(mock_post):
    mock_post.side_effect = httpx.ConnectError("Network error")

    with pytest.raises(TrackerError, match="Could not reach"):
        submit_commit(_record(), _settings())


@patch("rulekit.tracker.httpx.post")
def test_submit_commit_timeout(mock_post):
    mock_post.side_effect = httpx.ReadTimeout("too slow")

    with pytest.raises(TrackerError, match="Timed out"):
        submit_commit(_record(), _settings())


@patch("rulekit.tracker.httpx.post")
def test_submit_commit_requires_api_key(mock_post):
    with pytest.raises(TrackerConfigError):
        submit_commit(_record(), _settings(api_key=""))

    mock_post.assert_not_called()


def test_install_hook_writes_hook_and_env_example(repo: Repo):
    root = Path(repo.working_tree_dir)
    (root / ".gitignore").write_text("__pycache__/\n", encoding="utf-8")

    report = install_hook(root, "demo", _settings())

    hook = root / ".git" / "hooks" / "post-commit"
    assert report.hook_path == hook
    assert os.access(hook, os.X_OK)
    content = hook.read_text(encoding="utf-8")
    assert content.startswith("#!/bin/sh")
    assert "-m rulekit.cli track-commit --project demo" in content

    assert report.env_example_created is True
    env_example = (root / ".env.example").read_text(encoding="utf-8")
    assert "SUPABASE_ANON_KEY=your_anon_key_here" in env_example
    assert "PROJECT_NAME=demo" in env_example

    assert report.gitignore_updated is True
    assert (root / ".gitignore").read_text(encoding="utf-8").count(".env.local") == 1


def test_install_hook_is_idempotent_for_local_files(repo: Repo):
    root = Path(repo.working_tree_dir)
    (root / ".gitignore").write_text("", encoding="utf-8")
    (root / ".env.example").write_text("CUSTOM=1\n", encoding="utf-8")

    install_hook(root, "demo", _settings())
    second = install_hook(root, "demo", _settings())

    assert second.env_example_created is False
    assert second.gitignore_updated is False
    assert (root / ".env.example").read_text(encoding="utf-8") == "CUSTOM=1\n"
    assert (root / ".gitignore").read_text(encoding="utf-8").count(".env.local") == 1


def test_install_hook_without_api_key_writes_nothing(repo: Repo):
    root = Path(repo.working_tree_dir)

    with pytest.raises(TrackerConfigError):
        install_hook(root, "demo", _settings(api_key="  "))

    assert not (root / ".git" / "hooks" / "post-commit").exists()
    assert not (root / ".env.example").exists()


def test_timeout_reads_only_rulekit_timeout(monkeypatch):
    monkeypatch.setenv("TIMEOUT", "0.001")
    monkeypatch.delenv("RULEKIT_TIMEOUT", raising=False)

    assert TrackerSettings(_env_file=None).timeout == 10.0

    monkeypatch.setenv("RULEKIT_TIMEOUT", "2.5")
    assert TrackerSettings(_env_file=None).timeout == 2.5


@pytest.mark.parametrize("value", ["soon", "0", "-3"])
def test_load_settings_rejects_bad_timeout(tmp_path: Path, monkeypatch, value: str):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("RULEKIT_TIMEOUT", value)

    with pytest.raises(TrackerConfigError, match="(?i)rulekit_timeout"):
        load_settings()


def test_load_settings_reads_env_local(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)
    monkeypatch.delenv("RULEKIT_TIMEOUT", raising=False)
    (tmp_path / ".env.local").write_text("SUPABASE_ANON_KEY=from-file\nRULEKIT_TIMEOUT=7\n", encoding="utf-8")

    settings = load_settings()

    assert settings.api_key == "from-file"
    assert settings.timeout == 7.0
