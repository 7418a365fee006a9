from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

RULES_DIR = Path(".cursor") / "rules"
RULE_SUFFIX = ".mdc"

FRONTMATTER_DELIMITER = "---"
FRONTMATTER_SCAN_LINES = 20
REQUIRED_FIELDS = ("description", "globs", "alwaysApply")
ALWAYS_APPLY_FIELD = "alwaysApply"
MIN_CONTENT_LINES = 10

RULE_CATEGORIES = (
    "coding",
    "project",
    "python",
    "javascript",
    "api",
    "database",
    "security",
    "testing",
    "devops",
)

# A category file whose globs mention none of these hints gets a review warning.
CATEGORY_GLOB_HINTS = {
    "python": ("*.py",),
    "javascript": ("*.js", "*.ts"),
    "api": ("api",),
    "testing": ("test",),
}

PROJECT_TYPES = ("none", "api", "frontend", "data", "cli")

CURSOR_GITIGNORE_MARKER = ".cursor/"
CURSOR_GITIGNORE_BLOCK = (
    "# Cursor rules (keep rules but ignore other cursor files)",
    ".cursor/*",
    "!.cursor/rules/",
)

DEFAULT_BASE_URL = "https://zeopoimfsxdidkyiucsr.supabase.co"
TRACK_COMMIT_RPC = "/rest/v1/rpc/track_git_commit"
DEFAULT_TIMEOUT_SECONDS = 10.0
ENV_LOCAL_FILE = ".env.local"
ENV_EXAMPLE_FILE = ".env.example"


def templates_root() -> Path:
    return Path(__file__).resolve().parent / "templates"


class TrackerSettings(BaseSettings):
    """Commit tracker settings read from the environment, `.env` and `.env.local`."""

    supabase_url: str = Field(default=DEFAULT_BASE_URL, description="Tracking backend base URL")
    supabase_anon_key: Optional[SecretStr] = Field(default=None, description="API key sent as apikey and bearer token")
    project_name: str = Field(default="", description="Default project name for tracked commits")
    timeout: float = Field(
        default=DEFAULT_TIMEOUT_SECONDS,
        gt=0,
        validation_alias="RULEKIT_TIMEOUT",
        description="HTTP timeout in seconds",
    )

    model_config = SettingsConfigDict(
        env_file=(".env", ENV_LOCAL_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def api_key(self) -> str:
        if self.supabase_anon_key is None:
            return ""
        return self.supabase_anon_key.get_secret_value().strip()

    @property
    def rpc_url(self) -> str:
        return self.supabase_url.rstrip("/") + TRACK_COMMIT_RPC
