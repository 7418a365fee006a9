from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from .config import CURSOR_GITIGNORE_BLOCK, CURSOR_GITIGNORE_MARKER, PROJECT_TYPES, RULES_DIR, templates_root

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InitOptions:
    target_root: Path
    project_name: str = ""
    project_type: str = "none"
    include_profile: bool = True
    update_gitignore: bool = True
    author: str = ""
    force: bool = False


@dataclass(frozen=True)
class InitReport:
    rules_dir: Path
    created: tuple[str, ...]
    skipped: tuple[str, ...]
    gitignore_updated: bool


class ScaffoldError(RuntimeError):
    pass


def _environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(templates_root())),
        undefined=StrictUndefined,
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
    )


def render_template(template_name: str, **context) -> str:
    rendered = _environment().get_template(template_name).render(**context)
    return rendered + ("\n" if not rendered.endswith("\n") else "")


def _iter_template_files(base: Path) -> Iterable[Path]:
    if not base.exists():
        return []
    return sorted(path for path in base.glob("*.j2") if path.is_file())


def append_gitignore_block(gitignore: Path, marker: str, lines: tuple[str, ...]) -> bool:
    """Append `lines` to an existing .gitignore unless `marker` is already mentioned."""
    if not gitignore.is_file():
        return False
    content = gitignore.read_text(encoding="utf-8")
    if marker in content:
        return False

    prefix = "" if not content or content.endswith("\n") else "\n"
    with gitignore.open("a", encoding="utf-8") as handle:
        handle.write(prefix + "\n" + "\n".join(lines) + "\n")
    logger.info("Added %s to %s", marker, gitignore)
    return True


def _template_scopes(options: InitOptions) -> list[str]:
    scopes = ["core"]
    if options.include_profile:
        scopes.append("profile")
    if options.project_type != "none":
        scopes.append(options.project_type)
    return scopes


def init_rules(options: InitOptions) -> InitReport:
    if options.project_type not in PROJECT_TYPES:
        raise ScaffoldError(f"Unsupported project type: {options.project_type}")

    target = options.target_root
    if not target.exists() or not target.is_dir():
        raise ScaffoldError(f"Target directory does not exist: {target}")

    rules_dir = target / RULES_DIR
    rules_dir.mkdir(parents=True, exist_ok=True)

    context = {
        "project_name": options.project_name or target.resolve().name,
        "project_type": options.project_type,
        "author": options.author or "unknown",
        "date": datetime.now(timezone.utc).date().isoformat(),
    }

    created: list[str] = []
    skipped: list[str] = []

    for scope in _template_scopes(options):
        source_root = templates_root() / "rules" / scope
        for template_path in _iter_template_files(source_root):
            destination_name = template_path.name[:-3]
            destination_file = rules_dir / destination_name

            if destination_file.exists() and not options.force:
                logger.debug("Skipping existing rule file %s", destination_file)
                skipped.append(destination_name)
                continue

            template_name = str(template_path.relative_to(templates_root()).as_posix())
            destination_file.write_text(render_template(template_name, **context), encoding="utf-8")
            created.append(destination_name)

    gitignore_updated = False
    if options.update_gitignore:
        gitignore_updated = append_gitignore_block(
            target / ".gitignore",
            marker=CURSOR_GITIGNORE_MARKER,
            lines=CURSOR_GITIGNORE_BLOCK,
        )

    return InitReport(
        rules_dir=rules_dir,
        created=tuple(created),
        skipped=tuple(skipped),
        gitignore_updated=gitignore_updated,
    )
