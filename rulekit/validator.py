from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable

from .config import (
    ALWAYS_APPLY_FIELD,
    CATEGORY_GLOB_HINTS,
    FRONTMATTER_DELIMITER,
    FRONTMATTER_SCAN_LINES,
    MIN_CONTENT_LINES,
    REQUIRED_FIELDS,
    RULE_CATEGORIES,
    RULE_SUFFIX,
)

logger = logging.getLogger(__name__)


class FieldScope(str, Enum):
    """Where required frontmatter fields are searched for."""

    file = "file"
    frontmatter = "frontmatter"


class ValidationError(RuntimeError):
    pass


@dataclass(frozen=True)
class RuleFileResult:
    name: str
    path: Path
    valid: bool
    error: str | None = None
    always_apply: bool = False
    globs: str | None = None


@dataclass
class ValidationReport:
    rules_dir: Path
    total: int = 0
    valid: int = 0
    always_applied: int = 0
    results: list[RuleFileResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    missing_categories: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def record(self, result: RuleFileResult) -> None:
        self.total += 1
        self.results.append(result)
        if result.always_apply:
            self.always_applied += 1
        if result.valid:
            self.valid += 1
        elif result.error:
            self.errors.append(f"{result.name}: {result.error}")


def _iter_rule_files(directory: Path) -> Iterable[Path]:
    return sorted(path for path in directory.glob(f"*{RULE_SUFFIX}") if path.is_file())


def _frontmatter_end(lines: list[str]) -> int | None:
    # The closing delimiter must appear on lines 2..FRONTMATTER_SCAN_LINES.
    for index in range(1, min(len(lines), FRONTMATTER_SCAN_LINES)):
        if lines[index] == FRONTMATTER_DELIMITER:
            return index
    return None


def _field_value(lines: Iterable[str], name: str) -> str | None:
    prefix = f"{name}:"
    for line in lines:
        if line.startswith(prefix):
            return line[len(prefix):].strip()
    return None


def check_rule_file(path: Path, name: str, field_scope: FieldScope = FieldScope.file) -> RuleFileResult:
    """Run the ordered checks against a single rule file.

    Checks stop at the first failure, so a file reports at most one error.
    """
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError) as error:
        logger.warning("Could not read rule file %s: %s", path, error)
        return RuleFileResult(name=name, path=path, valid=False, error=f"Unreadable file ({error})")

    if not lines or lines[0] != FRONTMATTER_DELIMITER:
        return RuleFileResult(name=name, path=path, valid=False, error="Missing frontmatter start")

    end = _frontmatter_end(lines)
    if end is None:
        return RuleFileResult(name=name, path=path, valid=False, error="Missing frontmatter end")

    search_lines = lines[1:end] if field_scope == FieldScope.frontmatter else lines
    always_apply = (_field_value(search_lines, ALWAYS_APPLY_FIELD) or "").lower() == "true"
    globs = _field_value(search_lines, "globs")

    for required in REQUIRED_FIELDS:
        if _field_value(search_lines, required) is None:
            return RuleFileResult(
                name=name,
                path=path,
                valid=False,
                error=f"Missing '{required}' field",
                always_apply=always_apply,
                globs=globs,
            )

    content_lines = sum(1 for line in lines[end + 1:] if line.strip())
    if content_lines < MIN_CONTENT_LINES:
        return RuleFileResult(
            name=name,
            path=path,
            valid=False,
            error=f"Insufficient content (less than {MIN_CONTENT_LINES} non-empty lines)",
            always_apply=always_apply,
            globs=globs,
        )

    return RuleFileResult(name=name, path=path, valid=True, always_apply=always_apply, globs=globs)


def _review_globs(report: ValidationReport, category: str, result: RuleFileResult) -> None:
    hints = CATEGORY_GLOB_HINTS.get(category)
    if not hints or result.globs is None:
        return
    if not any(hint in result.globs for hint in hints):
        report.warnings.append(f"{result.name}: May need glob pattern review")


def validate_rules(
    rules_dir: Path,
    categories: tuple[str, ...] = RULE_CATEGORIES,
    require_categories: bool = False,
    field_scope: FieldScope = FieldScope.file,
) -> ValidationReport:
    if not rules_dir.exists() or not rules_dir.is_dir():
        raise ValidationError(f"Rules directory '{rules_dir}' not found")

    report = ValidationReport(rules_dir=rules_dir)

    for path in _iter_rule_files(rules_dir):
        report.record(check_rule_file(path, path.name, field_scope))

    for category in categories:
        category_dir = rules_dir / category
        if not category_dir.is_dir():
            if require_categories:
                report.missing_categories.append(category)
                report.errors.append(f"Missing category directory: {category}")
            else:
                logger.debug("Skipping absent category directory %s", category_dir)
            continue

        report.categories.append(category)
        for path in _iter_rule_files(category_dir):
            result = check_rule_file(path, f"{category}/{path.name}", field_scope)
            report.record(result)
            _review_globs(report, category, result)

    if report.always_applied == 0:
        report.errors.append("No always-applied rules found")

    logger.debug(
        "Validated %d rule files in %s (%d valid, %d errors)",
        report.total,
        rules_dir,
        report.valid,
        len(report.errors),
    )
    return report
