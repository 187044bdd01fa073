"""Curriculum import from YAML.

Responsibilities:
- Read a hand-written curriculum file
- Check levels and questions before anything is written
- Insert levels and questions in one transaction

File layout:

    levels:
      - domain: monitoring
        level_number: 1
        title: Reading metrics
        questions:
          - id: mon-1-cpu          # optional
            prompt: "CPU Load = 42%. Describe."
            expected_category: CPU_LOAD
            expected_format: literal   # default
            expected_value: "CPU load is 42%."

Question ids default to ``{domain}-L{level}-q{position:03d}`` so re-reading
the same file gives the same ids.
"""

from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

from learnrun.core.answer_validator import MetricCategory
from learnrun.core.errors import CurriculumFormatError
from learnrun.db import curriculum_repository
from learnrun.db.curriculum_repository import LITERAL_FORMAT
from learnrun.db.database import get_db

logger = structlog.get_logger(__name__)

VALID_CATEGORIES = frozenset(c.value for c in MetricCategory)


@dataclass
class ImportResult:
    """Result of a curriculum import."""

    levels_created: int = 0
    questions_created: int = 0
    skipped_levels: list[str] = field(default_factory=list)


def slugify(text: str) -> str:
    """Lowercase id fragment with dashes."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug or "domain"


def level_id_for(domain: str, level_number: int) -> str:
    return f"{slugify(domain)}-L{level_number}"


# =============================================================================
# PARSING
# =============================================================================


def _require(mapping: dict[str, Any], key: str, where: str) -> Any:
    value = mapping.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise CurriculumFormatError(f"{where}: missing '{key}'", {"where": where, "key": key})
    return value


def parse_curriculum(data: Any) -> list[dict[str, Any]]:
    """Check a loaded YAML document and normalize its levels.

    Raises:
        CurriculumFormatError: On any structural problem
    """
    if not isinstance(data, dict) or not isinstance(data.get("levels"), list):
        raise CurriculumFormatError("Curriculum must have a 'levels' list")

    levels: list[dict[str, Any]] = []
    seen: set[tuple[str, int]] = set()

    for i, raw_level in enumerate(data["levels"], start=1):
        where = f"levels[{i}]"
        if not isinstance(raw_level, dict):
            raise CurriculumFormatError(f"{where}: expected a mapping")

        domain = str(_require(raw_level, "domain", where)).strip()
        try:
            level_number = int(_require(raw_level, "level_number", where))
        except (TypeError, ValueError) as e:
            raise CurriculumFormatError(f"{where}: level_number must be an integer") from e
        if level_number < 1:
            raise CurriculumFormatError(f"{where}: level_number must be >= 1")

        key = (domain, level_number)
        if key in seen:
            raise CurriculumFormatError(f"{where}: duplicate level {domain}/{level_number}")
        seen.add(key)

        raw_questions = raw_level.get("questions") or []
        if not isinstance(raw_questions, list):
            raise CurriculumFormatError(f"{where}: 'questions' must be a list")

        questions = []
        for position, raw_q in enumerate(raw_questions, start=1):
            q_where = f"{where}.questions[{position}]"
            if not isinstance(raw_q, dict):
                raise CurriculumFormatError(f"{q_where}: expected a mapping")

            expected_format = str(raw_q.get("expected_format") or LITERAL_FORMAT)
            expected_category = str(raw_q.get("expected_category") or "").strip()
            if expected_format == LITERAL_FORMAT and expected_category not in VALID_CATEGORIES:
                raise CurriculumFormatError(
                    f"{q_where}: unknown expected_category '{expected_category}'",
                    {"valid": sorted(VALID_CATEGORIES)},
                )

            questions.append(
                {
                    "question_id": str(
                        raw_q.get("id") or f"{level_id_for(domain, level_number)}-q{position:03d}"
                    ),
                    "position": position,
                    "prompt": str(_require(raw_q, "prompt", q_where)).strip(),
                    "expected_category": expected_category,
                    "expected_format": expected_format,
                    "expected_value": str(_require(raw_q, "expected_value", q_where)).strip(),
                }
            )

        levels.append(
            {
                "domain": domain,
                "level_number": level_number,
                "title": str(raw_level.get("title") or ""),
                "questions": questions,
            }
        )

    return levels


# =============================================================================
# IMPORT
# =============================================================================


def import_curriculum(path: Path, skip_existing: bool = False) -> ImportResult:
    """Import a curriculum YAML file into the store.

    Args:
        path: YAML file
        skip_existing: Skip levels already stored instead of failing

    Returns:
        ImportResult with counts

    Raises:
        CurriculumFormatError: Unreadable file, bad structure, or duplicates
    """
    if not path.exists():
        raise CurriculumFormatError(f"Curriculum file not found: {path}", {"path": str(path)})

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise CurriculumFormatError(f"Invalid YAML in {path}: {e}", {"path": str(path)}) from e

    levels = parse_curriculum(data)
    result = ImportResult()

    try:
        with get_db(immediate=True) as conn:
            for level in levels:
                domain = level["domain"]
                level_number = level["level_number"]

                if curriculum_repository.get_level(conn, domain, level_number) is not None:
                    if not skip_existing:
                        raise CurriculumFormatError(
                            f"Level already exists: {domain}/{level_number}",
                            {"domain": domain, "level_number": level_number},
                        )
                    result.skipped_levels.append(f"{domain}/{level_number}")
                    continue

                stored = curriculum_repository.insert_level(
                    conn,
                    level_id=level_id_for(domain, level_number),
                    domain=domain,
                    level_number=level_number,
                    title=level["title"],
                )
                for question in level["questions"]:
                    curriculum_repository.insert_question(conn, level_id=stored.level_id, **question)

                result.levels_created += 1
                result.questions_created += len(level["questions"])
    except sqlite3.IntegrityError as e:
        raise CurriculumFormatError(f"Duplicate id in {path}: {e}", {"path": str(path)}) from e

    logger.info(
        "curriculum_imported",
        path=str(path),
        levels=result.levels_created,
        questions=result.questions_created,
        skipped=len(result.skipped_levels),
    )
    return result
