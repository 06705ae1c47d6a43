"""Build skills_index.json from installed skills.

A skill is a folder holding a SKILL.md file. Skills live directly under
``skills/`` or one level deeper inside a category folder. Name and
description come from the SKILL.md frontmatter, read line by line.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from agkit.config import AGENT_FOLDER


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

SKILLS_DIR = "skills"
INDEX_FILE = "skills_index.json"
MARKER_FILE = "skill.md"

DEFAULT_CATEGORY = "general"
DEFAULT_RISK = "low"
DEFAULT_SOURCE = "local"

FRONTMATTER_PATTERN = re.compile(r"\A---\r?\n(.*?)\r?\n---", re.DOTALL)
NAME_PATTERN = re.compile(r"^name:[ \t]*(.*)$", re.MULTILINE)
DESCRIPTION_PATTERN = re.compile(r"^description:[ \t]*(.*)$", re.MULTILINE)
SLUG_PATTERN = re.compile(r"[^a-z0-9]")


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class SkillEntry:
    """One entry of skills_index.json."""

    id: str
    path: str
    category: str
    name: str
    description: str = ""
    risk: str = DEFAULT_RISK
    source: str = DEFAULT_SOURCE

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "path": self.path,
            "category": self.category,
            "name": self.name,
            "description": self.description,
            "risk": self.risk,
            "source": self.source,
        }


@dataclass
class IndexResult:
    """Outcome of an index build.

    ``index_file`` is None when there was no skills folder to index.
    """

    skills: list[SkillEntry] = field(default_factory=list)
    index_file: Optional[Path] = None
    warning: Optional[str] = None


# =============================================================================
# Parsing
# =============================================================================


def skill_id(folder_name: str) -> str:
    """Slug for a skill folder: lowercase, non-alphanumerics become '-'."""
    return SLUG_PATTERN.sub("-", folder_name.lower())


def parse_frontmatter(content: str) -> tuple[Optional[str], Optional[str]]:
    """Extract ``name`` and ``description`` from a leading frontmatter block.

    The block must open on the first line. Values are trimmed; quoting and
    multi-line values are not interpreted.

    Returns:
        Tuple of (name, description), each None when absent
    """
    match = FRONTMATTER_PATTERN.match(content)
    if not match:
        return None, None

    block = match.group(1)
    name_match = NAME_PATTERN.search(block)
    desc_match = DESCRIPTION_PATTERN.search(block)

    name = name_match.group(1).strip() if name_match else None
    description = desc_match.group(1).strip() if desc_match else None
    return name, description


def find_marker(directory: Path) -> Optional[Path]:
    """Return the SKILL.md of a directory (any casing), if it has one."""
    for entry in sorted(directory.iterdir(), key=lambda p: p.name):
        if entry.name.lower() == MARKER_FILE and entry.is_file():
            return entry
    return None


def _read_entry(skill_dir: Path, marker: Path, category: Optional[str]) -> SkillEntry:
    name = skill_dir.name
    description = ""

    try:
        content = marker.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning("Cannot read %s: %s", marker, e)
        content = ""

    fm_name, fm_description = parse_frontmatter(content)
    if fm_name is not None:
        name = fm_name
    if fm_description is not None:
        description = fm_description

    if category:
        path = f"{AGENT_FOLDER}/{SKILLS_DIR}/{category}/{skill_dir.name}"
    else:
        path = f"{AGENT_FOLDER}/{SKILLS_DIR}/{skill_dir.name}"

    return SkillEntry(
        id=skill_id(skill_dir.name),
        path=path,
        category=category or DEFAULT_CATEGORY,
        name=name,
        description=description,
    )


# =============================================================================
# Indexing
# =============================================================================


def scan_skills(target_dir: Path) -> list[SkillEntry]:
    """Discover skills under ``<target_dir>/skills``.

    Hidden top-level folders are ignored. Top-level folders with a marker
    are skills; the others are categories whose direct children are checked
    for markers. Nothing deeper is visited.
    """
    skills_dir = Path(target_dir) / SKILLS_DIR
    if not skills_dir.is_dir():
        return []

    skills: list[SkillEntry] = []

    for entry in sorted(skills_dir.iterdir(), key=lambda p: p.name):
        if not entry.is_dir() or entry.name.startswith("."):
            continue

        marker = find_marker(entry)
        if marker:
            skills.append(_read_entry(entry, marker, None))
            continue

        for child in sorted(entry.iterdir(), key=lambda p: p.name):
            if not child.is_dir():
                continue
            child_marker = find_marker(child)
            if child_marker:
                skills.append(_read_entry(child, child_marker, entry.name))

    return skills


def build_skill_index(target_dir: Path) -> IndexResult:
    """Scan installed skills and write ``<target_dir>/skills_index.json``.

    The index is rewritten from scratch. Without a skills folder nothing is
    written and the result carries a warning.
    """
    target_dir = Path(target_dir)
    if not (target_dir / SKILLS_DIR).is_dir():
        warning = "No skills folder found to index."
        logger.warning("%s (%s)", warning, target_dir)
        return IndexResult(warning=warning)

    skills = scan_skills(target_dir)
    index_file = target_dir / INDEX_FILE
    index_file.write_text(
        json.dumps([s.to_dict() for s in skills], indent=2, ensure_ascii=False),
        encoding="utf-8",
    )

    logger.info("Generated skills index with %d skills", len(skills))
    return IndexResult(skills=skills, index_file=index_file)
