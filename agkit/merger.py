"""Merge a downloaded kit into a target directory.

Kits normally keep their content under a ``.agent`` folder. Repositories that
don't follow that convention are accepted when their root holds one of the
usual agent folders; repository scaffolding is then filtered out at the top
level. Files are copied over existing ones and recorded in the registry.
"""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from agkit.config import AGENT_FOLDER
from agkit.errors import AgkitError
from agkit.registry import Registry, utc_timestamp


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Any of these at the repository root marks it as usable kit content
COMMON_AGENT_FOLDERS = ("skills", "workflows", "rules", "scripts", "docs", "assets")

# Skipped at the top level when syncing from a repository root
ROOT_EXCLUDES = frozenset({
    ".git",
    ".github",
    "node_modules",
    "package.json",
    "package-lock.json",
    ".gitignore",
    "README.md",
    "LICENSE",
    "packages",
    "assets",
    "mcp_config.json",
    "skills_index.json",
    ".sync-registry.json",
    "SECURITY.md",
    "release_notes.md",
    "CONTRIBUTING.md",
    "CHANGELOG.md",
    "CATALOG.md",
})

# Skipped at every depth, whatever the entry type
EXCLUDED_DIRS = frozenset({"docs", "bin", "lib", "packages"})
EXCLUDED_FILES = frozenset({
    "SECURITY.md",
    "release_notes.md",
    "CONTRIBUTING.md",
    "CHANGELOG.md",
    "CATALOG.md",
})


# =============================================================================
# Exceptions
# =============================================================================


class MergeError(AgkitError):
    """Base exception for merge failures."""
    pass


class NoKitContentError(MergeError):
    """Raised when a source has no recognizable kit content."""
    pass


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class SkippedFile:
    """A file that could not be copied."""

    path: str
    reason: str


@dataclass
class MergeResult:
    """Outcome of merging one kit.

    Attributes:
        kit_id: Registry key the files were recorded under
        source_root: Directory the files were copied from
        root_fallback: True if the repository root was used instead of .agent
        copied: Destination-relative paths of copied files, in walk order
        skipped: Files that failed to copy
    """

    kit_id: str
    source_root: Path
    root_fallback: bool = False
    copied: list[str] = field(default_factory=list)
    skipped: list[SkippedFile] = field(default_factory=list)


# =============================================================================
# Merge
# =============================================================================


def resolve_source_root(source_dir: Path) -> tuple[Path, bool]:
    """Find where the kit content of a download lives.

    Returns:
        Tuple of (content root, whether the repository root fallback was used)

    Raises:
        NoKitContentError: If neither .agent nor a common agent folder exists
    """
    source_dir = Path(source_dir)
    agent_dir = source_dir / AGENT_FOLDER
    if agent_dir.is_dir():
        return agent_dir, False

    if any((source_dir / name).exists() for name in COMMON_AGENT_FOLDERS):
        return source_dir, True

    raise NoKitContentError(
        f"Could not find {AGENT_FOLDER} folder or common agent folders "
        f"({', '.join(COMMON_AGENT_FOLDERS)}) in source repository"
    )


def _is_excluded(entry: Path, at_root: bool, root_fallback: bool) -> bool:
    if root_fallback and at_root and entry.name in ROOT_EXCLUDES:
        return True
    if entry.name in EXCLUDED_DIRS:
        return True
    if entry.name in EXCLUDED_FILES:
        return True
    return False


def merge_kit(
    source_dir: Path,
    dest_dir: Path,
    kit_id: str,
    registry: Registry,
    source: Optional[str] = None,
) -> MergeResult:
    """Copy a kit's content into ``dest_dir`` and record it in ``registry``.

    Existing files are overwritten. A file that fails to copy is reported in
    the result and never stops the merge. The registry is only changed in
    memory; saving it is up to the caller.

    Args:
        source_dir: Downloaded kit
        dest_dir: Target directory (created if missing)
        kit_id: Registry key for this kit
        registry: Registry to record copied files in
        source: Original source reference (default: kit_id)

    Returns:
        MergeResult describing what was copied

    Raises:
        NoKitContentError: If the download has no recognizable kit content
    """
    source_root, root_fallback = resolve_source_root(source_dir)
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)

    registry.ensure_kit(kit_id, source or kit_id)
    result = MergeResult(kit_id=kit_id, source_root=source_root, root_fallback=root_fallback)

    if root_fallback:
        logger.info("No %s folder in %s, syncing from repository root", AGENT_FOLDER, source_dir)

    _copy_tree(source_root, dest_dir, "", result, registry, root_fallback)

    logger.debug(
        "Merged %s: %d copied, %d skipped",
        kit_id, len(result.copied), len(result.skipped),
    )
    return result


def _copy_tree(
    src: Path,
    dest: Path,
    rel_prefix: str,
    result: MergeResult,
    registry: Registry,
    root_fallback: bool,
) -> None:
    for entry in sorted(src.iterdir(), key=lambda p: p.name):
        if _is_excluded(entry, at_root=not rel_prefix, root_fallback=root_fallback):
            continue

        rel_path = f"{rel_prefix}/{entry.name}" if rel_prefix else entry.name
        dest_path = dest / entry.name

        if entry.is_dir() and not entry.is_symlink():
            try:
                dest_path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.debug("Skipping directory %s: %s", rel_path, e)
                result.skipped.append(SkippedFile(path=rel_path, reason=str(e)))
                continue
            _copy_tree(entry, dest_path, rel_path, result, registry, root_fallback)
            continue

        # copy2 would write into an existing folder of the same name
        if dest_path.is_dir():
            logger.debug("Skipping %s: destination is a directory", rel_path)
            result.skipped.append(SkippedFile(path=rel_path, reason="destination is a directory"))
            continue

        try:
            shutil.copy2(entry, dest_path)
        except OSError as e:
            logger.debug("Skipping %s: %s", rel_path, e)
            result.skipped.append(SkippedFile(path=rel_path, reason=str(e)))
            continue

        registry.record_file(result.kit_id, rel_path, utc_timestamp())
        result.copied.append(rel_path)
