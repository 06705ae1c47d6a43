"""Directory links between a workspace and the global store."""

import logging
import os
import subprocess
import sys
from pathlib import Path

from agkit.errors import AgkitError


logger = logging.getLogger(__name__)


class LinkError(AgkitError):
    """Raised when a workspace link cannot be created."""
    pass


class StoreMissingError(LinkError):
    """Raised when the global store does not exist yet."""
    pass


def remove_link(link: Path) -> bool:
    """Remove ``link`` if it is a symlink or junction.

    Returns:
        True if something was removed

    Raises:
        LinkError: If ``link`` is a real directory or file
    """
    if link.is_symlink():
        link.unlink()
        return True

    # Junctions are removed like empty directories
    if _is_junction(link):
        os.rmdir(link)
        return True

    if link.exists():
        raise LinkError(
            f"A physical {link.name} folder already exists at {link}. "
            "Please remove it first or use --local sync."
        )
    return False


def create_dir_link(target: Path, link: Path) -> None:
    """Create ``link`` pointing at the directory ``target``.

    A directory symlink is used everywhere; on Windows, where symlinks need
    extra privileges, a directory junction is created instead when the
    symlink fails.

    Raises:
        LinkError: If no link could be created
    """
    try:
        os.symlink(target, link, target_is_directory=True)
        return
    except OSError as e:
        if sys.platform != "win32":
            raise LinkError(f"Failed to create link {link}: {e}") from e
        logger.debug("Symlink failed (%s), falling back to a junction", e)

    result = subprocess.run(
        ["cmd", "/c", "mklink", "/J", str(link), str(target)],
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        raise LinkError(f"Failed to create junction {link}: {result.stderr.strip()}")


def _is_junction(path: Path) -> bool:
    is_junction = getattr(os.path, "isjunction", None)
    return bool(is_junction and is_junction(path))
