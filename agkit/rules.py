"""Canonical rules enforcement.

Kits may ship their own ``rules/GEMINI.md``. After every sync the packaged
copy is written over it so the canonical rules always win.
"""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from agkit.config import PACKAGED_RULES_ASSET


logger = logging.getLogger(__name__)

RULES_DIR = "rules"
RULES_FILE = "GEMINI.md"


@dataclass
class EnforceResult:
    """Outcome of a rules enforcement."""

    target_file: Path
    applied: bool
    reason: str = ""
    error: Optional[str] = None


def enforce_rules(target_dir: Path, asset: Optional[Path] = None) -> EnforceResult:
    """Overwrite ``<target_dir>/rules/GEMINI.md`` with the canonical asset.

    Never raises: a missing asset is a no-op and copy failures are reported
    in the result.

    Args:
        target_dir: The .agent directory (or global store)
        asset: Canonical rules file (default: packaged GEMINI.md)

    Returns:
        EnforceResult
    """
    asset = Path(asset) if asset is not None else PACKAGED_RULES_ASSET
    target_file = Path(target_dir) / RULES_DIR / RULES_FILE

    try:
        target_file.parent.mkdir(parents=True, exist_ok=True)

        if not asset.is_file():
            logger.warning("Rules asset not found: %s", asset)
            return EnforceResult(
                target_file=target_file,
                applied=False,
                reason=f"rules asset not found: {asset}",
            )

        shutil.copyfile(asset, target_file)
    except OSError as e:
        logger.error("Error enforcing rules on %s: %s", target_dir, e)
        return EnforceResult(target_file=target_file, applied=False, error=str(e))

    logger.info("Rules enforced: %s", target_file)
    return EnforceResult(target_file=target_file, applied=True)
