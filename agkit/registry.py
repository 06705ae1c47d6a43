"""Sync registry: which kit installed which file.

The registry is a single JSON document stored inside the target directory.
It maps kit identifiers to their metadata and every synced file to the kit
that wrote it last. It is loaded in full, changed in memory and written back
in full by the caller.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from agkit.errors import AgkitError


# =============================================================================
# Constants
# =============================================================================

REGISTRY_FILE = ".sync-registry.json"

KIT_ID_PATTERN = re.compile(r"[^a-zA-Z0-9]")


# =============================================================================
# Exceptions
# =============================================================================


class RegistryError(AgkitError):
    """Raised when the registry file cannot be read."""
    pass


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class KitRecord:
    """A kit that has been synced into the target directory."""

    source: str
    installed_at: str
    last_updated: str = ""
    files: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = dict(self.extra)
        data.update({
            "source": self.source,
            "installedAt": self.installed_at,
            "lastUpdated": self.last_updated,
            "files": list(self.files),
        })
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "KitRecord":
        """Create from dictionary."""
        known = {"source", "installedAt", "lastUpdated", "files"}
        return cls(
            source=data.get("source", ""),
            installed_at=data.get("installedAt", ""),
            last_updated=data.get("lastUpdated", ""),
            files=list(data.get("files", [])),
            extra={k: v for k, v in data.items() if k not in known},
        )


@dataclass
class FileOwnership:
    """The kit that last wrote a file."""

    kit: str
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"kit": self.kit, "updatedAt": self.updated_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileOwnership":
        """Create from dictionary."""
        return cls(kit=data.get("kit", ""), updated_at=data.get("updatedAt", ""))


@dataclass
class Registry:
    """The whole sync registry document."""

    kits: dict[str, KitRecord] = field(default_factory=dict)
    files: dict[str, FileOwnership] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    def ensure_kit(self, kit_id: str, source: str, now: Optional[str] = None) -> KitRecord:
        """Get or create the record for a kit and mark it as updated."""
        now = now or utc_timestamp()
        record = self.kits.get(kit_id)
        if record is None:
            record = KitRecord(source=source, installed_at=now)
            self.kits[kit_id] = record
        record.last_updated = now
        return record

    def record_file(self, kit_id: str, rel_path: str, now: Optional[str] = None) -> None:
        """Record that a kit wrote a file.

        Ownership always moves to ``kit_id``; the kit's file list only grows
        when the path is new to that kit.
        """
        now = now or utc_timestamp()
        self.files[rel_path] = FileOwnership(kit=kit_id, updated_at=now)

        record = self.kits.get(kit_id)
        if record is None:
            record = self.ensure_kit(kit_id, kit_id, now)
        if rel_path not in record.files:
            record.files.append(rel_path)

    def owner_of(self, rel_path: str) -> Optional[str]:
        """Kit identifier that last wrote ``rel_path``, if any."""
        ownership = self.files.get(rel_path)
        return ownership.kit if ownership else None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = dict(self.extra)
        data["kits"] = {kit_id: kit.to_dict() for kit_id, kit in self.kits.items()}
        data["files"] = {path: own.to_dict() for path, own in self.files.items()}
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Registry":
        """Create from dictionary."""
        return cls(
            kits={
                kit_id: KitRecord.from_dict(info)
                for kit_id, info in (data.get("kits") or {}).items()
            },
            files={
                path: FileOwnership.from_dict(info)
                for path, info in (data.get("files") or {}).items()
            },
            extra={k: v for k, v in data.items() if k not in ("kits", "files")},
        )


# =============================================================================
# Utility Functions
# =============================================================================


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def kit_id_for(source: str) -> str:
    """Derive the registry key for a kit source.

    Example:
        >>> kit_id_for("github:user/repo")
        'github_user_repo'
    """
    return KIT_ID_PATTERN.sub("_", source)


def registry_path(target_dir: Path) -> Path:
    """Location of the registry file inside a target directory."""
    return Path(target_dir) / REGISTRY_FILE


def load_registry(target_dir: Path) -> Registry:
    """Load the registry of a target directory.

    A missing file yields an empty registry.

    Raises:
        RegistryError: If the file exists but is not a valid registry
    """
    path = registry_path(target_dir)
    if not path.exists():
        return Registry()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise RegistryError(f"Invalid registry file {path}: {e}") from e

    if not isinstance(data, dict):
        raise RegistryError(f"Invalid registry file {path}: expected a JSON object")

    return Registry.from_dict(data)


def save_registry(target_dir: Path, registry: Registry) -> Path:
    """Write the registry back to its target directory.

    The write is not atomic.

    Returns:
        Path to the registry file
    """
    path = registry_path(target_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(registry.to_dict(), indent=2) + "\n", encoding="utf-8")
    return path
