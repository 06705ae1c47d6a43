"""agkit - Sync Antigravity kits, enforce rules and index skills."""

__version__ = "1.0.0"

from agkit.errors import AgkitError, UsageError
from agkit.config import (
    AgkitConfig,
    ConfigError,
    SyncContext,
    resolve_context,
)
from agkit.registry import (
    Registry,
    KitRecord,
    FileOwnership,
    RegistryError,
    kit_id_for,
    load_registry,
    save_registry,
)
from agkit.merger import (
    merge_kit,
    MergeResult,
    MergeError,
    NoKitContentError,
)
from agkit.rules import enforce_rules, EnforceResult
from agkit.indexer import (
    build_skill_index,
    parse_frontmatter,
    scan_skills,
    SkillEntry,
)
from agkit.fetcher import fetch_kit, FetchError
from agkit.linker import LinkError, StoreMissingError
from agkit.kits import (
    sync_kits,
    link_workspace,
    get_status,
    enforce_workspace,
    SyncReport,
    StatusReport,
)

__all__ = [
    "__version__",
    "AgkitError",
    "UsageError",
    "AgkitConfig",
    "ConfigError",
    "SyncContext",
    "resolve_context",
    "Registry",
    "KitRecord",
    "FileOwnership",
    "RegistryError",
    "kit_id_for",
    "load_registry",
    "save_registry",
    "merge_kit",
    "MergeResult",
    "MergeError",
    "NoKitContentError",
    "enforce_rules",
    "EnforceResult",
    "build_skill_index",
    "parse_frontmatter",
    "scan_skills",
    "SkillEntry",
    "fetch_kit",
    "FetchError",
    "LinkError",
    "StoreMissingError",
    "sync_kits",
    "link_workspace",
    "get_status",
    "enforce_workspace",
    "SyncReport",
    "StatusReport",
]
