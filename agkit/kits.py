"""Kit operations: sync, link, status and enforce.

Each operation takes a resolved :class:`~agkit.config.SyncContext` and
returns a result value; presenting it is left to the CLI.
"""

import functools
import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from agkit.config import AgkitConfig, SyncContext
from agkit.errors import UsageError
from agkit.fetcher import FetchError, fetch_kit
from agkit.indexer import IndexResult, build_skill_index
from agkit.linker import StoreMissingError, create_dir_link, remove_link
from agkit.merger import MergeError, MergeResult, merge_kit
from agkit.registry import Registry, kit_id_for, load_registry, save_registry
from agkit.rules import EnforceResult, enforce_rules


logger = logging.getLogger(__name__)

FetchFn = Callable[[str, Path], object]
ProgressFn = Callable[[str], None]


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class KitSyncResult:
    """Outcome of syncing a single kit source."""

    source: str
    kit_id: str
    ok: bool
    error: Optional[str] = None
    merge: Optional[MergeResult] = None


@dataclass
class SyncReport:
    """Outcome of a whole sync run."""

    target_dir: Path
    local: bool
    results: list[KitSyncResult] = field(default_factory=list)
    rules: Optional[EnforceResult] = None
    index: Optional[IndexResult] = None

    @property
    def succeeded(self) -> list[KitSyncResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> list[KitSyncResult]:
        return [r for r in self.results if not r.ok]


@dataclass
class LinkResult:
    """Outcome of linking a workspace to the global store."""

    link: Path
    target: Path
    replaced: bool
    rules: EnforceResult


@dataclass
class KitStatus:
    """Summary of one synced kit."""

    kit_id: str
    source: str
    file_count: int
    last_updated: str

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.kit_id,
            "source": self.source,
            "files": self.file_count,
            "lastUpdated": self.last_updated,
        }


@dataclass
class StatusReport:
    """Summary of the global store."""

    store_dir: Path
    initialized: bool
    kits: list[KitStatus] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "store": str(self.store_dir),
            "initialized": self.initialized,
            "kits": [k.to_dict() for k in self.kits],
        }


# =============================================================================
# Helpers
# =============================================================================


def select_sources(source: Optional[str], use_all: bool, config: AgkitConfig) -> list[str]:
    """Decide which kit sources a sync run processes.

    Raises:
        UsageError: If neither a source nor --all was given
    """
    if source:
        return [source]
    if use_all:
        return list(config.default_kits)
    raise UsageError("Please specify a repository source or use --all")


def resolve_target(context: SyncContext, local: bool) -> Path:
    """The workspace .agent folder for local runs, else the global store."""
    return context.local_agent_dir if local else context.store_dir


def default_fetcher(context: SyncContext) -> FetchFn:
    """fetch_kit bound to the configured timeout and credentials."""
    return functools.partial(
        fetch_kit,
        timeout=context.config.fetch_timeout,
        auth_token=context.config.auth_token,
    )


def _download_dir(context: SyncContext, sequence: int) -> Path:
    stamp = int(time.time() * 1000)
    return context.temp_root / f"agkit-sync-{stamp}-{sequence}"


# =============================================================================
# Operations
# =============================================================================


def sync_kit(
    context: SyncContext,
    source: str,
    target_dir: Path,
    registry: Registry,
    fetch: FetchFn,
    sequence: int = 0,
    progress: Optional[ProgressFn] = None,
) -> KitSyncResult:
    """Fetch one kit, merge it into ``target_dir`` and save the registry.

    Failures are returned in the result, never raised.
    """
    kit_id = kit_id_for(source)
    download_dir = _download_dir(context, sequence)

    try:
        if progress:
            progress(f"Downloading {source}...")
        fetch(source, download_dir)

        if progress:
            progress(f"Merging {source} into {target_dir}...")
        merge = merge_kit(download_dir, target_dir, kit_id, registry, source=source)
        save_registry(target_dir, registry)
    except (FetchError, MergeError, OSError) as e:
        logger.debug("Sync of %s failed", source, exc_info=True)
        return KitSyncResult(source=source, kit_id=kit_id, ok=False, error=str(e))
    finally:
        if not context.config.keep_downloads:
            shutil.rmtree(download_dir, ignore_errors=True)

    return KitSyncResult(source=source, kit_id=kit_id, ok=True, merge=merge)


def sync_kits(
    context: SyncContext,
    sources: list[str],
    local: bool = False,
    fetch: Optional[FetchFn] = None,
    on_result: Optional[Callable[[KitSyncResult], None]] = None,
    progress: Optional[ProgressFn] = None,
) -> SyncReport:
    """Sync kits one after another, then enforce rules and rebuild the index.

    One source failing does not stop the others.

    Args:
        context: Resolved context
        sources: Kit sources, processed in order
        local: Sync into ./.agent instead of the global store
        fetch: Download function (default: fetch_kit with configured options)
        on_result: Called after each source with its result
        progress: Called with short status messages

    Raises:
        RegistryError: If the existing registry file is malformed
    """
    target_dir = resolve_target(context, local)
    fetch = fetch or default_fetcher(context)
    registry = load_registry(target_dir)
    report = SyncReport(target_dir=target_dir, local=local)

    for sequence, source in enumerate(sources):
        result = sync_kit(
            context, source, target_dir, registry, fetch,
            sequence=sequence, progress=progress,
        )
        report.results.append(result)
        if on_result:
            on_result(result)

    if progress:
        progress("Enforcing rules...")
    report.rules = enforce_rules(target_dir, context.rules_asset)

    if progress:
        progress("Generating skills index...")
    report.index = build_skill_index(target_dir)

    return report


def link_workspace(context: SyncContext) -> LinkResult:
    """Point ./.agent at the global store.

    Rules are enforced on the store first. An existing link is replaced.

    Raises:
        StoreMissingError: If the global store has not been synced yet
        LinkError: If a real .agent folder is in the way or linking fails
    """
    store = context.store_dir
    if not store.is_dir():
        raise StoreMissingError(
            f"Global store not found at {store}. Please run 'agkit sync --all' first."
        )

    rules = enforce_rules(store, context.rules_asset)

    link = context.local_agent_dir
    replaced = remove_link(link)
    create_dir_link(store, link)

    logger.info("Linked %s -> %s", link, store)
    return LinkResult(link=link, target=store, replaced=replaced, rules=rules)


def get_status(context: SyncContext) -> StatusReport:
    """Summarize the kits recorded in the global store's registry.

    Raises:
        RegistryError: If the registry file is malformed
    """
    store = context.store_dir
    if not store.is_dir():
        return StatusReport(store_dir=store, initialized=False)

    registry = load_registry(store)
    kits = [
        KitStatus(
            kit_id=kit_id,
            source=record.source,
            file_count=len(record.files),
            last_updated=record.last_updated,
        )
        for kit_id, record in registry.kits.items()
    ]
    return StatusReport(store_dir=store, initialized=True, kits=kits)


def enforce_workspace(context: SyncContext) -> EnforceResult:
    """Enforce rules on ./.agent if it exists, else on the global store."""
    local = context.local_agent_dir
    target = local if local.exists() else context.store_dir
    return enforce_rules(target, context.rules_asset)
