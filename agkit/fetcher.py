"""Download kits from remote repositories.

Supported sources::

    github:owner/repo            gh:owner/repo        owner/repo
    gitlab:owner/repo            bitbucket:owner/repo
    github:owner/repo/sub/dir    github:owner/repo#v1.2.0
    file:/path/to/kit            ./relative/kit       /absolute/kit

Remote sources are fetched as a tarball of the repository and unpacked with
the archive's top-level folder stripped.
"""

import logging
import os
import re
import shutil
import tarfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional

import httpx

from agkit.config import DEFAULT_FETCH_TIMEOUT
from agkit.errors import AgkitError


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

SOURCE_PATTERN = re.compile(
    r"^(?:(?P<provider>[a-z]+):)?"
    r"(?P<repo>[\w.-]+/[\w.-]+)"
    r"(?P<subdir>(?:/[^#]+)*)?"
    r"(?:#(?P<ref>.+))?$"
)

PROVIDER_ALIASES = {
    "github": "github",
    "gh": "github",
    "gitlab": "gitlab",
    "bitbucket": "bitbucket",
}

DEFAULT_REFS = {
    "github": "HEAD",
    "gitlab": "main",
    "bitbucket": "main",
}

LOCAL_PREFIX = "file:"


# =============================================================================
# Exceptions
# =============================================================================


class FetchError(AgkitError):
    """Raised when a kit cannot be downloaded or unpacked."""
    pass


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class KitSource:
    """A parsed remote kit reference."""

    provider: str
    repo: str
    ref: str
    subdir: str = ""

    @property
    def archive_url(self) -> str:
        """Tarball URL for this repository and ref."""
        if self.provider == "github":
            return f"https://github.com/{self.repo}/archive/{self.ref}.tar.gz"
        if self.provider == "gitlab":
            name = self.repo.split("/")[-1]
            return f"https://gitlab.com/{self.repo}/-/archive/{self.ref}/{name}-{self.ref}.tar.gz"
        return f"https://bitbucket.org/{self.repo}/get/{self.ref}.tar.gz"


def is_local_source(source: str) -> bool:
    """Whether ``source`` names a directory on this machine."""
    return (
        source.startswith(LOCAL_PREFIX)
        or source.startswith(("./", "../", "~"))
        or Path(source).is_absolute()
        or Path(source).is_dir()
    )


def local_source_path(source: str) -> Path:
    """Filesystem path of a local source."""
    if source.startswith(LOCAL_PREFIX):
        source = source[len(LOCAL_PREFIX):]
    return Path(source).expanduser()


def parse_source(source: str) -> KitSource:
    """Parse a remote kit reference.

    Raises:
        FetchError: If the reference is malformed or the provider unknown
    """
    match = SOURCE_PATTERN.match(source.strip())
    if not match:
        raise FetchError(f"Invalid kit source: {source}")

    provider_name = match.group("provider") or "github"
    provider = PROVIDER_ALIASES.get(provider_name)
    if provider is None:
        supported = ", ".join(sorted(PROVIDER_ALIASES))
        raise FetchError(f"Unsupported provider '{provider_name}' (supported: {supported})")

    return KitSource(
        provider=provider,
        repo=match.group("repo"),
        ref=match.group("ref") or DEFAULT_REFS[provider],
        subdir=(match.group("subdir") or "").strip("/"),
    )


# =============================================================================
# Fetching
# =============================================================================


def fetch_kit(
    source: str,
    dest: Path,
    timeout: Optional[float] = DEFAULT_FETCH_TIMEOUT,
    auth_token: Optional[str] = None,
    client: Optional[httpx.Client] = None,
) -> Path:
    """Download a kit into ``dest``.

    Args:
        source: Kit reference (see module docstring)
        dest: Directory to unpack into (created if missing)
        timeout: Network timeout in seconds, None for no timeout
        auth_token: Optional bearer token for private repositories
        client: httpx client to use (default: a new one per call)

    Returns:
        The populated destination directory

    Raises:
        FetchError: If the kit cannot be downloaded or unpacked
    """
    dest = Path(dest)

    if is_local_source(source):
        return _copy_local(source, dest)

    kit_source = parse_source(source)
    dest.mkdir(parents=True, exist_ok=True)
    archive = dest.parent / f"{dest.name}.tar.gz"

    logger.debug("Downloading %s from %s", source, kit_source.archive_url)
    try:
        download_archive(kit_source.archive_url, archive, timeout, auth_token, client)
        extracted = extract_archive(archive, dest, kit_source.subdir)
    finally:
        archive.unlink(missing_ok=True)

    if kit_source.subdir and not extracted:
        raise FetchError(f"Subdirectory '{kit_source.subdir}' not found in {kit_source.repo}")

    logger.debug("Unpacked %d files from %s", extracted, source)
    return dest


def _copy_local(source: str, dest: Path) -> Path:
    path = local_source_path(source)
    if not path.is_dir():
        raise FetchError(f"Local kit not found: {path}")

    try:
        shutil.copytree(path, dest, symlinks=True, dirs_exist_ok=True)
    except (OSError, shutil.Error) as e:
        raise FetchError(f"Failed to copy local kit {path}: {e}") from e
    return dest


def download_archive(
    url: str,
    dest_file: Path,
    timeout: Optional[float] = DEFAULT_FETCH_TIMEOUT,
    auth_token: Optional[str] = None,
    client: Optional[httpx.Client] = None,
) -> Path:
    """Stream ``url`` to ``dest_file``.

    Raises:
        FetchError: On HTTP or network errors
    """
    headers = {"Authorization": f"Bearer {auth_token}"} if auth_token else {}
    owns_client = client is None
    if client is None:
        client = httpx.Client()

    try:
        with client.stream(
            "GET", url, headers=headers, follow_redirects=True, timeout=timeout
        ) as response:
            response.raise_for_status()
            with open(dest_file, "wb") as f:
                for chunk in response.iter_bytes():
                    f.write(chunk)
    except httpx.HTTPStatusError as e:
        raise FetchError(f"Download failed ({e.response.status_code}): {url}") from e
    except httpx.HTTPError as e:
        raise FetchError(f"Download failed: {e}") from e
    finally:
        if owns_client:
            client.close()

    return dest_file


def extract_archive(archive: Path, dest: Path, subdir: str = "") -> int:
    """Unpack a repository tarball into ``dest``.

    The single top-level folder every host wraps the repository in is
    stripped. With ``subdir`` only that part of the repository is kept.
    Links and special files are ignored.

    Returns:
        Number of files written

    Raises:
        FetchError: If the archive is corrupt or contains unsafe paths
    """
    sub_parts = PurePosixPath(subdir).parts if subdir else ()
    written = 0

    try:
        with tarfile.open(archive, "r:*") as tar:
            for member in tar.getmembers():
                parts = PurePosixPath(member.name).parts
                if member.name.startswith("/") or ".." in parts:
                    raise FetchError(f"Unsafe path in archive: {member.name}")

                rel_parts = parts[1:]
                if sub_parts:
                    if rel_parts[:len(sub_parts)] != sub_parts:
                        continue
                    rel_parts = rel_parts[len(sub_parts):]
                if not rel_parts:
                    continue

                target = dest.joinpath(*rel_parts)
                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                elif member.isfile():
                    target.parent.mkdir(parents=True, exist_ok=True)
                    fileobj = tar.extractfile(member)
                    if fileobj is None:
                        continue
                    with fileobj, open(target, "wb") as out:
                        shutil.copyfileobj(fileobj, out)
                    if member.mode & 0o100:
                        os.chmod(target, target.stat().st_mode | 0o111)
                    written += 1
    except tarfile.TarError as e:
        raise FetchError(f"Invalid kit archive: {e}") from e

    return written
