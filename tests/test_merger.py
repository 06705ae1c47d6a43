"""Tests for merging kits into a target directory."""

from pathlib import Path
from unittest.mock import patch

import pytest

from agkit.merger import (
    EXCLUDED_DIRS,
    EXCLUDED_FILES,
    ROOT_EXCLUDES,
    MergeResult,
    NoKitContentError,
    merge_kit,
    resolve_source_root,
)
from agkit.registry import Registry


def write(path: Path, content: str = "x") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def agent_kit(tmp_path: Path) -> Path:
    """A kit using the .agent convention, with root scaffolding around it."""
    kit = tmp_path / "agent_kit"
    write(kit / ".agent" / "skills" / "pdf" / "SKILL.md", "pdf skill")
    write(kit / ".agent" / "workflows" / "deploy.md", "deploy")
    write(kit / ".agent" / "rules" / "style.md", "style")
    write(kit / "README.md", "readme")
    write(kit / "package.json", "{}")
    write(kit / "skills" / "outside" / "SKILL.md", "not part of the kit")
    return kit


@pytest.fixture
def root_kit(tmp_path: Path) -> Path:
    """A kit without .agent whose root holds agent folders and scaffolding."""
    kit = tmp_path / "root_kit"
    write(kit / "skills" / "review" / "SKILL.md", "review")
    write(kit / "workflows" / "ship.md", "ship")
    write(kit / "notes.md", "kept")
    for name in ROOT_EXCLUDES:
        if name.startswith(".git") and name != ".gitignore":
            write(kit / name / "config", "scaffolding")
        elif "." in name or name in ("LICENSE",):
            write(kit / name, "scaffolding")
        else:
            write(kit / name / "file.txt", "scaffolding")
    return kit


# =============================================================================
# Source Root Tests
# =============================================================================


class TestResolveSourceRoot:
    """Tests for resolve_source_root."""

    def test_prefers_agent_folder(self, agent_kit: Path):
        """.agent wins even when root folders exist too."""
        root, fallback = resolve_source_root(agent_kit)

        assert root == agent_kit / ".agent"
        assert fallback is False

    def test_falls_back_to_root(self, root_kit: Path):
        """A root with a common agent folder is used directly."""
        root, fallback = resolve_source_root(root_kit)

        assert root == root_kit
        assert fallback is True

    @pytest.mark.parametrize("folder", ["skills", "workflows", "rules", "scripts", "docs", "assets"])
    def test_any_common_folder_is_enough(self, tmp_path: Path, folder: str):
        """Each common folder name marks usable content."""
        (tmp_path / folder).mkdir()

        _, fallback = resolve_source_root(tmp_path)
        assert fallback is True

    def test_no_content_raises(self, tmp_path: Path):
        """A repository with nothing recognizable is rejected."""
        write(tmp_path / "src" / "main.py")

        with pytest.raises(NoKitContentError):
            resolve_source_root(tmp_path)


# =============================================================================
# Merge Tests
# =============================================================================


class TestMergeKit:
    """Tests for merge_kit."""

    def test_merges_agent_folder(self, agent_kit: Path, tmp_path: Path):
        """Only .agent content is copied when the kit has one."""
        dest = tmp_path / "dest"
        registry = Registry()

        result = merge_kit(agent_kit, dest, "kit_a", registry, source="github:a/kit")

        assert isinstance(result, MergeResult)
        assert result.root_fallback is False
        assert (dest / "skills" / "pdf" / "SKILL.md").read_text() == "pdf skill"
        assert (dest / "workflows" / "deploy.md").exists()
        assert not (dest / "README.md").exists()
        assert not (dest / "package.json").exists()
        assert not (dest / "skills" / "outside").exists()
        assert not (dest / ".agent").exists()
        assert sorted(result.copied) == [
            "rules/style.md",
            "skills/pdf/SKILL.md",
            "workflows/deploy.md",
        ]

    def test_root_fallback_excludes_scaffolding(self, root_kit: Path, tmp_path: Path):
        """Every root exclusion is skipped when syncing from the root."""
        dest = tmp_path / "dest"

        result = merge_kit(root_kit, dest, "kit_r", Registry())

        assert result.root_fallback is True
        for name in ROOT_EXCLUDES:
            assert not (dest / name).exists(), name
        assert (dest / "skills" / "review" / "SKILL.md").exists()
        assert (dest / "workflows" / "ship.md").exists()
        assert (dest / "notes.md").read_text() == "kept"

    def test_root_excludes_only_apply_at_top_level(self, tmp_path: Path):
        """A nested README.md is still copied."""
        kit = tmp_path / "kit"
        write(kit / "skills" / "a" / "README.md", "nested readme")
        dest = tmp_path / "dest"

        merge_kit(kit, dest, "kit", Registry())

        assert (dest / "skills" / "a" / "README.md").exists()

    def test_global_excludes_at_any_depth(self, tmp_path: Path):
        """Excluded folders and meta documents are skipped everywhere."""
        kit = tmp_path / "kit"
        write(kit / ".agent" / "skills" / "a" / "SKILL.md")
        for name in EXCLUDED_DIRS:
            write(kit / ".agent" / name / "f.txt")
            write(kit / ".agent" / "skills" / "a" / name / "f.txt")
        for name in EXCLUDED_FILES:
            write(kit / ".agent" / name)
            write(kit / ".agent" / "skills" / "a" / name)
        dest = tmp_path / "dest"

        result = merge_kit(kit, dest, "kit", Registry())

        assert result.copied == ["skills/a/SKILL.md"]
        for name in EXCLUDED_DIRS | EXCLUDED_FILES:
            assert not (dest / name).exists()
            assert not (dest / "skills" / "a" / name).exists()

    def test_excluded_names_match_files_too(self, tmp_path: Path):
        """A plain file named like an excluded folder is skipped as well."""
        kit = tmp_path / "kit"
        write(kit / ".agent" / "skills" / "a" / "SKILL.md")
        write(kit / ".agent" / "bin")
        write(kit / ".agent" / "skills" / "a" / "lib")
        dest = tmp_path / "dest"

        result = merge_kit(kit, dest, "kit", Registry())

        assert result.copied == ["skills/a/SKILL.md"]
        assert not (dest / "bin").exists()
        assert not (dest / "skills" / "a" / "lib").exists()

    def test_file_over_existing_directory_is_skipped(self, tmp_path: Path):
        """A file whose destination is a folder is reported, not nested inside it."""
        kit = tmp_path / "kit"
        write(kit / ".agent" / "rules", "a file, not a folder")
        write(kit / ".agent" / "skills" / "a" / "SKILL.md")
        dest = tmp_path / "dest"
        write(dest / "rules" / "style.md", "existing")
        registry = Registry()

        result = merge_kit(kit, dest, "kit", registry)

        assert not (dest / "rules" / "rules").exists()
        assert (dest / "rules" / "style.md").read_text() == "existing"
        assert [s.path for s in result.skipped] == ["rules"]
        assert result.skipped[0].reason == "destination is a directory"
        assert result.copied == ["skills/a/SKILL.md"]
        assert registry.owner_of("rules") is None

    def test_no_content_copies_nothing(self, tmp_path: Path):
        """A structural failure leaves the target and registry untouched."""
        kit = tmp_path / "kit"
        write(kit / "README.md")
        dest = tmp_path / "dest"
        registry = Registry()

        with pytest.raises(NoKitContentError):
            merge_kit(kit, dest, "kit", registry)

        assert not dest.exists()
        assert registry.kits == {}

    def test_overwrites_existing_files(self, agent_kit: Path, tmp_path: Path):
        """Existing destination files are replaced."""
        dest = tmp_path / "dest"
        write(dest / "workflows" / "deploy.md", "old")
        write(dest / "workflows" / "mine.md", "untouched")

        merge_kit(agent_kit, dest, "kit_a", Registry())

        assert (dest / "workflows" / "deploy.md").read_text() == "deploy"
        assert (dest / "workflows" / "mine.md").read_text() == "untouched"

    def test_records_files_in_registry(self, agent_kit: Path, tmp_path: Path):
        """Copied files are attributed to the kit."""
        registry = Registry()

        merge_kit(agent_kit, tmp_path / "dest", "kit_a", registry, source="github:a/kit")

        record = registry.kits["kit_a"]
        assert record.source == "github:a/kit"
        assert record.installed_at
        assert "skills/pdf/SKILL.md" in record.files
        assert registry.owner_of("skills/pdf/SKILL.md") == "kit_a"

    def test_second_kit_takes_ownership(self, tmp_path: Path):
        """Both kits list the shared path; the later one owns it."""
        kit_a = tmp_path / "a"
        kit_b = tmp_path / "b"
        write(kit_a / ".agent" / "rules" / "shared.md", "from a")
        write(kit_b / ".agent" / "rules" / "shared.md", "from b")
        dest = tmp_path / "dest"
        registry = Registry()

        merge_kit(kit_a, dest, "kit_a", registry)
        merge_kit(kit_b, dest, "kit_b", registry)

        assert registry.owner_of("rules/shared.md") == "kit_b"
        assert "rules/shared.md" in registry.kits["kit_a"].files
        assert "rules/shared.md" in registry.kits["kit_b"].files
        assert (dest / "rules" / "shared.md").read_text() == "from b"

    def test_remerge_does_not_duplicate(self, agent_kit: Path, tmp_path: Path):
        """Merging the same kit twice keeps file lists unique."""
        registry = Registry()
        dest = tmp_path / "dest"

        merge_kit(agent_kit, dest, "kit_a", registry)
        merge_kit(agent_kit, dest, "kit_a", registry)

        files = registry.kits["kit_a"].files
        assert len(files) == len(set(files)) == 3

    def test_copy_failure_is_skipped(self, agent_kit: Path, tmp_path: Path):
        """A file that can't be copied is reported and the merge continues."""
        import shutil

        real_copy2 = shutil.copy2

        def flaky_copy(src, dst, *args, **kwargs):
            if Path(src).name == "deploy.md":
                raise PermissionError("locked")
            return real_copy2(src, dst, *args, **kwargs)

        registry = Registry()
        dest = tmp_path / "dest"
        with patch("agkit.merger.shutil.copy2", side_effect=flaky_copy):
            result = merge_kit(agent_kit, dest, "kit_a", registry)

        assert [s.path for s in result.skipped] == ["workflows/deploy.md"]
        assert "locked" in result.skipped[0].reason
        assert "workflows/deploy.md" not in result.copied
        assert "workflows/deploy.md" not in registry.kits["kit_a"].files
        assert (dest / "skills" / "pdf" / "SKILL.md").exists()
        assert (dest / "rules" / "style.md").exists()

    def test_paths_use_forward_slashes(self, agent_kit: Path, tmp_path: Path):
        """Registry paths are stored in POSIX form."""
        result = merge_kit(agent_kit, tmp_path / "dest", "kit_a", Registry())

        assert all("\\" not in p for p in result.copied)
