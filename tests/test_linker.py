"""Tests for workspace links."""

import sys
from pathlib import Path

import pytest

from agkit.linker import LinkError, create_dir_link, remove_link


class TestRemoveLink:
    """Tests for remove_link."""

    def test_nothing_there(self, tmp_path: Path):
        """A missing path is not an error."""
        assert remove_link(tmp_path / ".agent") is False

    def test_removes_symlink_only(self, tmp_path: Path):
        """The link goes, the target stays."""
        target = tmp_path / "store"
        target.mkdir()
        (target / "keep.md").write_text("x")
        link = tmp_path / ".agent"
        link.symlink_to(target, target_is_directory=True)

        assert remove_link(link) is True
        assert not link.exists() and not link.is_symlink()
        assert (target / "keep.md").exists()

    def test_real_file(self, tmp_path: Path):
        """A regular file in the way is refused too."""
        (tmp_path / ".agent").write_text("x")

        with pytest.raises(LinkError):
            remove_link(tmp_path / ".agent")


class TestCreateDirLink:
    """Tests for create_dir_link."""

    def test_creates_link(self, tmp_path: Path):
        target = tmp_path / "store"
        target.mkdir()
        link = tmp_path / ".agent"

        create_dir_link(target, link)

        assert link.is_symlink()
        assert link.resolve() == target.resolve()

    @pytest.mark.skipif(sys.platform == "win32", reason="junction fallback on Windows")
    def test_failure_raises(self, tmp_path: Path):
        """An occupied link path raises LinkError."""
        target = tmp_path / "store"
        target.mkdir()
        (tmp_path / ".agent").mkdir()

        with pytest.raises(LinkError, match="Failed to create link"):
            create_dir_link(target, tmp_path / ".agent")
