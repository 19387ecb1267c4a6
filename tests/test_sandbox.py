"""
Tests for PathSandbox.

The sandbox must judge a path by where it resolves, not by how it is
spelled: traversal segments that land back inside a root are fine,
ones that escape are not.
"""

import os

import pytest

from mcphost.config import SandboxConfig
from mcphost.sandbox import PathSandbox, SandboxViolation


@pytest.fixture
def root(tmp_path):
    allowed = tmp_path / "allowed"
    (allowed / "sub").mkdir(parents=True)
    return allowed


class TestIsAllowed:
    """Tests for the allowlist check."""

    def test_root_itself_allowed(self, root):
        sandbox = PathSandbox([root])
        assert sandbox.is_allowed(root)

    def test_nested_path_allowed(self, root):
        sandbox = PathSandbox([root])
        assert sandbox.is_allowed(root / "sub" / "file.txt")

    def test_nonexistent_nested_path_allowed(self, root):
        sandbox = PathSandbox([root])
        assert sandbox.is_allowed(root / "new" / "deeper" / "file.txt")

    def test_traversal_back_inside_allowed(self, root):
        sandbox = PathSandbox([root])
        assert sandbox.is_allowed(f"{root}/sub/../sub/./file.txt")

    def test_traversal_outside_denied(self, root):
        sandbox = PathSandbox([root])
        assert not sandbox.is_allowed(f"{root}/sub/../../outside.txt")

    def test_sibling_with_common_prefix_denied(self, root):
        """A plain string-prefix check would wrongly allow 'allowed-evil'."""
        sibling = root.parent / "allowed-evil"
        sibling.mkdir()
        sandbox = PathSandbox([root])
        assert not sandbox.is_allowed(sibling / "file.txt")

    def test_relative_path_resolved_against_cwd(self, root, monkeypatch):
        monkeypatch.chdir(root / "sub")
        sandbox = PathSandbox([root])

        assert sandbox.is_allowed("file.txt")
        assert not sandbox.is_allowed("../../escape.txt")

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
    def test_symlink_escape_denied(self, root, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        link = root / "link"
        link.symlink_to(outside, target_is_directory=True)
        sandbox = PathSandbox([root])

        assert not sandbox.is_allowed(link / "secret.txt")

    def test_empty_sandbox_denies_everything(self, root):
        assert not PathSandbox().is_allowed(root)


class TestValidate:
    """validate() returns the canonical path or raises with the attempted path."""

    def test_returns_canonical_path(self, root):
        sandbox = PathSandbox([root])
        resolved = sandbox.validate(f"{root}/sub/../sub/a.txt")
        assert resolved == (root / "sub" / "a.txt").resolve()

    def test_violation_names_path(self, root):
        sandbox = PathSandbox([root])
        attempted = f"{root}/../../etc/passwd"

        with pytest.raises(SandboxViolation) as exc_info:
            sandbox.validate(attempted)

        assert exc_info.value.path == attempted
        assert attempted in str(exc_info.value)


class TestRoots:
    """Roots can change at runtime."""

    def test_add_and_remove_root(self, root, tmp_path):
        other = tmp_path / "other"
        other.mkdir()
        sandbox = PathSandbox([root])

        sandbox.add_root(other)
        assert sandbox.is_allowed(other / "x")

        assert sandbox.remove_root(other)
        assert not sandbox.is_allowed(other / "x")
        assert not sandbox.remove_root(other)

    def test_duplicate_roots_collapsed(self, root):
        sandbox = PathSandbox([root, f"{root}/sub/.."])
        assert sandbox.roots == [root.resolve()]

    def test_from_config_defaults(self, root):
        sandbox = PathSandbox.from_config(SandboxConfig(extra_roots=[str(root)]))
        roots = sandbox.roots

        assert root.resolve() in roots
        assert sandbox.is_allowed(os.path.expanduser("~/notes.txt"))

    def test_from_config_without_defaults(self, root):
        sandbox = PathSandbox.from_config(
            SandboxConfig(extra_roots=[str(root)], include_defaults=False)
        )
        assert sandbox.roots == [root.resolve()]
