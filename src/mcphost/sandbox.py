"""
Path Sandbox - the filesystem allowlist every file tool goes through.

Paths are canonicalized (user expansion, absolute form, symlinks and ".."
resolved) before they are compared against the allowed roots, so a path
like "<root>/../etc/passwd" is judged by where it actually points.
"""

import logging
import tempfile
import threading
from collections.abc import Iterable
from pathlib import Path

from mcphost.config import SandboxConfig, default_data_dir

logger = logging.getLogger(__name__)


class SandboxViolation(PermissionError):
    """Raised when a path resolves outside every allowed root."""

    def __init__(self, path: str, resolved: Path | None = None) -> None:
        self.path = path
        self.resolved = resolved
        super().__init__(f"Access denied - path outside allowed directories: {path}")


def canonical(path: str | Path) -> Path:
    """Absolute, fully resolved form of a path. The path need not exist."""
    return Path(path).expanduser().resolve()


def default_roots() -> list[Path]:
    """User home, the temp directory and the application data directory."""
    return [Path.home(), Path(tempfile.gettempdir()), default_data_dir()]


class PathSandbox:
    """
    Allowlist of root directories.

    A path is allowed iff its canonical form equals one of the roots or
    sits beneath one. Roots can be added or removed at runtime.
    """

    def __init__(self, roots: Iterable[str | Path] = ()) -> None:
        self._lock = threading.Lock()
        self._roots: tuple[Path, ...] = ()
        for root in roots:
            self.add_root(root)

    @classmethod
    def from_config(cls, config: SandboxConfig | None = None) -> "PathSandbox":
        """Sandbox seeded with the default roots plus any configured ones."""
        config = config or SandboxConfig.from_env()
        roots: list[str | Path] = []
        if config.include_defaults:
            roots.extend(default_roots())
        roots.extend(config.extra_roots)
        return cls(roots)

    @property
    def roots(self) -> list[Path]:
        return list(self._roots)

    def add_root(self, root: str | Path) -> Path:
        """Allow a directory (and everything beneath it)."""
        resolved = canonical(root)
        with self._lock:
            if resolved not in self._roots:
                self._roots = (*self._roots, resolved)
                logger.debug(f"Sandbox root added: {resolved}")
        return resolved

    def remove_root(self, root: str | Path) -> bool:
        resolved = canonical(root)
        with self._lock:
            if resolved not in self._roots:
                return False
            self._roots = tuple(r for r in self._roots if r != resolved)
        logger.debug(f"Sandbox root removed: {resolved}")
        return True

    def is_allowed(self, path: str | Path) -> bool:
        """True iff the canonical path is a root or nested under one."""
        try:
            resolved = canonical(path)
        except (OSError, RuntimeError, ValueError):
            return False
        return any(resolved == root or resolved.is_relative_to(root) for root in self._roots)

    def validate(self, path: str | Path) -> Path:
        """
        Canonical path if it is allowed.

        Raises:
            SandboxViolation: If the path resolves outside every root
        """
        try:
            resolved = canonical(path)
        except (OSError, RuntimeError, ValueError) as e:
            raise SandboxViolation(str(path)) from e
        if not any(resolved == root or resolved.is_relative_to(root) for root in self._roots):
            logger.warning(f"Sandbox rejected path: {path} -> {resolved}")
            raise SandboxViolation(str(path), resolved)
        return resolved
