"""Choosing which files to analyze when the CLI is pointed at a directory.

Patterns use gitignore syntax via the pathspec library. Rules, strongest first:

1. ``.defuseignore`` in the project root. A ``!pattern`` there forces a file
   back in, even when git ignores it.
2. ``.gitignore``, asked through ``git check-ignore`` when the project is a
   git checkout.
3. DEFAULT_PATTERNS, used in place of a missing ``.defuseignore``.
"""

from __future__ import annotations

import logging
import subprocess
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathspec import PathSpec

logger = logging.getLogger(__name__)

IGNORE_FILE_NAME = ".defuseignore"

DEFAULT_PATTERNS = """\
# defuse ignore patterns (gitignore syntax)

# Environments and tool caches
.venv/
venv/
env/
__pycache__/
.tox/
.nox/
.pytest_cache/
.mypy_cache/
.ruff_cache/

# Packaging output
dist/
build/
*.egg-info/

# VCS metadata
.git/
.hg/
.svn/
"""


def _git(args: list[str], cwd: str | Path) -> int | None:
    """Run a git command quietly; None when git can't be run at all."""
    try:
        return subprocess.run(
            ["git", *args], cwd=str(cwd), capture_output=True, timeout=5
        ).returncode
    except (subprocess.TimeoutExpired, FileNotFoundError, OSError) as e:
        logger.debug(f"git {args[0]} failed in {cwd}: {e}")
        return None


@lru_cache(maxsize=128)
def is_git_repo(project_dir: str) -> bool:
    """Whether ``project_dir`` lies inside a git work tree."""
    return _git(["rev-parse", "--git-dir"], project_dir) == 0


def _relative(file_path: Path, project_dir: Path) -> Path:
    try:
        return file_path.relative_to(project_dir)
    except ValueError:
        return file_path


def is_gitignored(file_path: str | Path, project_dir: str | Path) -> bool:
    """Ask git whether it ignores ``file_path`` (exit status 0 means yes)."""
    rel_path = _relative(Path(file_path), Path(project_dir))
    return _git(["check-ignore", "-q", str(rel_path)], project_dir) == 0


def load_ignore_patterns(project_dir: str | Path) -> PathSpec:
    """Compile the project's ``.defuseignore``, or DEFAULT_PATTERNS without one."""
    import pathspec

    ignore_path = Path(project_dir) / IGNORE_FILE_NAME
    if ignore_path.is_file():
        lines = ignore_path.read_text(encoding="utf-8").splitlines()
        logger.debug(f"Using ignore patterns from {ignore_path}")
    else:
        lines = DEFAULT_PATTERNS.splitlines()

    return pathspec.PathSpec.from_lines("gitwildmatch", lines)


def _negated(spec: PathSpec, rel_path: str) -> bool:
    """Whether some ``!pattern`` in the spec names this path."""
    return any(
        pattern.include is False
        and pattern.regex is not None
        and pattern.regex.match(rel_path)
        for pattern in spec.patterns
    )


def should_ignore(
    file_path: str | Path,
    project_dir: str | Path,
    spec: PathSpec | None = None,
    use_gitignore: bool = True,
) -> bool:
    """
    Decide whether a file is left out of a directory run.

    Args:
        file_path: File to check, absolute or relative to ``project_dir``
        project_dir: Project root holding ``.defuseignore``
        spec: Already compiled patterns, to avoid re-reading the file per call
        use_gitignore: Consult git when ``.defuseignore`` says nothing
    """
    if spec is None:
        spec = load_ignore_patterns(project_dir)

    project_path = Path(project_dir)
    rel_path = _relative(Path(file_path), project_path).as_posix()

    if spec.match_file(rel_path):
        return True
    if _negated(spec, rel_path):
        # Explicitly re-included: git doesn't get a say
        return False

    if use_gitignore and is_git_repo(str(project_path)):
        return is_gitignored(file_path, project_path)
    return False


def find_python_files(
    project_dir: str | Path,
    respect_ignore: bool = True,
    use_gitignore: bool = True,
) -> list[Path]:
    """Get the project's ``.py`` files sorted by path, without ignored ones."""
    project_path = Path(project_dir)
    files = sorted(p for p in project_path.rglob("*.py") if p.is_file())
    if not respect_ignore:
        return files

    spec = load_ignore_patterns(project_path)
    kept = [f for f in files if not should_ignore(f, project_path, spec, use_gitignore)]
    if len(kept) < len(files):
        logger.debug(f"Ignored {len(files) - len(kept)} of {len(files)} files under {project_path}")
    return kept
