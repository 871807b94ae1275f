"""Style compilation for Kiln.

Entry points are the files in the styles root whose names do not start
with ``_``; underscore files are partials pulled in by ``@import``/``@use``.
Plain ``.css`` entries are published as they are. Sass entries are compiled
by the ``sass`` executable (Dart Sass), found on PATH or in the project's
``node_modules/.bin``.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from pathlib import Path

from .errors import StyleCompileError

logger = logging.getLogger(__name__)

STYLE_SUFFIXES = {".css", ".scss", ".sass"}
IMPORT_RE = re.compile(r"""@(?:import|use|forward)\s+["']([^"']+)["']""")


def is_style_entry(path: Path) -> bool:
    return path.suffix.lower() in STYLE_SUFFIXES and not path.name.startswith("_")


def find_executable(name: str, project_root: Path | None = None) -> str | None:
    """Find an executable in PATH or local node_modules.

    Args:
        name: Name of the executable to find (e.g., 'sass').
        project_root: Optional project root directory to search for
            local node_modules installations.

    Returns:
        Full path to the executable if found, None otherwise.
    """
    found = shutil.which(name)
    if found:
        return found

    if project_root is not None:
        local = project_root / "node_modules" / ".bin" / name
        if local.exists():
            return str(local)

    return None


class StyleCompiler:
    """Compiles style entry points to CSS.

    Attributes:
        styles_root: Directory holding entries and partials (also the Sass
            load path).
        project_root: Where to look for a local ``node_modules``.
    """

    def __init__(self, styles_root: Path, project_root: Path | None = None):
        self.styles_root = styles_root
        self.project_root = project_root

    def compile(self, entry: Path) -> tuple[bytes, list[Path]]:
        """Compile one entry point.

        Args:
            entry: Style entry file.

        Returns:
            Tuple of (CSS bytes, dependency paths found in the source). The
            dependencies are informational; callers recompile every entry
            when anything under the styles root changes.

        Raises:
            StyleCompileError: If the source cannot be read, the compiler is
                missing, or compilation fails.
        """
        try:
            source = entry.read_text(encoding="utf-8")
        except OSError as exc:
            raise StyleCompileError(f"cannot read: {exc}", entry, exc) from exc
        deps = self.discover_dependencies(entry, source)

        if entry.suffix.lower() == ".css":
            return source.encode("utf-8"), deps

        sass = find_executable("sass", self.project_root)
        if not sass:
            raise StyleCompileError(
                "sass executable not found; install Dart Sass "
                "(`npm install -g sass`) or add it to node_modules",
                entry,
            )
        cmd = [
            sass,
            "--no-source-map",
            f"--load-path={self.styles_root}",
            str(entry),
        ]
        logger.debug("running %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, capture_output=True, check=False)
        except OSError as exc:
            raise StyleCompileError(f"cannot run sass: {exc}", entry, exc) from exc
        if result.returncode != 0:
            message = result.stderr.decode("utf-8", "replace").strip()
            raise StyleCompileError(message or f"sass exited with {result.returncode}", entry)
        return result.stdout, deps

    def discover_dependencies(self, entry: Path, source: str) -> list[Path]:
        """Resolve ``@import``/``@use``/``@forward`` targets that exist on disk."""
        found: list[Path] = []
        for target in IMPORT_RE.findall(source):
            if target.startswith(("http:", "https:", "//", "sass:")):
                continue
            ref = Path(target)
            for base in (entry.parent, self.styles_root):
                for candidate in _partial_candidates(base / ref):
                    if candidate.is_file() and candidate not in found:
                        found.append(candidate)
                        break
        return found


def _partial_candidates(path: Path) -> list[Path]:
    if path.suffix in STYLE_SUFFIXES:
        return [path, path.with_name(f"_{path.name}")]
    names = []
    for suffix in (".scss", ".sass", ".css"):
        names.append(path.with_name(f"{path.name}{suffix}"))
        names.append(path.with_name(f"_{path.name}{suffix}"))
    return names
