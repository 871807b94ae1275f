"""Source tree reader.

Walks a site's input roots and classifies every file. The result is a pure
function of the filesystem at the time of the walk; parsing content is left
to the build graph so parse failures become node errors.
"""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import ConfigurationError
from .frontmatter import DATA_FILENAME
from .styles import is_style_entry
from .utils import is_hidden, is_markdown

if TYPE_CHECKING:
    from .config import Site


class FileKind(enum.Enum):
    CONTENT = "content"
    DATA = "data"
    TEMPLATE = "template"
    STYLE = "style"
    ASSET = "asset"
    CONFIG = "config"
    IGNORED = "ignored"


def _within(path: Path, root: Path) -> Path | None:
    try:
        return path.relative_to(root)
    except ValueError:
        return None


def classify(site: Site, path: Path) -> tuple[FileKind, str]:
    """Classify a path inside a site.

    Args:
        site: Site the path may belong to.
        path: Absolute path of a file (it may no longer exist).

    Returns:
        Tuple of (kind, path relative to the root it belongs to, POSIX form).
        The relative path is empty for ignored files.
    """
    path = Path(os.path.abspath(path))
    if path == site.config_path:
        return FileKind.CONFIG, path.name
    if _within(path, site.output_root) is not None:
        return FileKind.IGNORED, ""

    rel = _within(path, site.content_root)
    if rel is not None:
        if any(is_hidden(Path(part)) for part in rel.parts):
            return FileKind.IGNORED, ""
        if rel.name == DATA_FILENAME:
            return FileKind.DATA, rel.as_posix()
        if not is_markdown(rel):
            return FileKind.IGNORED, ""
        if any(part.startswith("_") for part in rel.parts[:-1]):
            return FileKind.IGNORED, ""
        if rel.name.startswith("_") and not site.include_drafts:
            return FileKind.IGNORED, ""
        return FileKind.CONTENT, rel.as_posix()

    for root, kind in (
        (site.templates_root, FileKind.TEMPLATE),
        (site.styles_root, FileKind.STYLE),
        (site.static_root, FileKind.ASSET),
    ):
        rel = _within(path, root)
        if rel is not None:
            if not rel.parts or any(is_hidden(Path(part)) for part in rel.parts):
                return FileKind.IGNORED, ""
            return kind, rel.as_posix()
    return FileKind.IGNORED, ""


def is_bundle(rel: str) -> bool:
    """Style entry points are the non-partial files at the top of the styles root."""
    return "/" not in rel and is_style_entry(Path(rel))


@dataclass
class SourceTree:
    """Classified files of one site, each list sorted by relative path.

    Attributes:
        content: Content sources (absolute paths).
        data: ``_data.yaml`` cascade files (absolute paths).
        templates: Template names relative to the templates root.
        styles: Style entry points (absolute paths); partials are omitted.
        assets: Static files (absolute paths).
    """

    content: list[Path] = field(default_factory=list)
    data: list[Path] = field(default_factory=list)
    templates: list[str] = field(default_factory=list)
    styles: list[Path] = field(default_factory=list)
    assets: list[Path] = field(default_factory=list)


def _walk(root: Path):
    if not root.is_dir():
        return
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not is_hidden(Path(d)))
        for filename in sorted(filenames):
            yield Path(dirpath) / filename


def read_tree(site: Site) -> SourceTree:
    """Walk and classify a site's sources.

    Raises:
        ConfigurationError: If the site root cannot be read.
    """
    if not os.access(site.root, os.R_OK | os.X_OK):
        raise ConfigurationError("site root is not readable", site.root)

    tree = SourceTree()
    seen: set[Path] = set()
    for root in (site.content_root, site.templates_root, site.styles_root, site.static_root):
        for path in _walk(root):
            if path in seen:
                continue
            seen.add(path)
            kind, rel = classify(site, path)
            if kind is FileKind.CONTENT:
                tree.content.append(path)
            elif kind is FileKind.DATA:
                tree.data.append(path)
            elif kind is FileKind.TEMPLATE:
                tree.templates.append(rel)
            elif kind is FileKind.STYLE and is_bundle(rel):
                tree.styles.append(path)
            elif kind is FileKind.ASSET:
                tree.assets.append(path)

    tree.content.sort()
    # shallower cascade files first
    tree.data.sort(key=lambda p: (len(p.parts), p))
    tree.templates.sort()
    tree.styles.sort()
    tree.assets.sort()
    return tree
