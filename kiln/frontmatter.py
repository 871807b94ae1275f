"""Front matter parsing and the ``_data.yaml`` cascade.

Front matter is a YAML mapping between ``---`` fences at the top of a
content file. Unlike a lenient reader, a malformed block is an error: the
item fails instead of silently rendering its YAML as body text.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError, FrontMatterError

FRONTMATTER_RE = re.compile(r"\A---[ \t]*\n(.*?)^---[ \t]*$\n?", re.DOTALL | re.MULTILINE)

DATA_FILENAME = "_data.yaml"


def split_front_matter(text: str, path: Path | None = None) -> tuple[dict[str, Any], str]:
    """Split raw file text into a front-matter mapping and the body.

    Args:
        text: Raw file content.
        path: Source path, for error messages.

    Returns:
        Tuple of (front matter dict, remaining body).

    Raises:
        FrontMatterError: If the block is unterminated, not valid YAML,
            or not a mapping.
    """
    if text.startswith("\ufeff"):
        text = text[1:]
    if not text.startswith("---"):
        return {}, text
    match = FRONTMATTER_RE.match(text)
    if not match:
        raise FrontMatterError("unterminated front matter block", path)
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        raise FrontMatterError(f"invalid YAML: {exc}", path, exc) from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise FrontMatterError("front matter must be a mapping", path)
    return data, text[match.end() :]


def coerce_datetime(value: Any, path: Path | None = None, key: str = "date") -> datetime | None:
    """Normalise a YAML date value to an aware UTC datetime.

    Naive values are taken to be UTC so output never depends on the
    machine's timezone.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        result = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            result = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise FrontMatterError(f"invalid {key}: {value!r}", path, exc) from exc
    else:
        raise FrontMatterError(f"invalid {key}: {value!r}", path)
    if result.tzinfo is None:
        result = result.replace(tzinfo=timezone.utc)
    return result.astimezone(timezone.utc)


class DataCascade:
    """Directory-scoped default front matter.

    Each ``_data.yaml`` applies to every content item in its directory and
    below. When several apply, the nearer directory wins key by key.
    """

    def __init__(self, content_root: Path, layers: dict[str, dict[str, Any]] | None = None):
        self.content_root = content_root
        # directory relative to content root ("" for the root) -> mapping
        self.layers: dict[str, dict[str, Any]] = dict(layers or {})

    @classmethod
    def load(cls, content_root: Path, data_paths: list[Path]) -> DataCascade:
        cascade = cls(content_root)
        for path in data_paths:
            cascade.set_layer(path)
        return cascade

    @staticmethod
    def read_layer(path: Path) -> dict[str, Any]:
        """Read one ``_data.yaml`` file.

        Raises:
            ConfigurationError: If the file cannot be read or is not a YAML
                mapping.
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"invalid YAML: {exc}", path, exc) from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigurationError(f"cannot read data file: {exc}", path, exc) from exc
        if not isinstance(data, dict):
            raise ConfigurationError("data file must be a mapping", path)
        return data

    def _key(self, path: Path) -> str:
        rel = path.parent.relative_to(self.content_root).as_posix()
        return "" if rel == "." else rel

    def set_layer(self, path: Path) -> str:
        key = self._key(path)
        self.layers[key] = self.read_layer(path)
        return key

    def remove_layer(self, path: Path) -> str:
        key = self._key(path)
        self.layers.pop(key, None)
        return key

    def resolve(self, rel_path: str) -> dict[str, Any]:
        """Merged defaults for a content item at ``rel_path``."""
        parts = Path(rel_path).parent.parts
        merged: dict[str, Any] = {}
        for depth in range(len(parts) + 1):
            key = "/".join(parts[:depth])
            layer = self.layers.get(key)
            if layer:
                merged.update(layer)
        return merged

    def copy(self) -> DataCascade:
        return DataCascade(self.content_root, {k: dict(v) for k, v in self.layers.items()})
