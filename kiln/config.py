"""Site configuration.

``kiln.yaml`` is read with ``yaml.safe_load`` and merged over
``DEFAULT_CONFIG``. A project either describes a single site at its root or
lists several under ``sites:``; each entry inherits the top-level keys and
becomes one immutable :class:`Site`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

from .collections import CollectionDefinition
from .errors import ConfigurationError
from .feeds import FeedDefinition
from .validation import FieldSpec

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "kiln.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "output_dir": "output",
    "url": "",
    "title": "",
    "description": "",
    "author": None,
    "content_dir": "content",
    "templates_dir": "templates",
    "styles_dir": "styles",
    "static_dir": "static",
    "style_output": "css",
    "default_template": "page",
    "collections": {},
    "feeds": [],
    "schema": {},
    "port": 4000,
    "ws_port": None,
    "debounce_ms": 200,
    "workers": None,
}


@dataclass(frozen=True)
class Author:
    name: str
    email: str = ""
    url: str = ""

    @classmethod
    def from_config(cls, value: Any) -> Author | None:
        if not value:
            return None
        if isinstance(value, str):
            return cls(name=value)
        if isinstance(value, dict) and value.get("name"):
            return cls(
                name=str(value["name"]),
                email=str(value.get("email", "")),
                url=str(value.get("url", "")),
            )
        raise ConfigurationError(f"invalid author: {value!r}")


@dataclass(frozen=True)
class Site:
    """One publishable unit: an input tree and the output tree built from it.

    Attributes:
        name: Site name, unique within a project.
        root: Input root directory.
        output_root: Directory the site is published into.
        url: Absolute base URL used for feeds and ``absolute_url``.
        collections: Named content groupings.
        feeds: Feed definitions over collections.
        schema: Declared front-matter fields.
        include_drafts: Build ``_``-prefixed draft content.
    """

    name: str
    root: Path
    output_root: Path
    url: str = ""
    title: str = ""
    description: str = ""
    author: Author | None = None
    content_dir: str = "content"
    templates_dir: str = "templates"
    styles_dir: str = "styles"
    static_dir: str = "static"
    style_output: str = "css"
    default_template: str = "page"
    collections: tuple[CollectionDefinition, ...] = ()
    feeds: tuple[FeedDefinition, ...] = ()
    schema: tuple[FieldSpec, ...] = ()
    include_drafts: bool = False
    port: int = 4000
    ws_port: int | None = None
    debounce_ms: int = 200
    workers: int | None = None
    config_file: Path | None = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def content_root(self) -> Path:
        return self.root / self.content_dir

    @property
    def templates_root(self) -> Path:
        return self.root / self.templates_dir

    @property
    def styles_root(self) -> Path:
        return self.root / self.styles_dir

    @property
    def static_root(self) -> Path:
        return self.root / self.static_dir

    @property
    def config_path(self) -> Path:
        return self.config_file or self.root / CONFIG_FILENAME

    @property
    def base_path(self) -> str:
        """URL path component of the base URL, without trailing slash."""
        return urlparse(self.url).path.rstrip("/")

    def collection(self, name: str) -> CollectionDefinition | None:
        for definition in self.collections:
            if definition.name == name:
                return definition
        return None


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML: {exc}", path, exc) from exc
    except OSError as exc:
        raise ConfigurationError(f"cannot read: {exc}", path, exc) from exc
    if not isinstance(loaded, dict):
        raise ConfigurationError("configuration must be a mapping", path)
    return loaded


def load_config(project_root: Path) -> dict[str, Any]:
    """Load project configuration from kiln.yaml.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing configuration values, with defaults applied.

    Raises:
        ConfigurationError: If the file is not valid YAML or not a mapping.
    """
    config = DEFAULT_CONFIG.copy()
    config_path = project_root / CONFIG_FILENAME
    if config_path.exists():
        config.update(_read_yaml(config_path))
    return config


def _parse_collections(raw: Any) -> tuple[CollectionDefinition, ...]:
    if not raw:
        return ()
    if isinstance(raw, list):
        raw = {name: {} for name in raw}
    if not isinstance(raw, dict):
        raise ConfigurationError("collections must be a mapping of name to rule")
    return tuple(
        CollectionDefinition.from_config(name, rule or {})
        for name, rule in sorted(raw.items())
    )


def _parse_feeds(raw: Any, collections: tuple[CollectionDefinition, ...]):
    if not raw:
        return ()
    if not isinstance(raw, list):
        raise ConfigurationError("feeds must be a list")
    names = {c.name for c in collections}
    feeds = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise ConfigurationError(f"invalid feed entry: {entry!r}")
        feed = FeedDefinition.from_config(entry)
        if feed.collection not in names:
            raise ConfigurationError(
                f"feed references unknown collection '{feed.collection}'"
            )
        feeds.append(feed)
    return tuple(feeds)


def _parse_schema(raw: Any) -> tuple[FieldSpec, ...]:
    if not raw:
        return ()
    if not isinstance(raw, dict):
        raise ConfigurationError("schema must be a mapping of field to type")
    return tuple(FieldSpec.from_config(name, spec) for name, spec in raw.items())


def _build_site(
    name: str,
    root: Path,
    output_root: Path,
    config: dict[str, Any],
    include_drafts: bool,
    config_file: Path,
) -> Site:
    if not root.is_dir():
        raise ConfigurationError("site root is not a readable directory", root)
    resolved_root = root.resolve()
    resolved_out = output_root.resolve()
    if resolved_out == resolved_root or resolved_out in resolved_root.parents:
        raise ConfigurationError(
            f"output directory {output_root} would contain the site sources", root
        )

    collections = _parse_collections(config.get("collections"))
    known = set(DEFAULT_CONFIG) | {"sites", "name", "root"}
    return Site(
        name=name,
        root=resolved_root,
        output_root=resolved_out,
        url=str(config.get("url") or ""),
        title=str(config.get("title") or ""),
        description=str(config.get("description") or ""),
        author=Author.from_config(config.get("author")),
        content_dir=str(config["content_dir"]),
        templates_dir=str(config["templates_dir"]),
        styles_dir=str(config["styles_dir"]),
        static_dir=str(config["static_dir"]),
        style_output=str(config["style_output"]).strip("/"),
        default_template=str(config["default_template"]),
        collections=collections,
        feeds=_parse_feeds(config.get("feeds"), collections),
        schema=_parse_schema(config.get("schema")),
        include_drafts=include_drafts,
        port=int(config["port"]),
        ws_port=int(config["ws_port"]) if config.get("ws_port") else None,
        debounce_ms=int(config["debounce_ms"]),
        workers=int(config["workers"]) if config.get("workers") else None,
        config_file=config_file.resolve(),
        extra={k: v for k, v in config.items() if k not in known},
    )


def load_sites(
    project_root: Path,
    output_override: Path | None = None,
    include_drafts: bool = False,
) -> list[Site]:
    """Load every site described by a project's configuration.

    Args:
        project_root: Directory holding kiln.yaml (or a single bare site).
        output_override: Output directory from the command line. With several
            sites each one is published into ``<override>/<name>``.
        include_drafts: Build draft content.

    Returns:
        Sites in configuration order.

    Raises:
        ConfigurationError: On malformed configuration, duplicate site names
            or an unusable site root.
    """
    project_root = Path(project_root)
    if not project_root.is_dir():
        raise ConfigurationError("site root is not a readable directory", project_root)
    config = load_config(project_root)
    config_path = project_root / CONFIG_FILENAME
    entries = config.get("sites")

    if not entries:
        output = output_override or project_root / config["output_dir"]
        name = config.get("name") or project_root.resolve().name or "site"
        return [
            _build_site(
                str(name), project_root, Path(output), config, include_drafts, config_path
            )
        ]

    if not isinstance(entries, list):
        raise ConfigurationError("sites must be a list", config_path)

    sites: list[Site] = []
    seen: set[str] = set()
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("name"):
            raise ConfigurationError(
                f"each site needs a name: {entry!r}", config_path
            )
        name = str(entry["name"])
        if name in seen:
            raise ConfigurationError(f"duplicate site name '{name}'")
        seen.add(name)
        merged = {k: v for k, v in config.items() if k != "sites"}
        merged.update(entry)
        root = project_root / str(entry.get("root", name))
        if output_override is not None:
            output = Path(output_override) / name
        elif "output_dir" in entry:
            output = root / str(entry["output_dir"])
        else:
            output = project_root / str(config["output_dir"]) / name
        sites.append(
            _build_site(name, root, output, merged, include_drafts, config_path)
        )
        logger.debug("configured site %s at %s", name, root)
    return sites
