"""Content model for Kiln.

A content item is one Markdown source file with YAML front matter. Parsing
resolves the data cascade, validates the result and fixes the item's output
path and URL; rendering happens later, inside the build node.

Key classes:
- FrontMatter: Typed view of an item's resolved front matter.
- ContentItem: A parsed content source with its output location and fingerprint.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

from .errors import FrontMatterError, ValidationFailed
from .frontmatter import coerce_datetime, split_front_matter
from .utils import extract_date_from_name, first_paragraph, slugify, titleize

if TYPE_CHECKING:
    from .config import Site
    from .frontmatter import DataCascade
    from .protocols import MetadataValidator

KNOWN_KEYS = frozenset(
    {
        "title",
        "date",
        "updated",
        "tags",
        "template",
        "permalink",
        "draft",
        "collections",
        "summary",
    }
)


def _as_list(value: Any, key: str, path: Path | None) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(v.strip() for v in value.split(",") if v.strip())
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value)
    raise FrontMatterError(f"{key} must be a list", path)


@dataclass(frozen=True)
class FrontMatter:
    """Resolved front matter of a content item.

    Attributes:
        title: Explicit title, if any.
        date: Publish date (front matter or filename prefix), UTC.
        updated: Last-updated date, UTC.
        tags: Topic tags.
        template: Template name; the site default applies when None.
        permalink: Output path override.
        draft: Draft flag.
        collections: Collections this page lists (listing and archive pages).
        summary: Explicit summary for feeds.
        extra: Every other key, passed through to templates.
    """

    title: str | None = None
    date: datetime | None = None
    updated: datetime | None = None
    tags: tuple[str, ...] = ()
    template: str | None = None
    permalink: str | None = None
    draft: bool = False
    collections: tuple[str, ...] = ()
    summary: str | None = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_mapping(
        cls, data: dict[str, Any], path: Path | None = None, fallback_date: datetime | None = None
    ) -> FrontMatter:
        """Build a FrontMatter from a merged mapping.

        Raises:
            FrontMatterError: If a known key has the wrong shape.
        """
        title = data.get("title")
        template = data.get("template")
        permalink = data.get("permalink")
        summary = data.get("summary")
        return cls(
            title=str(title) if title is not None else None,
            date=coerce_datetime(data.get("date"), path) or fallback_date,
            updated=coerce_datetime(data.get("updated"), path, "updated"),
            tags=_as_list(data.get("tags"), "tags", path),
            template=str(template) if template else None,
            permalink=str(permalink) if permalink is not None else None,
            draft=bool(data.get("draft", False)),
            collections=_as_list(data.get("collections"), "collections", path),
            summary=str(summary) if summary is not None else None,
            extra={k: v for k, v in data.items() if k not in KNOWN_KEYS},
        )

    def as_dict(self) -> dict[str, Any]:
        """Flat mapping for templates and validators."""
        data = dict(self.extra)
        data.update(
            title=self.title,
            date=self.date,
            updated=self.updated,
            tags=list(self.tags),
            template=self.template,
            permalink=self.permalink,
            draft=self.draft,
            collections=list(self.collections),
            summary=self.summary,
        )
        return data


@dataclass(frozen=True)
class ContentItem:
    """A parsed content source.

    Attributes:
        source_path: Absolute path of the Markdown file.
        rel_path: Path relative to the content root, POSIX form.
        front_matter: Resolved front matter (cascade applied).
        body: Raw Markdown body.
        output_path: Output path relative to the output root, POSIX form.
        url: Site-relative URL, always starting with ``/``.
        fingerprint: Hash of the source bytes and resolved front matter.
    """

    source_path: Path
    rel_path: str
    front_matter: FrontMatter
    body: str
    output_path: str
    url: str
    fingerprint: str

    @property
    def title(self) -> str:
        return self.front_matter.title or titleize(PurePosixPath(self.rel_path).name)

    @property
    def date(self) -> datetime | None:
        return self.front_matter.date

    @property
    def last_modified(self) -> datetime | None:
        return self.front_matter.updated or self.front_matter.date

    @property
    def tags(self) -> tuple[str, ...]:
        return self.front_matter.tags

    @property
    def summary(self) -> str:
        return self.front_matter.summary or first_paragraph(self.body)

    @property
    def meta(self) -> dict[str, Any]:
        return self.front_matter.as_dict()


def output_for(rel_path: str, permalink: str | None) -> tuple[str, str]:
    """Resolve the output path and URL of a content item.

    ``posts/2024-01-02-hello.md`` publishes to ``posts/hello.html``; an
    ``index.md`` publishes to ``index.html`` and is addressed by its
    directory URL. A permalink ending in ``/`` publishes to
    ``<permalink>index.html``.

    Args:
        rel_path: Source path relative to the content root.
        permalink: Front matter override, if any.

    Returns:
        Tuple of (output path, URL).
    """
    if permalink is not None:
        target = permalink.strip().lstrip("/")
        if not target or target.endswith("/"):
            output = f"{target}index.html"
        elif target.endswith(".html"):
            output = target
        else:
            output = f"{target}.html"
    else:
        source = PurePosixPath(rel_path)
        stem = source.stem.lstrip("_")
        name = "index" if stem == "index" else slugify(stem)
        parent = source.parent.as_posix()
        output = f"{name}.html" if parent == "." else f"{parent}/{name}.html"

    if output == "index.html":
        return output, "/"
    if output.endswith("/index.html"):
        return output, "/" + output[: -len("index.html")]
    return output, "/" + output


def fingerprint(source: bytes, resolved: dict[str, Any]) -> str:
    digest = hashlib.sha256(source)
    digest.update(b"\0")
    digest.update(json.dumps(resolved, sort_keys=True, default=str).encode("utf-8"))
    return digest.hexdigest()


def parse_content(
    site: Site,
    source_path: Path,
    cascade: DataCascade,
    validator: MetadataValidator | None = None,
) -> ContentItem:
    """Read and resolve one content file.

    Args:
        site: Site the item belongs to.
        source_path: Absolute path of the Markdown source.
        cascade: Data cascade for the site's content root.
        validator: Front matter validator; skipped when None.

    Returns:
        The parsed ContentItem.

    Raises:
        FrontMatterError: If the file cannot be read or its front matter
            cannot be parsed.
        ValidationFailed: If the resolved front matter fails validation.
    """
    rel_path = source_path.relative_to(site.content_root).as_posix()
    try:
        raw = source_path.read_bytes()
        text = raw.decode("utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise FrontMatterError(f"cannot read source: {exc}", source_path, exc) from exc

    own, body = split_front_matter(text, source_path)
    resolved = cascade.resolve(rel_path)
    resolved.update(own)

    front_matter = FrontMatter.from_mapping(
        resolved,
        source_path,
        fallback_date=extract_date_from_name(PurePosixPath(rel_path).stem),
    )
    if validator is not None:
        errors = validator.validate(front_matter)
        if errors:
            raise ValidationFailed(errors, source_path)

    output_path, url = output_for(rel_path, front_matter.permalink)
    return ContentItem(
        source_path=source_path,
        rel_path=rel_path,
        front_matter=front_matter,
        body=body,
        output_path=output_path,
        url=url,
        fingerprint=fingerprint(raw, resolved),
    )
