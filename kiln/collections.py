from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from itertools import groupby
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any

from .errors import ConfigurationError

if TYPE_CHECKING:
    from .content import ContentItem

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class CollectionDefinition:
    """Named predicate over content items.

    Exactly one rule applies: tag equality, directory prefix, or
    front-matter field equality. A definition with no rule matches the
    items tagged with the collection's own name.
    """

    name: str
    tag: str | None = None
    directory: str | None = None
    field: str | None = None
    value: Any = None
    title: str | None = None

    @classmethod
    def from_config(cls, name: str, rule: dict[str, Any]) -> CollectionDefinition:
        if not isinstance(rule, dict):
            raise ConfigurationError(f"invalid rule for collection '{name}': {rule!r}")
        rules = [k for k in ("tag", "directory", "field") if k in rule]
        if len(rules) > 1:
            raise ConfigurationError(
                f"collection '{name}' must use one of tag, directory or field"
            )
        title = rule.get("title")
        if "directory" in rule:
            return cls(name, directory=str(rule["directory"]).strip("/"), title=title)
        if "field" in rule:
            return cls(name, field=str(rule["field"]), value=rule.get("value", True), title=title)
        return cls(name, tag=str(rule.get("tag", name)), title=title)

    def matches(self, item: ContentItem) -> bool:
        if self.directory is not None:
            parent = PurePosixPath(item.rel_path).parent.as_posix()
            return parent == self.directory or parent.startswith(self.directory + "/")
        if self.field is not None:
            return item.meta.get(self.field) == self.value
        return self.tag in item.tags


def sort_key(item: ContentItem):
    """Publish date descending, ties broken by source path."""
    published = item.date or EPOCH
    return (-published.timestamp(), item.rel_path)


class PageCollection(Sequence["ContentItem"]):
    """Lightweight helper for working with lists of content items in templates and code."""

    def __init__(self, items: Iterable[ContentItem], name: str = "", title: str | None = None):
        self._items = sorted(items, key=sort_key)
        self.name = name
        self.title = title or name

    def __iter__(self) -> Iterator[ContentItem]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, item):
        return self._items[item]

    def with_tag(self, tag: str) -> PageCollection:
        return PageCollection((p for p in self._items if tag in p.tags), self.name, self.title)

    def latest(self, count: int = 5) -> PageCollection:
        return PageCollection(self._items[:count], self.name, self.title)

    def by_year(self) -> list[tuple[int, list[ContentItem]]]:
        """Group members by publish year, newest year first.

        Undated items are grouped under year 1970.
        """
        return [
            (year, list(group))
            for year, group in groupby(self._items, key=lambda p: (p.date or EPOCH).year)
        ]

    @property
    def updated(self) -> datetime:
        """Latest updated-or-published date among members."""
        stamps = [p.last_modified for p in self._items if p.last_modified]
        return max(stamps) if stamps else EPOCH

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"PageCollection({self.name!r}, {len(self._items)} items)"
