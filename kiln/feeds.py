"""Feed generation for Kiln.

Feeds are derived artifacts over a collection. The build node takes a
:class:`FeedSnapshot` of the collection and hands it to a serializer for
each configured format. Timestamps come from the members, never from the
clock, so an unchanged collection serializes to identical bytes.

Classes:
    FeedDefinition: One configured feed (collection plus output paths).
    FeedSnapshot: Immutable view of a collection prepared for serialization.
    AtomSerializer: Atom 1.0 via xml.etree.
    JSONFeedSerializer: JSON Feed 1.1.
    FeedSerializerRegistry: Dispatches on FeedFormat.
"""

from __future__ import annotations

import enum
import json
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from xml.etree.ElementTree import Element, SubElement, indent, register_namespace, tostring

from .collections import EPOCH
from .errors import ConfigurationError
from .utils import join_root_url

if TYPE_CHECKING:
    from .config import Author, Site
    from .content import ContentItem

ATOM_NS = "http://www.w3.org/2005/Atom"
JSON_FEED_VERSION = "https://jsonfeed.org/version/1.1"


class FeedFormat(enum.Enum):
    ATOM = "atom"
    JSON = "json"


@dataclass(frozen=True)
class FeedDefinition:
    """A feed over one collection.

    Attributes:
        collection: Name of the collection the feed publishes.
        atom: Output path of the Atom document, or None.
        json: Output path of the JSON Feed document, or None.
        title: Feed title; defaults to the site title.
        limit: Maximum number of entries, newest first.
    """

    collection: str
    atom: str | None = None
    json: str | None = None
    title: str | None = None
    limit: int | None = None

    @classmethod
    def from_config(cls, entry: dict[str, Any]) -> FeedDefinition:
        collection = entry.get("collection")
        if not collection:
            raise ConfigurationError(f"feed needs a collection: {entry!r}")
        collection = str(collection)
        atom = entry.get("atom")
        json_path = entry.get("json")
        if atom is None and json_path is None:
            atom = json_path = True
        limit = entry.get("limit")
        return cls(
            collection=collection,
            atom=_feed_path(atom, f"feeds/{collection}.xml"),
            json=_feed_path(json_path, f"feeds/{collection}.json"),
            title=entry.get("title"),
            limit=int(limit) if limit else None,
        )

    def outputs(self) -> list[tuple[FeedFormat, str]]:
        pairs = []
        if self.atom:
            pairs.append((FeedFormat.ATOM, self.atom))
        if self.json:
            pairs.append((FeedFormat.JSON, self.json))
        return pairs


def _feed_path(value: Any, default: str) -> str | None:
    if value is None or value is False:
        return None
    if value is True:
        return default
    return str(value).lstrip("/")


@dataclass(frozen=True)
class FeedEntry:
    id: str
    title: str
    url: str
    published: datetime | None
    updated: datetime
    summary: str
    content_html: str
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class FeedSnapshot:
    id: str
    title: str
    description: str
    home_url: str
    feed_url: str
    updated: datetime
    author: Author | None
    entries: tuple[FeedEntry, ...] = field(default_factory=tuple)


def entry_id(url: str) -> str:
    """Stable id derived from the entry's absolute URL."""
    return f"urn:uuid:{uuid.uuid5(uuid.NAMESPACE_URL, url)}"


def build_snapshot(
    site: Site,
    definition: FeedDefinition,
    feed_path: str,
    items: Iterable[ContentItem],
    render_html: Callable[[ContentItem], str] | None = None,
) -> FeedSnapshot:
    """Prepare a collection for serialization.

    Args:
        site: Site the feed belongs to.
        definition: Feed definition.
        feed_path: Output path of the document being built.
        items: Collection members, newest first.
        render_html: Produces entry content; entries carry only a summary
            when None.

    Returns:
        The snapshot; ``updated`` is the newest member timestamp, or the
        Unix epoch for an empty collection.
    """
    members = list(items)
    if definition.limit:
        members = members[: definition.limit]
    entries = []
    for item in members:
        url = join_root_url(site.url, item.url)
        updated = item.last_modified or EPOCH
        entries.append(
            FeedEntry(
                id=entry_id(url),
                title=item.title,
                url=url,
                published=item.date,
                updated=updated,
                summary=item.summary,
                content_html=render_html(item) if render_html else "",
                tags=item.tags,
            )
        )
    feed_url = join_root_url(site.url, "/" + feed_path)
    definition_title = definition.title or site.title or definition.collection
    return FeedSnapshot(
        id=entry_id(feed_url),
        title=definition_title,
        description=site.description,
        home_url=join_root_url(site.url, "/"),
        feed_url=feed_url,
        updated=max((e.updated for e in entries), default=EPOCH),
        author=site.author,
        entries=tuple(entries),
    )


def _rfc3339(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


class AtomSerializer:
    """Serializes a snapshot as an Atom 1.0 document."""

    def serialize(self, snapshot: FeedSnapshot) -> bytes:
        register_namespace("", ATOM_NS)

        def el(parent: Element, tag: str, text: str | None = None, **attrib: str) -> Element:
            node = SubElement(parent, f"{{{ATOM_NS}}}{tag}", attrib)
            if text is not None:
                node.text = text
            return node

        root = Element(f"{{{ATOM_NS}}}feed")
        el(root, "id", snapshot.id)
        el(root, "title", snapshot.title)
        if snapshot.description:
            el(root, "subtitle", snapshot.description)
        el(root, "updated", _rfc3339(snapshot.updated))
        el(root, "link", href=snapshot.home_url)
        el(root, "link", rel="self", href=snapshot.feed_url)
        if snapshot.author:
            author = el(root, "author")
            el(author, "name", snapshot.author.name)
            if snapshot.author.email:
                el(author, "email", snapshot.author.email)
            if snapshot.author.url:
                el(author, "uri", snapshot.author.url)

        for entry in snapshot.entries:
            entry_el = el(root, "entry")
            el(entry_el, "id", entry.id)
            el(entry_el, "title", entry.title)
            el(entry_el, "link", rel="alternate", href=entry.url)
            if entry.published:
                el(entry_el, "published", _rfc3339(entry.published))
            el(entry_el, "updated", _rfc3339(entry.updated))
            for tag in entry.tags:
                el(entry_el, "category", term=tag)
            if entry.summary:
                el(entry_el, "summary", entry.summary)
            if entry.content_html:
                el(entry_el, "content", entry.content_html, type="html")

        indent(root)
        return tostring(root, encoding="utf-8", xml_declaration=True) + b"\n"


class JSONFeedSerializer:
    """Serializes a snapshot as a JSON Feed 1.1 document."""

    def serialize(self, snapshot: FeedSnapshot) -> bytes:
        document: dict[str, Any] = {
            "version": JSON_FEED_VERSION,
            "title": snapshot.title,
            "home_page_url": snapshot.home_url,
            "feed_url": snapshot.feed_url,
        }
        if snapshot.description:
            document["description"] = snapshot.description
        if snapshot.author:
            author = {"name": snapshot.author.name}
            if snapshot.author.url:
                author["url"] = snapshot.author.url
            document["authors"] = [author]

        items = []
        for entry in snapshot.entries:
            item: dict[str, Any] = {"id": entry.id, "url": entry.url, "title": entry.title}
            if entry.content_html:
                item["content_html"] = entry.content_html
            else:
                item["content_text"] = entry.summary
            if entry.summary:
                item["summary"] = entry.summary
            if entry.published:
                item["date_published"] = _rfc3339(entry.published)
            item["date_modified"] = _rfc3339(entry.updated)
            if entry.tags:
                item["tags"] = list(entry.tags)
            items.append(item)
        document["items"] = items
        return (json.dumps(document, indent=2, ensure_ascii=False) + "\n").encode("utf-8")


class FeedSerializerRegistry:
    """Maps each FeedFormat to its serializer."""

    def __init__(self) -> None:
        self._serializers: dict[FeedFormat, Any] = {}

    def register(self, fmt: FeedFormat, serializer: Any) -> None:
        self._serializers[fmt] = serializer

    def serialize(self, snapshot: FeedSnapshot, fmt: FeedFormat) -> bytes:
        try:
            serializer = self._serializers[fmt]
        except KeyError:
            raise ValueError(f"no serializer registered for {fmt.value}") from None
        return serializer.serialize(snapshot)


def create_default_feed_registry() -> FeedSerializerRegistry:
    registry = FeedSerializerRegistry()
    registry.register(FeedFormat.ATOM, AtomSerializer())
    registry.register(FeedFormat.JSON, JSONFeedSerializer())
    return registry
