"""The build graph.

Nodes are the units the scheduler executes: one per content item, template,
style bundle, static asset and (feed, format) pair. Every node that writes
produces exactly one output path. A node's ``dependencies`` are the ids it
must wait for; the graph keeps the reverse index so the set of nodes to
recompute after a change is a walk over dependents rather than a rescan.

Node ids are stable across rebuilds and derived from the source path or
definition: ``content:posts/a.md``, ``template:post.html``,
``style:main.scss``, ``asset:img/x.png``, ``feed:feeds/posts.xml``.

Edges:

- content -> the template it renders with
- template -> every template it extends, includes or imports
- content listing collections -> the members of those collections that do
  not list collections themselves
- feed -> every member of its collection

:func:`construct` does a cold read. :func:`apply_changes` folds a change-set
into a copy of the graph and returns the nodes that must be rebuilt; the
graph passed in is never modified, so a fatal error leaves it usable.
"""

from __future__ import annotations

import enum
import hashlib
import logging
from collections import deque
from dataclasses import dataclass, replace
from pathlib import Path
from typing import TYPE_CHECKING

from .collections import PageCollection
from .content import ContentItem, output_for, parse_content
from .errors import (
    GraphError,
    NodeError,
    RenderError,
    SourceReadError,
    TemplateCycleError,
    TemplateNotFoundError,
)
from .feeds import FeedDefinition, FeedFormat
from .frontmatter import DataCascade
from .source import FileKind, classify, is_bundle, read_tree
from .templates import TemplateInfo, find_cycle, template_candidates
from .watcher import ChangeKind

if TYPE_CHECKING:
    from .config import Site
    from .services import BuildServices

logger = logging.getLogger(__name__)


class NodeKind(enum.Enum):
    CONTENT = "content"
    TEMPLATE = "template"
    STYLE = "style"
    ASSET = "asset"
    FEED = "feed"


@dataclass
class Node:
    """One schedulable unit.

    Attributes:
        id: Stable identity.
        kind: Node kind; selects the executor.
        source: Source file, for file-backed nodes.
        output: Output path relative to the output root, if the node writes one.
        dependencies: Ids this node waits for.
        item: Parsed content item. After a failed re-parse this is the last
            good item and ``stale`` is set.
        template: Content nodes: resolved template name. Template nodes: own name.
        info: Template nodes: static inspection result.
        feed: Feed nodes: definition.
        feed_format: Feed nodes: format written.
        fingerprint: Change detector for file-backed nodes.
        load_error: Parse, validation or syntax failure found while loading.
        link_error: Failure found while resolving edges (missing template).
        stale: ``item`` predates a failed re-parse.
    """

    id: str
    kind: NodeKind
    source: Path | None = None
    output: str | None = None
    dependencies: frozenset[str] = frozenset()
    item: ContentItem | None = None
    template: str | None = None
    info: TemplateInfo | None = None
    feed: FeedDefinition | None = None
    feed_format: FeedFormat | None = None
    fingerprint: str | None = None
    load_error: NodeError | None = None
    link_error: NodeError | None = None
    stale: bool = False

    @property
    def error(self) -> NodeError | None:
        return self.load_error or self.link_error


def content_id(rel: str) -> str:
    return f"content:{rel}"


def template_id(name: str) -> str:
    return f"template:{name}"


def style_id(rel: str) -> str:
    return f"style:{rel}"


def asset_id(rel: str) -> str:
    return f"asset:{rel}"


def feed_id(output: str) -> str:
    return f"feed:{output}"


class BuildGraph:
    """Nodes and dependency edges of one site.

    Owned by a single writer (the build session); the scheduler and its
    workers only read it.
    """

    def __init__(self, site: Site, services: BuildServices, cascade: DataCascade):
        self.site = site
        self.services = services
        self.cascade = cascade
        self.nodes: dict[str, Node] = {}
        self.pending_removals: set[str] = set()
        self._dependents: dict[str, set[str]] = {}

    def __contains__(self, node_id: str) -> bool:
        return node_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def add_node(self, node: Node) -> None:
        """Insert or replace a node, indexing its dependencies."""
        if node.id in self.nodes:
            self._unindex(self.nodes[node.id])
        self.nodes[node.id] = node
        for dep in node.dependencies:
            self._dependents.setdefault(dep, set()).add(node.id)

    def remove_node(self, node_id: str) -> Node | None:
        node = self.nodes.pop(node_id, None)
        if node is not None:
            self._unindex(node)
        return node

    def _unindex(self, node: Node) -> None:
        for dep in node.dependencies:
            dependents = self._dependents.get(dep)
            if dependents is not None:
                dependents.discard(node.id)
                if not dependents:
                    del self._dependents[dep]

    def set_dependencies(self, node_id: str, dependencies) -> bool:
        """Replace a node's dependencies. Returns True if they changed."""
        node = self.nodes[node_id]
        deps = frozenset(dependencies)
        if deps == node.dependencies:
            return False
        self._unindex(node)
        node.dependencies = deps
        for dep in deps:
            self._dependents.setdefault(dep, set()).add(node_id)
        return True

    def dependents_of(self, node_id: str) -> set[str]:
        return {d for d in self._dependents.get(node_id, ()) if d in self.nodes}

    def closure(self, seeds) -> set[str]:
        """Seeds plus every node reachable from them through reverse edges."""
        result = {s for s in seeds if s in self.nodes}
        queue = deque(result)
        while queue:
            current = queue.popleft()
            for dependent in self._dependents.get(current, ()):
                if dependent in self.nodes and dependent not in result:
                    result.add(dependent)
                    queue.append(dependent)
        return result

    def outputs(self) -> dict[str, str]:
        """Map of output path to the id of the node producing it."""
        return {n.output: n.id for n in self.nodes.values() if n.output}

    def nodes_of(self, kind: NodeKind) -> list[Node]:
        return [n for n in self.nodes.values() if n.kind is kind]

    def template_names(self) -> set[str]:
        return {n.template for n in self.nodes_of(NodeKind.TEMPLATE) if n.template}

    def resolve_template(self, name: str) -> str | None:
        """Resolve a front-matter template name to a known template."""
        known = self.template_names()
        for candidate in template_candidates(name):
            if candidate in known:
                return candidate
        return None

    def template_chain(self, name: str) -> list[str]:
        """Template and its ``extends`` ancestors, most specific first."""
        chain = [name]
        node = self.nodes.get(template_id(name))
        while node is not None and node.info is not None and node.info.parent:
            parent = node.info.parent
            if parent in chain:
                break
            chain.append(parent)
            node = self.nodes.get(template_id(parent))
        return chain

    def member_nodes(self, name: str) -> list[Node]:
        """Nodes of the content items currently in a collection.

        A node whose re-parse failed keeps its last good item (and its
        membership); a node that never parsed is in no collection.
        """
        definition = self.site.collection(name)
        if definition is None:
            return []
        return [
            n
            for n in self.nodes_of(NodeKind.CONTENT)
            if n.item is not None and definition.matches(n.item)
        ]

    def collection(self, name: str) -> PageCollection:
        definition = self.site.collection(name)
        title = definition.title if definition else None
        return PageCollection((n.item for n in self.member_nodes(name)), name, title)

    def collections(self) -> dict[str, PageCollection]:
        return {c.name: self.collection(c.name) for c in self.site.collections}

    def take_removals(self) -> list[str]:
        """Output paths to delete, minus any a live node still claims."""
        claimed = set(self.outputs())
        removals = sorted(p for p in self.pending_removals if p not in claimed)
        self.pending_removals.clear()
        return removals

    def copy(self) -> BuildGraph:
        clone = BuildGraph(self.site, self.services, self.cascade.copy())
        clone.nodes = {k: replace(v) for k, v in self.nodes.items()}
        clone.pending_removals = set(self.pending_removals)
        clone._dependents = {k: set(v) for k, v in self._dependents.items()}
        return clone


def _sha256_file(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


def _load_content(graph: BuildGraph, path: Path, rel: str) -> Node:
    node = Node(id=content_id(rel), kind=NodeKind.CONTENT, source=path)
    try:
        item = parse_content(graph.site, path, graph.cascade, graph.services.validator)
    except NodeError as exc:
        node.load_error = exc
        node.output = output_for(rel, None)[0]
        try:
            node.fingerprint = _sha256_file(path)
        except OSError:
            node.fingerprint = None
        return node
    node.item = item
    node.output = item.output_path
    node.fingerprint = item.fingerprint
    return node


def _load_template(graph: BuildGraph, name: str) -> Node:
    path = graph.site.templates_root / name
    node = Node(id=template_id(name), kind=NodeKind.TEMPLATE, source=path, template=name)
    try:
        info = graph.services.engine.inspect(name)
    except (OSError, UnicodeDecodeError) as exc:
        node.load_error = RenderError(f"cannot read template: {exc}", path, exc)
        return node
    node.info = info
    node.fingerprint = info.digest
    if info.error:
        node.load_error = RenderError(f"template syntax error: {info.error}", path)
    return node


def _style_node(site: Site, path: Path, rel: str) -> Node:
    output = f"{site.style_output}/{Path(rel).stem}.css".lstrip("/")
    return Node(id=style_id(rel), kind=NodeKind.STYLE, source=path, output=output)


def _asset_node(path: Path, rel: str) -> Node:
    node = Node(id=asset_id(rel), kind=NodeKind.ASSET, source=path, output=rel)
    try:
        node.fingerprint = _sha256_file(path)
    except OSError as exc:
        node.load_error = SourceReadError(f"cannot read asset: {exc}", path, exc)
    return node


def _link_templates(graph: BuildGraph) -> None:
    """Recompute template-to-template edges and reject cycles.

    Raises:
        TemplateCycleError: If the reference graph has a cycle.
    """
    known = graph.template_names()
    edges: dict[str, set[str]] = {}
    for node in graph.nodes_of(NodeKind.TEMPLATE):
        refs = set(node.info.references) if node.info else set()
        edges[node.template] = refs & known
        missing = sorted(refs - known)
        node.link_error = (
            TemplateNotFoundError(f"'{missing[0]}'", node.source) if missing else None
        )
        graph.set_dependencies(node.id, {template_id(r) for r in edges[node.template]})
    cycle = find_cycle(edges)
    if cycle:
        raise TemplateCycleError(cycle)


def _link_content_template(graph: BuildGraph, node: Node) -> bool:
    """Resolve a content node's template. Returns True if the result changed."""
    before = (node.template, type(node.link_error))
    if node.item is None:
        node.template = None
        node.link_error = None
    else:
        wanted = node.item.front_matter.template or graph.site.default_template
        resolved = graph.resolve_template(wanted)
        node.template = resolved
        node.link_error = (
            None if resolved else TemplateNotFoundError(f"'{wanted}'", node.source)
        )
    return (node.template, type(node.link_error)) != before


def _content_dependencies(graph: BuildGraph, node: Node) -> set[str]:
    deps: set[str] = set()
    if node.template:
        deps.add(template_id(node.template))
    if node.item is not None:
        for name in node.item.front_matter.collections:
            for member in graph.member_nodes(name):
                if member.id != node.id and not member.item.front_matter.collections:
                    deps.add(member.id)
    return deps


def _link_collections(graph: BuildGraph) -> None:
    """Recompute edges that depend on collection membership."""
    for node in graph.nodes_of(NodeKind.CONTENT):
        graph.set_dependencies(node.id, _content_dependencies(graph, node))
    for node in graph.nodes_of(NodeKind.FEED):
        members = graph.member_nodes(node.feed.collection)
        graph.set_dependencies(node.id, {m.id for m in members})


def _check_outputs(graph: BuildGraph) -> None:
    claimed: dict[str, str] = {}
    for node_id in sorted(graph.nodes):
        output = graph.nodes[node_id].output
        if not output:
            continue
        if output in claimed:
            raise GraphError(
                f"'{claimed[output]}' and '{node_id}' both write {output}",
                graph.site.root,
            )
        claimed[output] = node_id


def _membership(graph: BuildGraph) -> dict[str, set[str]]:
    return {c.name: {n.id for n in graph.member_nodes(c.name)} for c in graph.site.collections}


def construct(site: Site, services: BuildServices) -> BuildGraph:
    """Build the full graph of a site from a cold read of its sources.

    Args:
        site: Site to read.
        services: Collaborators used to inspect templates and validate content.

    Returns:
        The populated graph.

    Raises:
        ConfigurationError: If the site root is unreadable, a ``_data.yaml``
            is malformed, or templates reference each other in a cycle.
        GraphError: If two nodes would write the same output path.
    """
    tree = read_tree(site)
    graph = BuildGraph(site, services, DataCascade.load(site.content_root, tree.data))

    for name in tree.templates:
        graph.add_node(_load_template(graph, name))
    _link_templates(graph)

    for path in tree.content:
        rel = path.relative_to(site.content_root).as_posix()
        node = _load_content(graph, path, rel)
        if node.load_error:
            logger.debug("%s: %s", node.id, node.load_error.reason)
        graph.add_node(node)
        _link_content_template(graph, node)

    for path in tree.styles:
        graph.add_node(_style_node(site, path, path.relative_to(site.styles_root).as_posix()))
    for path in tree.assets:
        graph.add_node(_asset_node(path, path.relative_to(site.static_root).as_posix()))

    for definition in site.feeds:
        for fmt, output in definition.outputs():
            graph.add_node(
                Node(
                    id=feed_id(output),
                    kind=NodeKind.FEED,
                    output=output,
                    feed=definition,
                    feed_format=fmt,
                )
            )

    _link_collections(graph)
    _check_outputs(graph)
    logger.debug("constructed graph for %s: %d nodes", site.name, len(graph))
    return graph


class _Apply:
    """One application of a change-set to a graph copy."""

    def __init__(self, graph: BuildGraph):
        self.graph = graph
        self.site = graph.site
        self.seeds: set[str] = set()
        self.templates_changed = False
        self.styles_changed = False

    def remove(self, node_id: str) -> None:
        graph = self.graph
        if node_id not in graph:
            return
        self.seeds |= graph.dependents_of(node_id)
        node = graph.remove_node(node_id)
        if node.output:
            graph.pending_removals.add(node.output)
        self.seeds.discard(node_id)

    def content(self, path: Path, rel: str, kind: ChangeKind) -> None:
        graph = self.graph
        node_id = content_id(rel)
        if kind is ChangeKind.DELETED or not path.is_file():
            self.remove(node_id)
            return
        old = graph.nodes.get(node_id)
        node = _load_content(graph, path, rel)
        if old is not None:
            node.dependencies = old.dependencies
            if (
                node.load_error is None
                and old.load_error is None
                and node.fingerprint == old.fingerprint
            ):
                return
            if node.load_error is not None and old.item is not None:
                node.item = old.item
                node.output = old.output
                node.stale = True
            if old.output and old.output != node.output:
                graph.pending_removals.add(old.output)
        graph.add_node(node)
        _link_content_template(graph, node)
        self.seeds.add(node_id)

    def template(self, rel: str, kind: ChangeKind) -> None:
        graph = self.graph
        node_id = template_id(rel)
        if kind is ChangeKind.DELETED or not (self.site.templates_root / rel).is_file():
            if node_id in graph:
                self.remove(node_id)
                self.templates_changed = True
            return
        old = graph.nodes.get(node_id)
        node = _load_template(graph, rel)
        if old is not None:
            node.dependencies = old.dependencies
            if node.load_error is None and old.load_error is None and node.fingerprint == old.fingerprint:
                return
        graph.add_node(node)
        self.seeds.add(node_id)
        self.templates_changed = True

    def style(self, path: Path, rel: str, kind: ChangeKind) -> None:
        graph = self.graph
        self.styles_changed = True
        if not is_bundle(rel):
            return
        node_id = style_id(rel)
        if kind is ChangeKind.DELETED or not path.is_file():
            self.remove(node_id)
        elif node_id not in graph:
            graph.add_node(_style_node(self.site, path, rel))

    def asset(self, path: Path, rel: str, kind: ChangeKind) -> None:
        graph = self.graph
        node_id = asset_id(rel)
        if kind is ChangeKind.DELETED or not path.is_file():
            self.remove(node_id)
            return
        node = _asset_node(path, rel)
        old = graph.nodes.get(node_id)
        if (
            old is not None
            and old.load_error is None
            and node.load_error is None
            and old.fingerprint == node.fingerprint
        ):
            return
        graph.add_node(node)
        self.seeds.add(node_id)

    def data(self, path: Path, kind: ChangeKind) -> None:
        graph = self.graph
        if kind is ChangeKind.DELETED or not path.is_file():
            scope = graph.cascade.remove_layer(path)
        else:
            scope = graph.cascade.set_layer(path)
        prefix = f"{scope}/" if scope else ""
        for node in list(graph.nodes_of(NodeKind.CONTENT)):
            rel = node.source.relative_to(self.site.content_root).as_posix()
            if rel.startswith(prefix):
                self.content(node.source, rel, ChangeKind.MODIFIED)

    def deleted_tree(self, path: Path) -> bool:
        """Handle the deletion of a directory. Returns True if anything matched."""
        graph = self.graph
        matched = False
        for node in list(graph.nodes.values()):
            if node.source is not None and path in node.source.parents:
                matched = True
                self.dispatch(node.source, ChangeKind.DELETED)
        for scope in list(graph.cascade.layers):
            layer = self.site.content_root / scope / "_data.yaml"
            if path in layer.parents:
                matched = True
                self.data(layer, ChangeKind.DELETED)
        return matched

    def dispatch(self, path: Path, kind: ChangeKind) -> None:
        if kind is ChangeKind.DELETED and self.deleted_tree(path):
            return
        file_kind, rel = classify(self.site, path)
        if file_kind is FileKind.CONTENT:
            self.content(path, rel, kind)
        elif file_kind is FileKind.DATA:
            self.data(path, kind)
        elif file_kind is FileKind.TEMPLATE:
            self.template(rel, kind)
        elif file_kind is FileKind.STYLE:
            self.style(path, rel, kind)
        elif file_kind is FileKind.ASSET:
            self.asset(path, rel, kind)
        elif file_kind is FileKind.CONFIG:
            # configuration changes are handled by the session with a cold rebuild
            logger.debug("ignoring %s in incremental apply", path.name)


def _change_order(item: tuple[Path, ChangeKind]) -> tuple[int, str]:
    # cascade files first so content re-parses against the new defaults
    path = item[0]
    return (0 if path.name == "_data.yaml" else 1, str(path))


def apply_changes(graph: BuildGraph, changes) -> tuple[BuildGraph, set[str]]:
    """Fold a coalesced change-set into the graph.

    Only the changed files are re-read. A file that was touched but whose
    fingerprint did not change produces no dirty node.

    Args:
        graph: Current graph; it is not modified.
        changes: Mapping of absolute path to ChangeKind.

    Returns:
        Tuple of (updated graph, ids to rebuild). The ids are the changed
        nodes plus all of their transitive dependents.

    Raises:
        ConfigurationError: If a ``_data.yaml`` is malformed or a template
            edit introduced a cycle.
        GraphError: If two nodes now write the same output path.
    """
    updated = graph.copy()
    before = _membership(updated)
    run = _Apply(updated)

    for path, kind in sorted(changes.items(), key=_change_order):
        run.dispatch(Path(path), kind)

    if run.templates_changed:
        updated.services.engine.clear_cache()
        _link_templates(updated)
        for node in updated.nodes_of(NodeKind.CONTENT):
            if _link_content_template(updated, node):
                run.seeds.add(node.id)

    if run.styles_changed:
        run.seeds |= {n.id for n in updated.nodes_of(NodeKind.STYLE)}

    _link_collections(updated)
    after = _membership(updated)
    for name, members in after.items():
        if members != before.get(name):
            for node in updated.nodes_of(NodeKind.FEED):
                if node.feed.collection == name:
                    run.seeds.add(node.id)
            for node in updated.nodes_of(NodeKind.CONTENT):
                if node.item is not None and name in node.item.front_matter.collections:
                    run.seeds.add(node.id)

    _check_outputs(updated)
    dirty = updated.closure(run.seeds)
    logger.debug("applied %d change(s): %d dirty node(s)", len(changes), len(dirty))
    return updated, dirty
