"""Node execution.

Each node kind has one executor. An executor returns the bytes for the
node's output path (or None for nodes that only check something) and
raises a NodeError on failure; :func:`run_node` turns either outcome into a
NodeResult and does the atomic write.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import NodeError
from .feeds import build_snapshot
from .graph import Node, NodeKind
from .output import write_atomic
from .report import NodeResult

if TYPE_CHECKING:
    from .collections import PageCollection
    from .graph import BuildGraph


class BuildContext:
    """Read-only view handed to workers for one run.

    Attributes:
        graph: Graph being built; never mutated by workers.
        output_root: Directory outputs are written into.
    """

    def __init__(self, graph: BuildGraph, output_root: Path):
        self.graph = graph
        self.site = graph.site
        self.services = graph.services
        self.output_root = output_root
        self._collections: dict[str, PageCollection] | None = None
        self._lock = threading.Lock()

    @property
    def collections(self) -> dict[str, PageCollection]:
        with self._lock:
            if self._collections is None:
                self._collections = self.graph.collections()
            return self._collections


def _build_content(node: Node, ctx: BuildContext) -> bytes:
    item = node.item
    context = {
        "page": item,
        "title": item.title,
        "collections": ctx.collections,
        "url": item.url,
    }
    chain = ctx.graph.template_chain(node.template)
    html = ctx.services.renderer.render(item.body, item.front_matter, chain, context)
    return html.encode("utf-8")


def _check_template(node: Node, ctx: BuildContext) -> None:
    ctx.services.engine.check(node.template)
    return None


def _build_style(node: Node, ctx: BuildContext) -> bytes:
    css, _deps = ctx.services.styles.compile(node.source)
    return css


def _build_asset(node: Node, ctx: BuildContext) -> bytes:
    try:
        return ctx.services.assets.transform(node.source)
    except (OSError, UnicodeDecodeError) as exc:
        raise NodeError(f"cannot process asset: {exc}", node.source, exc) from exc


def _build_feed(node: Node, ctx: BuildContext) -> bytes:
    collection = ctx.collections.get(node.feed.collection, [])
    snapshot = build_snapshot(
        ctx.site,
        node.feed,
        node.output,
        collection,
        render_html=lambda item: ctx.services.markdown.render(item.body)[0],
    )
    return ctx.services.feeds.serialize(snapshot, node.feed_format)


EXECUTORS: dict[NodeKind, Callable[[Node, BuildContext], bytes | None]] = {
    NodeKind.CONTENT: _build_content,
    NodeKind.TEMPLATE: _check_template,
    NodeKind.STYLE: _build_style,
    NodeKind.ASSET: _build_asset,
    NodeKind.FEED: _build_feed,
}


def run_node(node: Node, ctx: BuildContext) -> NodeResult:
    """Execute one node and write its output.

    Errors recorded on the node while the graph was built (parse failures,
    missing templates) fail the node without running it.
    """
    if node.error is not None:
        return NodeResult.failed(node.id, node.error.reason, node.kind, node.output)
    try:
        data = EXECUTORS[node.kind](node, ctx)
        written = False
        if data is not None and node.output:
            written = write_atomic(ctx.output_root, node.output, data)
    except NodeError as exc:
        return NodeResult.failed(node.id, exc.reason, node.kind, node.output)
    return NodeResult.succeeded(node.id, node.kind, node.output, written)
