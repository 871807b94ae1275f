"""Scheduler: runs the dirty part of a build graph on a worker pool.

A node is dispatched once every dependency inside the dirty closure has
completed. Dependencies outside the closure are taken as already built.
Failures are local: a failed node's dependents are skipped, everything
else keeps running.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING

from .errors import KilnError
from .nodes import BuildContext, run_node
from .output import remove_output
from .report import BuildReport, NodeResult, NodeStatus

if TYPE_CHECKING:
    from .graph import BuildGraph

logger = logging.getLogger(__name__)


class Scheduler:
    """Ready-set scheduler over a bounded thread pool.

    Attributes:
        max_workers: Pool size; defaults to the number of CPUs.
    """

    def __init__(self, max_workers: int | None = None):
        self.max_workers = max_workers or os.cpu_count() or 1

    def run(
        self,
        graph: BuildGraph,
        dirty: set[str],
        cancel: threading.Event | None = None,
    ) -> BuildReport:
        """Execute the dirty nodes of a graph.

        Args:
            graph: Graph to read; it is not modified apart from draining
                its pending removals.
            dirty: Closure of node ids to rebuild.
            cancel: When set, no further nodes are dispatched; nodes already
                running finish and the report is marked aborted.

        Returns:
            The BuildReport for this run.
        """
        started = time.perf_counter()
        report = BuildReport(site_name=graph.site.name)
        ctx = BuildContext(graph, graph.site.output_root)

        for rel in graph.take_removals():
            try:
                if remove_output(ctx.output_root, rel):
                    report.removed.append(rel)
            except (OSError, KilnError) as exc:
                logger.warning("could not remove %s: %s", rel, exc)

        closure = {node_id for node_id in dirty if node_id in graph.nodes}
        waiting = {
            node_id: set(graph.nodes[node_id].dependencies) & closure for node_id in closure
        }
        ready = sorted(node_id for node_id, deps in waiting.items() if not deps)

        def record(result: NodeResult) -> None:
            report.results[result.node_id] = result
            blocked = result.status is not NodeStatus.SUCCEEDED
            queue = [result.node_id]
            while queue:
                current = queue.pop()
                for dependent in sorted(graph.dependents_of(current) & closure):
                    if dependent in report.results:
                        continue
                    if blocked:
                        node = graph.nodes[dependent]
                        report.results[dependent] = NodeResult.skipped(
                            dependent,
                            f"dependency {result.node_id} {result.status.value}",
                            node.kind,
                            node.output,
                        )
                        queue.append(dependent)
                    else:
                        waiting[dependent].discard(current)
                        if not waiting[dependent]:
                            ready.append(dependent)

        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="kiln-worker"
        ) as pool:
            in_flight: dict[Future, str] = {}
            while ready or in_flight:
                if cancel is not None and cancel.is_set():
                    ready.clear()
                while ready:
                    node_id = ready.pop(0)
                    if node_id in report.results:
                        continue
                    future = pool.submit(run_node, graph.nodes[node_id], ctx)
                    in_flight[future] = node_id
                if not in_flight:
                    break
                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in sorted(done, key=lambda f: in_flight[f]):
                    node_id = in_flight.pop(future)
                    node = graph.nodes[node_id]
                    try:
                        result = future.result()
                    except Exception as exc:
                        logger.exception("unexpected error building %s", node_id)
                        result = NodeResult.failed(
                            node_id, f"internal error: {exc!r}", node.kind, node.output
                        )
                    record(result)
                ready.sort()

        for node_id in sorted(closure - set(report.results)):
            node = graph.nodes[node_id]
            report.results[node_id] = NodeResult.cancelled(node_id, node.kind, node.output)
            report.aborted = True

        report.elapsed = time.perf_counter() - started
        return report
