"""Build session: the coordinator.

The session owns one build graph per site and is its only writer. One-shot
mode builds every site cold. Watch mode adds a change watcher feeding
change-sets into a pending queue and a coordinator thread that applies them
to the graph, runs the scheduler and notifies the dev server, one run at a
time.
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable
from pathlib import Path

from .config import Site
from .errors import ConfigurationError, KilnError
from .graph import BuildGraph, apply_changes, construct
from .output import prune_orphans
from .report import BuildReport, NodeStatus
from .scheduler import Scheduler
from .server import DevServer
from .services import BuildServices
from .watcher import ChangeCoalescer, ChangeKind, ChangeWatcher

logger = logging.getLogger(__name__)


def log_report(report: BuildReport) -> None:
    for line in report.errors():
        logger.error(line)
    if report.ok:
        logger.info(report.summary())
    else:
        logger.warning(report.summary())


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt


class BuildSession:
    """Owns the build graphs of a project's sites.

    Attributes:
        sites: Sites by name, in configuration order.
        graphs: Current graph of each site that has been built.
        scheduler: Runs dirty nodes.
        cancel_event: Set to abort the run in progress.
    """

    def __init__(
        self,
        sites: list[Site],
        scheduler: Scheduler | None = None,
        services_factory: Callable[[Site], BuildServices] = BuildServices.for_site,
        reload_sites: Callable[[], list[Site]] | None = None,
    ):
        self.sites: dict[str, Site] = {s.name: s for s in sites}
        self.graphs: dict[str, BuildGraph] = {}
        self.scheduler = scheduler or Scheduler()
        self.services_factory = services_factory
        self.reload_sites = reload_sites
        self.cancel_event = threading.Event()
        self._pending: dict[str, ChangeCoalescer] = {name: ChangeCoalescer() for name in self.sites}
        self._retry: dict[str, ChangeCoalescer] = {name: ChangeCoalescer() for name in self.sites}
        self._failing: dict[str, dict[str, str]] = {}
        self._cond = threading.Condition()

    def build_site(self, site: Site) -> BuildReport:
        """Cold build of one site, pruning outputs nothing produces any more.

        Raises:
            ConfigurationError: If the site cannot be read.
        """
        try:
            graph = construct(site, self.services_factory(site))
        except ConfigurationError:
            raise
        except KilnError as exc:
            logger.error("%s", exc)
            return BuildReport(site_name=site.name, fatal=exc)
        report = self.scheduler.run(graph, set(graph.nodes), self.cancel_event)
        if not report.aborted:
            report.removed.extend(prune_orphans(site.output_root, graph.outputs()))
        self.graphs[site.name] = graph
        self._failing[site.name] = {}
        self._track_failures(site.name, report)
        return report

    def build(self) -> list[BuildReport]:
        """Cold build of every site.

        Raises:
            ConfigurationError: Before anything is written for a site whose
                configuration or sources are unusable.
        """
        return [self.build_site(site) for site in self.sites.values()]

    def submit(self, site_name: str, changes: dict[Path, ChangeKind]) -> None:
        """Queue a change-set, merging it with any change-set already pending."""
        with self._cond:
            self._pending[site_name].update(changes)
            self._cond.notify_all()

    def take_pending(self, site_name: str) -> dict[Path, ChangeKind]:
        """Drain the queued change-set, including changes kept from a failed rebuild.

        Kept changes alone do not count as pending; they ride along with the
        next real change-set.
        """
        with self._cond:
            pending = self._pending[site_name].drain()
            if not pending:
                return {}
            merged = ChangeCoalescer()
            merged.update(self._retry[site_name].drain())
            merged.update(pending)
            return merged.drain()

    def rebuild(self, site_name: str, changes: dict[Path, ChangeKind]) -> BuildReport:
        """Apply a change-set to a site's graph and run the dirty nodes.

        A fatal error leaves the previous graph and output in place; the
        change-set is queued again so it is retried with the next one.
        """
        site = self.sites[site_name]
        try:
            if any(Path(p) == site.config_path for p in changes):
                return self._reconfigure(site_name)
            graph, dirty = apply_changes(self.graphs[site_name], changes)
        except KilnError as exc:
            logger.debug("keeping %d change(s) for the next rebuild", len(changes))
            with self._cond:
                self._retry[site_name].update(changes)
            return BuildReport(site_name=site_name, fatal=exc)
        self.graphs[site_name] = graph
        report = self.scheduler.run(graph, dirty, self.cancel_event)
        self._track_failures(site_name, report)
        return report

    def _track_failures(self, site_name: str, report: BuildReport) -> None:
        failing = self._failing.setdefault(site_name, {})
        for node_id, result in report.results.items():
            if result.status is NodeStatus.FAILED:
                failing[node_id] = f"{node_id}: {result.reason}"
            elif result.status is NodeStatus.SKIPPED:
                failing[node_id] = f"{node_id}: skipped ({result.reason})"
            elif result.status is NodeStatus.SUCCEEDED:
                failing.pop(node_id, None)
        nodes = self.graphs[site_name].nodes
        for node_id in [n for n in failing if n not in nodes]:
            del failing[node_id]

    def outstanding_errors(self, site_name: str, report: BuildReport | None = None) -> list[str]:
        """Errors still affecting a site, not just those of the latest run.

        A run only covers its dirty closure, so a node that failed earlier
        and was not rebuilt since is still failing.

        Args:
            site_name: Site to describe.
            report: Latest report; its fatal error, if any, comes first.
        """
        lines = [str(report.fatal)] if report is not None and report.fatal is not None else []
        failing = self._failing.get(site_name, {})
        lines.extend(failing[node_id] for node_id in sorted(failing))
        return lines

    def _reconfigure(self, site_name: str) -> BuildReport:
        if self.reload_sites is None:
            logger.warning("configuration changed; restart to apply it")
            return BuildReport(site_name=site_name)
        logger.info("configuration changed; rebuilding %s from scratch", site_name)
        sites = {s.name: s for s in self.reload_sites()}
        if site_name not in sites:
            raise ConfigurationError(f"site '{site_name}' is no longer configured")
        site = sites[site_name]
        previous = self.sites[site_name]
        if site.output_root != previous.output_root:
            raise ConfigurationError("changing the output directory requires a restart")
        self.sites[site_name] = site
        return self.build_site(site)

    def run_pending(self, site_name: str) -> BuildReport | None:
        changes = self.take_pending(site_name)
        if not changes:
            return None
        return self.rebuild(site_name, changes)

    def _coordinate(self, site_name: str, server: DevServer, stop: threading.Event) -> None:
        while True:
            with self._cond:
                while not self._pending[site_name] and not stop.is_set():
                    self._cond.wait()
                if stop.is_set():
                    return
            changes = self.take_pending(site_name)
            if not changes:
                continue
            try:
                report = self.rebuild(site_name, changes)
            except Exception:
                logger.exception("unexpected error rebuilding %s", site_name)
                with self._cond:
                    self._retry[site_name].update(changes)
                continue
            log_report(report)
            server.notify(report, self.outstanding_errors(site_name, report))

    def _feed(self, site_name: str, watcher: ChangeWatcher) -> None:
        for changes in watcher.changes():
            logger.debug("%d change(s) detected", len(changes))
            self.submit(site_name, changes)

    def watch(
        self,
        site_name: str | None = None,
        host: str = "127.0.0.1",
        port: int | None = None,
        ws_port: int | None = None,
    ) -> BuildReport:  # pragma: no cover - integration path
        """Serve one site and rebuild it as its sources change.

        Runs until interrupted (Ctrl-C or SIGTERM). The run in progress is
        allowed to finish; a second interrupt cancels it instead.

        Returns:
            The initial cold build report.
        """
        name = site_name or next(iter(self.sites))
        if name not in self.sites:
            raise ConfigurationError(f"unknown site '{name}'")
        site = self.sites[name]

        report = self.build_site(site)
        log_report(report)

        server = DevServer(site.output_root, host, port or site.port, ws_port or site.ws_port)
        server.start()
        server.notify(report, self.outstanding_errors(name, report))

        watcher = ChangeWatcher(
            roots=[site.root, site.config_path.parent],
            ignore=[site.output_root],
            debounce=site.debounce_ms / 1000,
        )
        watcher.start()
        stop = threading.Event()
        coordinator = threading.Thread(
            target=self._coordinate, args=(name, server, stop), name="kiln-session"
        )
        feeder = threading.Thread(
            target=self._feed, args=(name, watcher), name="kiln-watcher", daemon=True
        )
        coordinator.start()
        feeder.start()

        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGTERM, _raise_interrupt)
        logger.info("Watching %s for changes (Ctrl-C to stop)", site.root)
        try:
            while coordinator.is_alive():
                coordinator.join(0.5)
        except KeyboardInterrupt:
            logger.info("Shutting down; finishing the current build")
            watcher.stop()
            with self._cond:
                stop.set()
                self._cond.notify_all()
            try:
                while coordinator.is_alive():
                    coordinator.join(0.5)
            except KeyboardInterrupt:
                logger.warning("Cancelling the current build")
                self.cancel_event.set()
                coordinator.join()
        finally:
            watcher.stop()
            server.stop()
        return report
