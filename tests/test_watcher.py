import threading
import time

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirMovedEvent,
    FileClosedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from kiln.watcher import ChangeCoalescer, ChangeKind, ChangeWatcher, DebounceState, Debouncer, merge_kind


def test_merge_kind():
    assert merge_kind(None, ChangeKind.MODIFIED) is ChangeKind.MODIFIED
    assert merge_kind(ChangeKind.CREATED, ChangeKind.MODIFIED) is ChangeKind.CREATED
    assert merge_kind(ChangeKind.CREATED, ChangeKind.DELETED) is ChangeKind.DELETED
    assert merge_kind(ChangeKind.DELETED, ChangeKind.CREATED) is ChangeKind.CREATED


def test_coalescer_collapses_per_path(tmp_path):
    coalescer = ChangeCoalescer()
    a, b = tmp_path / "a.md", tmp_path / "b.md"
    for _ in range(5):
        coalescer.add(a, ChangeKind.MODIFIED)
    coalescer.add(b, ChangeKind.CREATED)
    coalescer.add(b, ChangeKind.MODIFIED)
    assert len(coalescer) == 2
    assert coalescer.drain() == {a: ChangeKind.MODIFIED, b: ChangeKind.CREATED}
    assert not coalescer


def test_debouncer_flushes_once_after_quiet_period(tmp_path):
    debouncer = Debouncer(0.05)
    path = tmp_path / "a.md"
    for _ in range(10):
        debouncer.push(path, ChangeKind.MODIFIED)
    assert debouncer.state is DebounceState.ACCUMULATING

    assert debouncer.next_batch(timeout=2) == {path: ChangeKind.MODIFIED}
    assert debouncer.state is DebounceState.IDLE
    assert debouncer.next_batch(timeout=0.1) is None


def test_debouncer_extends_window_while_events_arrive(tmp_path):
    debouncer = Debouncer(0.2)
    first, second = tmp_path / "a.md", tmp_path / "b.md"
    debouncer.push(first, ChangeKind.MODIFIED)

    def late_push():
        time.sleep(0.1)
        debouncer.push(second, ChangeKind.CREATED)

    thread = threading.Thread(target=late_push)
    thread.start()
    batch = debouncer.next_batch(timeout=2)
    thread.join()
    assert batch == {first: ChangeKind.MODIFIED, second: ChangeKind.CREATED}


def test_debouncer_close_unblocks(tmp_path):
    debouncer = Debouncer(10)
    debouncer.push(tmp_path / "a.md", ChangeKind.MODIFIED)
    threading.Timer(0.05, debouncer.close).start()
    assert debouncer.next_batch() is None
    debouncer.push(tmp_path / "b.md", ChangeKind.MODIFIED)
    assert debouncer.next_batch(timeout=0) is None


def drain(watcher):
    return watcher._debouncer._pending.drain()


def test_handler_translates_events(tmp_path):
    site = tmp_path / "site"
    output = site / "output"
    watcher = ChangeWatcher([site], ignore=[output], debounce=0.01)
    handler = watcher._handler

    handler.on_any_event(FileModifiedEvent(str(site / "content" / "a.md")))
    handler.on_any_event(FileCreatedEvent(str(site / "content" / "b.md")))
    handler.on_any_event(FileDeletedEvent(str(site / "content" / "c.md")))
    handler.on_any_event(FileModifiedEvent(str(output / "index.html")))
    handler.on_any_event(FileModifiedEvent(str(tmp_path / "elsewhere.md")))
    handler.on_any_event(DirCreatedEvent(str(site / "content" / "new")))
    handler.on_any_event(FileClosedEvent(str(site / "content" / "a.md")))

    assert drain(watcher) == {
        site / "content" / "a.md": ChangeKind.MODIFIED,
        site / "content" / "b.md": ChangeKind.CREATED,
        site / "content" / "c.md": ChangeKind.DELETED,
    }


def test_handler_translates_moves(tmp_path):
    site = tmp_path / "site"
    watcher = ChangeWatcher([site], ignore=[site / "output"])
    handler = watcher._handler

    handler.on_any_event(FileMovedEvent(str(site / "content" / "old.md"), str(site / "content" / "new.md")))
    assert drain(watcher) == {
        site / "content" / "old.md": ChangeKind.DELETED,
        site / "content" / "new.md": ChangeKind.CREATED,
    }

    # editor save pattern: write a temp file, move it over the original
    handler.on_any_event(FileMovedEvent(str(tmp_path / "tmp123"), str(site / "content" / "a.md")))
    assert drain(watcher) == {site / "content" / "a.md": ChangeKind.CREATED}

    handler.on_any_event(FileMovedEvent(str(site / "content" / "a.md"), str(site / "output" / "a.md")))
    assert drain(watcher) == {site / "content" / "a.md": ChangeKind.DELETED}

    handler.on_any_event(DirMovedEvent(str(site / "content" / "posts"), str(site / "content" / "archive")))
    assert drain(watcher) == {site / "content" / "posts": ChangeKind.DELETED}

    handler.on_any_event(DirDeletedEvent(str(site / "content" / "drafts")))
    assert drain(watcher) == {site / "content" / "drafts": ChangeKind.DELETED}


def test_nested_roots_are_deduplicated(tmp_path):
    watcher = ChangeWatcher([tmp_path / "site", tmp_path, tmp_path / "site"])
    assert watcher.roots == [tmp_path]


class DummyObserver:
    def __init__(self):
        self.calls = []

    def schedule(self, handler, path, recursive):
        self.calls.append(("schedule", path, recursive))

    def start(self):
        self.calls.append("start")

    def stop(self):
        self.calls.append("stop")

    def join(self):
        self.calls.append("join")


def test_watcher_lifecycle_yields_change_sets(tmp_path):
    observer = DummyObserver()
    watcher = ChangeWatcher([tmp_path, tmp_path / "missing"], debounce=0.01, observer_factory=lambda: observer)
    watcher.start()
    assert watcher.is_running
    assert observer.calls == [("schedule", str(tmp_path), True), "start"]

    watcher.push(tmp_path / "a.md", ChangeKind.MODIFIED)
    batches = watcher.changes(poll=0.05)
    assert next(batches) == {tmp_path / "a.md": ChangeKind.MODIFIED}

    watcher.stop()
    assert not watcher.is_running
    assert observer.calls[-2:] == ["stop", "join"]
    assert list(batches) == []
