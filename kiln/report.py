"""Results of a scheduler run."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from .errors import KilnError
from .graph import NodeKind


class NodeStatus(enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class NodeResult:
    """Outcome of one node in one run.

    Attributes:
        node_id: Node identity.
        status: Outcome.
        kind: Node kind, when known.
        reason: Failure or skip reason.
        output: Output path the node owns, if any.
        written: True if the output file's bytes changed.
    """

    node_id: str
    status: NodeStatus
    kind: NodeKind | None = None
    reason: str = ""
    output: str | None = None
    written: bool = False

    @classmethod
    def succeeded(cls, node_id, kind=None, output=None, written=False) -> NodeResult:
        return cls(node_id, NodeStatus.SUCCEEDED, kind, output=output, written=written)

    @classmethod
    def failed(cls, node_id, reason, kind=None, output=None) -> NodeResult:
        return cls(node_id, NodeStatus.FAILED, kind, reason, output)

    @classmethod
    def skipped(cls, node_id, reason, kind=None, output=None) -> NodeResult:
        return cls(node_id, NodeStatus.SKIPPED, kind, reason, output)

    @classmethod
    def cancelled(cls, node_id, kind=None, output=None) -> NodeResult:
        return cls(node_id, NodeStatus.CANCELLED, kind, "run cancelled", output)


@dataclass
class BuildReport:
    """Everything one scheduler run did to one site.

    Attributes:
        site_name: Site built.
        results: Node id -> result, for every node in the dirty closure.
        removed: Output paths deleted at the start of the run.
        aborted: The run was cancelled before every node was dispatched.
        elapsed: Wall time in seconds.
        fatal: Configuration or graph error that prevented the run.
    """

    site_name: str
    results: dict[str, NodeResult] = field(default_factory=dict)
    removed: list[str] = field(default_factory=list)
    aborted: bool = False
    elapsed: float = 0.0
    fatal: KilnError | None = None

    def _with(self, status: NodeStatus) -> list[NodeResult]:
        return [r for _, r in sorted(self.results.items()) if r.status is status]

    @property
    def failed(self) -> list[NodeResult]:
        return self._with(NodeStatus.FAILED)

    @property
    def skipped(self) -> list[NodeResult]:
        return self._with(NodeStatus.SKIPPED)

    @property
    def cancelled(self) -> list[NodeResult]:
        return self._with(NodeStatus.CANCELLED)

    @property
    def ok(self) -> bool:
        return self.fatal is None and not self.failed and not self.skipped

    @property
    def written(self) -> list[str]:
        return sorted(r.output for r in self.results.values() if r.written and r.output)

    @property
    def unchanged(self) -> list[str]:
        return sorted(
            r.output
            for r in self.results.values()
            if r.status is NodeStatus.SUCCEEDED and r.output and not r.written
        )

    @property
    def changed_outputs(self) -> list[str]:
        """Output paths whose content changed or that were removed."""
        return sorted(set(self.written) | set(self.removed))

    @property
    def style_outputs(self) -> list[str]:
        return sorted(
            r.output
            for r in self.results.values()
            if r.written and r.output and r.kind is NodeKind.STYLE
        )

    def errors(self) -> list[str]:
        """One line per fatal error, failed node and skipped node."""
        lines = []
        if self.fatal is not None:
            lines.append(str(self.fatal))
        lines.extend(f"{r.node_id}: {r.reason}" for r in self.failed)
        lines.extend(f"{r.node_id}: skipped ({r.reason})" for r in self.skipped)
        return lines

    def summary(self) -> str:
        if self.fatal is not None:
            return f"{self.site_name}: build failed: {self.fatal}"
        parts = [
            f"{len(self.written)} written",
            f"{len(self.unchanged)} unchanged",
        ]
        if self.removed:
            parts.append(f"{len(self.removed)} removed")
        if self.failed:
            parts.append(f"{len(self.failed)} failed")
        if self.skipped:
            parts.append(f"{len(self.skipped)} skipped")
        if self.aborted:
            parts.append(f"aborted ({len(self.cancelled)} cancelled)")
        return f"{self.site_name}: {', '.join(parts)} in {self.elapsed:.2f}s"


