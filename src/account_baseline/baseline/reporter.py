"""Run reporting for plan, apply and teardown.

The reporter collects one entry per control, in catalog order, and renders
the result for an operator (text) or for machines (a JSON-serializable
dictionary). It has no side effects on the account.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from .models import (
    ApplyResult,
    ApplyStatus,
    Control,
    DecisionKind,
    ReconciliationDecision,
)
from .reconciler import MANUAL_CHANGE_REASON, NOT_MANAGED_REASON


@dataclass(frozen=True)
class ReportEntry:
    """Outcome for one control."""

    control: Control
    decision: Optional[ReconciliationDecision] = None
    result: Optional[ApplyResult] = None
    remediation: Optional[str] = None

    @property
    def identifier(self) -> str:
        return self.control.identifier

    @property
    def outcome(self) -> str:
        """Single word summarizing what happened to the control."""
        if self.result is not None and self.result.status is not ApplyStatus.SKIPPED:
            return self.result.status.value
        if self.decision is not None:
            if self.decision.kind is DecisionKind.NO_ACTION:
                return DecisionKind.NO_ACTION.value
            if self.decision.kind is DecisionKind.UNRESOLVABLE:
                return DecisionKind.UNRESOLVABLE.value
            if self.result is None:
                return f"Planned{self.decision.kind.value}"
        return ApplyStatus.SKIPPED.value

    @property
    def is_failure(self) -> bool:
        if self.decision is not None and self.decision.kind is DecisionKind.UNRESOLVABLE:
            return True
        return (
            self.result is not None
            and self.result.status is ApplyStatus.FAILED
            and not self.result.retryable
        )

    @property
    def cause(self) -> Optional[str]:
        if self.result is not None and self.result.cause:
            return self.result.cause
        if self.decision is not None:
            return self.decision.reason
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "category": self.control.category.value,
            "kind": self.control.kind,
            "decision": self.decision.kind.value if self.decision else None,
            "outcome": self.outcome,
            "cause": self.cause,
            "retryable": self.result.retryable if self.result else False,
            "attempts": self.result.attempts if self.result else 0,
            "diff": [d.to_dict() for d in self.decision.diff] if self.decision else [],
            "remediation": self.remediation,
        }


@dataclass
class RunReport:
    """Aggregated outcome of one run."""

    mode: str
    entries: List[ReportEntry]
    account_id: Optional[str] = None
    region: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        """True iff no control failed non-retryably or was unresolvable."""
        return not any(entry.is_failure for entry in self.entries)

    def entry(self, identifier: str) -> Optional[ReportEntry]:
        for entry in self.entries:
            if entry.identifier == identifier:
                return entry
        return None

    def summary(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for entry in self.entries:
            counts[entry.outcome] = counts.get(entry.outcome, 0) + 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "success": self.success,
            "account_id": self.account_id,
            "region": self.region,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "summary": self.summary(),
            "controls": [entry.to_dict() for entry in self.entries],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)

    def render(self) -> str:
        """Render the report for a human operator."""
        symbols = {
            "Applied": "✅",
            "NoActionNeeded": "✅",
            "Skipped": "⏭️",
            "Failed": "❌",
            "Unresolvable": "⚠️",
        }
        lines = [
            f"Account baseline {self.mode} report "
            f"(account {self.account_id or 'unknown'}, region {self.region or 'unknown'})",
            "-" * 60,
        ]
        for entry in self.entries:
            symbol = symbols.get(entry.outcome, "📝")
            line = f"{symbol} {entry.identifier} [{entry.control.category.value}]: {entry.outcome}"
            if entry.cause:
                line += f" - {entry.cause}"
            lines.append(line)
            if entry.decision is not None:
                for change in entry.decision.diff:
                    lines.append(
                        f"   • {'.'.join(change.path)}: {change.actual!r} -> {change.expected!r}"
                    )
            if entry.remediation:
                lines.append(f"   Remediation: {entry.remediation}")
        lines.append("-" * 60)
        summary = ", ".join(f"{name}={count}" for name, count in sorted(self.summary().items()))
        lines.append(f"Summary: {summary or 'no controls'}")
        lines.append("✅ Run succeeded" if self.success else "❌ Run did not fully succeed")
        return "\n".join(lines)


def remediation_hint(
    decision: Optional[ReconciliationDecision], result: Optional[ApplyResult]
) -> Optional[str]:
    """Suggest what an operator can do about a non-converged control."""
    cause = (result.cause if result else None) or (decision.reason if decision else None) or ""
    failed = result is not None and result.status is ApplyStatus.FAILED
    unresolvable = decision is not None and decision.kind is DecisionKind.UNRESOLVABLE
    blocked = decision is None and result is not None and result.status is ApplyStatus.SKIPPED

    if not (failed or unresolvable or blocked):
        return None

    if unresolvable and decision.reason == MANUAL_CHANGE_REASON:
        return (
            "The resource was changed outside this tool. Revert the change, "
            "or adopt the resource by adding the ownership tag and re-run."
        )
    if unresolvable and decision.reason == NOT_MANAGED_REASON:
        return "Remove the resource manually if it is no longer needed."

    if "AccessDenied" in cause or "UnauthorizedOperation" in cause:
        return "Grant the caller the IAM permissions needed for this control and re-run."
    if "deadline" in cause:
        return "Re-run; the run deadline was reached before this control finished."
    if "Throttl" in cause or "gave up after" in cause:
        return "AWS throttled or was unavailable; re-run later or lower execution.max_workers."
    if "dependent" in cause and "dependency" not in cause:
        return (
            "Remove the dependent control listed above first; "
            "this control will be torn down on the next teardown."
        )
    if "dependency" in cause:
        return "Fix the dependency listed above first; this control will follow on the next run."
    if cause:
        return "Inspect the error above, correct the account or configuration, and re-run."
    return None


class Reporter:
    """Collects per-control outcomes for one run."""

    def __init__(self, mode: str, account_id: Optional[str] = None, region: Optional[str] = None):
        self.mode = mode
        self.account_id = account_id
        self.region = region
        self._entries: Dict[str, ReportEntry] = {}
        self._started_at = datetime.now(timezone.utc)

    def record(
        self,
        control: Control,
        decision: Optional[ReconciliationDecision] = None,
        result: Optional[ApplyResult] = None,
    ) -> ReportEntry:
        """Record what happened to a control."""
        entry = ReportEntry(control, decision, result, remediation_hint(decision, result))
        self._entries[control.identifier] = entry
        return entry

    def build(self, order: Sequence[Control]) -> RunReport:
        """Build the report with one entry per control in ``order``.

        Controls that never got an outcome are reported as skipped rather
        than left out.
        """
        entries = []
        for control in order:
            entry = self._entries.get(control.identifier)
            if entry is None:
                result = ApplyResult.skipped("not processed")
                entry = ReportEntry(control, None, result, remediation_hint(None, result))
            entries.append(entry)
        return RunReport(
            mode=self.mode,
            entries=entries,
            account_id=self.account_id,
            region=self.region,
            started_at=self._started_at,
            finished_at=datetime.now(timezone.utc),
        )
