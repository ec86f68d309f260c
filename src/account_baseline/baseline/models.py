"""Data model for the baseline pipeline.

Controls are the desired-state declarations, ObservedState is what the
inspector saw, ReconciliationDecision is what the reconciler wants done and
ApplyResult is what actually happened.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple


class Category(Enum):
    """Governance area a control belongs to."""

    IDENTITY = "identity"
    LOGGING = "logging"
    COMPLIANCE = "compliance"
    FINDINGS = "findings"
    COST = "cost"


@dataclass(frozen=True)
class Control:
    """A named governance requirement."""

    identifier: str
    category: Category
    kind: str
    desired: Mapping[str, Any] = field(default_factory=dict)
    depends_on: Tuple[str, ...] = ()
    description: str = ""
    retain_on_teardown: bool = False

    def __post_init__(self) -> None:
        # Nested values are copied so later edits to the source mapping do not leak in.
        object.__setattr__(self, "desired", MappingProxyType(copy.deepcopy(dict(self.desired))))
        object.__setattr__(self, "depends_on", tuple(self.depends_on))


@dataclass(frozen=True)
class PropertyDiff:
    """A single difference between desired and observed configuration."""

    path: Tuple[str, ...]
    expected: Any
    actual: Any

    @property
    def property_name(self) -> str:
        """Top-level property the difference belongs to."""
        return self.path[0]

    def to_dict(self) -> Dict[str, Any]:
        return {"path": ".".join(self.path), "expected": self.expected, "actual": self.actual}


class ObservedStatus(Enum):
    """Outcome of inspecting one control."""

    ABSENT = "Absent"
    MATCHING = "PresentMatching"
    DIVERGENT = "PresentDivergent"
    INSPECTION_FAILED = "InspectionFailed"


@dataclass(frozen=True)
class ObservedState:
    """Normalized view of one control in the live account."""

    status: ObservedStatus
    diff: Tuple[PropertyDiff, ...] = ()
    owned: bool = False
    cause: Optional[str] = None
    retryable: bool = False

    @classmethod
    def absent(cls) -> "ObservedState":
        return cls(ObservedStatus.ABSENT)

    @classmethod
    def matching(cls, owned: bool) -> "ObservedState":
        return cls(ObservedStatus.MATCHING, owned=owned)

    @classmethod
    def divergent(cls, diff: List[PropertyDiff], owned: bool) -> "ObservedState":
        return cls(ObservedStatus.DIVERGENT, diff=tuple(diff), owned=owned)

    @classmethod
    def failed(cls, cause: str, retryable: bool = False) -> "ObservedState":
        return cls(ObservedStatus.INSPECTION_FAILED, cause=cause, retryable=retryable)

    @property
    def present(self) -> bool:
        return self.status in (ObservedStatus.MATCHING, ObservedStatus.DIVERGENT)


class DecisionKind(Enum):
    """What the reconciler wants done for a control."""

    NO_ACTION = "NoActionNeeded"
    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"
    UNRESOLVABLE = "Unresolvable"


MUTATING_DECISIONS = (DecisionKind.CREATE, DecisionKind.UPDATE, DecisionKind.DELETE)


@dataclass(frozen=True)
class ReconciliationDecision:
    """Decision derived from a control and its observed state."""

    control: Control
    kind: DecisionKind
    diff: Tuple[PropertyDiff, ...] = ()
    reason: Optional[str] = None

    @property
    def mutating(self) -> bool:
        return self.kind in MUTATING_DECISIONS


class ApplyStatus(Enum):
    """Outcome of executing a decision."""

    APPLIED = "Applied"
    SKIPPED = "Skipped"
    FAILED = "Failed"


@dataclass(frozen=True)
class ApplyResult:
    """Result of executing one decision against the account."""

    status: ApplyStatus
    cause: Optional[str] = None
    retryable: bool = False
    attempts: int = 0

    @classmethod
    def applied(cls, attempts: int = 1) -> "ApplyResult":
        return cls(ApplyStatus.APPLIED, attempts=attempts)

    @classmethod
    def skipped(cls, cause: Optional[str] = None) -> "ApplyResult":
        return cls(ApplyStatus.SKIPPED, cause=cause)

    @classmethod
    def failed(cls, cause: str, retryable: bool = False, attempts: int = 0) -> "ApplyResult":
        return cls(ApplyStatus.FAILED, cause=cause, retryable=retryable, attempts=attempts)


def diff_properties(
    desired: Mapping[str, Any], actual: Mapping[str, Any], path: Tuple[str, ...] = ()
) -> List[PropertyDiff]:
    """Compare desired properties against observed ones.

    Only keys present in ``desired`` are compared, so server-managed or
    unrelated attributes never count as drift. Nested mappings are compared
    key by key; any other value is compared as a whole.

    Args:
        desired: Desired property mapping
        actual: Observed property mapping
        path: Key path of the mappings being compared

    Returns:
        Differences, in desired key order
    """
    diffs: List[PropertyDiff] = []
    for key, expected in desired.items():
        observed = actual.get(key) if isinstance(actual, Mapping) else None
        key_path = path + (str(key),)
        if isinstance(expected, Mapping) and isinstance(observed, Mapping):
            diffs.extend(diff_properties(expected, observed, key_path))
        elif expected != observed:
            diffs.append(PropertyDiff(key_path, expected, observed))
    return diffs
