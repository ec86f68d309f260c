"""Reconciliation: map a control and its observed state to a decision.

Both functions are pure. Drift on a resource that carries the ownership
marker is safe to correct; drift on anything else is reported and left
alone.
"""

from .models import (
    Control,
    DecisionKind,
    ObservedState,
    ObservedStatus,
    ReconciliationDecision,
)


MANUAL_CHANGE_REASON = "manual change detected"
NOT_MANAGED_REASON = "resource not managed by this tool"
RETAINED_REASON = "retained on teardown"
ALREADY_ABSENT_REASON = "already absent"


def reconcile(control: Control, observed: ObservedState) -> ReconciliationDecision:
    """Decide how to converge a control towards its desired state.

    Args:
        control: Control being reconciled
        observed: Its freshly inspected state

    Returns:
        ReconciliationDecision for the applier
    """
    if observed.status is ObservedStatus.MATCHING:
        return ReconciliationDecision(control, DecisionKind.NO_ACTION)

    if observed.status is ObservedStatus.ABSENT:
        return ReconciliationDecision(control, DecisionKind.CREATE)

    if observed.status is ObservedStatus.DIVERGENT:
        if observed.owned:
            return ReconciliationDecision(control, DecisionKind.UPDATE, diff=observed.diff)
        return ReconciliationDecision(
            control, DecisionKind.UNRESOLVABLE, diff=observed.diff, reason=MANUAL_CHANGE_REASON
        )

    return ReconciliationDecision(control, DecisionKind.UNRESOLVABLE, reason=observed.cause)


def reconcile_teardown(control: Control, observed: ObservedState) -> ReconciliationDecision:
    """Decide how to remove a control's resource.

    Args:
        control: Control being torn down
        observed: Its freshly inspected state

    Returns:
        ReconciliationDecision for the applier
    """
    if control.retain_on_teardown:
        return ReconciliationDecision(control, DecisionKind.NO_ACTION, reason=RETAINED_REASON)

    if observed.status is ObservedStatus.ABSENT:
        return ReconciliationDecision(
            control, DecisionKind.NO_ACTION, reason=ALREADY_ABSENT_REASON
        )

    if observed.status is ObservedStatus.INSPECTION_FAILED:
        return ReconciliationDecision(control, DecisionKind.UNRESOLVABLE, reason=observed.cause)

    if observed.owned:
        return ReconciliationDecision(control, DecisionKind.DELETE)

    return ReconciliationDecision(control, DecisionKind.UNRESOLVABLE, reason=NOT_MANAGED_REASON)
