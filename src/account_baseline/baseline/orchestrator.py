"""Baseline orchestration for plan, apply and teardown runs.

This module drives Catalog -> Inspector -> Reconciler -> Applier ->
Reporter. Controls are processed level by level in dependency order:
inspections within a level run concurrently on a bounded thread pool,
then decisions are applied one at a time in catalog order.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from ..controls import default_handlers
from ..controls.base import ControlHandler, OwnershipMarker
from ..core.aws_client import AWSClientManager
from ..core.config import Configuration, ConfigurationError
from .applier import Applier, Deadline, RetryPolicy
from .catalog import BaselineCatalog, build_default_catalog
from .inspector import StateInspector
from .models import (
    ApplyResult,
    ApplyStatus,
    Control,
    DecisionKind,
    ObservedState,
    ReconciliationDecision,
)
from .reconciler import reconcile, reconcile_teardown
from .reporter import Reporter, RunReport


logger = logging.getLogger(__name__)

PLAN = "plan"
APPLY = "apply"
TEARDOWN = "teardown"


class UnknownControlKindError(ConfigurationError):
    """Raised when a control's kind has no registered handler."""
    pass


class BaselineOrchestrator:
    """Orchestrates baseline runs against one account and region."""

    def __init__(
        self,
        config: Configuration,
        aws_client: AWSClientManager,
        catalog: Optional[BaselineCatalog] = None,
        handlers: Optional[Mapping[str, ControlHandler]] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize baseline orchestrator.

        Args:
            config: Configuration instance
            aws_client: AWS client manager instance
            catalog: Catalog to run; built from configuration when omitted
            handlers: Handler registry; the default AWS handlers when omitted
            sleep: Sleep function used between retry attempts
            clock: Monotonic clock used for the run deadline
        """
        self.config = config
        self.aws_client = aws_client
        self.marker = OwnershipMarker(*config.get_ownership_tag())
        self.handlers = handlers if handlers is not None else default_handlers(
            aws_client, self.marker
        )
        self.inspector = StateInspector(self.handlers)
        self.retry_policy = RetryPolicy.from_settings(config.get_retry_settings())
        self._catalog = catalog
        self._sleep = sleep
        self._clock = clock

    @property
    def catalog(self) -> BaselineCatalog:
        if self._catalog is None:
            self._catalog = build_default_catalog(
                self.config,
                self.aws_client.get_account_id(),
                self.aws_client.get_current_region(),
            )
        return self._catalog

    def plan(self) -> RunReport:
        """Inspect and reconcile without mutating the account."""
        return self._converge(PLAN)

    def apply(self) -> RunReport:
        """Inspect, reconcile and apply the whole baseline."""
        return self._converge(APPLY)

    def teardown(self) -> RunReport:
        """Remove owned baseline resources in reverse dependency order.

        Returns:
            RunReport listing every control in teardown order
        """
        controls, levels = self._prepare()
        deadline = Deadline(self.config.get_run_deadline(), self._clock)
        applier = Applier(self.handlers, self.retry_policy, deadline, self._sleep)
        reporter = self._new_reporter(TEARDOWN)
        removed: Set[str] = set()

        logger.info(f"Starting baseline teardown of {len(controls)} controls")

        for level in reversed(levels):
            ready = []
            for control in reversed(level):
                remaining = [
                    c.identifier
                    for c in self.catalog.dependents_of(control.identifier)
                    if c.identifier not in removed
                ]
                if remaining:
                    reporter.record(
                        control,
                        result=ApplyResult.skipped(f"dependent '{remaining[0]}' is still present"),
                    )
                elif deadline.expired:
                    reporter.record(control, result=ApplyResult.failed("run deadline exceeded"))
                else:
                    ready.append(control)

            observed = self._inspect_all(ready, deadline)
            for control in ready:
                decision = reconcile_teardown(control, observed[control.identifier])
                if decision.kind is DecisionKind.UNRESOLVABLE:
                    reporter.record(control, decision)
                    continue

                result = self._execute(applier, decision, deadline)
                if result.status in (ApplyStatus.APPLIED, ApplyStatus.SKIPPED):
                    removed.add(control.identifier)
                reporter.record(control, decision, result)

        report = reporter.build(list(reversed(controls)))
        logger.info(f"Baseline teardown finished: {report.summary()}")
        return report

    def _converge(self, mode: str) -> RunReport:
        """Run plan or apply over the catalog.

        A control is only reconciled once every dependency reached
        NoActionNeeded or Applied in this run. In plan mode a planned
        Create/Update counts as converged so the whole plan is shown.
        """
        controls, levels = self._prepare()
        deadline = Deadline(self.config.get_run_deadline(), self._clock)
        applier = Applier(self.handlers, self.retry_policy, deadline, self._sleep)
        reporter = self._new_reporter(mode)
        converged: Set[str] = set()

        logger.info(f"Starting baseline {mode} of {len(controls)} controls")

        for level in levels:
            ready = []
            for control in level:
                blocker = next((d for d in control.depends_on if d not in converged), None)
                if blocker is not None:
                    reporter.record(
                        control,
                        result=ApplyResult.skipped(f"dependency '{blocker}' did not converge"),
                    )
                elif deadline.expired:
                    reporter.record(control, result=ApplyResult.failed("run deadline exceeded"))
                else:
                    ready.append(control)

            observed = self._inspect_all(ready, deadline)
            for control in ready:
                decision = reconcile(control, observed[control.identifier])

                if decision.kind is DecisionKind.UNRESOLVABLE:
                    logger.warning(f"{control.identifier} is unresolvable: {decision.reason}")
                    reporter.record(control, decision)
                    continue

                if mode == PLAN:
                    converged.add(control.identifier)
                    reporter.record(control, decision)
                    continue

                result = self._execute(applier, decision, deadline)
                if result.status is not ApplyStatus.FAILED:
                    converged.add(control.identifier)
                reporter.record(control, decision, result)

        report = reporter.build(controls)
        logger.info(f"Baseline {mode} finished: {report.summary()}")
        return report

    def _prepare(self) -> Tuple[List[Control], List[List[Control]]]:
        """Load the catalog and check every control has a handler.

        Raises:
            ConfigurationError: When the catalog is invalid
        """
        controls = self.catalog.load()
        for control in controls:
            if control.kind not in self.handlers:
                raise UnknownControlKindError(
                    f"Control '{control.identifier}' has unknown kind '{control.kind}'"
                )
        return controls, self.catalog.levels()

    def _new_reporter(self, mode: str) -> Reporter:
        return Reporter(
            mode,
            account_id=self.aws_client.get_account_id(),
            region=self.aws_client.get_current_region(),
        )

    def _execute(
        self, applier: Applier, decision: ReconciliationDecision, deadline: Deadline
    ) -> ApplyResult:
        """Apply one decision, isolating unexpected handler errors."""
        if decision.mutating and deadline.expired:
            return ApplyResult.failed("run deadline exceeded")
        try:
            return applier.apply(decision)
        except Exception as e:
            logger.exception(f"Unexpected error applying {decision.control.identifier}")
            return ApplyResult.failed(f"Unexpected error: {e}")

    def _inspect_all(
        self, controls: Sequence[Control], deadline: Deadline
    ) -> Dict[str, ObservedState]:
        """Inspect independent controls concurrently.

        Inspections still running at the deadline are abandoned and reported
        as failed; their threads finish on their own within the call timeout.
        """
        if not controls:
            return {}

        observed: Dict[str, ObservedState] = {}
        executor = ThreadPoolExecutor(
            max_workers=min(self.config.get_max_workers(), len(controls)),
            thread_name_prefix="baseline-inspect",
        )
        try:
            futures = {executor.submit(self.inspector.inspect, c): c for c in controls}
            done, not_done = wait(futures, timeout=deadline.remaining())

            for future in done:
                control = futures[future]
                try:
                    observed[control.identifier] = future.result()
                except Exception as e:
                    logger.exception(f"Unexpected error inspecting {control.identifier}")
                    observed[control.identifier] = ObservedState.failed(f"Unexpected error: {e}")

            for future in not_done:
                future.cancel()
                control = futures[future]
                observed[control.identifier] = ObservedState.failed(
                    "run deadline exceeded during inspection", retryable=True
                )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return observed
