"""Apply reconciliation decisions against the account.

The applier dispatches each decision to the handler for its control kind
and retries transient failures with exponential backoff. Retries never
run past the run deadline, and exhausting them is final for the run.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from botocore.exceptions import BotoCoreError, ClientError
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)
from tenacity.stop import stop_base

from ..controls.base import ControlHandler, ControlHandlerError
from ..core.aws_client import describe_error, is_retryable_error
from .models import ApplyResult, DecisionKind, ReconciliationDecision


logger = logging.getLogger(__name__)


class ApplyError(Exception):
    """Raised when a decision could not be applied."""

    def __init__(self, message: str, retryable: bool = False, attempts: int = 0) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.attempts = attempts


class ReconciliationConflict(Exception):
    """Raised when asked to apply a decision that must not be auto-resolved."""
    pass


class Deadline:
    """Overall run deadline measured on a monotonic clock."""

    def __init__(
        self, seconds: Optional[float], clock: Callable[[], float] = time.monotonic
    ) -> None:
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + seconds

    def remaining(self) -> Optional[float]:
        """Seconds left, or None for an unbounded run."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at


class stop_at_deadline(stop_base):
    """Tenacity stop condition for the run deadline.

    Stops once the deadline has passed, or when the longest backoff the
    policy could pick for the next sleep would run past it.
    """

    def __init__(self, deadline: Optional[Deadline], policy: Optional["RetryPolicy"] = None) -> None:
        self.deadline = deadline
        self.policy = policy

    def __call__(self, retry_state: RetryCallState) -> bool:
        if self.deadline is None:
            return False
        remaining = self.deadline.remaining()
        if remaining is None:
            return False
        upcoming = self.policy.longest_delay(retry_state.attempt_number) if self.policy else 0.0
        return remaining <= upcoming


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for retryable failures."""

    max_attempts: int = 3
    base_delay: float = 1.0
    backoff_factor: float = 2.0
    jitter: float = 1.0
    max_delay: float = 30.0

    @classmethod
    def from_settings(cls, settings: Mapping[str, float]) -> "RetryPolicy":
        """Build a policy from the ``execution.retry`` configuration block."""
        return cls(
            max_attempts=int(settings["max_attempts"]),
            base_delay=float(settings["base_delay_seconds"]),
            backoff_factor=float(settings["backoff_factor"]),
            jitter=float(settings["jitter_seconds"]),
            max_delay=float(settings["max_delay_seconds"]),
        )

    def longest_delay(self, attempt_number: int) -> float:
        """Upper bound of the backoff slept after the given attempt, jitter included."""
        try:
            delay = self.base_delay * self.backoff_factor ** (attempt_number - 1) + self.jitter
        except OverflowError:
            return self.max_delay
        return max(0.0, min(delay, self.max_delay))


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, (ClientError, BotoCoreError)) and is_retryable_error(error)


class Applier:
    """Executes reconciliation decisions through control handlers."""

    def __init__(
        self,
        handlers: Mapping[str, ControlHandler],
        retry_policy: Optional[RetryPolicy] = None,
        deadline: Optional[Deadline] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize applier.

        Args:
            handlers: Handler registry keyed by control kind
            retry_policy: Backoff policy for retryable failures
            deadline: Run deadline retries must respect
            sleep: Sleep function used between attempts
        """
        self._handlers = handlers
        self.retry_policy = retry_policy or RetryPolicy()
        self.deadline = deadline
        self._sleep = sleep

    def apply(self, decision: ReconciliationDecision) -> ApplyResult:
        """Execute one decision.

        Args:
            decision: Decision produced by the reconciler

        Returns:
            Applied, Skipped or Failed result

        Raises:
            ReconciliationConflict: When the decision is Unresolvable
        """
        control = decision.control

        if decision.kind is DecisionKind.UNRESOLVABLE:
            raise ReconciliationConflict(
                f"Refusing to apply unresolvable decision for {control.identifier}: "
                f"{decision.reason}"
            )

        if decision.kind is DecisionKind.NO_ACTION:
            return ApplyResult.skipped(decision.reason or "already converged")

        handler = self._handlers.get(control.kind)
        if handler is None:
            return ApplyResult.failed(f"No handler for control kind '{control.kind}'")

        try:
            attempts = self._run_with_retry(handler, decision)
        except ApplyError as e:
            logger.error(f"{decision.kind.value} {control.identifier} failed: {e}")
            return ApplyResult.failed(str(e), retryable=e.retryable, attempts=e.attempts)

        logger.info(
            f"{decision.kind.value} {control.identifier} applied "
            f"({attempts} attempt{'s' if attempts != 1 else ''})"
        )
        return ApplyResult.applied(attempts=attempts)

    def _run_with_retry(self, handler: ControlHandler, decision: ReconciliationDecision) -> int:
        """Run the handler call under the retry policy.

        Returns:
            Number of attempts made

        Raises:
            ApplyError: When the call fails fatally or retries are exhausted
        """
        policy = self.retry_policy
        retrying = Retrying(
            stop=stop_after_attempt(policy.max_attempts) | stop_at_deadline(self.deadline, policy),
            wait=wait_exponential_jitter(
                initial=policy.base_delay,
                exp_base=policy.backoff_factor,
                jitter=policy.jitter,
                max=policy.max_delay,
            ),
            retry=retry_if_exception(_is_retryable),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        attempts = 0
        try:
            for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    self._execute(handler, decision)
        except (ClientError, BotoCoreError) as e:
            if _is_retryable(e):
                # Exhausted retries are final for this run.
                raise ApplyError(
                    f"{describe_error(e)} (gave up after {attempts} attempts)",
                    retryable=False,
                    attempts=attempts,
                )
            raise ApplyError(describe_error(e), retryable=False, attempts=attempts)
        except ControlHandlerError as e:
            raise ApplyError(str(e), retryable=False, attempts=attempts)

        return attempts

    @staticmethod
    def _execute(handler: ControlHandler, decision: ReconciliationDecision) -> None:
        control = decision.control
        if decision.kind is DecisionKind.CREATE:
            handler.create(control)
        elif decision.kind is DecisionKind.UPDATE:
            handler.update(control, decision.diff)
        elif decision.kind is DecisionKind.DELETE:
            handler.delete(control)

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            f"Attempt {retry_state.attempt_number} failed with retryable error "
            f"{describe_error(error)}; backing off"
        )
