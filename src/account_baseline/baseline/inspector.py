"""State inspection: read the live account and normalize what was found.

The inspector never mutates the account and never raises for API
failures. Whatever the handler returns is turned into one of the
ObservedState variants right here, so nothing untyped reaches the
reconciler.
"""

import logging
from typing import Mapping

from botocore.exceptions import BotoCoreError, ClientError

from ..controls.base import ControlHandler, InspectionError
from ..core.aws_client import describe_error, is_retryable_error
from .models import Control, ObservedState, diff_properties


logger = logging.getLogger(__name__)

__all__ = ["InspectionError", "StateInspector"]


class StateInspector:
    """Determines ObservedState for controls via their handlers.

    The inspector holds no per-inspection state, so a single instance can
    be shared by concurrent workers.
    """

    def __init__(self, handlers: Mapping[str, ControlHandler]) -> None:
        """Initialize inspector.

        Args:
            handlers: Handler registry keyed by control kind
        """
        self._handlers = handlers

    def inspect(self, control: Control) -> ObservedState:
        """Inspect one control.

        Args:
            control: Control to inspect

        Returns:
            ObservedState for the control; API failures are returned as
            InspectionFailed rather than raised
        """
        handler = self._handlers.get(control.kind)
        if handler is None:
            return ObservedState.failed(f"No handler for control kind '{control.kind}'")

        try:
            snapshot = handler.read(control)
        except (ClientError, BotoCoreError) as e:
            retryable = is_retryable_error(e)
            logger.warning(
                f"Inspection of {control.identifier} failed "
                f"({'retryable' if retryable else 'fatal'}): {describe_error(e)}"
            )
            return ObservedState.failed(describe_error(e), retryable=retryable)
        except InspectionError as e:
            logger.warning(f"Inspection of {control.identifier} failed: {e}")
            return ObservedState.failed(str(e))

        if snapshot is None:
            logger.debug(f"{control.identifier}: absent")
            return ObservedState.absent()

        diff = diff_properties(handler.desired_properties(control), snapshot.properties)
        if not diff:
            logger.debug(f"{control.identifier}: matching (owned={snapshot.owned})")
            return ObservedState.matching(owned=snapshot.owned)

        logger.debug(
            f"{control.identifier}: divergent (owned={snapshot.owned}) on "
            f"{', '.join('.'.join(d.path) for d in diff)}"
        )
        return ObservedState.divergent(diff, owned=snapshot.owned)
