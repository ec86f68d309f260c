"""Safety and confirmation system for destructive baseline operations.

This module asks the operator to confirm operations such as teardown
before any resource is removed, and keeps an audit trail of every
confirmation decision.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)


@dataclass
class ConfirmationRequest:
    """Request for user confirmation."""

    operation: str
    description: str
    impact_level: str  # LOW, MEDIUM, HIGH
    configuration_summary: Optional[Dict[str, Any]] = None
    warnings: Optional[List[str]] = None


class SafetyManager:
    """Safety and confirmation manager for high-impact operations."""

    def __init__(
        self,
        enable_confirmations: bool = True,
        input_func: Callable[[str], str] = input,
    ) -> None:
        """Initialize safety manager.

        Args:
            enable_confirmations: Whether to enable confirmation prompts
                                 (disabled by ``--yes`` and in tests)
            input_func: Function used to read the operator's answer
        """
        self.enable_confirmations = enable_confirmations
        self._input = input_func
        self.audit_log: List[Dict[str, Any]] = []

    def request_confirmation(self, request: ConfirmationRequest) -> bool:
        """Request user confirmation for an operation.

        Args:
            request: ConfirmationRequest with operation details

        Returns:
            True if user confirms, False otherwise
        """
        if not self.enable_confirmations:
            self._log_confirmation(request, True, "Auto-confirmed (--yes)")
            return True

        print("\n" + "=" * 60)
        print("CONFIRMATION REQUIRED")
        print("=" * 60)
        print(f"Operation: {request.operation}")
        print(f"Impact Level: {request.impact_level}")
        print(f"Description: {request.description}")

        if request.warnings:
            print("\n⚠️  WARNINGS:")
            for warning in request.warnings:
                print(f"   • {warning}")

        if request.configuration_summary:
            print("\nConfiguration Summary:")
            self._display_configuration(request.configuration_summary)

        try:
            if request.impact_level == "HIGH":
                confirmed = self._get_high_confirmation()
            else:
                confirmed = self._get_standard_confirmation()
        except EOFError:
            confirmed = False

        self._log_confirmation(
            request,
            confirmed,
            "User confirmed" if confirmed else "User declined",
        )

        return confirmed

    def _display_configuration(
        self, config: Dict[str, Any], indent: int = 0
    ) -> None:
        """Display configuration in a readable format.

        Args:
            config: Configuration dictionary to display
            indent: Indentation level for nested items
        """
        prefix = "  " * indent

        for key, value in config.items():
            if isinstance(value, dict):
                print(f"{prefix}{key}:")
                self._display_configuration(value, indent + 1)
            elif isinstance(value, (list, tuple)):
                print(f"{prefix}{key}: {', '.join(map(str, value))}")
            else:
                print(f"{prefix}{key}: {value}")

    def _get_standard_confirmation(self) -> bool:
        """Get standard confirmation (y/n)."""
        response = self._input("\nDo you want to proceed? (y/n): ").strip().lower()
        return response in ["y", "yes"]

    def _get_high_confirmation(self) -> bool:
        """Get high-impact confirmation by typing CONFIRM."""
        print("\n⚠️  HIGH IMPACT OPERATION")
        print("This operation will remove resources from your AWS account.")

        response = self._input("\nType 'CONFIRM' to proceed: ").strip()
        if response != "CONFIRM":
            print("Operation cancelled.")
            return False
        return True

    def _log_confirmation(
        self, request: ConfirmationRequest, confirmed: bool, reason: str
    ) -> None:
        """Record confirmation request and result in the audit log.

        Args:
            request: The confirmation request
            confirmed: Whether the operation was confirmed
            reason: Reason for the confirmation result
        """
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "operation": request.operation,
            "impact_level": request.impact_level,
            "confirmed": confirmed,
            "reason": reason,
        }
        self.audit_log.append(log_entry)
        logger.info(
            f"Confirmation for '{request.operation}': "
            f"{'confirmed' if confirmed else 'declined'} ({reason})"
        )

    def get_audit_log(self) -> List[Dict[str, Any]]:
        """Get complete audit log of confirmations."""
        return self.audit_log.copy()

    def confirm_teardown(self, region: str, controls: List[str]) -> bool:
        """Confirm removal of baseline resources.

        Args:
            region: Region being torn down
            controls: Identifiers of the controls that will be removed

        Returns:
            True if the operator confirms teardown, False otherwise
        """
        request = ConfirmationRequest(
            operation="Tear Down Account Baseline",
            description=(
                "This will remove every baseline resource that carries the "
                "ownership marker, in reverse dependency order. Resources not "
                "created by this tool are left untouched."
            ),
            impact_level="HIGH",
            configuration_summary={"region": region, "controls": controls},
            warnings=[
                "CloudTrail logging and AWS Config recording will stop",
                "Security Hub findings history will be discarded",
            ],
        )
        return self.request_confirmation(request)
