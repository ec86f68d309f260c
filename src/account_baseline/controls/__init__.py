"""Per-service control handlers.

Each handler knows how to read, create, update and delete the AWS
resources behind one kind of control. ``default_handlers`` builds the
registry the inspector and applier dispatch on.
"""

from typing import Dict

from ..core.aws_client import AWSClientManager
from .base import ControlHandler, OwnershipMarker
from .budgets import BudgetHandler
from .cloudtrail import TrailHandler
from .config_service import ConfigRecorderHandler, ConfigRulesHandler
from .iam import ManagedPolicyHandler
from .s3 import LogBucketHandler
from .security_hub import SecurityHubHandler


HANDLER_TYPES = (
    ManagedPolicyHandler,
    LogBucketHandler,
    TrailHandler,
    ConfigRecorderHandler,
    ConfigRulesHandler,
    SecurityHubHandler,
    BudgetHandler,
)


def default_handlers(
    aws_client: AWSClientManager, marker: OwnershipMarker
) -> Dict[str, ControlHandler]:
    """Build the handler registry keyed by control kind.

    Args:
        aws_client: AWS client manager shared by all handlers
        marker: Ownership marker stamped on created resources

    Returns:
        Mapping of control kind to handler instance
    """
    return {
        handler_type.kind: handler_type(aws_client, marker)
        for handler_type in HANDLER_TYPES
    }
