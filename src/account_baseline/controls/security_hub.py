"""Security Hub and its security standards."""

import logging
from typing import Optional, Sequence

from botocore.exceptions import ClientError

from ..baseline.models import Control, PropertyDiff
from ..core.aws_client import error_code
from .base import ControlHandler, ControlHandlerError, ResourceSnapshot


logger = logging.getLogger(__name__)

HUB_NOT_ENABLED_CODES = ('InvalidAccessException', 'ResourceNotFoundException')
ACTIVE_STANDARD_STATUSES = ('PENDING', 'READY', 'INCOMPLETE')


class SecurityHubHandler(ControlHandler):
    """Manages Security Hub enablement and enabled standards.

    Standards are compared as a subset: enabling extra standards by hand is
    not drift, only a missing desired standard is.
    """

    kind = "security_hub"

    def read(self, control: Control) -> Optional[ResourceSnapshot]:
        securityhub = self.aws_client.get_client('securityhub')

        try:
            hub = securityhub.describe_hub()
        except ClientError as e:
            if error_code(e) in HUB_NOT_ENABLED_CODES:
                return None
            raise

        tags = securityhub.list_tags_for_resource(ResourceArn=hub['HubArn']).get('Tags', {})
        enabled = self._enabled_standards(securityhub)
        desired = control.desired['standards']

        return ResourceSnapshot(
            properties={"standards": sorted(arn for arn in desired if arn in enabled)},
            owned=self.marker.is_present(tags),
        )

    @staticmethod
    def _enabled_standards(securityhub) -> set:
        enabled = set()
        paginator = securityhub.get_paginator('get_enabled_standards')
        for page in paginator.paginate():
            for subscription in page.get('StandardsSubscriptions', []):
                if subscription.get('StandardsStatus') in ACTIVE_STANDARD_STATUSES:
                    enabled.add(subscription['StandardsArn'])
        return enabled

    def create(self, control: Control) -> None:
        securityhub = self.aws_client.get_client('securityhub')

        try:
            securityhub.enable_security_hub(
                Tags=self.marker.as_dict(), EnableDefaultStandards=False
            )
            logger.info("Enabled Security Hub")
        except ClientError as e:
            if error_code(e) != 'ResourceConflictException':
                raise
            logger.info("Security Hub already enabled")

        self._enable_standards(control.desired['standards'])

    def update(self, control: Control, diff: Sequence[PropertyDiff]) -> None:
        missing = []
        for change in diff:
            if change.property_name != "standards":
                raise ControlHandlerError(
                    f"{self.kind} cannot update property '{change.property_name}' "
                    f"of {control.identifier}"
                )
            actual = change.actual or []
            missing.extend(arn for arn in change.expected if arn not in actual)
        self._enable_standards(missing)

    def _enable_standards(self, standards: Sequence[str]) -> None:
        if not standards:
            return
        self.aws_client.get_client('securityhub').batch_enable_standards(
            StandardsSubscriptionRequests=[{'StandardsArn': arn} for arn in standards]
        )
        logger.info(f"Enabled Security Hub standards: {', '.join(standards)}")

    def delete(self, control: Control) -> None:
        self.aws_client.get_client('securityhub').disable_security_hub()
        logger.info("Disabled Security Hub")
