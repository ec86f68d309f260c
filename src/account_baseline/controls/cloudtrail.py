"""CloudTrail trail delivering to the log bucket."""

import logging
from typing import Any, Dict, Optional, Sequence

from botocore.exceptions import ClientError

from ..baseline.models import Control, PropertyDiff
from ..core.aws_client import error_code
from .base import ControlHandler, ResourceSnapshot, tags_to_dict


logger = logging.getLogger(__name__)

# Desired property -> CreateTrail/UpdateTrail parameter
TRAIL_PARAMETERS = {
    "s3_bucket_name": "S3BucketName",
    "is_multi_region": "IsMultiRegionTrail",
    "log_file_validation": "EnableLogFileValidation",
    "include_global_service_events": "IncludeGlobalServiceEvents",
}


class TrailHandler(ControlHandler):
    """Manages a single CloudTrail trail and its logging status."""

    kind = "cloudtrail_trail"

    def desired_properties(self, control: Control) -> Dict[str, Any]:
        return {key: value for key, value in control.desired.items() if key != "trail_name"}

    def read(self, control: Control) -> Optional[ResourceSnapshot]:
        cloudtrail = self.aws_client.get_client('cloudtrail')
        name = control.desired['trail_name']

        try:
            trail = cloudtrail.get_trail(Name=name)['Trail']
        except ClientError as e:
            if error_code(e) == 'TrailNotFoundException':
                return None
            raise

        trail_arn = trail['TrailARN']
        status = cloudtrail.get_trail_status(Name=trail_arn)
        tag_list = cloudtrail.list_tags(ResourceIdList=[trail_arn]).get('ResourceTagList', [])
        tags = tags_to_dict(tag_list[0].get('TagsList')) if tag_list else {}

        properties = {
            "s3_bucket_name": trail.get('S3BucketName'),
            "is_multi_region": trail.get('IsMultiRegionTrail', False),
            "log_file_validation": trail.get('LogFileValidationEnabled', False),
            "include_global_service_events": trail.get('IncludeGlobalServiceEvents', False),
            "logging": status.get('IsLogging', False),
        }
        return ResourceSnapshot(properties, owned=self.marker.is_present(tags))

    def _trail_parameters(self, control: Control) -> Dict[str, Any]:
        return {
            parameter: control.desired[prop]
            for prop, parameter in TRAIL_PARAMETERS.items()
            if prop in control.desired
        }

    def create(self, control: Control) -> None:
        cloudtrail = self.aws_client.get_client('cloudtrail')
        name = control.desired['trail_name']

        try:
            cloudtrail.create_trail(
                Name=name,
                TagsList=self.marker.as_tag_list(),
                **self._trail_parameters(control),
            )
            logger.info(f"Created CloudTrail trail {name}")
        except ClientError as e:
            if error_code(e) != 'TrailAlreadyExistsException':
                raise
            logger.info(f"CloudTrail trail {name} already exists")

        if control.desired.get('logging', True):
            cloudtrail.start_logging(Name=name)

    def update(self, control: Control, diff: Sequence[PropertyDiff]) -> None:
        setters = {prop: self._update_trail for prop in TRAIL_PARAMETERS}
        setters["logging"] = self._set_logging
        self._dispatch_updates(control, diff, setters)

    def _update_trail(self, control: Control) -> None:
        self.aws_client.get_client('cloudtrail').update_trail(
            Name=control.desired['trail_name'], **self._trail_parameters(control)
        )

    def _set_logging(self, control: Control) -> None:
        cloudtrail = self.aws_client.get_client('cloudtrail')
        if control.desired['logging']:
            cloudtrail.start_logging(Name=control.desired['trail_name'])
        else:
            cloudtrail.stop_logging(Name=control.desired['trail_name'])

    def delete(self, control: Control) -> None:
        name = control.desired['trail_name']
        self.aws_client.get_client('cloudtrail').delete_trail(Name=name)
        logger.info(f"Deleted CloudTrail trail {name}")
