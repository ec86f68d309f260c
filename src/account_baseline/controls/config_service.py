"""AWS Config recorder, delivery channel and managed rules."""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from botocore.exceptions import ClientError

from ..baseline.models import Control, PropertyDiff
from ..core.aws_client import error_code
from .base import ControlHandler, ControlHandlerError, ResourceSnapshot, tags_to_dict


logger = logging.getLogger(__name__)

CONFIG_SERVICE_PRINCIPAL = 'config.amazonaws.com'


class ConfigRecorderHandler(ControlHandler):
    """Manages the configuration recorder and delivery channel.

    Config recorders cannot be tagged. A recorder is treated as ours when
    it carries the configured recorder name; any other customer recorder
    in the region is foreign.
    """

    kind = "config_recorder"

    def desired_properties(self, control: Control) -> Dict[str, Any]:
        excluded = ("recorder_name", "delivery_channel_name")
        return {key: value for key, value in control.desired.items() if key not in excluded}

    def read(self, control: Control) -> Optional[ResourceSnapshot]:
        config = self.aws_client.get_client('config')
        name = control.desired['recorder_name']

        recorders = [
            recorder
            for recorder in config.describe_configuration_recorders().get('ConfigurationRecorders', [])
            if not recorder.get('servicePrincipal')
        ]
        if not recorders:
            return None

        recorder = next((r for r in recorders if r['name'] == name), recorders[0])
        statuses = config.describe_configuration_recorder_status(
            ConfigurationRecorderNames=[recorder['name']]
        ).get('ConfigurationRecordersStatus', [])
        channels = config.describe_delivery_channels().get('DeliveryChannels', [])

        group = recorder.get('recordingGroup', {})
        properties = {
            "role_arn": recorder.get('roleARN'),
            "all_supported": group.get('allSupported', False),
            "include_global_resource_types": group.get('includeGlobalResourceTypes', False),
            "s3_bucket_name": channels[0].get('s3BucketName') if channels else None,
            "recording": bool(statuses and statuses[0].get('recording')),
        }
        return ResourceSnapshot(properties, owned=recorder['name'] == name)

    def create(self, control: Control) -> None:
        if f"/{CONFIG_SERVICE_PRINCIPAL}/" in control.desired['role_arn']:
            self._ensure_service_linked_role()

        self._put_recorder(control)
        self._put_delivery_channel(control)
        if control.desired.get('recording', True):
            self._set_recording(control)
        logger.info(f"Created Config recorder {control.desired['recorder_name']}")

    def _ensure_service_linked_role(self) -> None:
        iam = self.aws_client.get_client('iam')
        try:
            iam.create_service_linked_role(AWSServiceName=CONFIG_SERVICE_PRINCIPAL)
            logger.info("Created AWS Config service-linked role")
        except ClientError as e:
            # IAM reports an existing service-linked role as InvalidInput.
            if error_code(e) != 'InvalidInput':
                raise
            logger.debug("AWS Config service-linked role already exists")

    def update(self, control: Control, diff: Sequence[PropertyDiff]) -> None:
        self._dispatch_updates(control, diff, {
            "role_arn": self._put_recorder,
            "all_supported": self._put_recorder,
            "include_global_resource_types": self._put_recorder,
            "s3_bucket_name": self._put_delivery_channel,
            "recording": self._set_recording,
        })

    def _put_recorder(self, control: Control) -> None:
        self.aws_client.get_client('config').put_configuration_recorder(
            ConfigurationRecorder={
                'name': control.desired['recorder_name'],
                'roleARN': control.desired['role_arn'],
                'recordingGroup': {
                    'allSupported': control.desired['all_supported'],
                    'includeGlobalResourceTypes': control.desired['include_global_resource_types'],
                },
            }
        )

    def _put_delivery_channel(self, control: Control) -> None:
        self.aws_client.get_client('config').put_delivery_channel(
            DeliveryChannel={
                'name': control.desired['delivery_channel_name'],
                's3BucketName': control.desired['s3_bucket_name'],
            }
        )

    def _set_recording(self, control: Control) -> None:
        config = self.aws_client.get_client('config')
        name = control.desired['recorder_name']
        if control.desired['recording']:
            config.start_configuration_recorder(ConfigurationRecorderName=name)
        else:
            config.stop_configuration_recorder(ConfigurationRecorderName=name)

    def delete(self, control: Control) -> None:
        config = self.aws_client.get_client('config')
        name = control.desired['recorder_name']

        config.stop_configuration_recorder(ConfigurationRecorderName=name)
        try:
            config.delete_delivery_channel(
                DeliveryChannelName=control.desired['delivery_channel_name']
            )
        except ClientError as e:
            if error_code(e) != 'NoSuchDeliveryChannelException':
                raise
        config.delete_configuration_recorder(ConfigurationRecorderName=name)
        logger.info(f"Deleted Config recorder {name}")


class ConfigRulesHandler(ControlHandler):
    """Manages a set of AWS managed Config rules as one control.

    The set is owned only when every existing rule in it carries the
    ownership marker.
    """

    kind = "config_rules"

    def _read_rules(self, names: Sequence[str]) -> Dict[str, Dict[str, Any]]:
        config = self.aws_client.get_client('config')
        found = {}
        paginator = config.get_paginator('describe_config_rules')
        for page in paginator.paginate():
            for rule in page.get('ConfigRules', []):
                if rule['ConfigRuleName'] in names:
                    found[rule['ConfigRuleName']] = rule
        return found

    def read(self, control: Control) -> Optional[ResourceSnapshot]:
        config = self.aws_client.get_client('config')
        found = self._read_rules(list(control.desired['rules']))
        if not found:
            return None

        rules = {}
        owned = True
        for name, rule in found.items():
            rules[name] = {
                "source_identifier": rule.get('Source', {}).get('SourceIdentifier'),
                "input_parameters": json.loads(rule.get('InputParameters') or '{}'),
            }
            tags = config.list_tags_for_resource(ResourceArn=rule['ConfigRuleArn']).get('Tags')
            owned = owned and self.marker.is_present(tags_to_dict(tags))

        return ResourceSnapshot({"rules": rules}, owned=owned)

    def create(self, control: Control) -> None:
        for name in control.desired['rules']:
            self._put_rule(control, name)

    def update(self, control: Control, diff: Sequence[PropertyDiff]) -> None:
        changed: List[str] = []
        for change in diff:
            if change.property_name != "rules":
                raise ControlHandlerError(
                    f"{self.kind} cannot update property '{change.property_name}' "
                    f"of {control.identifier}"
                )
            names = [change.path[1]] if len(change.path) > 1 else list(control.desired['rules'])
            changed.extend(name for name in names if name not in changed)

        for name in changed:
            self._put_rule(control, name)

    def _put_rule(self, control: Control, name: str) -> None:
        settings = control.desired['rules'][name]
        rule = {
            'ConfigRuleName': name,
            'Source': {'Owner': 'AWS', 'SourceIdentifier': settings['source_identifier']},
        }
        if settings.get('input_parameters'):
            rule['InputParameters'] = json.dumps(settings['input_parameters'])

        self.aws_client.get_client('config').put_config_rule(
            ConfigRule=rule, Tags=self.marker.as_tag_list()
        )
        logger.info(f"Put Config rule {name}")

    def delete(self, control: Control) -> None:
        config = self.aws_client.get_client('config')
        for name in control.desired['rules']:
            try:
                config.delete_config_rule(ConfigRuleName=name)
                logger.info(f"Deleted Config rule {name}")
            except ClientError as e:
                if error_code(e) != 'NoSuchConfigRuleException':
                    raise
