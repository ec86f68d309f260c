"""Monthly cost budget with e-mail alert notifications."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from botocore.exceptions import ClientError

from ..baseline.models import Control, PropertyDiff
from ..core.aws_client import error_code
from .base import ControlHandler, ResourceSnapshot, tags_to_dict


logger = logging.getLogger(__name__)

# The Budgets API is only served from us-east-1.
BUDGETS_REGION = 'us-east-1'


def threshold_key(threshold: Any) -> str:
    """Normalize a threshold so 80, 80.0 and "80" compare equal."""
    return f"{float(threshold):g}"


class BudgetHandler(ControlHandler):
    """Manages a cost budget and its ACTUAL/PERCENTAGE notifications."""

    kind = "cost_budget"

    def _client(self):
        return self.aws_client.get_client('budgets', region_name=BUDGETS_REGION)

    def _budget_arn(self, name: str) -> str:
        return f"arn:aws:budgets::{self.aws_client.get_account_id()}:budget/{name}"

    def read(self, control: Control) -> Optional[ResourceSnapshot]:
        budgets = self._client()
        account_id = self.aws_client.get_account_id()
        name = control.desired['budget_name']

        try:
            budget = budgets.describe_budget(AccountId=account_id, BudgetName=name)['Budget']
        except ClientError as e:
            if error_code(e) == 'NotFoundException':
                return None
            raise

        tags = budgets.list_tags_for_resource(
            ResourceARN=self._budget_arn(name)
        ).get('ResourceTags')

        # Subscribers added by hand are not drift.
        desired_notifications = control.desired['notifications']
        notifications = {
            threshold: [a for a in addresses if a in desired_notifications.get(threshold, ())]
            for threshold, addresses in self._read_notifications(budgets, account_id, name).items()
        }

        limit = budget.get('BudgetLimit', {})
        properties = {
            "limit_amount": f"{float(limit.get('Amount', 0)):.2f}",
            "limit_unit": limit.get('Unit'),
            "time_unit": budget.get('TimeUnit'),
            "notifications": notifications,
        }
        return ResourceSnapshot(properties, owned=self.marker.is_present(tags_to_dict(tags)))

    @staticmethod
    def _read_notifications(budgets, account_id: str, name: str) -> Dict[str, List[str]]:
        notifications = {}
        response = budgets.describe_notifications_for_budget(AccountId=account_id, BudgetName=name)
        for notification in response.get('Notifications', []):
            if notification.get('NotificationType') != 'ACTUAL':
                continue
            if notification.get('ThresholdType', 'PERCENTAGE') != 'PERCENTAGE':
                continue
            subscribers = budgets.describe_subscribers_for_notification(
                AccountId=account_id, BudgetName=name, Notification=notification
            ).get('Subscribers', [])
            notifications[threshold_key(notification['Threshold'])] = sorted(
                s['Address'] for s in subscribers if s.get('SubscriptionType') == 'EMAIL'
            )
        return notifications

    @staticmethod
    def _notification(threshold: str) -> Dict[str, Any]:
        return {
            'NotificationType': 'ACTUAL',
            'ComparisonOperator': 'GREATER_THAN',
            'Threshold': float(threshold),
            'ThresholdType': 'PERCENTAGE',
        }

    @staticmethod
    def _subscribers(addresses: Sequence[str]) -> List[Dict[str, str]]:
        return [{'SubscriptionType': 'EMAIL', 'Address': address} for address in addresses]

    def _budget(self, control: Control) -> Dict[str, Any]:
        return {
            'BudgetName': control.desired['budget_name'],
            'BudgetLimit': {
                'Amount': control.desired['limit_amount'],
                'Unit': control.desired['limit_unit'],
            },
            'TimeUnit': control.desired['time_unit'],
            'BudgetType': 'COST',
        }

    def create(self, control: Control) -> None:
        name = control.desired['budget_name']
        notifications = [
            {
                'Notification': self._notification(threshold),
                'Subscribers': self._subscribers(addresses),
            }
            for threshold, addresses in control.desired['notifications'].items()
        ]

        try:
            self._client().create_budget(
                AccountId=self.aws_client.get_account_id(),
                Budget=self._budget(control),
                NotificationsWithSubscribers=notifications,
                ResourceTags=self.marker.as_tag_list(),
            )
            logger.info(f"Created budget {name}")
        except ClientError as e:
            if error_code(e) != 'DuplicateRecordException':
                raise
            logger.info(f"Budget {name} already exists")

    def update(self, control: Control, diff: Sequence[PropertyDiff]) -> None:
        self._dispatch_updates(control, diff, {
            "limit_amount": self._update_budget,
            "limit_unit": self._update_budget,
            "time_unit": self._update_budget,
            "notifications": self._sync_notifications,
        })

    def _update_budget(self, control: Control) -> None:
        self._client().update_budget(
            AccountId=self.aws_client.get_account_id(), NewBudget=self._budget(control)
        )

    def _sync_notifications(self, control: Control) -> None:
        """Add missing notifications and subscribers; extra ones are left alone."""
        budgets = self._client()
        account_id = self.aws_client.get_account_id()
        name = control.desired['budget_name']
        current = self._read_notifications(budgets, account_id, name)

        for threshold, addresses in control.desired['notifications'].items():
            notification = self._notification(threshold)
            existing = current.get(threshold_key(threshold))
            if existing is None:
                budgets.create_notification(
                    AccountId=account_id,
                    BudgetName=name,
                    Notification=notification,
                    Subscribers=self._subscribers(addresses),
                )
                logger.info(f"Added {threshold}% notification to budget {name}")
                continue
            for subscriber in self._subscribers(a for a in addresses if a not in existing):
                budgets.create_subscriber(
                    AccountId=account_id,
                    BudgetName=name,
                    Notification=notification,
                    Subscriber=subscriber,
                )
                logger.info(f"Subscribed {subscriber['Address']} to budget {name}")

    def delete(self, control: Control) -> None:
        name = control.desired['budget_name']
        self._client().delete_budget(AccountId=self.aws_client.get_account_id(), BudgetName=name)
        logger.info(f"Deleted budget {name}")
