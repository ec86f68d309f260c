"""Unit tests for the cost budget handler."""

import pytest
from unittest.mock import Mock
from botocore.exceptions import ClientError

from account_baseline.baseline.models import Category, Control, PropertyDiff
from account_baseline.controls.budgets import BudgetHandler


BUDGET = Control(
    "budget",
    Category.COST,
    "cost_budget",
    {
        "budget_name": "baseline-monthly-cost",
        "limit_amount": "100.00",
        "limit_unit": "USD",
        "time_unit": "MONTHLY",
        "notifications": {"80": ["ops@example.com"], "100": ["ops@example.com"]},
    },
)

NOTIFICATION_80 = {
    "NotificationType": "ACTUAL",
    "ComparisonOperator": "GREATER_THAN",
    "Threshold": 80.0,
    "ThresholdType": "PERCENTAGE",
}


@pytest.fixture
def mock_budgets(mock_aws_client):
    budgets = Mock()
    mock_aws_client.get_client.return_value = budgets
    return budgets


@pytest.fixture
def handler(mock_aws_client, marker):
    return BudgetHandler(mock_aws_client, marker)


class TestBudgetHandler:

    def test_client_uses_global_endpoint(self, handler, mock_budgets, mock_aws_client):
        mock_budgets.describe_budget.side_effect = ClientError(
            {"Error": {"Code": "NotFoundException"}}, "DescribeBudget"
        )

        assert handler.read(BUDGET) is None
        mock_aws_client.get_client.assert_called_with("budgets", region_name="us-east-1")

    def test_read_present(self, handler, mock_budgets, owned_tags):
        mock_budgets.describe_budget.return_value = {
            "Budget": {
                "BudgetName": "baseline-monthly-cost",
                "BudgetLimit": {"Amount": "100.0", "Unit": "USD"},
                "TimeUnit": "MONTHLY",
            }
        }
        mock_budgets.list_tags_for_resource.return_value = {"ResourceTags": owned_tags}
        mock_budgets.describe_notifications_for_budget.return_value = {
            "Notifications": [
                NOTIFICATION_80,
                dict(NOTIFICATION_80, NotificationType="FORECASTED"),
            ]
        }
        mock_budgets.describe_subscribers_for_notification.return_value = {
            "Subscribers": [
                {"SubscriptionType": "EMAIL", "Address": "ops@example.com"},
                {"SubscriptionType": "EMAIL", "Address": "finance@example.com"},
            ]
        }

        snapshot = handler.read(BUDGET)

        assert snapshot.owned is True
        assert snapshot.properties == {
            "limit_amount": "100.00",
            "limit_unit": "USD",
            "time_unit": "MONTHLY",
            "notifications": {"80": ["ops@example.com"]},
        }
        mock_budgets.list_tags_for_resource.assert_called_once_with(
            ResourceARN="arn:aws:budgets::123456789012:budget/baseline-monthly-cost"
        )

    def test_create(self, handler, mock_budgets, owned_tags):
        handler.create(BUDGET)

        _, kwargs = mock_budgets.create_budget.call_args
        assert kwargs["AccountId"] == "123456789012"
        assert kwargs["Budget"]["BudgetLimit"] == {"Amount": "100.00", "Unit": "USD"}
        assert kwargs["Budget"]["BudgetType"] == "COST"
        assert kwargs["ResourceTags"] == owned_tags
        assert [n["Notification"]["Threshold"] for n in kwargs["NotificationsWithSubscribers"]] == [80.0, 100.0]

    def test_create_tolerates_duplicate(self, handler, mock_budgets):
        mock_budgets.create_budget.side_effect = ClientError(
            {"Error": {"Code": "DuplicateRecordException"}}, "CreateBudget"
        )

        handler.create(BUDGET)

    def test_update_limit(self, handler, mock_budgets):
        handler.update(BUDGET, [PropertyDiff(("limit_amount",), "100.00", "50.00")])

        mock_budgets.update_budget.assert_called_once()
        mock_budgets.create_notification.assert_not_called()

    def test_update_adds_missing_notification_and_subscriber(self, handler, mock_budgets):
        mock_budgets.describe_notifications_for_budget.return_value = {
            "Notifications": [NOTIFICATION_80]
        }
        mock_budgets.describe_subscribers_for_notification.return_value = {"Subscribers": []}

        handler.update(BUDGET, [PropertyDiff(("notifications", "100"), ["ops@example.com"], None)])

        mock_budgets.create_subscriber.assert_called_once_with(
            AccountId="123456789012",
            BudgetName="baseline-monthly-cost",
            Notification=NOTIFICATION_80,
            Subscriber={"SubscriptionType": "EMAIL", "Address": "ops@example.com"},
        )
        mock_budgets.create_notification.assert_called_once()
        _, kwargs = mock_budgets.create_notification.call_args
        assert kwargs["Notification"]["Threshold"] == 100.0

    def test_delete(self, handler, mock_budgets):
        handler.delete(BUDGET)

        mock_budgets.delete_budget.assert_called_once_with(
            AccountId="123456789012", BudgetName="baseline-monthly-cost"
        )
