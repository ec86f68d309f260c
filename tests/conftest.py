"""Shared fixtures for the account baseline tests."""

import pytest
from unittest.mock import Mock

from account_baseline.controls.base import OwnershipMarker
from account_baseline.core.aws_client import AWSClientManager
from account_baseline.core.config import Configuration


ACCOUNT_ID = "123456789012"
REGION = "us-east-1"


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep ambient AWS settings from leaking into configuration tests."""
    for name in ("AWS_REGION", "AWS_PROFILE", "ACCOUNT_BASELINE_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def marker():
    return OwnershipMarker("account-baseline:managed-by", "account-baseline")


@pytest.fixture
def owned_tags():
    return [{"Key": "account-baseline:managed-by", "Value": "account-baseline"}]


@pytest.fixture
def mock_aws_client():
    client = Mock(spec=AWSClientManager)
    client.get_account_id.return_value = ACCOUNT_ID
    client.get_current_region.return_value = REGION
    client.account_id = ACCOUNT_ID
    return client


@pytest.fixture
def config():
    return Configuration.from_dict({"aws": {"region": REGION}})
