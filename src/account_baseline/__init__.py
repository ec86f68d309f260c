"""AWS Account Baseline - Main Package.

This package applies an idempotent security and governance baseline
(IAM, CloudTrail, AWS Config, Security Hub, Budgets) to a single AWS account.
"""

__version__ = "1.0.0"
__author__ = "AWS Account Baseline Team"
