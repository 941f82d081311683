"""DynamoDB backend for the document table contract.

This package centralizes:
- boto3 resource configuration (bounded timeouts, app-layer retries)
- key layout for entities, the type index and the audit log
- float/Decimal conversion at the table boundary
"""

from .client import botocore_config, dynamodb_resource
from .table import DynamoTable, from_ddb, to_ddb

__all__ = ["DynamoTable", "botocore_config", "dynamodb_resource", "from_ddb", "to_ddb"]
