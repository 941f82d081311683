from __future__ import annotations

import boto3
from botocore.config import Config

from ...settings import Settings


def botocore_config(settings: Settings) -> Config:
    # botocore retries are off; transient failures are retried at the app layer
    # with the configured fixed delay.
    return Config(
        retries={"max_attempts": 1, "mode": "standard"},
        connect_timeout=float(settings.store_connect_timeout_s),
        read_timeout=float(settings.store_read_timeout_s),
    )


def dynamodb_resource(settings: Settings):
    return boto3.resource(
        "dynamodb",
        region_name=settings.aws_region,
        config=botocore_config(settings),
    )
