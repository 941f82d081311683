from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from ..errors import (
    ConflictError,
    ProcurementError,
    StoreUnavailableError,
    ValidationError,
)
from ..observability.logging import get_logger

T = TypeVar("T")

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    delay_s: float = 1.0


_RETRYABLE_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
    "InternalServerError",
    "ServiceUnavailable",
}

_ACCESS_CODES = {"AccessDeniedException", "UnrecognizedClientException"}


def _err_code_from_client_error(e: ClientError) -> str:
    return str(((e.response or {}).get("Error") or {}).get("Code") or "")


def _http_status_from_client_error(e: ClientError) -> int:
    meta = (e.response or {}).get("ResponseMetadata") or {}
    try:
        return int(meta.get("HTTPStatusCode") or 0)
    except (TypeError, ValueError):
        return 0


def map_store_error(
    *,
    operation: str,
    collection: str | None,
    key: dict[str, Any] | None,
    exc: Exception,
) -> ProcurementError:
    if isinstance(exc, ProcurementError):
        return exc

    entity_id = str((key or {}).get("id") or "") or None
    details = {"key": dict(key)} if key else None

    if isinstance(exc, ClientError):
        code = _err_code_from_client_error(exc)

        if code == "ConditionalCheckFailedException":
            # PutItem only fails its condition when the item already exists.
            if operation == "PutItem":
                return ConflictError(
                    message=f"{collection or 'document'} already exists",
                    entity_type=collection,
                    entity_id=entity_id,
                    retryable=False,
                    details=details,
                    cause=exc,
                )
            return ConflictError(
                message=f"Conditional write failed for {collection or 'document'}",
                entity_type=collection,
                entity_id=entity_id,
                retryable=True,
                details=details,
                cause=exc,
            )

        if code in ("ValidationException", "ParamValidationError"):
            return ValidationError(
                message="Store request validation failed",
                entity_type=collection,
                entity_id=entity_id,
                details=details,
                cause=exc,
            )

        if code in _ACCESS_CODES:
            return StoreUnavailableError(
                message="Store access denied",
                entity_type=collection,
                entity_id=entity_id,
                retryable=False,
                details=details,
                cause=exc,
                operation=operation,
            )

        if code in _RETRYABLE_CODES or _http_status_from_client_error(exc) >= 500:
            return StoreUnavailableError(
                message="Store throttled or unavailable",
                entity_type=collection,
                entity_id=entity_id,
                retryable=True,
                details=details,
                cause=exc,
                operation=operation,
            )

        return StoreUnavailableError(
            message=f"Store request failed ({code or 'ClientError'})",
            entity_type=collection,
            entity_id=entity_id,
            retryable=False,
            details=details,
            cause=exc,
            operation=operation,
        )

    if isinstance(exc, BotoCoreError):
        return StoreUnavailableError(
            message="Store client error",
            entity_type=collection,
            entity_id=entity_id,
            retryable=True,
            details=details,
            cause=exc,
            operation=operation,
        )

    return StoreUnavailableError(
        message="Unexpected store error",
        entity_type=collection,
        entity_id=entity_id,
        retryable=False,
        details=details,
        cause=exc,
        operation=operation,
    )


def store_call(
    operation: str,
    fn: Callable[[], T],
    *,
    collection: str | None = None,
    key: dict[str, Any] | None = None,
    retry_policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run one store call, retrying transient failures with a fixed delay.

    Only `StoreUnavailableError(retryable=True)` is retried. Conflicts,
    validation failures and every other logical error surface on the first
    attempt.
    """
    policy = retry_policy or RetryPolicy()
    max_attempts = max(1, int(policy.max_attempts))

    for attempt in range(1, max_attempts + 1):
        try:
            return fn()
        except Exception as e:  # noqa: BLE001
            mapped = map_store_error(operation=operation, collection=collection, key=key, exc=e)
            transient = isinstance(mapped, StoreUnavailableError) and mapped.retryable
            if transient:
                mapped.attempts = attempt
            if not transient or attempt >= max_attempts:
                if mapped is e:
                    raise
                raise mapped from e
            log.warning(
                "store.retrying",
                operation=operation,
                collection=collection,
                attempt=attempt,
                max_attempts=max_attempts,
                error=mapped.message,
            )
            sleep(float(policy.delay_s))

    raise StoreUnavailableError(message="Store request failed", operation=operation, attempts=max_attempts)
