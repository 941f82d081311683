from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore", populate_by_name=True)

    # Runtime
    environment: str = Field(default="development", validation_alias="APP_ENV")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # Storage backend: "dynamodb" in deployments, "memory" for tests/local runs.
    store_backend: str = Field(default="memory", validation_alias="STORE_BACKEND")

    # AWS / data
    aws_region: str = Field(default="us-east-1", validation_alias="AWS_REGION")
    ddb_table_name: str | None = Field(default=None, validation_alias="DDB_TABLE_NAME")
    ddb_audit_table_name: str | None = Field(
        default=None, validation_alias="DDB_AUDIT_TABLE_NAME"
    )

    # External store calls: bounded timeouts + a small fixed number of attempts.
    store_connect_timeout_s: float = Field(
        default=2.0, validation_alias="STORE_CONNECT_TIMEOUT_S"
    )
    store_read_timeout_s: float = Field(default=10.0, validation_alias="STORE_READ_TIMEOUT_S")
    store_max_attempts: int = Field(default=3, validation_alias="STORE_MAX_ATTEMPTS")
    store_retry_delay_s: float = Field(default=1.0, validation_alias="STORE_RETRY_DELAY_S")

    # Operations slower than this are logged as performance alerts.
    store_latency_alert_ms: float = Field(
        default=1000.0, validation_alias="STORE_LATENCY_ALERT_MS"
    )

    # Audit trail: recent entries kept on the entity; the full log lives elsewhere.
    audit_embedded_limit: int = Field(default=20, validation_alias="AUDIT_EMBEDDED_LIMIT")

    # Bulk approval decisions
    bulk_max_batch: int = Field(default=50, validation_alias="BULK_MAX_BATCH")
    bulk_parallelism: int = Field(default=5, validation_alias="BULK_PARALLELISM")

    @property
    def is_production(self) -> bool:
        return str(self.environment or "").strip().lower() == "production"

    def require_in_production(self) -> None:
        if not self.is_production:
            return
        missing: list[str] = []
        if str(self.store_backend or "").strip().lower() != "dynamodb":
            missing.append("STORE_BACKEND=dynamodb")
        if not self.ddb_table_name:
            missing.append("DDB_TABLE_NAME")
        if not self.ddb_audit_table_name:
            missing.append("DDB_AUDIT_TABLE_NAME")
        if missing:
            raise RuntimeError(
                "Missing required production configuration: " + ", ".join(missing)
            )

    def public_summary(self) -> dict:
        """Non-secret view of the effective configuration, for diagnostics."""
        return {
            "environment": self.environment,
            "store_backend": self.store_backend,
            "aws_region": self.aws_region,
            "ddb_table_configured": bool(self.ddb_table_name),
            "ddb_audit_table_configured": bool(self.ddb_audit_table_name),
            "store_max_attempts": self.store_max_attempts,
            "store_latency_alert_ms": self.store_latency_alert_ms,
            "audit_embedded_limit": self.audit_embedded_limit,
            "bulk_max_batch": self.bulk_max_batch,
            "bulk_parallelism": self.bulk_parallelism,
        }


def load_settings(**overrides) -> Settings:
    s = Settings(**overrides)
    s.require_in_production()
    return s
