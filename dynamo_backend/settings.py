from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True, slots=True)
class ServerInfo:
    """Opaque identifiers forwarded verbatim to the bridge."""

    client_id: str
    table_name: str
    app_name: str
    role_arn: str
    aws_region: str
    provider_id: str = "www.amazon.com"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore", populate_by_name=True)

    # Backend selection: "simulated" (in-memory) or "real" (DynamoDB).
    backend: str = Field(default="simulated", validation_alias="DYNAMO_BACKEND")

    # Server info (Login with Amazon + DynamoDB)
    client_id: str | None = Field(default=None, validation_alias="DYNAMO_CLIENT_ID")
    table_name: str | None = Field(default=None, validation_alias="DYNAMO_TABLE_NAME")
    app_name: str = Field(default="dynamo-backend", validation_alias="DYNAMO_APP_NAME")
    role_arn: str | None = Field(default=None, validation_alias="DYNAMO_ROLE_ARN")
    aws_region: str = Field(default="us-east-1", validation_alias="AWS_REGION")
    provider_id: str = Field(default="www.amazon.com", validation_alias="DYNAMO_PROVIDER_ID")

    # Profile fetch after the token exchange
    profile_url: str = Field(
        default="https://api.amazon.com/user/profile", validation_alias="PROFILE_URL"
    )
    profile_timeout_seconds: float = Field(default=60.0, validation_alias="PROFILE_TIMEOUT_SECONDS")

    # Local credential cache. Unset keeps the cache in memory only.
    local_cache_path: str | None = Field(default=None, validation_alias="LOCAL_CACHE_PATH")

    # Simulated backend profile
    simulated_email: str = Field(default="joe@example.com", validation_alias="SIMULATED_EMAIL")
    simulated_name: str = Field(default="Joe Bob", validation_alias="SIMULATED_NAME")
    simulated_user_id: str = Field(default="amzn1.account.SIMULATED", validation_alias="SIMULATED_USER_ID")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # ---- helpers / derived flags ----
    @property
    def normalized_backend(self) -> str:
        v = (self.backend or "").strip().lower()
        if v in ("real", "dynamo", "dynamodb", "aws"):
            return "real"
        return "simulated"

    @property
    def is_real(self) -> bool:
        return self.normalized_backend == "real"

    def require_for_real_backend(self) -> None:
        """
        Enforce the server identifiers the real backend cannot run without.

        The simulated backend runs with none of them.
        """
        if not self.is_real:
            return

        missing: list[str] = []
        if not self.client_id:
            missing.append("DYNAMO_CLIENT_ID")
        if not self.table_name:
            missing.append("DYNAMO_TABLE_NAME")
        if not self.role_arn:
            missing.append("DYNAMO_ROLE_ARN")
        if not (self.app_name or "").strip():
            missing.append("DYNAMO_APP_NAME")

        if missing:
            raise RuntimeError(
                "Missing required environment variables for the real backend: "
                + ", ".join(missing)
            )

    def server_info(self) -> ServerInfo:
        return ServerInfo(
            client_id=str(self.client_id or ""),
            table_name=str(self.table_name or ""),
            app_name=str(self.app_name or ""),
            role_arn=str(self.role_arn or ""),
            aws_region=str(self.aws_region or "us-east-1"),
            provider_id=str(self.provider_id or "www.amazon.com"),
        )

    def to_log_safe_dict(self) -> dict[str, object]:
        """
        A representation safe for structured logs.
        """
        def _has(v: object) -> bool:
            return v is not None and str(v).strip() != ""

        return {
            "backend": self.normalized_backend,
            "server": {
                "client_id_configured": _has(self.client_id),
                "table_name": self.table_name,
                "app_name": self.app_name,
                "role_arn_configured": _has(self.role_arn),
                "aws_region": self.aws_region,
                "provider_id": self.provider_id,
            },
            "profile": {
                "profile_url": self.profile_url,
                "profile_timeout_seconds": self.profile_timeout_seconds,
            },
            "local_cache_path": self.local_cache_path,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    s = Settings()
    s.require_for_real_backend()
    return s
