"""Deployment configuration using pydantic-settings."""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_REGION = "eu-central-1"


class DeploySettings(BaseSettings):
    """Target environment, read from the variables the CDK CLI exports."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    cdk_default_account: str | None = None
    cdk_default_region: str = DEFAULT_REGION
    # Comma-separated addresses subscribed to the alarm topic
    alert_email: str | None = None
    log_level: str = "INFO"

    @field_validator("cdk_default_account", "alert_email", mode="before")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        return value or None

    @field_validator("cdk_default_region", mode="before")
    @classmethod
    def _blank_region(cls, value: str | None) -> str:
        # An exported but empty variable means "unset", as with `||` in the CDK CLI
        return value or DEFAULT_REGION

    @property
    def registry(self) -> str | None:
        """ECR registry host of the target account, if the account is known."""
        if not self.cdk_default_account:
            return None
        return f"{self.cdk_default_account}.dkr.ecr.{self.cdk_default_region}.amazonaws.com"

    @property
    def alert_emails(self) -> tuple[str, ...]:
        if not self.alert_email:
            return ()
        return tuple(address.strip() for address in self.alert_email.split(",") if address.strip())


@lru_cache
def get_settings() -> DeploySettings:
    """Get cached settings instance."""
    return DeploySettings()
