from __future__ import annotations

import logging
import sys

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

SUPPORTED_LLM_PROVIDERS = ("gemini", "anthropic")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Core
    ENV: str = Field(default="dev")  # dev|prod
    LOG_LEVEL: str = Field(default="INFO")  # INFO|DEBUG
    BASE_URL: str = Field(default="http://localhost:8000")

    # Dev-only
    ALLOW_DEBUG_ENDPOINTS: bool = Field(default=False)

    # Redis / Queue
    REDIS_URL: str = Field(default="redis://redis:6379/0")
    RQ_QUEUE_NAME: str = Field(default="default")

    # Tavus (conversation provider)
    TAVUS_API_KEY: str = Field(default="")
    TAVUS_BASE_URL: str = Field(default="https://tavusapi.com")
    TAVUS_TIMEOUT_SECONDS: float = Field(default=30.0)

    # LLM
    LLM_PROVIDER: str = Field(default="gemini")  # gemini|anthropic
    GEMINI_API_KEY: str = Field(default="")
    GEMINI_MODEL: str = Field(default="gemini-1.5-pro")
    ANTHROPIC_API_KEY: str = Field(default="")
    ANTHROPIC_MODEL: str = Field(default="claude-sonnet-4-20250514")
    LLM_TIMEOUT_SECONDS: float = Field(default=60.0)

    # Email (Resend)
    RESEND_API_KEY: str = Field(default="")
    EMAIL_FROM: str = Field(default="Intake Reports <reports@example.com>")
    EMAIL_TIMEOUT_SECONDS: float = Field(default=30.0)

    # Slack
    SLACK_WEBHOOK_URL: str = Field(default="")

    # Polling fallback
    POLL_INTERVAL_SECONDS: int = Field(default=15)
    POLL_MAX_ATTEMPTS: int = Field(default=240)

    # Report delivery
    REPORT_CLAIM_TTL_SECONDS: int = Field(default=300)
    REPORT_FACILITY_NAME: str = Field(default="AI-ASSISTED PATIENT INTAKE")

    # Redis TTL configuration (in seconds)
    EVENT_TTL_SECONDS: int = Field(default=30 * 24 * 60 * 60)  # 30 days

    def active_llm_api_key(self) -> str:
        if self.LLM_PROVIDER.lower() == "anthropic":
            return self.ANTHROPIC_API_KEY
        return self.GEMINI_API_KEY

    def active_llm_model(self) -> str:
        if self.LLM_PROVIDER.lower() == "anthropic":
            return self.ANTHROPIC_MODEL
        return self.GEMINI_MODEL

    def validate_configuration(self) -> list[str]:
        """
        Validates settings and returns list of warnings/errors.
        Critical errors should prevent startup.
        """
        errors = []
        warnings = []

        # Critical: Redis is the session store and the polling queue
        if not self.REDIS_URL:
            errors.append("REDIS_URL is required")

        if self.LLM_PROVIDER.lower() not in SUPPORTED_LLM_PROVIDERS:
            errors.append(
                f"LLM_PROVIDER must be one of: {', '.join(SUPPORTED_LLM_PROVIDERS)} (got: {self.LLM_PROVIDER})"
            )

        if self.POLL_INTERVAL_SECONDS <= 0:
            errors.append("POLL_INTERVAL_SECONDS must be positive")

        # The pipeline degrades without these, it does not stop.
        if not self.TAVUS_API_KEY:
            warnings.append("TAVUS_API_KEY not set - transcripts can only arrive inline with webhooks")
        if not self.active_llm_api_key():
            warnings.append(
                f"No API key for LLM_PROVIDER={self.LLM_PROVIDER} - every analysis will use the fallback record"
            )
        if not self.RESEND_API_KEY:
            warnings.append("RESEND_API_KEY not set - intake reports cannot be emailed")
        if not self.SLACK_WEBHOOK_URL:
            warnings.append("SLACK_WEBHOOK_URL not set - failure alerts will not be sent")

        all_messages = []
        if errors:
            all_messages.extend([f"ERROR: {e}" for e in errors])
        if warnings:
            all_messages.extend([f"WARNING: {w}" for w in warnings])

        return all_messages

    def validate_and_fail_fast(self) -> None:
        """
        Validates configuration and exits if critical errors found.
        Logs warnings but continues.
        """
        messages = self.validate_configuration()

        errors = [msg for msg in messages if msg.startswith("ERROR:")]
        warnings = [msg for msg in messages if msg.startswith("WARNING:")]

        if warnings:
            logger.warning("Configuration warnings detected:")
            for warning in warnings:
                logger.warning("  %s", warning)

        if errors:
            logger.error("Critical configuration errors detected:")
            for error in errors:
                logger.error("  %s", error)
            logger.error("Application cannot start. Please fix configuration errors above.")
            sys.exit(1)

        logger.info("Configuration validation passed")


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
