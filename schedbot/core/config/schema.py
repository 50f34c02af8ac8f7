"""schedbot configuration schema: YAML + Pydantic + env override."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ════════════════════════════════════════════════════════════
# SUB-CONFIGS (nested BaseModel)
# ════════════════════════════════════════════════════════════


class ProviderConfig(BaseModel):
    """Single LLM provider."""

    api_key: str = ""


class ProvidersConfig(BaseModel):
    """LLM providers (LiteLLM multi-provider)."""

    openai: ProviderConfig = Field(default_factory=ProviderConfig)
    anthropic: ProviderConfig = Field(default_factory=ProviderConfig)
    openrouter: ProviderConfig = Field(default_factory=ProviderConfig)


class AssistantConfig(BaseModel):
    """Defaults for scheduled prompt generation (assistant.*)."""

    model: str = "openai/gpt-4.1"
    temperature: float = 0.6
    max_tokens: int = 8192
    # Models that accept a temperature parameter; others get none.
    temperature_models: list[str] = Field(
        default_factory=lambda: ["gpt-4.1", "gpt-4.1-mini", "gpt-4o"]
    )
    guard_model: str = "openai/gpt-5-nano"


class TelegramConfig(BaseModel):
    bot_token: str = ""
    webhook_secret: str = ""
    api_base: str = "https://api.telegram.org"


class SchedulerConfig(BaseModel):
    """Scheduled task engine knobs."""

    enabled: bool = True
    lease_seconds: int = 120
    # Per-group active caps differ by action kind.
    prompt_cap: int = 10
    payment_cap: int = 50
    prompt_guard: bool = True


class TokenConfig(BaseModel):
    token_type: str
    decimals: int = 8


class PaymentsConfig(BaseModel):
    api_base: str = "http://localhost:3200"
    network: str = "mainnet"
    explorer_url: str = "https://explorer.aptoslabs.com/txn/{hash}?network={network}"
    tokens: dict[str, TokenConfig] = Field(
        default_factory=lambda: {
            "APT": TokenConfig(token_type="0x1::aptos_coin::AptosCoin", decimals=8),
        }
    )


class BillingConfig(BaseModel):
    enabled: bool = True


class DatabaseConfig(BaseModel):
    path: str = "data/schedbot.db"


class LoggingConfig(BaseModel):
    level: str = "INFO"


# ════════════════════════════════════════════════════════════
# ROOT CONFIG (BaseSettings: env + .env support)
# ════════════════════════════════════════════════════════════


class Config(BaseSettings):
    """
    Root configuration.

    Priority: env vars > .env > YAML (init kwargs) > defaults

    Env override examples:
        SCHEDBOT_TELEGRAM__BOT_TOKEN=123:abc
        SCHEDBOT_DATABASE__PATH=data/prod.db
        SCHEDBOT_SCHEDULER__PROMPT_CAP=20
    """

    model_config = SettingsConfigDict(
        env_prefix="SCHEDBOT_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    assistant: AssistantConfig = Field(default_factory=AssistantConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    payments: PaymentsConfig = Field(default_factory=PaymentsConfig)
    billing: BillingConfig = Field(default_factory=BillingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def db_path(self) -> Path:
        return Path(self.database.path)

    def cap_for(self, kind: str) -> int:
        """Active-schedule cap per group for an action kind."""
        if kind == "payment":
            return self.scheduler.payment_cap
        return self.scheduler.prompt_cap
