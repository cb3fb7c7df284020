# firewatch/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"

    # Database
    expected_schema_version: str = "001_create_incidents.sql"  # Update on deploy when new migrations are added
    database_url: str | None = None
    pghost: str = "localhost"
    pgport: int = 5432
    pguser: str = "postgres"
    pgpassword: str = ""
    pgdatabase: str = "firewatch"
    pg_pool_min: int = 2
    pg_pool_max: int = 10
    pg_connect_timeout: int = 5
    pg_statement_timeout_ms: int = 30000

    # HTTP
    host: str = "0.0.0.0"
    port: int = 3001
    allowed_origins: list[str] = ["*"]
    enable_request_logging: bool = True

    # Telegram bot channel
    telegram_bot_token: str | None = None  # Bot token from @BotFather
    telegram_chat_id: str | None = None  # Channel/group ID alerts are posted to (e.g. -1001234567890 or @fire_alerts)
    telegram_parse_mode: Literal["HTML", "MarkdownV2", "Markdown"] = "HTML"

    # WhatsApp session channel (HTTP session bridge, WAHA-compatible API)
    whatsapp_bridge_url: str | None = None  # e.g. http://waha:3000
    whatsapp_bridge_api_key: str | None = None  # Sent as X-Api-Key when set
    whatsapp_session_name: str = "default"  # Bridge keeps the paired session under this name
    whatsapp_group_name: str | None = None  # Group bound on ready (fallback destination)
    whatsapp_channel: str | None = None  # Broadcast channel name or @newsletter id selected on ready
    whatsapp_auto_init: bool = True  # Start pairing/session lifecycle at application startup
    whatsapp_poll_interval: float = 3.0  # Seconds between bridge status polls

    # Alert text
    map_link_base_url: str = "https://www.google.com/maps?q="

    # Monitoring
    enable_metrics: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    @property
    def database_dsn(self) -> str:
        if self.database_url:
            return self.database_url

        return (
            f"postgresql://{self.pguser}:{self.pgpassword}"
            f"@{self.pghost}:{self.pgport}/{self.pgdatabase}"
        )

    @property
    def telegram_enabled(self) -> bool:
        """Check if the Telegram alert channel is configured"""
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    @property
    def whatsapp_enabled(self) -> bool:
        """Check if the WhatsApp session bridge is configured"""
        return bool(self.whatsapp_bridge_url)

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []

        if not (self.database_url or self.pgpassword):
            missing.append("database_url or pgpassword")

        # At least one alert channel must be reachable in production
        if not (self.telegram_enabled or self.whatsapp_enabled):
            missing.append("telegram_bot_token+telegram_chat_id or whatsapp_bridge_url")

        return missing


settings = Settings()
