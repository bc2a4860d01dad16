from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

from storefront_payments.domain.errors import ConfigurationError


class Settings(BaseSettings):
    """Application configuration read from environment variables."""

    # General
    api_bearer_token: str = ""
    site_url: str = "http://localhost:5173"
    public_base_url: str = "http://localhost:8000"
    cors_origins: str = "*"
    gateway_timeout_seconds: float = 10.0

    # Monobank acquiring (single payments)
    monopay_token: str = ""
    # base64-encoded PEM, as returned by /api/merchant/pubkey
    monopay_pubkey: str = ""
    monopay_api_base: str = "https://api.monobank.ua"
    monopay_currency_code: int = 980
    invoice_validity_seconds: int = 24 * 60 * 60

    # Monobank "purchase by parts" (installments)
    parts_store_id: str = ""
    parts_secret: str = ""
    parts_api_base: str = "https://u2.monobank.com.ua"

    # LiqPay hosted checkout
    liqpay_public_key: str = ""
    liqpay_private_key: str = ""
    liqpay_checkout_url: str = "https://www.liqpay.ua/api/3/checkout"
    liqpay_sandbox: bool = False

    # Telegram notifications
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    telegram_api_base: str = "https://api.telegram.org"

    # Meta Conversions API (optional)
    meta_pixel_id: str = ""
    meta_capi_access_token: str = ""
    meta_graph_api_base: str = "https://graph.facebook.com/v18.0"

    # Database (PostgreSQL)
    db_host: str = ""
    db_port: int = 5432
    db_user: str = ""
    db_password: str = ""
    db_name: str = ""
    db_schema: str = "public"

    @property
    def db_enabled(self) -> bool:
        return bool(self.db_host and self.db_user and self.db_name)

    @property
    def db_dsn(self) -> str:
        if not self.db_enabled:
            return ""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def conversions_enabled(self) -> bool:
        return bool(self.meta_pixel_id and self.meta_capi_access_token)

    @property
    def monobank_webhook_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/api/payments/monobank/webhook"

    @property
    def parts_webhook_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/api/payments/monobank/parts/webhook"

    @property
    def cors_origin_list(self) -> list[str]:
        return [item.strip() for item in self.cors_origins.split(",") if item.strip()]

    def missing_secrets(self) -> list[str]:
        required = (
            "api_bearer_token",
            "monopay_token",
            "monopay_pubkey",
            "parts_store_id",
            "parts_secret",
            "liqpay_public_key",
            "liqpay_private_key",
            "telegram_bot_token",
            "telegram_chat_id",
        )
        return [name.upper() for name in required if not str(getattr(self, name) or "").strip()]

    def ensure_configured(self) -> None:
        """Fail fast when a secret the request handlers rely on is absent."""
        missing = self.missing_secrets()
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
