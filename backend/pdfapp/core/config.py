"""Application configuration from environment variables."""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _clean_str(value: str | None) -> str | None:
    if value is None:
        return None
    # Replace non-breaking spaces with normal spaces
    return value.replace("\u00a0", " ")


class BillingConfig(BaseModel):
    """Stripe settings resolved once at startup and injected into the gateway."""

    model_config = ConfigDict(frozen=True)

    api_key: str | None = None
    webhook_secret: str | None = None
    monthly_price_id: str | None = None
    yearly_price_id: str | None = None
    frontend_url: str = "http://localhost:3000"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    PROJECT_NAME: str = "PDF Tools"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    API_TOKEN: str | None = None
    ADMIN_TOKEN: str | None = None
    FRONTEND_URL: str = "http://localhost:3000"

    # Database Settings
    DATABASE_URL: str | None = None
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "pdftools"
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432

    # Stripe
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    STRIPE_WEBHOOK_SECRET_PROD: str | None = None
    STRIPE_WEBHOOK_SECRET_DEV: str | None = None
    STRIPE_MONTHLY_PRICE_ID: str | None = None
    STRIPE_YEARLY_PRICE_ID: str | None = None

    # Notifications / Email
    ENABLE_EMAIL_NOTIFICATIONS: bool = False

    SMTP_HOST: str | None = None
    SMTP_PORT: int = 587

    SMTP_USERNAME: str | None = Field(default=None, alias="SMTP_USERNAME")
    SMTP_PASSWORD: str | None = Field(default=None, alias="SMTP_PASSWORD")

    SMTP_USE_TLS: bool = True  # STARTTLS

    SMTP_FROM_EMAIL: str | None = Field(default=None, alias="SMTP_FROM_EMAIL")
    SMTP_FROM_NAME: str = Field(default="PDF Tools", alias="SMTP_FROM_NAME")
    ADMIN_EMAIL: str | None = None
    COMPANY_NAME: str = "PDF Tools"

    NOTIFICATIONS_POLL_SECONDS: int = 5
    NOTIFICATIONS_BATCH_SIZE: int = 25

    @field_validator(
        "SMTP_USERNAME",
        "SMTP_PASSWORD",
        "SMTP_FROM_EMAIL",
        "SMTP_FROM_NAME",
        mode="before",
    )
    @classmethod
    def clean_smtp_strings(cls, v):
        return _clean_str(v)

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.strip().lower() == "production"

    @property
    def database_url(self) -> str:
        """Construct database URL from components."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def webhook_secret(self) -> str | None:
        """Production and development endpoints are registered with different secrets."""
        if self.is_production:
            return self.STRIPE_WEBHOOK_SECRET_PROD or self.STRIPE_WEBHOOK_SECRET
        return self.STRIPE_WEBHOOK_SECRET_DEV or self.STRIPE_WEBHOOK_SECRET

    def billing_config(self) -> BillingConfig:
        return BillingConfig(
            api_key=self.STRIPE_SECRET_KEY,
            webhook_secret=self.webhook_secret,
            monthly_price_id=self.STRIPE_MONTHLY_PRICE_ID,
            yearly_price_id=self.STRIPE_YEARLY_PRICE_ID,
            frontend_url=self.FRONTEND_URL.rstrip("/"),
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


settings = Settings()
