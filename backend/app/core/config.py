from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    ENV: str = "prod"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str

    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT_SECONDS: int = 30
    DB_POOL_RECYCLE_SECONDS: int = 1800

    ALLOWED_HOSTS: str = "localhost,127.0.0.1"
    SECURITY_HEADERS_ENABLED: bool = True

    # Identity provider (tokens are issued elsewhere, we only verify them)
    IDENTITY_JWT_SECRET: str
    IDENTITY_JWT_ALGORITHM: str = "HS256"
    IDENTITY_JWT_AUDIENCE: str | None = None
    IDENTITY_JWT_ISSUER: str | None = None

    # Payments
    PAYMENT_PROVIDER: str = "none"  # none|stripe|manual
    PAYMENT_WEBHOOK_SECRET: str | None = None
    PAYMENT_REQUIRE_WEBHOOK_SIGNATURE: bool = True
    PAYMENT_WEBHOOK_MAX_AGE_SECONDS: int = 300
    PAYMENT_CURRENCY: str = "usd"
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_API_BASE: str = "https://api.stripe.com/v1"
    CHECKOUT_SUCCESS_URL: str = "https://docuseries.example.com/purchase/success"
    CHECKOUT_CANCEL_URL: str = "https://docuseries.example.com/purchase/cancel"
    CHECKOUT_SESSION_TTL_MINUTES: int = 30

    # Video platform
    VIDEO_PROVIDER: str = "none"  # none|mux
    MUX_SIGNING_KEY_ID: str | None = None
    MUX_SIGNING_PRIVATE_KEY: str | None = None  # base64 encoded PEM
    MUX_STREAM_BASE_URL: str = "https://stream.mux.com"
    PLAYBACK_URL_TTL_SECONDS: int = 21600
    # content_id=category:playback_id, comma separated
    CONTENT_CATALOG: str = ""

    # Transactional email
    EMAIL_PROVIDER: str = "none"  # none|log|sendgrid
    SENDGRID_API_KEY: str | None = None
    SENDGRID_API_URL: str = "https://api.sendgrid.com/v3/mail/send"
    EMAIL_FROM_ADDRESS: str = "noreply@docuseries.example.com"
    EMAIL_FROM_NAME: str = "Docuseries"
    EMAIL_TEMPLATE_RENTAL_WARNING_48H: str | None = None
    EMAIL_TEMPLATE_RENTAL_WARNING_24H: str | None = None
    EMAIL_TEMPLATE_RENTAL_EXPIRED: str | None = None

    NOTIFY_EXPIRED_LOOKBACK_HOURS: int = 24

settings = Settings()
