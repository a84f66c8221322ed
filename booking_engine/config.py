from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str
    # Tokens are issued by the auth service; this service only verifies them
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    REDIS_URL: str = "redis://redis:6379/0"

    # --- Kafka (notification outbox) ---
    KAFKA_BOOTSTRAP_SERVERS: str = "kafka:9092"
    KAFKA_NOTIFICATION_TOPIC: str = "booking_notifications"

    # --- Payment gateway ---
    STRIPE_API_KEY: str = ""
    STRIPE_MAX_NETWORK_RETRIES: int = 2
    STRIPE_WEBHOOK_SECRET: str = ""
    PAYMENT_CURRENCY: str = "usd"
    # Platform cut of every booking total, split off at intent creation
    COMMISSION_RATE: Decimal = Decimal("0.15")

    # --- Booking transaction bounds ---
    BOOKING_TX_TIMEOUT_SECONDS: int = 30
    BOOKING_TX_LOCK_TIMEOUT_SECONDS: int = 10

    # --- Checkout holds ---
    CHECKOUT_HOLD_MINUTES: int = 15
    CHECKOUT_TAX_RATE: Decimal = Decimal("0.10")

    # --- Background sweeps ---
    SCHEDULER_POLL_SECONDS: int = 60
    RECONCILE_AFTER_MINUTES: int = 10

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env")


settings = Settings()
