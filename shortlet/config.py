from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str
    # Tokens are issued elsewhere; this service only verifies them
    SECRET_KEY: str
    ALGORITHM: str

    REDIS_URL: str

    # --- Kafka ---
    KAFKA_BOOTSTRAP_SERVERS: str = "kafka:9092"
    KAFKA_NOTIFICATION_TOPIC: str = "booking_notifications"
    KAFKA_HOUSEKEEPING_TOPIC: str = "housekeeping_requests"

    # --- Booking rules ---
    INSTANT_BOOKING: bool = False
    MIN_BOOKING_NIGHTS: int = 1
    MAX_BOOKING_NIGHTS: int = 90
    TAX_RATE: Decimal = Decimal("0.075")
    QUOTE_TOLERANCE: Decimal = Decimal("1")
    PAYMENT_TOLERANCE_PERCENT: Decimal = Decimal("5")
    PENDING_BOOKING_TTL_MINUTES: int = 30
    # Stay dates and "today" are calendar dates in this zone
    PROPERTY_TIMEZONE: str = "Africa/Lagos"

    # --- Cancellation policy ---
    FULL_REFUND_DAYS: int = 7
    PARTIAL_REFUND_DAYS: int = 3
    PARTIAL_REFUND_PERCENT: Decimal = Decimal("50")
    NO_REFUND_MESSAGE: str = "Cancellations made less than 3 days before check-in are non-refundable."

    # --- Background loops ---
    SCHEDULER_POLL_SECONDS: int = 3600
    OUTBOX_POLL_SECONDS: int = 5

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
