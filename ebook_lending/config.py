import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Database settings
    database_file: str = os.getenv("LENDING_DB_FILE", "ebook_lending.db")
    db_busy_timeout: float = float(os.getenv("DB_BUSY_TIMEOUT", "5"))
    seed_default_ebooks: bool = _env_flag("SEED_DEFAULT_EBOOKS", "True")

    # Payment gateway settings
    payment_gateway_url: str = os.getenv(
        "PAYMENT_GATEWAY_URL",
        "http://homepages.cs.ncl.ac.uk/daniel.nesbitt/CSC8019/HorsePay/HorsePay.php",
    )
    payment_gateway_timeout: float = float(os.getenv("PAYMENT_GATEWAY_TIMEOUT", "10"))
    payment_store_id: str = os.getenv("PAYMENT_STORE_ID", "Team13")
    payment_time_zone: str = os.getenv("PAYMENT_TIME_ZONE", "BST")
    payment_currency: str = os.getenv("PAYMENT_CURRENCY", "GBP")

    # Email settings
    smtp_host: str = os.getenv("SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = int(os.getenv("SMTP_PORT", "587"))
    smtp_username: Optional[str] = os.getenv("SMTP_USERNAME")
    smtp_password: Optional[str] = os.getenv("SMTP_PASSWORD")
    smtp_from_email: str = os.getenv("SMTP_FROM_EMAIL", "noreply@ebook-lending.com")
    smtp_from_name: str = os.getenv("SMTP_FROM_NAME", "E-Book Lending")
    enable_email_notifications: bool = _env_flag("ENABLE_EMAIL_NOTIFICATIONS", "False")
    reminder_window_days: int = int(os.getenv("REMINDER_WINDOW_DAYS", "2"))

    # Catalog settings
    recommendation_count: int = int(os.getenv("RECOMMENDATION_COUNT", "4"))
    recommendation_seed: Optional[int] = (
        int(os.environ["RECOMMENDATION_SEED"]) if os.getenv("RECOMMENDATION_SEED") else None
    )
    max_wishlist_size: int = int(os.getenv("MAX_WISHLIST_SIZE", "30"))

    # Logging settings
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_format: str = os.getenv("LOG_FORMAT", "plain")  # plain | json

    # Application settings
    app_name: str = os.getenv("APP_NAME", "E-Book Lending Store")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _env_flag("DEBUG", "False")
    environment: str = os.getenv("ENVIRONMENT", "development")


settings = Settings()
