import logging
import logging.config
import os
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

LOGGING_CONF = os.path.join(os.path.dirname(os.path.abspath(__file__)), "logging.conf")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- API Info ---
    API_TITLE: str = "Storefront API"
    API_VERSION: str = "1.0.0"
    PORT: int = 8000

    # --- Auth ---
    JWT_SECRET: str = "dev-secret-change"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_HOURS: int = 24

    # --- Database ---
    DATABASE_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "ecommerce"
    DB_SERVER_SELECTION_TIMEOUT_MS: int = 5000
    DB_SOCKET_TIMEOUT_MS: int = 10000

    # --- Email (Postmark SMTP relay: the server token is both username and password) ---
    EMAIL_ENABLED: bool = False
    POSTMARK_API_TOKEN: str = ""
    EMAIL_SENDER: str = "no-reply@example.com"
    MAIL_SERVER: str = "smtp.postmarkapp.com"
    MAIL_PORT: int = 587

    # --- Uploads ---
    UPLOAD_ROOT: str = os.path.join("uploads", "payments")

    # Used to build the link in verification emails
    PUBLIC_BASE_URL: str = "http://localhost:8000"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging():
    if os.path.exists(LOGGING_CONF):
        logging.config.fileConfig(LOGGING_CONF, disable_existing_loggers=False)
    else:
        logging.basicConfig(level=logging.INFO)
