import os
from dotenv import load_dotenv

load_dotenv()


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./signflow.db")

    # Security
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")
    ALGORITHM = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

    # Links sent to signers and parties
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
    CERTIFICATE_BASE_URL = os.getenv("CERTIFICATE_BASE_URL", "/certificates")

    # Signature requests
    MAX_SIGNERS = int(os.getenv("MAX_SIGNERS", "20"))
    FINAL_REMINDER_HOURS_BEFORE_EXPIRY = int(os.getenv("FINAL_REMINDER_HOURS_BEFORE_EXPIRY", "24"))
    REMINDER_JOB_INTERVAL_MINUTES = int(os.getenv("REMINDER_JOB_INTERVAL_MINUTES", "60"))

    # Public signer endpoints
    SIGNER_RATE_LIMIT_MAX = int(os.getenv("SIGNER_RATE_LIMIT_MAX", "10"))
    SIGNER_RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("SIGNER_RATE_LIMIT_WINDOW_SECONDS", "60"))

    # Email
    SMTP_HOST = os.getenv("SMTP_HOST", "")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER = os.getenv("SMTP_USER", "")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
    SMTP_STARTTLS = _as_bool(os.getenv("SMTP_STARTTLS", "true"))
    MAIL_FROM = os.getenv("MAIL_FROM", "noreply@signflow.local")

    # App
    SEED_DEMO_DATA = _as_bool(os.getenv("SEED_DEMO_DATA", "false"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    CORS_ORIGINS = [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
        if origin.strip()
    ]


settings = Settings()
