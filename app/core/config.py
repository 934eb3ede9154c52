from __future__ import annotations

import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///willtank.db",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    APP_ENV = os.getenv("APP_ENV", "production")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:5000")

    CHECK_IN_PERIOD_DAYS = int(os.getenv("CHECK_IN_PERIOD_DAYS", "7"))
    CHECK_IN_TOKEN_MAX_AGE_SECONDS = int(os.getenv("CHECK_IN_TOKEN_MAX_AGE_SECONDS", str(7 * 24 * 3600)))
    CHECK_IN_REQUIRE_SIGNED_TOKEN = _env_flag("CHECK_IN_REQUIRE_SIGNED_TOKEN", True)
    CHECK_IN_ADVANCE_ON_DELIVERY_FAILURE = _env_flag("CHECK_IN_ADVANCE_ON_DELIVERY_FAILURE", True)
    CHECK_IN_SCHEDULER_ENABLED = _env_flag("CHECK_IN_SCHEDULER_ENABLED", False)
    CHECK_IN_CRON = os.getenv("CHECK_IN_CRON", "0 8 * * 1")

    DEATH_VERIFICATION_QUORUM = int(os.getenv("DEATH_VERIFICATION_QUORUM", "5"))
    DEATH_VERIFICATION_WINDOW_MINUTES = int(os.getenv("DEATH_VERIFICATION_WINDOW_MINUTES", "10"))
    VERIFICATION_CODE_TTL_MINUTES = int(os.getenv("VERIFICATION_CODE_TTL_MINUTES", "30"))
    PASSWORD_RESET_TTL_MINUTES = int(os.getenv("PASSWORD_RESET_TTL_MINUTES", "60"))
    INVITATION_CODE_TTL_MINUTES = int(os.getenv("INVITATION_CODE_TTL_MINUTES", "10"))

    MAIL_PROVIDER = os.getenv("MAIL_PROVIDER", "smtp")
    MAIL_SERVER = os.getenv("MAIL_SERVER", "mail.privateemail.com")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "465"))
    MAIL_USE_SSL = _env_flag("MAIL_USE_SSL", True)
    MAIL_USERNAME = os.getenv("MAIL_USERNAME", "")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD", "")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", '"WillTank Support" <support@willtank.com>')
    MAIL_SUPPRESS_SEND = _env_flag("MAIL_SUPPRESS_SEND", False)
    MAIL_SEND_RETRIES = int(os.getenv("MAIL_SEND_RETRIES", "2"))
    MAIL_TIMEOUT_SECONDS = int(os.getenv("MAIL_TIMEOUT_SECONDS", "30"))
