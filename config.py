import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as payconsole.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "payconsole.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Bearer session lifetime: 8 hours
    SESSION_LIFETIME_SECONDS = int(os.getenv("SESSION_LIFETIME_SECONDS", str(8 * 60 * 60)))

    # Idle timeout: 20 minutes
    IDLE_TIMEOUT_SECONDS = int(os.getenv("IDLE_TIMEOUT_SECONDS", str(20 * 60)))

    # Lockout
    MAX_LOGIN_ATTEMPTS = int(os.getenv("MAX_LOGIN_ATTEMPTS", "5"))
    LOCKOUT_MINUTES = int(os.getenv("LOCKOUT_MINUTES", "15"))

    # Two-factor (TOTP)
    TOTP_ISSUER = os.getenv("TOTP_ISSUER", "PayConsole")
    TOTP_VALID_WINDOW = int(os.getenv("TOTP_VALID_WINDOW", "1"))  # steps either side of now
    TWO_FACTOR_ENCRYPTION_KEY = os.getenv("TWO_FACTOR_ENCRYPTION_KEY")  # Fernet key; derived from SECRET_KEY if unset
    TWO_FACTOR_CHALLENGE_TTL_SECONDS = int(os.getenv("TWO_FACTOR_CHALLENGE_TTL_SECONDS", "300"))

    # Suspicious activity heuristics
    SUSPICIOUS_LOOKBACK_DAYS = int(os.getenv("SUSPICIOUS_LOOKBACK_DAYS", "30"))
    RAPID_ATTEMPT_WINDOW_MINUTES = int(os.getenv("RAPID_ATTEMPT_WINDOW_MINUTES", "5"))
    RAPID_ATTEMPT_THRESHOLD = int(os.getenv("RAPID_ATTEMPT_THRESHOLD", "3"))  # signal when count exceeds this

    # Fire-and-forget work (emails, detection)
    BACKGROUND_TASKS_ASYNC = os.getenv("BACKGROUND_TASKS_ASYNC", "true").lower() == "true"
    BACKGROUND_MAX_WORKERS = int(os.getenv("BACKGROUND_MAX_WORKERS", "4"))

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"

    # Basic app settings
    DEBUG = False
