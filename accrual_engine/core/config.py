import os
from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Settings:
    PROJECT_NAME: str = "Loan Accrual & Status Engine"
    MONGODB_URI: str = os.getenv("MONGODB_URI")
    MONGODB_DB_NAME: str = os.getenv("MONGODB_DB_NAME")
    MONGODB_TLS: bool = os.getenv("MONGODB_TLS", "false").lower() == "true"

    # Scheduler
    SCHEDULER_TIMEZONE: str = os.getenv("SCHEDULER_TIMEZONE", "Asia/Kolkata")
    LOAN_CALCULATION_INTERVAL_HOURS: int = _int_env("LOAN_CALCULATION_INTERVAL_HOURS", 4)
    OVERDUE_JOB_TIME: str = os.getenv("OVERDUE_JOB_TIME", "00:01")
    JOB_QUEUE_INTERVAL_MINUTES: int = _int_env("JOB_QUEUE_INTERVAL_MINUTES", 1)

    # Advisory run lock, only needed when more than one instance runs the scheduler
    REDIS_URL: str = os.getenv("REDIS_URL")
    RUN_LOCK_TTL_SECONDS: int = _int_env("RUN_LOCK_TTL_SECONDS", 4 * 3600)

    # Accrual rules
    DEFAULT_DAILY_INTEREST_RATE: str = os.getenv("DEFAULT_DAILY_INTEREST_RATE", "0.001")
    DEFAULT_GST_PERCENT: str = os.getenv("DEFAULT_GST_PERCENT", "18")
    OVERDUE_DPD_THRESHOLD: int = _int_env("OVERDUE_DPD_THRESHOLD", 5)
    # "optimistic" (revision checked) or "last_write_wins"
    LOAN_WRITE_POLICY: str = os.getenv("LOAN_WRITE_POLICY", "optimistic")

    # Notification queue
    JOB_QUEUE_BATCH_SIZE: int = _int_env("JOB_QUEUE_BATCH_SIZE", 50)
    JOB_QUEUE_MAX_ATTEMPTS: int = _int_env("JOB_QUEUE_MAX_ATTEMPTS", 3)
    # Rows left in processing longer than this (worker crash) are released again
    JOB_QUEUE_STALE_MINUTES: int = _int_env("JOB_QUEUE_STALE_MINUTES", 10)

    # DPD reminder SMS
    DPD_REMINDER_TIME: str = os.getenv("DPD_REMINDER_TIME", "10:00")
    DPD_REMINDER_ENABLED: bool = os.getenv("DPD_REMINDER_ENABLED", "true").lower() == "true"

    # Collaborators
    SMS_API_URL: str = os.getenv("SMS_API_URL", "https://api.smsgateway.example/v1/sms/send")
    SMS_API_TOKEN: str = os.getenv("SMS_API_TOKEN")
    SMS_SENDER_ID: str = os.getenv("SMS_SENDER_ID")
    RECOVERY_ASSIGNMENT_URL: str = os.getenv("RECOVERY_ASSIGNMENT_URL")
    RECOVERY_ASSIGNMENT_TOKEN: str = os.getenv("RECOVERY_ASSIGNMENT_TOKEN")

    ADMIN_API_TOKEN: str = os.getenv("ADMIN_API_TOKEN")

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR: str = os.getenv("LOG_DIR", "log")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

settings = Settings()
