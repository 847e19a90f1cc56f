import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./alert_triage.db")

    AWS_REGION: str = os.getenv("AWS_REGION", "us-east-1")
    AWS_ACCESS_KEY_ID: Optional[str] = os.getenv("AWS_ACCESS_KEY_ID")
    AWS_SECRET_ACCESS_KEY: Optional[str] = os.getenv("AWS_SECRET_ACCESS_KEY")
    AWS_SES_FROM_EMAIL: str = os.getenv("AWS_SES_FROM_EMAIL", "alerts@example.org")

    TWILIO_ACCOUNT_SID: Optional[str] = os.getenv("TWILIO_ACCOUNT_SID")
    TWILIO_AUTH_TOKEN: Optional[str] = os.getenv("TWILIO_AUTH_TOKEN")
    TWILIO_PHONE_NUMBER: Optional[str] = os.getenv("TWILIO_PHONE_NUMBER")

    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:5173")

    # Cron jobs (reminders, trend and cleanup sweeps) fire in this zone
    SCHEDULER_TIMEZONE: str = os.getenv("SCHEDULER_TIMEZONE", "America/New_York")
    SCHEDULER_ENABLED: bool = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"

    SSE_HEARTBEAT_SECONDS: float = float(os.getenv("SSE_HEARTBEAT_SECONDS", "30"))
    SSE_QUEUE_SIZE: int = int(os.getenv("SSE_QUEUE_SIZE", "100"))

    CORS_ORIGINS: list = ["http://localhost:5173", "http://127.0.0.1:5173"]

    ENVIRONMENT: str = os.getenv("NODE_ENV", "development")

    def email_configured(self) -> bool:
        return bool(self.AWS_ACCESS_KEY_ID and self.AWS_SECRET_ACCESS_KEY)

    def sms_configured(self) -> bool:
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN and self.TWILIO_PHONE_NUMBER)

    class Config:
        env_file = ".env"


settings = Settings()
