from enum import Enum

from pydantic_settings import BaseSettings


class WaitMode(str, Enum):
    FIXED = "fixed"
    EVENT_DRIVEN = "event_driven"
    HYBRID = "hybrid"


class Settings(BaseSettings):
    timezone: str = "America/Toronto"

    # Schedule: bookings open `lead_days` before the slot day at trigger_hour:trigger_minute
    lead_days: int = 2
    trigger_hour: int = 18
    trigger_minute: int = 0
    schedule_horizon_weeks: int = 4
    trigger_grace_minutes: int = 0
    tick_interval_seconds: int = 60
    automation_enabled: bool = True

    page_load_timeout_seconds: float = 15.0
    action_timeout_seconds: float = 30.0
    verification_timeout_seconds: float = 300.0
    verification_poll_interval_seconds: float = 5.0
    submit_settle_seconds: float = 2.0
    contact_review_pause_seconds: float = 1.5
    browser_start_timeout_seconds: float = 60.0
    # Room for the full verification timeout plus the browser stages
    run_timeout_seconds: float = 420.0

    contact_name: str = ""
    contact_phone: str = ""
    contact_email: str = ""

    imap_server: str = ""
    imap_port: int = 993
    imap_email: str = ""
    imap_password: str = ""
    imap_mailbox: str = "INBOX"

    verification_sender: str = "noreply@frontdesksuite.com"
    verification_subject: str = "Verify your email"
    verification_code_length: int = 4

    browser_driver: str = "selenium"
    headless: bool = True
    wait_mode: WaitMode = WaitMode.HYBRID

    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    notify_phone_number: str = ""

    database_url: str = "sqlite+aiosqlite:///./recbooker.db"

    scheduler_api_key: str = ""
    scheduler_service_account: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
