"""Monitor configuration loaded from environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class MonitorSettings(BaseSettings):
    """Per-device monitor settings loaded from environment."""

    # Device identity
    device_id: str = "phone"
    dispatches_alerts: bool = True

    # Escalation countdown
    countdown_seconds: int = 30
    tick_seconds: float = 1.0

    # Threshold policy (read-only after startup)
    min_heart_rate: float = 40.0
    max_heart_rate: float = 120.0
    min_blood_oxygen: float = 95.0

    # Contacts and notifications
    contacts_path: str = "emergency_contacts.json"
    notification_log_path: str = "health_notifications.log"
    alert_channels: list[str] = ["sms"]

    # Remote risk classifier (disabled when empty)
    risk_service_url: str = ""
    risk_service_timeout: float = 5.0

    # Cross-device relay over Solace
    bridge_enabled: bool = False
    solace_broker_url: str = "ws://localhost:8008"
    solace_broker_vpn: str = "default"
    solace_broker_username: str = "default"
    solace_broker_password: str = "default"
    topic_prefix: str = "lifesignal/events"

    model_config = SettingsConfigDict(
        env_prefix="LIFESIGNAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> MonitorSettings:
    return MonitorSettings()
