from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration settings with environment variable integration.

    Attributes
    ----------
    debug: bool, default=False
        Enable/disable debug mode.
    logging_level: str, default="INFO"
        Logging verbosity: e.g., "INFO", "DEBUG".
    base_dir: Path, default=auto-detected
        Project base directory.
    environment: str, default="development"
        Application environment: "development", "production", etc.
    database_url: str | None, optional
        Async SQLAlchemy URL. Falls back to a SQLite file in `base_dir`.
    logs_dir: Path, derived from base_dir
        Directory for log files.
    log_file: Path, derived from base_dir
        Main log file path.
    redis_host: str, default="localhost"
        Redis server hostname.
    redis_port: int, default=6379
        Redis server port.
    redis_db: int, default=0
        Redis database index.
    redis_password: str | None, optional
        Redis password.
    redis_socket_connect_timeout: int, default=5
        Redis socket connect timeout in seconds.
    redis_socket_timeout: int, default=5
        Redis socket read/write timeout in seconds.
    redis_use_ssl: bool, default=False
        Use SSL for Redis connection.
    ssl_cert_reqs: str | None, optional
        SSL certificate requirements for Redis.
    ssl_certfile_path: Path | None, optional
        Path to SSL certificate for Uvicorn.
    ssl_keyfile_path: Path | None, optional
        Path to SSL key for Uvicorn.
    notification_cooldown_seconds: int, default=300
        Window during which an unread notification with the same dedup key
        suppresses new ones.
    notification_retention_days: int, default=30
        Age after which notifications are purged regardless of read state.
    notification_persist_timeout_seconds: float, default=5.0
        Upper bound for a single notification insert.
    urgency_profit_threshold: float, default=1000.0
        Monetary impact from which the urgency bonus applies.
    scheduler_enabled: bool, default=False
        Run periodic scans, digests and retention purges inside the app.
    scan_interval_minutes: int, default=15
        Interval between stock/expiry scans.
    alert_recipient_ids: List[str], default=[]
        Recipients of scan-generated notifications.
    default_reorder_level: int, default=10
        Reorder level used for products without one.
    expiry_warning_days: int, default=30
        Horizon of the expiry scan.
    expiry_critical_days: int, default=7
        Days before expiry from which expiry notifications are critical.
    sendgrid_api_key: str | None, optional
        SendGrid API key; e-mail delivery is disabled without it.
    sendgrid_sender: str | None, optional
        Sender address of notification e-mails.

    Raises
    ------
    ValueError
        If only one of the SendGrid settings is provided.

    Notes
    -----
    Sensitive configuration values like the SendGrid key and Redis password
    should always be provided via environment variables, never committed to
    version control.
    """

    debug: bool = False
    logging_level: str = "INFO"
    base_dir: Path = Path(__file__).resolve().parent.parent
    environment: str = "development"
    database_url: str | None = None
    logs_dir: Path = base_dir / "logs"
    log_file: Path = logs_dir / "notifications.log"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: str | None = None
    redis_socket_connect_timeout: int = 5
    redis_socket_timeout: int = 5
    redis_use_ssl: bool = False
    ssl_cert_reqs: str | None = None
    ssl_certfile_path: Path | None = None
    ssl_keyfile_path: Path | None = None
    notification_cooldown_seconds: int = 300
    notification_retention_days: int = 30
    notification_persist_timeout_seconds: float = 5.0
    urgency_profit_threshold: float = 1000.0
    scheduler_enabled: bool = False
    scan_interval_minutes: int = 15
    alert_recipient_ids: List[str] = []
    default_reorder_level: int = 10
    expiry_warning_days: int = 30
    expiry_critical_days: int = 7
    sendgrid_api_key: str | None = None
    sendgrid_sender: str | None = None

    model_config = SettingsConfigDict(env_file=".env", extra="allow")

    @model_validator(mode="after")
    def validate_sendgrid_pair(self) -> "Settings":
        """Ensure e-mail settings are provided together.

        Returns
        -------
        Settings
            Validated settings instance.

        Raises
        ------
        ValueError
            If exactly one of `sendgrid_api_key` and `sendgrid_sender` is set.
        """
        if bool(self.sendgrid_api_key) ^ bool(self.sendgrid_sender):
            raise ValueError(
                "SENDGRID_API_KEY and SENDGRID_SENDER must both be provided to enable email"
            )
        return self

    @property
    def email_enabled(self) -> bool:
        return bool(self.sendgrid_api_key and self.sendgrid_sender)

    def ensure_log_paths(self) -> None:
        """Create the log directory and files used by the file sinks."""
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        self.log_file.touch(exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Create and cache singleton Settings instance for application use.

    Returns
    -------
    Settings
        Cached singleton instance of application settings with all
        configuration values loaded and validated.
    """
    return Settings()
