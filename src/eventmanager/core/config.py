"""
Configuration management for EventManager notifications.
"""

from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from ruamel.yaml import YAML


class DatabaseConfig(BaseModel):
    """Database configuration."""

    url: Optional[str] = Field(None, description="Async database URL (defaults to SQLite in data_dir)")
    echo: bool = Field(False, description="Echo SQL statements (debugging)")


class DispatchConfig(BaseModel):
    """Dispatch engine configuration."""

    enabled: bool = Field(True, description="Run the periodic dispatcher")
    interval_seconds: int = Field(300, description="Seconds between dispatch passes")
    max_attempts: int = Field(3, description="Attempts before a notification is marked Fallida")
    item_delay_seconds: float = Field(5.0, description="Pause between notifications in one pass")
    lease_seconds: int = Field(600, description="How long a claimed notification stays locked")


class EmailConfig(BaseModel):
    """Email transport configuration."""

    enabled: bool = Field(True, description="Enable email delivery")
    function_url: str = Field("", description="Server-side send-email function URL")
    function_key: str = Field("", description="Bearer key for the send-email function")
    emailjs_url: str = Field("https://api.emailjs.com/api/v1.0/email/send", description="EmailJS send endpoint")
    emailjs_service_id: str = Field("", description="EmailJS service id")
    emailjs_template_id: str = Field("", description="EmailJS template id")
    emailjs_public_key: str = Field("", description="EmailJS public key")
    batch_size: int = Field(50, description="Recipients sent in parallel per batch")
    batch_pause_seconds: float = Field(1.0, description="Pause between batches")
    timeout_seconds: int = Field(30, description="HTTP timeout for a single send")
    default_subject: str = Field("Notificación del Sistema", description="Subject used when a notification has none")


class PushConfig(BaseModel):
    """Push transport configuration."""

    enabled: bool = Field(True, description="Enable push delivery")
    gateway_url: str = Field("", description="Push gateway relaying to the browser session")
    icon: str = Field("/assets/images/logo.png", description="Notification icon")
    click_url: str = Field("/", description="URL opened when the notification is clicked")
    default_title: str = Field("Nueva notificación", description="Title used when a notification has none")
    timeout_seconds: int = Field(10, description="HTTP timeout for gateway calls")


class TemplatesConfig(BaseModel):
    """Template naming configuration."""

    default_module: str = Field("General", description="Module used when a stored name has none")
    modules: List[str] = Field(
        default_factory=lambda: ["Eventos", "Ventas", "Boletos", "Facturación", "Marketing", "Clientes"],
        description="Known template modules",
    )


class SessionConfig(BaseModel):
    """Session context persistence."""

    backend: str = Field("memory", description="Session backend: 'memory' or 'file'")
    path: Path = Field(Path("session.json"), description="Session file (file backend)")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field("INFO", description="Log level")
    file: Optional[Path] = Field(None, description="Log file path")
    format: str = Field("json", description="Log format: 'json' or 'text'")


class AppConfig(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="EVENTMANAGER_",
        env_nested_delimiter="__",
        extra="allow",
        case_sensitive=False,
    )

    data_dir: Path = Field(Path("data"), description="Data directory")

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    push: PushConfig = Field(default_factory=PushConfig)
    templates: TemplatesConfig = Field(default_factory=TemplatesConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, config_path=None) -> "AppConfig":
        """Load configuration from YAML file."""
        if config_path is None:
            config_path = Path("config/default.yaml")
        elif isinstance(config_path, str):
            config_path = Path(config_path)

        if not config_path.exists():
            return cls()

        yaml = YAML(typ='safe')
        with open(config_path, 'r', encoding='utf-8') as f:
            yaml_data = yaml.load(f) or {}

        return cls(**yaml_data)

    def database_url(self) -> str:
        """Resolve the database URL, defaulting to SQLite under data_dir."""
        if self.database.url:
            return self.database.url
        return f"sqlite+aiosqlite:///{self.data_dir / 'eventmanager.db'}"
