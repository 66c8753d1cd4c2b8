"""
Settings for patchops, one pydantic-settings section per env prefix.

Values come from the process environment and the repository ``.env``;
Azure coordinates have no usable default and are checked at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from patchops.core.errors import ConfigurationError

# patchops/ and the repository root holding .env
PACKAGE_DIR = Path(__file__).resolve().parent.parent
ROOT_DIR = PACKAGE_DIR.parent
ENV_FILE = ROOT_DIR / ".env"

# Nested sections read os.environ, so export .env first
load_dotenv(ENV_FILE)


class AppSettings(BaseSettings):
    """Service identity, HTTP binding and CORS."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_env: Literal["development", "staging", "production"] = "development"
    app_name: str = "patchops"
    app_version: str = "1.0.0"
    app_debug: bool = False

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_workers: int = 2

    # CORS
    cors_origins: str = "http://localhost:3000"
    cors_credentials: bool = True

    @property
    def cors_origins_list(self) -> list[str]:
        """Comma separated ``cors_origins`` as a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]


class DatabaseSettings(BaseSettings):
    """Job store and inventory database (``DB_`` prefix)."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_prefix="DB_",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = "localhost"
    port: int = 5432
    name: str = "patchops"
    user: str = "patchops"
    password: str = ""
    pool_size: int = 10
    max_overflow: int = 5
    # Full DSN override (e.g. sqlite+aiosqlite:///./patchops.db)
    url: str = ""

    @property
    def dsn(self) -> str:
        """Async DSN; ``url`` overrides the PostgreSQL parts."""
        if self.url:
            return self.url
        credentials = f"{self.user}:{self.password}" if self.password else self.user
        return f"postgresql+asyncpg://{credentials}@{self.host}:{self.port}/{self.name}"


class AzureSettings(BaseSettings):
    """Azure coordinates and credentials for Arc, Resource Graph and Log Analytics."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_prefix="AZURE_",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    subscription_id: str = ""
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    use_managed_identity: bool = False
    default_location: str = "eastus"
    log_analytics_workspace_id: str = ""

    management_endpoint: str = "https://management.azure.com"
    log_analytics_endpoint: str = "https://api.loganalytics.io"
    arc_api_version: str = "2024-07-10"
    graph_api_version: str = "2022-10-01"
    request_timeout: int = 60

    def require_coordinates(self) -> None:
        """Fail fast when the remote backends cannot be addressed."""
        missing = []
        if not self.subscription_id:
            missing.append("AZURE_SUBSCRIPTION_ID")
        if not self.log_analytics_workspace_id:
            missing.append("AZURE_LOG_ANALYTICS_WORKSPACE_ID")
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )


DEFAULT_MACHINE_QUERY = """
Resources
| where type =~ 'microsoft.hybridcompute/machines'
| project name, resourceGroup, location, subscriptionId,
    osType = tostring(properties.osType),
    status = tostring(properties.status)
| order by name asc
""".strip()

DEFAULT_INVENTORY_QUERY = """
ConfigurationData
| where ConfigDataType == 'Software'
| summarize arg_max(TimeGenerated, *) by Computer, SoftwareName
| project Computer, SoftwareName, CurrentVersion, Publisher,
    numberOfKnownVulnerabilities = column_ifexists('numberOfKnownVulnerabilities', int(null))
""".strip()


class DiscoverySettings(BaseSettings):
    """Machine registry and software inventory discovery."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_prefix="DISCOVERY_",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=5.0, ge=0)
    page_size: int = Field(default=1000, ge=1, le=1000)
    machine_query: str = DEFAULT_MACHINE_QUERY
    inventory_query: str = DEFAULT_INVENTORY_QUERY
    inventory_retention_days: int = 30


class PatchingSettings(BaseSettings):
    """Batch scheduling and remote execution limits."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_prefix="PATCH_",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    max_concurrency: int = Field(default=5, ge=1)
    slice_delay: float = Field(default=1.5, ge=0)
    submit_timeout: float = 600
    poll_interval: float = 10
    poll_timeout: float = 900
    os_platform: str = "Windows"
    install_script_path: str = str(PACKAGE_DIR / "scripts" / "install_software.ps1")


class LogSettings(BaseSettings):
    """structlog level, renderer and request logging."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_prefix="LOG_",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    level: str = "INFO"
    format: Literal["json", "text"] = "json"
    requests: bool = True


class Settings(BaseSettings):
    """All sections, plus startup behaviour."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app: AppSettings = Field(default_factory=AppSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    azure: AzureSettings = Field(default_factory=AzureSettings)
    discovery: DiscoverySettings = Field(default_factory=DiscoverySettings)
    patching: PatchingSettings = Field(default_factory=PatchingSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    docs_enabled: bool = True
    dev_auto_reload: bool = True
    # Verify Azure coordinates during startup
    strict_startup: Optional[bool] = None

    @property
    def should_validate_coordinates(self) -> bool:
        if self.strict_startup is not None:
            return self.strict_startup
        return self.app.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Settings are read once per process."""
    return Settings()


# Imported by the app, the seed script and the entry point
settings = get_settings()
