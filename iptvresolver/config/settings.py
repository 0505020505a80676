from typing import Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False
    )

    # ===========================
    # Service Customization
    # ===========================
    APP_NAME: Optional[str] = "IPTV Resolver"
    APP_VERSION: str = "1.0.0"

    # ===========================
    # Server Configuration
    # ===========================
    PORT: Optional[int] = 7000

    # ===========================
    # Provider Configuration
    # ===========================
    XTREAM_URL: Optional[str] = None
    XTREAM_USERNAME: Optional[str] = None
    XTREAM_PASSWORD: Optional[str] = None
    PROVIDER_USER_AGENT: str = "VLC/3.0.20 LibVLC/3.0.20"

    # ===========================
    # Database Configuration
    # ===========================
    DATABASE_VERSION: str = "1.0"
    DATABASE_TYPE: Optional[str] = "sqlite"
    DATABASE_PATH: Optional[str] = "/app/data/iptvresolver.db"
    DATABASE_URL: Optional[str] = ""

    # ===========================
    # Cache Configuration
    # ===========================
    CATALOG_CACHE_TTL: int = 86400
    VOD_CATALOG_CACHE_TTL: int = 21600
    SERIES_INFO_CACHE_TTL: int = 86400
    RESOLVED_CACHE_TTL: int = 86400
    SERIES_BINDING_TTL: int = 2592000
    RESOLVED_CACHE_CAPACITY: int = 512
    SERIES_BINDING_CAPACITY: int = 2048
    SERIES_INFO_MEMORY_CAPACITY: int = 50

    # ===========================
    # HTTP Timeout Configuration
    # ===========================
    HTTP_TIMEOUT: Optional[int] = 25
    HTTP_CONNECT_TIMEOUT: int = 5
    HTTP_RETRIES: int = 1

    # ===========================
    # Resolution Timing Configuration
    # ===========================
    CATALOG_FETCH_TIMEOUT: float = 8.0
    EPISODE_FETCH_TIMEOUT: float = 5.0
    PREFETCH_TIMEOUT: float = 5.0
    PROBE_BUDGET_SECONDS: float = 20.0
    EPISODE_FETCH_CONCURRENCY: int = 2

    # ===========================
    # Probing Configuration
    # ===========================
    PROBE_LIMIT_CONFIDENT: int = 1
    PROBE_LIMIT_DEFAULT: int = 2

    # ===========================
    # Proxy Configuration
    # ===========================
    PROXY_URL: Optional[str] = None

    # ===========================
    # Logging Configuration
    # ===========================
    LOG_LEVEL: Optional[str] = "INFO"

    # ===========================
    # Field Validators
    # ===========================
    @field_validator("XTREAM_URL", "PROXY_URL")
    @classmethod
    def normalize_urls(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v.rstrip("/") or None
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("DATABASE_TYPE")
    @classmethod
    def normalize_database_type(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            if v not in ("sqlite", "postgresql", "memory"):
                raise ValueError(f"Unsupported DATABASE_TYPE: {v}")
        return v

    @field_validator("EPISODE_FETCH_CONCURRENCY", "PROBE_LIMIT_CONFIDENT", "PROBE_LIMIT_DEFAULT")
    @classmethod
    def ensure_positive(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    def get_database_url(self) -> str:
        if self.DATABASE_TYPE == "sqlite":
            return f"sqlite:///{self.DATABASE_PATH}"
        return f"postgresql://{self.DATABASE_URL}"


# ===========================
# Settings Instance
# ===========================
settings = Settings()
