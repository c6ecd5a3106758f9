"""
Settings Module
===============

Pydantic-based configuration with environment variable loading.

Version: 0.1.0
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ProverMode(str, Enum):
    """Proof generation backend."""

    MOCK = "mock"
    SNARKJS = "snarkjs"


class LedgerMode(str, Enum):
    """Attestation ledger backend."""

    MOCK = "mock"
    GATEWAY = "gateway"


class ChainMode(str, Enum):
    """Target chain backend."""

    MOCK = "mock"
    RPC = "rpc"


class RegistryBackend(str, Enum):
    """Storage for relay-attempted markers."""

    MEMORY = "memory"
    REDIS = "redis"


class ProverSettings(BaseSettings):
    """Proof generation configuration."""

    model_config = SettingsConfigDict(env_prefix="PROVER_")

    mode: ProverMode = ProverMode.MOCK
    build_dir: Path = Path("circuits/build")
    circuit_name: str = "incomeProof"
    zkey_file: str = "incomeProof_0001.zkey"
    verification_key_file: str = "verification_key.json"
    snarkjs_command: str = "npx snarkjs"


class LedgerSettings(BaseSettings):
    """Attestation ledger gateway configuration."""

    model_config = SettingsConfigDict(env_prefix="LEDGER_")

    mode: LedgerMode = LedgerMode.MOCK
    url: str = "http://localhost:8080"
    api_key: SecretStr = SecretStr("")
    poll_interval_seconds: float = 2.0
    request_timeout_seconds: float = 30.0


class ChainSettings(BaseSettings):
    """Target chain configuration."""

    model_config = SettingsConfigDict(env_prefix="CHAIN_")

    mode: ChainMode = ChainMode.MOCK
    rpc_url: str = "http://localhost:8545"
    private_key: SecretStr = SecretStr("")
    chain_id: int | None = None
    target_contract_address: str = ""
    bridge_contract_address: str = ""
    poll_interval_seconds: float = 2.0
    lookback_blocks: int = 5000
    confirmation_timeout_seconds: float = 180.0
    gas_multiplier: float = 1.2


class PipelineSettings(BaseSettings):
    """Relay pipeline timeouts and retry bounds."""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")

    submit_max_attempts: int = 3
    submit_backoff_min_seconds: float = 0.5
    submit_backoff_max_seconds: float = 8.0
    finalization_timeout_seconds: float = 120.0
    inclusion_max_attempts: int = 6
    inclusion_backoff_min_seconds: float = 1.0
    inclusion_backoff_max_seconds: float = 16.0
    root_observed_timeout_seconds: float = 600.0
    completed_cache_size: int = 1024
    verify_root_locally: bool = False
    shutdown_grace_seconds: float = 30.0


class RedisSettings(BaseSettings):
    """Redis cache configuration."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = "localhost"
    port: int = 6379
    password: SecretStr = SecretStr("")
    db: int = 0

    @property
    def url(self) -> str:
        """Generate Redis connection URL."""
        pwd = self.password.get_secret_value()
        auth = f":{pwd}@" if pwd else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


class RegistrySettings(BaseSettings):
    """Relay registry configuration."""

    model_config = SettingsConfigDict(env_prefix="REGISTRY_")

    backend: RegistryBackend = RegistryBackend.MEMORY
    key_prefix: str = "zkrelay:relay:"


class CORSSettings(BaseSettings):
    """CORS configuration."""

    model_config = SettingsConfigDict(env_prefix="CORS_")

    origins: str = "http://localhost:3000,http://localhost:5173"
    allow_credentials: bool = True

    @property
    def origins_list(self) -> list[str]:
        """Parse origins string into list."""
        return [o.strip() for o in self.origins.split(",") if o.strip()]


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables with sensible defaults.
    Use the global `settings` singleton or call `get_settings()`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # General
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True
    log_level: LogLevel = LogLevel.INFO
    port: int = Field(default=3001, alias="RELAY_PORT")

    # Collaborators
    prover: ProverSettings = Field(default_factory=ProverSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    chain: ChainSettings = Field(default_factory=ChainSettings)

    # Pipeline
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    registry: RegistrySettings = Field(default_factory=RegistrySettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)

    # Security
    cors: CORSSettings = Field(default_factory=CORSSettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Ensure log level is uppercase."""
        if isinstance(v, str):
            return LogLevel(v.upper())
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.environment == Environment.TESTING


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings singleton.
    """
    return Settings()
