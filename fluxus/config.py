from pathlib import Path
from typing import Any

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]
DATA_DIR = BASE_DIR / ".data"

MIN_REGISTRY_SECRET_LENGTH = 32


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Resolve relative data paths against the repository root."""

        super().model_post_init(__context)

        if not self.client_data_dir.is_absolute():
            object.__setattr__(self, "client_data_dir", BASE_DIR / self.client_data_dir)
        if not self.passkey_mapping_db_path.is_absolute():
            object.__setattr__(
                self, "passkey_mapping_db_path", BASE_DIR / self.passkey_mapping_db_path
            )

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Passkey mapping registry (server side)
    passkey_registry_secret: str = Field(
        default="",
        description="Server-held secret for hashing and encrypting passkey mappings (>= 32 chars)",
        validation_alias=AliasChoices("passkey_registry_secret", "PASSKEY_REGISTRY_SECRET"),
    )
    passkey_mapping_db_path: Path = Field(
        default=DATA_DIR / "passkey-mappings.sqlite",
        description="SQLite database holding encrypted passkey mappings",
        validation_alias=AliasChoices("passkey_mapping_db_path", "PASSKEY_MAPPING_DB_PATH"),
    )
    passkey_mapping_rate_limit: int = Field(
        default=30,
        ge=1,
        description="Requests allowed per client per rate window",
    )
    passkey_mapping_rate_window_seconds: int = Field(
        default=60,
        ge=1,
        description="Fixed rate limit window in seconds",
    )
    passkey_mapping_max_body_bytes: int = Field(
        default=4 * 1024,
        ge=64,
        description="Maximum accepted request body size",
    )
    trust_forwarded_for: bool = Field(
        default=True,
        description="Identify rate-limited clients by the first X-Forwarded-For entry",
    )

    # Client-side state
    client_data_dir: Path = Field(
        default=DATA_DIR / "client",
        description="Directory for local storage, the mapping cache and persisted sessions",
    )
    client_origin: str = Field(
        default="http://localhost:3000",
        description="Origin the client-side mapping cache binds credential hashes to",
    )
    registry_api_url: str = Field(
        default="http://127.0.0.1:8000/api/passkey-mappings",
        description="Remote passkey mapping registry endpoint",
    )
    registry_request_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for remote registry calls",
    )

    # Wallet token
    wallet_token_address: str = Field(
        default="0x20c0000000000000000000000000000000000000",
        description="Stablecoin the session spend limits are denominated in",
    )
    wallet_token_decimals: int = Field(default=6, description="Token decimals")

    # Session keys
    session_sweep_interval_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Polling cadence of the session expiry sweep",
    )

    @property
    def passkey_registry_ready(self) -> bool:
        return len(self.passkey_registry_secret.strip()) >= MIN_REGISTRY_SECRET_LENGTH

    @property
    def sessions_path(self) -> Path:
        return self.client_data_dir / "sessions.json"

    @property
    def local_storage_path(self) -> Path:
        return self.client_data_dir / "local_storage.json"

    @property
    def local_registry_db_path(self) -> Path:
        return self.client_data_dir / "passkey-registry.sqlite"


# Global settings instance
settings = Settings()
