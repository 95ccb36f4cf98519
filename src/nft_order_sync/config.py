"""Configuration management with Pydantic Settings.

This module provides centralized configuration for the order sync
commands, loading and validating environment variables (and `.env`) at
startup.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from nft_order_sync.storage.models import PRICE_SCALE

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

DEFAULT_CHAIN_RPC_URLS = (
    "https://rpc.apechain.com/http",
    "https://apechain.drpc.org",
    "https://33139.rpc.thirdweb.com",
)

Command = Literal["listings", "chain", "init-db"]


class ConfigurationError(ValueError):
    """Raised when a command's required settings are missing."""


def _validate_http_url(v: str, name: str) -> str:
    if not v.startswith(("http://", "https://")):
        raise ValueError(f"{name} must be an HTTP(S) URL")
    return v.rstrip("/")


def _validate_address(v: str | None, name: str) -> str | None:
    if v is None or v == "":
        return None
    if not _ADDRESS_RE.match(v):
        raise ValueError(f"{name} must be a 0x-prefixed 20-byte hex address")
    return v.lower()


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="DATABASE_URL",
        description="PostgreSQL (or SQLite for local runs) connection string",
    )
    pool_size: int = Field(
        default=5,
        alias="DATABASE_POOL_SIZE",
        ge=1,
        le=100,
        description="Connection pool size (PostgreSQL only)",
    )
    echo: bool = Field(
        default=False,
        alias="DATABASE_ECHO",
        description="Log emitted SQL",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate database URL format."""
        if v is None or v == "":
            return None
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or SQLite connection string")
        return v


class HttpSettings(BaseSettings):
    """Outbound HTTP behaviour shared by all REST calls."""

    model_config = SettingsConfigDict(env_prefix="HTTP_", extra="ignore")

    timeout_seconds: float = Field(
        default=15.0,
        alias="HTTP_TIMEOUT_SECONDS",
        gt=0,
        le=300,
        description="Per-request timeout",
    )
    max_connections: int = Field(
        default=5,
        alias="HTTP_MAX_CONNECTIONS",
        ge=1,
        le=100,
        description="Keep-alive connection pool size",
    )
    max_retries: int = Field(
        default=3,
        alias="HTTP_MAX_RETRIES",
        ge=0,
        le=20,
        description="Retries after the first attempt for a page fetch",
    )
    retry_base_delay_seconds: float = Field(
        default=1.5,
        alias="HTTP_RETRY_BASE_DELAY_SECONDS",
        ge=0,
        le=60,
        description="Base delay for retry backoff",
    )
    backoff: Literal["linear", "exponential"] = Field(
        default="linear",
        alias="HTTP_BACKOFF",
        description="Retry delay growth: base*k (linear) or base*2**(k-1) (exponential)",
    )


class OpenSeaSettings(BaseSettings):
    """OpenSea listings API settings."""

    model_config = SettingsConfigDict(env_prefix="OPENSEA_", extra="ignore")

    api_key: SecretStr | None = Field(
        default=None,
        alias="OPENSEA_API_KEY",
        description="OpenSea API key (X-API-KEY header)",
    )
    base_url: str = Field(
        default="https://api.opensea.io",
        alias="OPENSEA_BASE_URL",
        description="OpenSea API host",
    )
    chain: str = Field(
        default="ethereum",
        alias="OPENSEA_CHAIN",
        description="Chain slug used in the listings path",
    )
    page_size: int = Field(
        default=50,
        alias="OPENSEA_PAGE_SIZE",
        ge=1,
        le=50,
        description="Listings per page",
    )
    min_request_interval_seconds: float = Field(
        default=1.0,
        alias="OPENSEA_MIN_REQUEST_INTERVAL_SECONDS",
        ge=0,
        le=60,
        description="Minimum spacing between requests",
    )
    price_decimals: int = Field(
        default=18,
        alias="OPENSEA_PRICE_DECIMALS",
        ge=0,
        le=PRICE_SCALE,
        description="Decimal exponent of listing prices",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        return _validate_http_url(v, "OPENSEA_BASE_URL")


class MagicEdenSettings(BaseSettings):
    """Magic Eden listings API settings."""

    model_config = SettingsConfigDict(env_prefix="MAGICEDEN_", extra="ignore")

    base_url: str = Field(
        default="https://api-mainnet.magiceden.io",
        alias="MAGICEDEN_BASE_URL",
        description="Magic Eden API host",
    )
    collection_symbol: str | None = Field(
        default=None,
        alias="MAGICEDEN_COLLECTION_SYMBOL",
        description="Collection symbol used in the listings query",
    )
    page_size: int = Field(
        default=5,
        alias="MAGICEDEN_PAGE_SIZE",
        ge=1,
        le=100,
        description="Listings per page",
    )
    min_request_interval_seconds: float = Field(
        default=1.5,
        alias="MAGICEDEN_MIN_REQUEST_INTERVAL_SECONDS",
        ge=0,
        le=60,
        description="Minimum spacing between requests",
    )
    price_decimals: int = Field(
        default=9,
        alias="MAGICEDEN_PRICE_DECIMALS",
        ge=0,
        le=PRICE_SCALE,
        description="Decimal exponent of listing prices",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        return _validate_http_url(v, "MAGICEDEN_BASE_URL")


class ChainSettings(BaseSettings):
    """EVM RPC and Seaport scan settings."""

    model_config = SettingsConfigDict(env_prefix="CHAIN_", extra="ignore")

    rpc_url: str | None = Field(
        default=None,
        alias="CHAIN_RPC_URL",
        description="Preferred RPC endpoint, tried first",
    )
    fallback_rpc_urls: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_CHAIN_RPC_URLS,
        alias="CHAIN_FALLBACK_RPC_URLS",
        description="Fallback RPC endpoints (comma-separated), tried in order",
    )
    seaport_address: str | None = Field(
        default=None,
        alias="CHAIN_SEAPORT_ADDRESS",
        description="Seaport exchange contract to scan",
    )
    from_block: int = Field(
        default=0,
        alias="CHAIN_FROM_BLOCK",
        ge=0,
        description="First block to scan",
    )
    chunk_size_blocks: int = Field(
        default=10_000,
        alias="CHAIN_CHUNK_SIZE_BLOCKS",
        ge=1,
        le=500_000,
        description="Block chunk size for eth_getLogs scans",
    )
    max_retries: int = Field(
        default=3,
        alias="CHAIN_MAX_RETRIES",
        ge=0,
        le=20,
        description="Retries per endpoint before failing over",
    )
    retry_delay_seconds: float = Field(
        default=1.0,
        alias="CHAIN_RETRY_DELAY_SECONDS",
        ge=0,
        le=60,
        description="Initial retry delay (doubles per retry)",
    )
    probe_timeout_seconds: float = Field(
        default=10.0,
        alias="CHAIN_PROBE_TIMEOUT_SECONDS",
        gt=0,
        le=120,
        description="Timeout for the startup block-height probe",
    )
    price_decimals: int = Field(
        default=18,
        alias="CHAIN_PRICE_DECIMALS",
        ge=0,
        le=PRICE_SCALE,
        description="Decimal exponent of the payment token",
    )
    sink: Literal["backend", "database"] = Field(
        default="backend",
        alias="CHAIN_SINK",
        description="Where decoded events are written",
    )

    @field_validator("rpc_url")
    @classmethod
    def validate_rpc_url(cls, v: str | None) -> str | None:
        if not v:
            return None
        return _validate_http_url(v, "CHAIN_RPC_URL")

    @field_validator("fallback_rpc_urls", mode="before")
    @classmethod
    def _parse_fallback_rpc_urls(cls, v: object) -> tuple[str, ...]:
        if v is None:
            return ()
        if isinstance(v, str):
            return tuple(p.strip() for p in v.split(",") if p.strip())
        if isinstance(v, (list, tuple)):
            return tuple(str(x) for x in v)
        raise TypeError("Invalid CHAIN_FALLBACK_RPC_URLS type")

    @field_validator("seaport_address")
    @classmethod
    def validate_seaport_address(cls, v: str | None) -> str | None:
        return _validate_address(v, "CHAIN_SEAPORT_ADDRESS")

    @property
    def rpc_urls(self) -> list[str]:
        """Candidate endpoints in preference order, without duplicates."""
        urls: list[str] = []
        for url in (self.rpc_url, *self.fallback_rpc_urls):
            if url and url not in urls:
                urls.append(url)
        return urls


class BackendSettings(BaseSettings):
    """Ingestion backend settings."""

    model_config = SettingsConfigDict(env_prefix="BACKEND_", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="BACKEND_URL",
        description="Base URL of the backend exposing POST /api/order",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        if not v:
            return None
        return _validate_http_url(v, "BACKEND_URL")


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from nft_order_sync.config import get_settings

        settings = get_settings()
        print(settings.nft_contract_address)
        print(settings.chain.rpc_urls)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # Nested configuration groups
    #
    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    http: HttpSettings = Field(
        default_factory=lambda: HttpSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    opensea: OpenSeaSettings = Field(
        default_factory=lambda: OpenSeaSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    magiceden: MagicEdenSettings = Field(
        default_factory=lambda: MagicEdenSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    chain: ChainSettings = Field(
        default_factory=lambda: ChainSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    backend: BackendSettings = Field(
        default_factory=lambda: BackendSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    nft_contract_address: str | None = Field(
        default=None,
        alias="NFT_CONTRACT_ADDRESS",
        description="Collection contract whose orders are tracked",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    @field_validator("nft_contract_address")
    @classmethod
    def validate_nft_contract_address(cls, v: str | None) -> str | None:
        return _validate_address(v, "NFT_CONTRACT_ADDRESS")

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url) if self.database.url else "(not set)",
            "nft_contract_address": self.nft_contract_address or "(not set)",
            "http": {
                "timeout_seconds": str(self.http.timeout_seconds),
                "max_retries": str(self.http.max_retries),
                "backoff": self.http.backoff,
            },
            "opensea": {
                "base_url": self.opensea.base_url,
                "chain": self.opensea.chain,
                "api_key": "(set)" if self.opensea.api_key else "(not set)",
            },
            "magiceden": {
                "base_url": self.magiceden.base_url,
                "collection_symbol": self.magiceden.collection_symbol or "(not set)",
            },
            "chain": {
                "rpc_urls": ", ".join(self._redact_url(u) for u in self.chain.rpc_urls),
                "seaport_address": self.chain.seaport_address or "(not set)",
                "from_block": str(self.chain.from_block),
                "chunk_size_blocks": str(self.chain.chunk_size_blocks),
                "sink": self.chain.sink,
            },
            "backend_url": self.backend.url or "(not set)",
            "log_level": self.log_level,
        }

    def validate_requirements(
        self,
        *,
        command: Command,
        marketplace: Literal["opensea", "magiceden"] | None = None,
        sink: Literal["backend", "database"] | None = None,
    ) -> None:
        """Validate command-specific requirements.

        Raises:
            ConfigurationError: If a setting the command needs is missing.
        """
        if command in ("listings", "chain") and not self.nft_contract_address:
            raise ConfigurationError("NFT_CONTRACT_ADDRESS is required")

        if command == "init-db" and not self.database.url:
            raise ConfigurationError("DATABASE_URL is required for init-db")

        if command == "listings":
            if not self.database.url:
                raise ConfigurationError("DATABASE_URL is required for listing sync")
            if marketplace == "opensea" and not self.opensea.api_key:
                raise ConfigurationError("OPENSEA_API_KEY is required for OpenSea listings")
            if marketplace == "magiceden" and not self.magiceden.collection_symbol:
                raise ConfigurationError("MAGICEDEN_COLLECTION_SYMBOL is required for Magic Eden listings")

        if command == "chain":
            if not self.chain.seaport_address:
                raise ConfigurationError("CHAIN_SEAPORT_ADDRESS is required for chain sync")
            if not self.chain.rpc_urls:
                raise ConfigurationError("CHAIN_RPC_URL or CHAIN_FALLBACK_RPC_URLS is required for chain sync")
            effective_sink = sink or self.chain.sink
            if effective_sink == "backend" and not self.backend.url:
                raise ConfigurationError("BACKEND_URL is required when writing chain events to the backend")
            if effective_sink == "database" and not self.database.url:
                raise ConfigurationError("DATABASE_URL is required when writing chain events to the database")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            # URL has credentials - redact the password
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
