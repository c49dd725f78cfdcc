"""
Configuration management using Pydantic Settings.

Two layers:
- Settings: process-level settings from environment / .env (credentials,
  provider endpoints, retry tuning, logging)
- ProjectConfig: per-project badge requirements loaded from config/badges/<project>.json
"""

import json
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings with environment-based configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Application
    app_name: str = "Holder Badge Engine"
    app_version: str = "0.1.0"
    environment: str = "development"
    config_dir: str = "config"
    export_dir: str = "files"

    # Status server
    host: str = "127.0.0.1"
    port: int = 3000

    # Badges API (result sender)
    api_key: Optional[str] = None
    api_timeout: int = 30

    # Providers
    moralis_api_keys: str = ""
    moralis_base_url: str = "https://deep-index.moralis.io/api/v2.2"
    moralis_chain: str = "0xa86a"  # Avalanche C-Chain
    snowtrace_api_key: str = ""
    snowtrace_base_url: str = "https://api.snowtrace.io/api"
    alchemy_api_key: str = ""
    alchemy_rpc_url: str = "https://avax-mainnet.g.alchemy.com/v2"
    arena_profile_url: str = "https://api.arena.trade/user_info"

    # Retry policy
    provider_max_attempts: int = 3
    provider_retry_delay: float = 0.5  # seconds
    provider_rate_limit_multiplier: float = 2.0
    provider_timeout: int = 30

    # Batching
    holder_page_size: int = 50
    nft_batch_size: int = 25
    balance_batch_size: int = 5
    social_batch_size: int = 10
    batch_delay: float = 0.5  # seconds between batches

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"  # json or console
    log_file: Optional[str] = None

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = ["development", "staging", "production", "test"]
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def moralis_key_list(self) -> List[str]:
        """MORALIS_API_KEYS accepts a JSON array or a single bare key."""
        raw = self.moralis_api_keys.strip()
        if not raw:
            return []
        if raw.startswith("["):
            try:
                keys = json.loads(raw)
            except json.JSONDecodeError as e:
                raise ConfigurationError(
                    "MORALIS_API_KEYS is not a valid JSON array",
                    {"error": str(e)}
                )
            return [str(k).strip() for k in keys if str(k).strip()]
        return [raw]


# Global settings instance
settings = Settings()


class TokenRequirement(BaseModel):
    """Minimum ERC-20 balance required for a tier."""
    model_config = ConfigDict(populate_by_name=True)

    address: str
    symbol: str = "TOKEN"
    decimals: int = 18
    min_balance: Decimal = Field(alias="minBalance")

    @field_validator("address")
    @classmethod
    def normalize_address(cls, v: str) -> str:
        return v.strip().lower()


class NftRequirement(BaseModel):
    """Minimum number of NFTs from a collection required for a tier."""
    model_config = ConfigDict(populate_by_name=True)

    address: str
    name: str = "NFT"
    min_balance: Decimal = Field(default=Decimal(1), alias="minBalance")
    collection_size: Optional[int] = Field(default=None, alias="collectionSize")

    @field_validator("address")
    @classmethod
    def normalize_address(cls, v: str) -> str:
        return v.strip().lower()


class TierRequirements(BaseModel):
    """All requirements of one tier; an address must satisfy every one."""
    tokens: List[TokenRequirement] = Field(default_factory=list)
    nfts: List[NftRequirement] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.tokens and not self.nfts


class BadgeTiers(BaseModel):
    basic: TierRequirements
    upgraded: Optional[TierRequirements] = None


class SchedulerConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    interval_hours: float = Field(default=6, alias="intervalHours", gt=0)
    retry_interval_hours: float = Field(default=2, alias="retryIntervalHours", gt=0)


class BadgeApiConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    base_url: str = Field(default="http://api.arena.social/badges", alias="baseUrl")
    basic_endpoint: str = Field(default="basic", alias="basic")
    upgraded_endpoint: str = Field(default="upgraded", alias="upgraded")


class ProjectConfig(BaseModel):
    """Badge configuration for one project."""
    model_config = ConfigDict(populate_by_name=True)

    project_name: str = Field(alias="projectName")
    badges: BadgeTiers
    sum_of_balances: bool = Field(default=False, alias="sumOfBalances")
    exclude_basic_for_upgraded: bool = Field(default=False, alias="excludeBasicForUpgraded")
    permanent_accounts: List[str] = Field(default_factory=list, alias="permanentAccounts")
    excluded_accounts: List[str] = Field(default_factory=list, alias="excludedAccounts")
    wallet_mapping: Dict[str, str] = Field(default_factory=dict, alias="walletMapping")
    wallet_mapping_file: Optional[str] = Field(default=None, alias="walletMappingFile")
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    api: BadgeApiConfig = Field(default_factory=BadgeApiConfig)

    @field_validator("permanent_accounts", "excluded_accounts")
    @classmethod
    def normalize_handles(cls, v: List[str]) -> List[str]:
        return [h.strip().lower() for h in v if h and h.strip()]

    @field_validator("wallet_mapping")
    @classmethod
    def normalize_mapping(cls, v: Dict[str, str]) -> Dict[str, str]:
        return {a.strip().lower(): h.strip().lower() for a, h in v.items() if a and h}

    @property
    def interval_seconds(self) -> float:
        return self.scheduler.interval_hours * 3600

    @property
    def retry_interval_seconds(self) -> float:
        return self.scheduler.retry_interval_hours * 3600


def load_wallet_mapping(path: Path) -> Dict[str, str]:
    """Load an address -> handle JSON mapping, lowercasing both sides."""
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError:
        raise ConfigurationError(f"Wallet mapping file not found: {path}", {"path": str(path)})
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid wallet mapping file: {path}", {"error": str(e)})

    if not isinstance(data, dict):
        raise ConfigurationError(f"Wallet mapping must be a JSON object: {path}")
    return {str(a).lower(): str(h).lower() for a, h in data.items() if a and h}


def load_project_config(project: str, config_dir: Optional[str] = None) -> ProjectConfig:
    """
    Load a project's badge configuration.

    Args:
        project: Project name (config/badges/<project>.json) or a path to a JSON file
        config_dir: Base configuration directory (defaults to settings.config_dir)

    Returns:
        Validated project configuration with the wallet mapping merged in

    Raises:
        ConfigurationError: If the file is missing or invalid
    """
    base_dir = Path(config_dir or settings.config_dir)
    path = Path(project)
    if path.suffix != ".json":
        path = base_dir / "badges" / f"{project}.json"

    try:
        raw = json.loads(path.read_text())
    except FileNotFoundError:
        raise ConfigurationError(f"No badge configuration found for '{project}'", {"path": str(path)})
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid badge configuration: {path}", {"error": str(e)})

    raw.setdefault("projectName", path.stem)

    try:
        config = ProjectConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid badge configuration: {path}", {"errors": e.errors()})

    if config.wallet_mapping_file:
        mapping_path = Path(config.wallet_mapping_file)
        if not mapping_path.is_absolute():
            mapping_path = base_dir / mapping_path
        file_mapping = load_wallet_mapping(mapping_path)
        # Inline entries take precedence over the mapping file
        config.wallet_mapping = {**file_mapping, **config.wallet_mapping}

    return config
