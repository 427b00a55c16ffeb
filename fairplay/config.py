"""
Configuration management for the Fairplay settlement service.
Supports config.json with environment variable overrides.
All paths are resolved relative to the project root.
"""

import json
import os
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from dotenv import load_dotenv

load_dotenv()

# Project root directory (parent of 'fairplay' folder)
PROJECT_ROOT = Path(__file__).parent.parent


def get_env(key: str, default: str = None) -> Optional[str]:
    """Get environment variable with optional default."""
    return os.environ.get(key, default)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    val = os.environ.get(key)
    if val is None:
        return default
    return val.lower() in ("true", "1", "yes", "on")


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def get_env_float(key: str, default: float = 0.0) -> float:
    """Get float environment variable."""
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return float(val)
    except ValueError:
        return default


# ==================== Configuration Models ====================

class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = True
    name: str = "Fairplay Settlement"


class SecurityConfig(BaseModel):
    operator_username: str = "operator"
    operator_password_hash: str = ""  # bcrypt hash, empty disables operator routes


class GameConfig(BaseModel):
    model_config = ConfigDict(extra="allow")  # game-specific knobs

    enabled: bool = True
    min_bet: float = 0.001
    max_bet: float = 5.0
    house_edge: float = 0.0


class GamesConfig(BaseModel):
    coinflip: GameConfig = Field(default_factory=lambda: GameConfig(max_bet=10.0))
    dice: GameConfig = Field(default_factory=lambda: GameConfig(max_bet=10.0, house_edge=0.01))
    crash: GameConfig = Field(default_factory=lambda: GameConfig(max_bet=10.0, house_edge=0.01))
    slots: GameConfig = Field(default_factory=GameConfig)
    roulette: GameConfig = Field(default_factory=GameConfig)
    plinko: GameConfig = Field(default_factory=GameConfig)
    blackjack: GameConfig = Field(default_factory=GameConfig)

    def get(self, game: str) -> Optional[GameConfig]:
        return getattr(self, game, None)


class JackpotConfig(BaseModel):
    """Shared jackpot pool settings (slots)."""
    seed_amount: float = 50.0
    contribution_percent: float = 2.0


class LedgerConfig(BaseModel):
    backend: str = "rpc"  # "rpc" or "memory" (sandbox)
    rpc_urls: List[str] = Field(
        default_factory=lambda: [
            "https://api.devnet.solana.com",
        ]
    )
    commitment: str = "confirmed"
    house_address: str = ""
    signer_url: str = "http://127.0.0.1:3002"
    request_timeout_seconds: float = 10.0
    fee_reserve: float = 0.000005  # 5000 lamports for fees
    sandbox_house_balance: float = 100.0


class PayoutConfig(BaseModel):
    transport: str = "ledger"  # "ledger" (local signer) or "remote"
    remote_url: str = "http://127.0.0.1:3001/api/payout"
    max_attempts: int = 3
    backoff_base_seconds: float = 2.0
    backoff_max_seconds: float = 300.0
    confirm_timeout_seconds: float = 60.0


class EscrowConfig(BaseModel):
    # A recent blockhash expires after roughly 150 slots (~60-90s)
    timeout_seconds: float = 90.0
    poll_interval_seconds: float = 0.5
    poll_max_interval_seconds: float = 4.0


class SchedulerConfig(BaseModel):
    enabled: bool = True
    payout_drain_seconds: int = 15
    recovery_sweep_seconds: int = 30


class RateLimitConfig(BaseModel):
    enabled: bool = True
    wager_requests: str = "30/minute"
    payout_requests: str = "10/minute"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_to_file: bool = False
    formatter: str = "color"


class PathsConfig(BaseModel):
    """All paths are relative to PROJECT_ROOT."""
    config_file: str = "config.json"
    database: str = "data/fairplay.db"
    log_file: str = "data/app.log"

    def get_config_path(self) -> Path:
        return PROJECT_ROOT / self.config_file

    def get_db_path(self) -> Path:
        return PROJECT_ROOT / self.database

    def get_log_path(self) -> Path:
        return PROJECT_ROOT / self.log_file


class AppConfig(BaseModel):
    """Main application configuration."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    games: GamesConfig = Field(default_factory=GamesConfig)
    jackpot: JackpotConfig = Field(default_factory=JackpotConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    payout: PayoutConfig = Field(default_factory=PayoutConfig)
    escrow: EscrowConfig = Field(default_factory=EscrowConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)


# ==================== Configuration Loading ====================

def load_config() -> AppConfig:
    """
    Load configuration from config.json with environment variable overrides.
    Environment variables take precedence over config.json values.
    """
    config_path = PathsConfig().get_config_path()

    data = {}

    if config_path.exists():
        with open(config_path, "r") as f:
            data = json.load(f)

    if get_env("SERVER_HOST"):
        data.setdefault("server", {})["host"] = get_env("SERVER_HOST")
    if get_env("SERVER_PORT"):
        data.setdefault("server", {})["port"] = get_env_int("SERVER_PORT", 8000)
    if get_env("DEBUG"):
        data.setdefault("server", {})["debug"] = get_env_bool("DEBUG")

    if get_env("OPERATOR_USERNAME"):
        data.setdefault("security", {})["operator_username"] = get_env("OPERATOR_USERNAME")
    if get_env("OPERATOR_PASSWORD_HASH"):
        data.setdefault("security", {})["operator_password_hash"] = get_env("OPERATOR_PASSWORD_HASH")

    if get_env("DB_PATH"):
        data.setdefault("paths", {})["database"] = get_env("DB_PATH")

    if get_env("LOG_LEVEL"):
        data.setdefault("logging", {})["level"] = get_env("LOG_LEVEL")
    if get_env("LOG_TO_FILE"):
        data.setdefault("logging", {})["log_to_file"] = get_env_bool("LOG_TO_FILE")
    if get_env("LOG_FORMATTER"):
        data.setdefault("logging", {})["formatter"] = get_env("LOG_FORMATTER")

    if get_env("RATE_LIMIT_ENABLED"):
        data.setdefault("rate_limit", {})["enabled"] = get_env_bool("RATE_LIMIT_ENABLED", True)
    if get_env("RATE_LIMIT_WAGER_REQUESTS"):
        data.setdefault("rate_limit", {})["wager_requests"] = get_env("RATE_LIMIT_WAGER_REQUESTS")
    if get_env("RATE_LIMIT_PAYOUT_REQUESTS"):
        data.setdefault("rate_limit", {})["payout_requests"] = get_env("RATE_LIMIT_PAYOUT_REQUESTS")

    # Ledger / payout bindings
    if get_env("LEDGER_BACKEND"):
        data.setdefault("ledger", {})["backend"] = get_env("LEDGER_BACKEND")
    if get_env("SOLANA_RPC_URL"):
        # Preferred endpoint goes first, configured fallbacks follow
        ledger = data.setdefault("ledger", {})
        urls = ledger.get("rpc_urls", LedgerConfig().rpc_urls)
        ledger["rpc_urls"] = [get_env("SOLANA_RPC_URL")] + [
            u for u in urls if u != get_env("SOLANA_RPC_URL")
        ]
    if get_env("HOUSE_WALLET_ADDRESS"):
        data.setdefault("ledger", {})["house_address"] = get_env("HOUSE_WALLET_ADDRESS")
    if get_env("SIGNER_URL"):
        data.setdefault("ledger", {})["signer_url"] = get_env("SIGNER_URL")
    if get_env("PAYOUT_TRANSPORT"):
        data.setdefault("payout", {})["transport"] = get_env("PAYOUT_TRANSPORT")
    if get_env("PAYOUT_API_URL"):
        data.setdefault("payout", {})["remote_url"] = get_env("PAYOUT_API_URL")
    if get_env("PAYOUT_MAX_ATTEMPTS"):
        data.setdefault("payout", {})["max_attempts"] = get_env_int("PAYOUT_MAX_ATTEMPTS", 3)
    if get_env("ESCROW_TIMEOUT_SECONDS"):
        data.setdefault("escrow", {})["timeout_seconds"] = get_env_float("ESCROW_TIMEOUT_SECONDS", 90.0)
    if get_env("SCHEDULER_ENABLED"):
        data.setdefault("scheduler", {})["enabled"] = get_env_bool("SCHEDULER_ENABLED", True)

    return AppConfig(**data)


# Global config instance
settings = load_config()
