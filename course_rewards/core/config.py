from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]
RewardMode = Literal["off-chain-only", "on-chain"]


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it’s easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    reward_mode: RewardMode = "off-chain-only"
    default_token_reward: int = 100
    chain_rpc_url: str | None = None
    token_contract_address: str | None = None
    chain_private_key: str | None = None
    chain_confirmation_timeout: int = 120

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"

    @property
    def on_chain(self) -> bool:
        return self.reward_mode == "on-chain"


def _parse_int(name: str, raw: str, *, minimum: int = 0) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    log_json_raw = _getenv("LOG_JSON", "false").lower()
    reward_mode_raw = _getenv("REWARD_MODE", "off-chain-only").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    if reward_mode_raw not in ("off-chain-only", "on-chain"):
        raise ValueError(
            f"REWARD_MODE must be off-chain-only|on-chain (got {reward_mode_raw!r})"
        )

    port = _parse_int("PORT", _getenv("PORT", "8000"), minimum=1)
    default_token_reward = _parse_int(
        "DEFAULT_TOKEN_REWARD", _getenv("DEFAULT_TOKEN_REWARD", "100")
    )
    confirmation_timeout = _parse_int(
        "CHAIN_CONFIRMATION_TIMEOUT",
        _getenv("CHAIN_CONFIRMATION_TIMEOUT", "120"),
        minimum=1,
    )

    database_url = _getenv("DATABASE_URL", "") or None
    redis_url = _getenv("REDIS_URL", "") or None
    chain_rpc_url = _getenv("CHAIN_RPC_URL", "") or None
    token_contract_address = _getenv("TOKEN_CONTRACT_ADDRESS", "") or None
    chain_private_key = _getenv("CHAIN_PRIVATE_KEY", "") or None

    # A production deployment must never fall back to the simulated chain.
    if app_env_raw == "prod" and reward_mode_raw == "on-chain":
        missing = [
            name
            for name, value in (
                ("CHAIN_RPC_URL", chain_rpc_url),
                ("TOKEN_CONTRACT_ADDRESS", token_contract_address),
                ("CHAIN_PRIVATE_KEY", chain_private_key),
            )
            if value is None
        ]
        if missing:
            raise ValueError(
                f"REWARD_MODE=on-chain in prod requires {', '.join(missing)}"
            )

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json_raw in ("1", "true", "yes"),
        port=port,
        database_url=database_url,
        redis_url=redis_url,
        reward_mode=reward_mode_raw,
        default_token_reward=default_token_reward,
        chain_rpc_url=chain_rpc_url,
        token_contract_address=token_contract_address,
        chain_private_key=chain_private_key,
        chain_confirmation_timeout=confirmation_timeout,
    )


# Optional: module-level singleton so imports are cheap
SETTINGS = load_settings()
