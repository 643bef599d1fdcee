# config.py
from __future__ import annotations

import os
import re
from dataclasses import dataclass, replace


def _getenv_raw(name: str, default: str | None = None) -> str | None:
    v = os.environ.get(name, default)
    if v is None:
        return None
    v = str(v).strip()
    return v if v != "" else None


def _env_required(name: str) -> str:
    v = _getenv_raw(name)
    if v is None:
        raise RuntimeError(f"Missing environment variable: {name}")
    return v


def _parse_discord_id(value: str, var_name: str) -> int:
    """
    Accepts:
      - 725383719455817758
      - <725383719455817758>
      - <#725383719455817758>
      - <@&725383719455817758>
    """
    m = re.search(r"\d+", value)
    if not m:
        raise ValueError(f"{var_name} must contain a numeric ID (got: {value!r})")
    return int(m.group(0))


def _env_id_required(name: str) -> int:
    return _parse_discord_id(_env_required(name), name)


def _env_id(name: str, default: int) -> int:
    v = _getenv_raw(name)
    if v is None:
        return default
    return _parse_discord_id(v, name)


def _env_str(name: str, default: str) -> str:
    v = _getenv_raw(name, default)
    return (v if v is not None else default).strip()


def _env_int(name: str, default: int) -> int:
    v = _getenv_raw(name)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got: {v!r})") from None


def _env_float(name: str, default: float) -> float:
    v = _getenv_raw(name)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError:
        raise ValueError(f"{name} must be a number (got: {v!r})") from None


def _env_bool(name: str, default: bool) -> bool:
    v = _getenv_raw(name, None)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


@dataclass(frozen=True)
class RconConfig:
    RCON_HOST: str
    RCON_PORT: int
    RCON_PASSWORD: str  # may be empty for the console, which also takes --password
    PROTOCOL_VERSION: int
    KEEPALIVE_SECONDS: float
    HUFFMAN_FREQS_FILE: str  # JSON list of the server's 256 weights
    HUFFMAN_USE_BUNDLED: bool  # allow the bundled text table when no file is set

    def with_endpoint(self, host: str, port: int, password: str) -> "RconConfig":
        return replace(self, RCON_HOST=host, RCON_PORT=port, RCON_PASSWORD=password)

    def __repr__(self) -> str:
        # keep the password out of logs and tracebacks
        return (
            f"RconConfig(RCON_HOST={self.RCON_HOST!r}, RCON_PORT={self.RCON_PORT}, "
            f"PROTOCOL_VERSION={self.PROTOCOL_VERSION}, KEEPALIVE_SECONDS={self.KEEPALIVE_SECONDS})"
        )


@dataclass(frozen=True)
class Config:
    RCON: RconConfig

    # Discord
    DISCORD_BOT_TOKEN: str
    DISCORD_GUILD_ID: int
    ZAN_ADMIN_ROLE_ID: int
    RELAY_CHANNEL_ID: int

    # Behaviour
    ALLOW_CHANNEL_PERMS: bool
    CONFIRM_SECONDS: int
    COOLDOWN_SECONDS: int

    # Logging
    LOG_DIR: str
    BOT_LOG_FILE: str
    ACTION_AUDIT_LOG: str


def load_rcon_config() -> RconConfig:
    return RconConfig(
        RCON_HOST=_env_str("ZAN_RCON_HOST", "localhost"),
        RCON_PORT=_env_int("ZAN_RCON_PORT", 10666),
        RCON_PASSWORD=_env_str("ZAN_RCON_PASSWORD", ""),
        PROTOCOL_VERSION=_env_int("ZAN_PROTOCOL_VERSION", 3),
        KEEPALIVE_SECONDS=_env_float("ZAN_KEEPALIVE_SECONDS", 5.0),
        HUFFMAN_FREQS_FILE=_env_str("ZAN_HUFFMAN_FREQS_FILE", ""),
        HUFFMAN_USE_BUNDLED=_env_bool("ZAN_HUFFMAN_USE_BUNDLED", False),
    )


def load_config() -> Config:
    rcon = load_rcon_config()
    if not rcon.RCON_PASSWORD:
        raise RuntimeError("Missing environment variable: ZAN_RCON_PASSWORD")

    log_dir = _env_str("ZAN_LOG_DIR", os.path.join(os.getcwd(), "logs"))

    return Config(
        RCON=rcon,

        DISCORD_BOT_TOKEN=_env_required("DISCORD_BOT_TOKEN"),
        DISCORD_GUILD_ID=_env_id_required("DISCORD_GUILD_ID"),
        ZAN_ADMIN_ROLE_ID=_env_id_required("ZAN_ADMIN_ROLE_ID"),
        RELAY_CHANNEL_ID=_env_id("ZAN_RELAY_CHANNEL_ID", 0),

        ALLOW_CHANNEL_PERMS=_env_bool("ZAN_ALLOW_CHANNEL_PERMS", True),
        CONFIRM_SECONDS=_env_int("ZAN_CONFIRM_SECONDS", 20),
        COOLDOWN_SECONDS=_env_int("ZAN_COOLDOWN_SECONDS", 5),

        LOG_DIR=log_dir,
        BOT_LOG_FILE=os.path.join(log_dir, "zan_discord_bot.log"),
        ACTION_AUDIT_LOG=os.path.join(log_dir, "zan_discord_actions.log"),
    )
