"""File, environment, and CLI runtime configuration."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Self

from dotenv import load_dotenv

from yieldledger.conversion import VIRTUAL_ASSETS, VIRTUAL_SHARES
from yieldledger.errors import SettingsError

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# TOML [section] key -> Settings field
_FILE_KEYS = {
    ("ledger", "controller"): "controller",
    ("ledger", "account"): "ledger_account",
    ("ledger", "virtual_shares"): "virtual_shares",
    ("ledger", "virtual_assets"): "virtual_assets",
    ("runtime", "events_dir"): "events_dir",
    ("runtime", "state_db_path"): "state_db_path",
    ("runtime", "log_level"): "log_level",
    ("runtime", "persist_state"): "persist_state",
    ("adapters", "timeout"): "adapter_timeout",
    ("adapters", "max_retries"): "adapter_max_retries",
    ("adapters", "api_key"): "adapter_api_key",
}


def parse_bool(value: str | None, default: bool) -> bool:
    """Parse truthy environment strings."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def parse_positive_int(value: str | None, *, field_name: str, default: int) -> int:
    """Parse a positive integer from an env string, falling back on blanks."""
    if value is None:
        return default
    text = value.strip()
    if not text:
        return default
    try:
        parsed = int(text)
    except ValueError as exc:
        raise SettingsError(f"{field_name} must be an integer") from exc
    if parsed <= 0:
        raise SettingsError(f"{field_name} must be positive")
    return parsed


def read_config_file(config_path: str | Path) -> dict[str, Any]:
    """Flatten a TOML config file into Settings field overrides."""
    path = Path(config_path)
    if not path.exists():
        raise SettingsError(f"Config file not found: {path}")
    with path.open("rb") as handle:
        try:
            document = tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:
            raise SettingsError(f"Config file {path} is not valid TOML: {exc}") from exc
    values: dict[str, Any] = {}
    for (section, key), field_name in _FILE_KEYS.items():
        table = document.get(section, {})
        if isinstance(table, dict) and key in table:
            values[field_name] = table[key]
    return values


@dataclass(frozen=True)
class Settings:
    """Immutable runtime settings."""

    controller: str = "allocator"
    ledger_account: str = "ledger"
    virtual_shares: int = VIRTUAL_SHARES
    virtual_assets: int = VIRTUAL_ASSETS
    events_dir: str = "runs"
    state_db_path: str = "state/yieldledger_state.db"
    log_level: str = "INFO"
    persist_state: bool = True
    adapter_timeout: int = 20
    adapter_max_retries: int = 4
    adapter_api_key: str = ""

    @classmethod
    def from_env(cls, base: Settings | None = None) -> Self:
        """Create settings from environment variables layered over ``base``."""
        load_dotenv()
        defaults = base or cls()
        raw = cls(
            controller=str(os.getenv("LEDGER_CONTROLLER", defaults.controller)).strip(),
            ledger_account=str(os.getenv("LEDGER_ACCOUNT", defaults.ledger_account)).strip(),
            virtual_shares=parse_positive_int(
                os.getenv("VIRTUAL_SHARES"),
                field_name="virtual_shares",
                default=defaults.virtual_shares,
            ),
            virtual_assets=parse_positive_int(
                os.getenv("VIRTUAL_ASSETS"),
                field_name="virtual_assets",
                default=defaults.virtual_assets,
            ),
            events_dir=str(os.getenv("EVENTS_DIR", defaults.events_dir)).strip(),
            state_db_path=str(os.getenv("STATE_DB_PATH", defaults.state_db_path)).strip(),
            log_level=str(os.getenv("LOG_LEVEL", defaults.log_level)).strip().upper(),
            persist_state=parse_bool(os.getenv("PERSIST_STATE"), defaults.persist_state),
            adapter_timeout=parse_positive_int(
                os.getenv("ADAPTER_TIMEOUT"),
                field_name="adapter_timeout",
                default=defaults.adapter_timeout,
            ),
            adapter_max_retries=parse_positive_int(
                os.getenv("ADAPTER_MAX_RETRIES"),
                field_name="adapter_max_retries",
                default=defaults.adapter_max_retries,
            ),
            adapter_api_key=str(os.getenv("ADAPTER_API_KEY", defaults.adapter_api_key)).strip(),
        )
        return raw.validate()

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> Self:
        """Resolve settings with precedence config file < environment."""
        base = cls()
        if config_path is not None:
            base = base.with_overrides(**read_config_file(config_path))
        return cls.from_env(base=base)

    def with_overrides(self, **kwargs: object) -> Self:
        """Return a new settings object with updated values."""
        known = {item.name for item in fields(self)}
        unknown = sorted(set(kwargs) - known)
        if unknown:
            raise SettingsError(f"Unknown settings: {', '.join(unknown)}")
        updated = replace(self, **kwargs)
        return updated.validate()

    def validate(self) -> Self:
        """Validate settings fields."""
        if not self.controller:
            raise SettingsError("controller must be non-empty")
        if not self.ledger_account:
            raise SettingsError("ledger_account must be non-empty")
        if self.controller == self.ledger_account:
            raise SettingsError("controller and ledger_account must differ")
        for name in ("virtual_shares", "virtual_assets", "adapter_timeout", "adapter_max_retries"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise SettingsError(f"{name} must be a positive integer")
        if self.log_level.upper() not in _LOG_LEVELS:
            raise SettingsError(f"log_level must be one of {', '.join(sorted(_LOG_LEVELS))}")
        if not self.events_dir:
            raise SettingsError("events_dir must be non-empty")
        if self.persist_state and not self.state_db_path:
            raise SettingsError("state_db_path is required when persist_state is enabled")
        return self
